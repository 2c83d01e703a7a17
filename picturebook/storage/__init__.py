"""
Persistence collaborators: the Registry Store and Object Storage.
"""

from .objects import (
    InMemoryObjectStorage,
    LocalObjectStorage,
    ObjectStorage,
    R2ObjectStorage,
    character_model_path,
    illustration_path,
    illustration_revision,
    prop_photo_path,
    source_photo_path,
)
from .projects import InMemoryProjectStore, ProjectStore, YamlProjectStore

__all__ = [
    "InMemoryObjectStorage",
    "InMemoryProjectStore",
    "LocalObjectStorage",
    "ObjectStorage",
    "ProjectStore",
    "R2ObjectStorage",
    "YamlProjectStore",
    "character_model_path",
    "illustration_path",
    "illustration_revision",
    "prop_photo_path",
    "source_photo_path",
]
