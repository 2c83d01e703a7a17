"""
Data model for projects and their story registries.
"""

from .project import (
    CharacterModel,
    IllustrationRecord,
    Project,
    RevisionEntry,
    StoryIdea,
    StoryPage,
)
from .registry import (
    ROLE_PRIORITY,
    ROLES,
    Character,
    CharacterVisual,
    Environment,
    Group,
    GroupMember,
    Prop,
    StoryRegistry,
)

__all__ = [
    "Character",
    "CharacterModel",
    "CharacterVisual",
    "Environment",
    "Group",
    "GroupMember",
    "IllustrationRecord",
    "Project",
    "Prop",
    "ROLES",
    "ROLE_PRIORITY",
    "RevisionEntry",
    "StoryIdea",
    "StoryPage",
    "StoryRegistry",
]
