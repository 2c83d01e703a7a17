"""
Picturebook continuity engine: personalized stories and consistent illustrations.
"""

from .common import EngineConfig
from .pipeline import EngineCapabilities, PicturebookService

__all__ = [
    "EngineCapabilities",
    "EngineConfig",
    "PicturebookService",
]
