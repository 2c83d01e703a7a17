"""
Story-generation utilities: profiles, prompts, and the idea/story services.
"""

from .profile import KidProfile
from .prompting import (
    StoryPrompt,
    build_ideas_prompt,
    build_location_prompt,
    build_props_prompt,
    build_registry_prompt,
    build_story_prompt,
    format_story_text,
)
from .story_service import StoryIdeaGenerator, StoryWriter

__all__ = [
    "KidProfile",
    "StoryIdeaGenerator",
    "StoryPrompt",
    "StoryWriter",
    "build_ideas_prompt",
    "build_location_prompt",
    "build_props_prompt",
    "build_registry_prompt",
    "build_story_prompt",
    "format_story_text",
]
