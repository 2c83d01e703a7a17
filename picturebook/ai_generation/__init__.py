"""
Model-facing utilities: the large-model adapter, the Replicate renderer, and prompt values.
"""

from .adapter import RENDER_TOOL, LargeModelAdapter, parse_json_object
from .attachments import ImageAttachment
from .prompting import PromptSection, ScenePrompt, build_character_model_prompt
from .replicate_service import ImageRenderer, ReplicateImageGenerator

__all__ = [
    "ImageAttachment",
    "ImageRenderer",
    "LargeModelAdapter",
    "PromptSection",
    "RENDER_TOOL",
    "ReplicateImageGenerator",
    "ScenePrompt",
    "build_character_model_prompt",
    "parse_json_object",
]
