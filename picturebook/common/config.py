"""
Runtime configuration for the continuity engine.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

DEFAULT_EXTRACT_MODEL = "gpt-4.1"
DEFAULT_STORY_MODEL = "gpt-4.1-mini"
DEFAULT_IMAGE_TOOL_MODEL = "gpt-4.1"
DEFAULT_REPLICATE_MODEL = "black-forest-labs/flux-kontext-pro"


@dataclass(frozen=True)
class EngineConfig:
    """
    Configuration knobs shared by every operation.

    Attributes
    ----------
    extract_model:
        LiteLLM model used for structured extraction (registry, scene plans, props).
    story_model:
        LiteLLM model used for story ideas and story writing.
    image_tool_model:
        LiteLLM model that is asked to call the ``render_illustration`` tool.
    api_key:
        API key forwarded to LiteLLM. ``None`` lets LiteLLM read its own env vars.
    replicate_api_token / replicate_model:
        Credentials and model identifier for the Replicate renderer.
    extract_timeout / generate_timeout:
        Per-request timeouts in seconds for extraction and image generation.
    max_character_models_per_scene:
        Upper bound on characters (and group slots) planned into one illustration.
    max_revisions:
        Number of regenerations allowed per page.
    revision_history_limit:
        Number of prior images kept in an illustration's revision history.
    storage_root / public_base_url:
        Directory and URL prefix used by :class:`LocalObjectStorage`.
    project_root:
        Directory used by :class:`YamlProjectStore`.
    use_placeholder_character_model:
        Development mode: reuse the uploaded photo as the character model instead
        of generating a cartoon sheet.
    """

    extract_model: str = DEFAULT_EXTRACT_MODEL
    story_model: str = DEFAULT_STORY_MODEL
    image_tool_model: str = DEFAULT_IMAGE_TOOL_MODEL
    api_key: str | None = None
    replicate_api_token: str | None = None
    replicate_model: str = DEFAULT_REPLICATE_MODEL
    extract_timeout: float = 30.0
    generate_timeout: float = 120.0
    max_character_models_per_scene: int = 4
    max_revisions: int = 2
    revision_history_limit: int = 2
    storage_root: str = "book_images"
    public_base_url: str | None = None
    project_root: str = "projects"
    use_placeholder_character_model: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EngineConfig":
        """
        Resolve the configuration from environment variables.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        return cls(
            extract_model=(
                env.get("PICTUREBOOK_EXTRACT_MODEL")
                or env.get("LITELLM_EXTRACT_MODEL")
                or env.get("LITELLM_MODEL")
                or DEFAULT_EXTRACT_MODEL
            ),
            story_model=(
                env.get("PICTUREBOOK_STORY_MODEL")
                or env.get("OPENAI_STORY_MODEL")
                or env.get("LITELLM_STORY_MODEL")
                or env.get("LITELLM_MODEL")
                or DEFAULT_STORY_MODEL
            ),
            image_tool_model=(
                env.get("PICTUREBOOK_IMAGE_TOOL_MODEL")
                or env.get("LITELLM_MODEL")
                or DEFAULT_IMAGE_TOOL_MODEL
            ),
            api_key=(
                env.get("PICTUREBOOK_API_KEY")
                or env.get("OPENAI_API_KEY")
                or env.get("LITELLM_API_KEY")
            ),
            replicate_api_token=env.get("REPLICATE_API_TOKEN"),
            replicate_model=env.get("REPLICATE_MODEL") or DEFAULT_REPLICATE_MODEL,
            extract_timeout=_float(env.get("PICTUREBOOK_EXTRACT_TIMEOUT"), defaults.extract_timeout),
            generate_timeout=_float(
                env.get("PICTUREBOOK_GENERATE_TIMEOUT"), defaults.generate_timeout
            ),
            max_character_models_per_scene=_int(
                env.get("PICTUREBOOK_MAX_CHARACTER_MODELS"),
                defaults.max_character_models_per_scene,
            ),
            max_revisions=_int(env.get("PICTUREBOOK_MAX_REVISIONS"), defaults.max_revisions),
            revision_history_limit=defaults.revision_history_limit,
            storage_root=env.get("PICTUREBOOK_STORAGE_ROOT") or defaults.storage_root,
            public_base_url=env.get("PICTUREBOOK_PUBLIC_BASE_URL") or None,
            project_root=env.get("PICTUREBOOK_PROJECT_ROOT") or defaults.project_root,
            use_placeholder_character_model=_flag(env.get("PICTUREBOOK_PLACEHOLDER_MODEL")),
        )


def _float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Expected a number, got {value!r}") from exc


def _int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Expected an integer, got {value!r}") from exc


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}
