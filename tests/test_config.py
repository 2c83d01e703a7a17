"""Tests for environment-driven configuration."""

import pytest

from picturebook.common import EngineConfig


def test_defaults():
    config = EngineConfig()

    assert config.extract_timeout == 30.0
    assert config.generate_timeout == 120.0
    assert config.max_character_models_per_scene == 4
    assert config.max_revisions == 2
    assert config.revision_history_limit == 2
    assert config.use_placeholder_character_model is False


def test_from_env_fallback_chain():
    config = EngineConfig.from_env(
        {
            "LITELLM_MODEL": "anthropic/claude-3-5-sonnet",
            "OPENAI_API_KEY": "sk-openai",
            "REPLICATE_API_TOKEN": "r8-token",
            "PICTUREBOOK_MAX_REVISIONS": "3",
            "PICTUREBOOK_PLACEHOLDER_MODEL": "yes",
        }
    )

    assert config.extract_model == "anthropic/claude-3-5-sonnet"
    assert config.story_model == "anthropic/claude-3-5-sonnet"
    assert config.image_tool_model == "anthropic/claude-3-5-sonnet"
    assert config.api_key == "sk-openai"
    assert config.replicate_api_token == "r8-token"
    assert config.max_revisions == 3
    assert config.use_placeholder_character_model is True


def test_specific_variables_win_over_generic_ones():
    config = EngineConfig.from_env(
        {
            "PICTUREBOOK_EXTRACT_MODEL": "gpt-4.1",
            "LITELLM_MODEL": "other-model",
            "PICTUREBOOK_API_KEY": "primary",
            "OPENAI_API_KEY": "secondary",
        }
    )

    assert config.extract_model == "gpt-4.1"
    assert config.api_key == "primary"


def test_from_env_rejects_bad_numbers():
    with pytest.raises(ValueError):
        EngineConfig.from_env({"PICTUREBOOK_EXTRACT_TIMEOUT": "soon"})
