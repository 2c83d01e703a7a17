"""
Large-Model Adapter: the narrow, stateless boundary around every model call.

Two capabilities only. ``extract_structured`` returns the JSON object the model
produced for an instruction that embeds its schema in prose. ``generate_image``
asks the model to call the ``render_illustration`` tool and returns the rendered
image bytes. The adapter knows nothing about projects, registries, or pages, and it
never retries.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Sequence

from picturebook.common.config import EngineConfig
from picturebook.common.errors import MalformedOutput, NoImage
from picturebook.common.llm import ChatResult, CompletionCallable, call_chat_completion

from .attachments import ImageAttachment
from .replicate_service import ImageRenderer, ReplicateImageGenerator

logger = logging.getLogger(__name__)

RENDER_TOOL_NAME = "render_illustration"

RENDER_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": RENDER_TOOL_NAME,
        "description": (
            "Render exactly one children's-book illustration. The attached reference "
            "images are forwarded to the renderer in the same order."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "prompt": {
                    "type": "string",
                    "description": "Complete visual description of the illustration to render.",
                },
                "aspect_ratio": {
                    "type": "string",
                    "enum": ["1:1", "2:3"],
                    "description": "Output aspect ratio.",
                },
            },
            "required": ["prompt"],
        },
    },
}

_FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)


def parse_json_object(text: str | None) -> dict[str, Any]:
    """
    Parse the JSON object embedded in a model reply.

    Code fences are removed, then everything between the first ``{`` and the last
    ``}`` must decode to a JSON object.
    """
    if not text:
        raise MalformedOutput("Model output was empty.")

    cleaned = _FENCE_PATTERN.sub("", text).strip()
    first_brace = cleaned.find("{")
    last_brace = cleaned.rfind("}")
    if first_brace == -1 or last_brace <= first_brace:
        raise MalformedOutput("No JSON object found in model output.")

    try:
        parsed = json.loads(cleaned[first_brace : last_brace + 1])
    except json.JSONDecodeError as exc:
        raise MalformedOutput("Failed to parse model output as JSON.") from exc

    if not isinstance(parsed, dict):
        raise MalformedOutput("Model output JSON is not an object.")
    return parsed


class LargeModelAdapter:
    """
    Stateless wrapper around LiteLLM (structured extraction, tool calling) and the
    image renderer that executes the tool call.
    """

    def __init__(
        self,
        *,
        config: EngineConfig | None = None,
        completion_fn: CompletionCallable | None = None,
        renderer: ImageRenderer | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._completion_fn: CompletionCallable = completion_fn or call_chat_completion
        self._renderer = renderer

    @property
    def config(self) -> EngineConfig:
        return self._config

    def _resolve_renderer(self) -> ImageRenderer:
        if self._renderer is None:
            self._renderer = ReplicateImageGenerator(
                api_token=self._config.replicate_api_token,
                model_identifier=self._config.replicate_model,
                timeout=self._config.generate_timeout,
            )
        return self._renderer

    def extract_structured(
        self,
        instruction: str,
        attachments: Sequence[ImageAttachment] = (),
        *,
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int | None = 4000,
    ) -> dict[str, Any]:
        """
        Run one structured extraction and return the parsed JSON object.

        Raises :class:`MalformedOutput` when no JSON object can be recovered.
        """
        result: ChatResult = self._completion_fn(
            model=model or self._config.extract_model,
            messages=[
                {
                    "role": "system",
                    "content": "Respond only with a single JSON object. No prose, no commentary.",
                },
                {"role": "user", "content": _user_content(instruction, attachments)},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=self._config.api_key,
            timeout=self._config.extract_timeout,
        )
        return parse_json_object(result.text)

    def generate_image(
        self,
        instruction: str,
        attachments: Sequence[ImageAttachment] = (),
        *,
        aspect_ratio: str = "1:1",
    ) -> bytes:
        """
        Ask the model for exactly one ``render_illustration`` call and execute it.

        Raises :class:`NoImage` when the reply carries no tool call or the renderer
        returns nothing.
        """
        result: ChatResult = self._completion_fn(
            model=self._config.image_tool_model,
            messages=[
                {
                    "role": "system",
                    "content": (
                        "You are an illustration director. Always answer by calling the "
                        f"{RENDER_TOOL_NAME} tool exactly once. Never reply with prose."
                    ),
                },
                {"role": "user", "content": _user_content(instruction, attachments)},
            ],
            temperature=0.4,
            api_key=self._config.api_key,
            timeout=self._config.generate_timeout,
            tools=[RENDER_TOOL],
            tool_choice="required",
        )

        if not result.tool_calls:
            logger.warning("Image request returned no tool call (text=%r)", result.text[:200])
            raise NoImage("Model did not generate an image.")

        call = next(
            (item for item in result.tool_calls if item.name == RENDER_TOOL_NAME),
            result.tool_calls[0],
        )
        try:
            arguments = json.loads(call.arguments or "{}")
        except json.JSONDecodeError as exc:
            raise MalformedOutput("Image tool call arguments are not valid JSON.") from exc
        if not isinstance(arguments, dict):
            raise MalformedOutput("Image tool call arguments must be a JSON object.")

        prompt = str(arguments.get("prompt") or "").strip() or instruction
        image_bytes = self._resolve_renderer().render(
            prompt=prompt,
            references=list(attachments),
            aspect_ratio=str(arguments.get("aspect_ratio") or aspect_ratio),
        )
        if not image_bytes:
            raise NoImage("Image tool produced no output.")
        return image_bytes


def _user_content(
    instruction: str, attachments: Sequence[ImageAttachment]
) -> str | list[dict[str, Any]]:
    if not attachments:
        return instruction
    content: list[dict[str, Any]] = [{"type": "text", "text": instruction}]
    for attachment in attachments:
        content.append(
            {"type": "image_url", "image_url": {"url": attachment.as_model_input()}}
        )
    return content
