"""
Integration with Replicate for rendering the illustrations the image tool requests.
"""

from __future__ import annotations

import os
from collections.abc import Iterable as IterableABC
from typing import Any, BinaryIO, Callable, Protocol, Sequence

import replicate
import requests

from .attachments import ImageAttachment


class ImageRenderer(Protocol):
    def render(
        self,
        *,
        prompt: str,
        references: Sequence[ImageAttachment],
        aspect_ratio: str = "1:1",
    ) -> bytes:
        ...


def _build_flux_kontext_input(
    *,
    prompt: str,
    references: Sequence[str | BinaryIO],
    aspect_ratio: str,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt,
        "output_format": "png",
        "safety_tolerance": 2,
        "prompt_upsampling": False,
        "aspect_ratio": aspect_ratio,
    }
    if references:
        payload["input_image"] = references[0]
    return payload


def _build_multi_image_input(
    *,
    prompt: str,
    references: Sequence[str | BinaryIO],
    aspect_ratio: str,
) -> dict[str, Any]:
    return {
        "prompt": prompt,
        "input_images": list(references),
        "output_format": "png",
        "aspect_ratio": aspect_ratio,
    }


def _build_nano_banana_input(
    *,
    prompt: str,
    references: Sequence[str | BinaryIO],
    aspect_ratio: str,
) -> dict[str, Any]:
    return {
        "prompt": prompt,
        "image_input": list(references),
        "aspect_ratio": aspect_ratio,
        "output_format": "png",
    }


_MODEL_INPUT_BUILDERS: dict[str, Callable[..., dict[str, Any]]] = {
    "black-forest-labs/flux-kontext-pro": _build_flux_kontext_input,
    "black-forest-labs/flux-kontext-max": _build_flux_kontext_input,
    "flux-kontext-apps/multi-image-list": _build_multi_image_input,
    "google/nano-banana": _build_nano_banana_input,
}


def _build_replicate_input_payload(
    *,
    model_identifier: str,
    prompt: str,
    references: Sequence[str | BinaryIO],
    aspect_ratio: str,
) -> dict[str, Any]:
    normalized_identifier = model_identifier.strip().lower()
    builder = _MODEL_INPUT_BUILDERS.get(normalized_identifier)
    if builder is None and ":" in normalized_identifier:
        base_identifier = normalized_identifier.split(":", maxsplit=1)[0]
        builder = _MODEL_INPUT_BUILDERS.get(base_identifier)
    if builder is None:
        supported_models = ", ".join(sorted(set(_MODEL_INPUT_BUILDERS)))
        raise ValueError(
            "Model identifier "
            f"'{model_identifier}' is not configured with a default input payload. "
            f"Supported models: {supported_models}."
        )

    return builder(prompt=prompt, references=references, aspect_ratio=aspect_ratio)


class ReplicateImageGenerator:
    """
    Convenience wrapper around the Replicate client for storybook image rendering.

    Parameters
    ----------
    api_token:
        Replicate API token. Falls back to ``REPLICATE_API_TOKEN`` environment variable.
    model_identifier:
        Model string in the ``owner/model[:version]`` format. Falls back to
        ``REPLICATE_MODEL``. A value must be provided from one of the two sources.
    timeout:
        Seconds allowed for the prediction and for downloading its output.
    client:
        Optional pre-configured :class:`replicate.Client`. Mainly useful for testing.
    """

    def __init__(
        self,
        *,
        api_token: str | None = None,
        model_identifier: str | None = None,
        timeout: float = 120.0,
        client: replicate.Client | None = None,
    ) -> None:
        self._api_token = api_token or os.getenv("REPLICATE_API_TOKEN")
        if not self._api_token and not client:
            raise ValueError(
                "Replicate API token is required. Set REPLICATE_API_TOKEN or pass api_token."
            )

        self._model_identifier = model_identifier or os.getenv("REPLICATE_MODEL")
        if not self._model_identifier:
            raise ValueError(
                "Replicate model identifier is required. "
                "Set REPLICATE_MODEL or pass model_identifier in the form 'owner/model:version'."
            )

        self._timeout = timeout
        self._client = client or replicate.Client(api_token=self._api_token, timeout=timeout)

    @property
    def model_identifier(self) -> str:
        """Return the model identifier currently used."""
        return self._model_identifier

    def render(
        self,
        *,
        prompt: str,
        references: Sequence[ImageAttachment],
        aspect_ratio: str = "1:1",
    ) -> bytes:
        """
        Run the configured model and return the first output image as bytes.
        """
        if not prompt or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")

        replicate_input = _build_replicate_input_payload(
            model_identifier=self._model_identifier,
            prompt=prompt,
            references=[reference.as_renderer_input() for reference in references],
            aspect_ratio=aspect_ratio,
        )
        output = self._client.run(self._model_identifier, input=replicate_input)
        return self._first_image_bytes(output)

    def _first_image_bytes(self, output: Any) -> bytes:
        for item in _flatten_outputs(output):
            if hasattr(item, "read"):
                data = item.read()
                if data:
                    return data
                continue
            url = str(item)
            if url.lower().startswith(("http://", "https://")):
                response = requests.get(url, timeout=self._timeout)
                response.raise_for_status()
                return response.content
        return b""


def _flatten_outputs(raw: Any) -> list[Any]:
    """
    Normalize the outputs returned by Replicate into a flat list of file objects or URLs.
    """
    if raw is None:
        return []

    if isinstance(raw, (str, bytes)) or hasattr(raw, "read"):
        return [raw.decode("utf-8", errors="ignore") if isinstance(raw, bytes) else raw]

    if isinstance(raw, IterableABC):
        collected = list(raw)
        if collected and all(isinstance(item, str) and len(item) == 1 for item in collected):
            return ["".join(collected)]

        normalized: list[Any] = []
        for item in collected:
            normalized.extend(_flatten_outputs(item))
        return normalized

    return [str(raw)]
