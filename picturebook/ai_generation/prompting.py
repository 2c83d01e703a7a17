"""
Structured prompt values rendered in a single pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Sequence

from .attachments import ImageAttachment

CHARACTER_MODEL_STYLE = (
    "Soft, rounded cartoon proportions",
    "Slightly oversized head, friendly bright eyes",
    "Simple pastel-adjacent palette, gentle gradients",
    "Clean, medium-weight outlines",
    "Consistent warm neutral white balance (5000-5500K)",
    "Soft ambient lighting, minimal shadows",
    "Transparent background preferred (PNG)",
    "Full head-to-toe, centered, no cropping whatsoever",
    "Leave 15% margin above head and below feet",
)


@dataclass(frozen=True)
class PromptSection:
    """
    One titled block of a prompt. ``body`` is emitted verbatim; ``lines`` become
    bullets underneath it.
    """

    title: str | None = None
    body: str | None = None
    lines: tuple[str, ...] = ()

    def render(self) -> str:
        parts: list[str] = []
        if self.title:
            parts.append(self.title)
        if self.body:
            parts.append(self.body)
        bullet_block = "\n".join(f"- {line}" for line in self.lines if line.strip())
        if bullet_block:
            parts.append(bullet_block)
        return "\n".join(parts)


@dataclass(frozen=True)
class ScenePrompt:
    """Ordered prompt sections plus the reference images that accompany them."""

    sections: tuple[PromptSection, ...]
    attachments: tuple[ImageAttachment, ...] = ()
    metadata: Mapping[str, object] = field(default_factory=dict)

    def render(self) -> str:
        rendered = (section.render() for section in self.sections)
        return "\n\n".join(text for text in rendered if text.strip())

    def section(self, title: str) -> PromptSection | None:
        for section in self.sections:
            if section.title == title:
                return section
        return None


def build_character_model_prompt(
    *,
    name: str,
    role: str | None = None,
    species: str | None = None,
) -> ScenePrompt:
    """
    Prompt for the full-body cartoon character model sheet derived from a photo.
    """
    if not name or not name.strip():
        raise ValueError("name must be a non-empty string.")

    if (role or "protagonist") == "protagonist":
        subject = "the child"
    else:
        subject = f"the {species or 'character'}"
    sections = (
        PromptSection(
            title="TASK",
            body=(
                f"Create a full-body cartoon character model sheet of {subject} shown in "
                f"the reference image. This character is {name.strip()} and every later "
                "illustration will be matched against this sheet."
            ),
        ),
        PromptSection(title="STYLE REQUIREMENTS", lines=CHARACTER_MODEL_STYLE),
        PromptSection(
            title="OUTPUT",
            lines=(
                "Full-body character model",
                "Portrait PNG",
                "No background, no shadows, no text",
            ),
        ),
    )
    return ScenePrompt(sections=sections)


def normalize_note_input(
    value: str | Sequence[str] | Mapping[str, str] | None,
) -> list[str]:
    if value is None:
        return []

    if isinstance(value, Mapping):
        items = [f"{key}: {details}" for key, details in value.items()]
    elif isinstance(value, str):
        items = [value]
    else:
        items = [str(item) for item in value]

    lines: list[str] = []
    for item in items:
        for raw in item.replace("\r", "\n").split("\n"):
            cleaned = raw.strip(" \t-•")
            if cleaned:
                lines.append(cleaned)
    return lines
