"""
Builds the structured prompt and reference-image bundle for one page illustration.
"""

from __future__ import annotations

import json
from typing import Any, Sequence

from picturebook.ai_generation import ImageAttachment, PromptSection, ScenePrompt
from picturebook.ai_generation.adapter import RENDER_TOOL_NAME
from picturebook.ai_generation.prompting import normalize_note_input
from picturebook.models import Character, CharacterModel, Environment, Group, StoryRegistry

from .composition import ScenePlan

REVISION_MARKER = "Artist revision notes:"

STRICT_CHARACTER_RULES = (
    "Draw ONLY the characters listed in the character visual rules. Do not invent extra people or animals.",
    "No appearance drift: hair, skin tone, clothing, fur and markings stay identical to the descriptions and references.",
    "Pets look identical on every page: same breed, same size, same colors, same markings.",
    "Each character appears exactly once in the illustration.",
)

STYLE_RULES = (
    "Soft, rounded cartoon proportions with friendly bright eyes",
    "Simple pastel-adjacent palette with gentle gradients",
    "Clean, medium-weight outlines",
    "Consistent warm neutral lighting (5000-5500K), soft ambient light, minimal shadows",
    "Keep a 10-15% margin around the main characters; nothing important touches the edges",
    "No text, letters, captions, or speech bubbles anywhere in the image",
    "Square 1:1 composition",
)


def compose_regeneration_text(page_text: str, notes: str | None) -> str:
    """Append user revision notes to the page text in the form the assembler expects."""
    if not notes or not notes.strip():
        return page_text
    return f"{page_text}\n\n{REVISION_MARKER} {notes.strip()}"


def split_revision_notes(page_text: str) -> tuple[str, str | None]:
    story_text, marker, notes = page_text.partition(REVISION_MARKER)
    if not marker:
        return page_text, None
    return story_text.rstrip(), notes.strip() or None


def _describe_character(character: Character) -> str:
    parts: list[str] = []
    visual = character.visual
    species = character.type or "character"
    if character.breed:
        parts.append(
            f"is a {character.breed} {species}. Render a {character.breed} specifically, "
            f"not a generic {species}"
        )
    elif character.type:
        parts.append(f"is a {species}")
    if visual is not None:
        if visual.size:
            parts.append(f"size: {visual.size}")
        if visual.colors:
            parts.append(f"colors: {', '.join(visual.colors)}")
        if visual.age_range:
            parts.append(f"age: {visual.age_range}")
        if visual.hair:
            parts.append(f"hair: {visual.hair}")
        if visual.skin_tone:
            parts.append(f"skin tone: {visual.skin_tone}")
        if visual.build:
            parts.append(f"build: {visual.build}")
        if visual.distinctive_features:
            parts.append(f"distinctive features: {visual.distinctive_features}")
        if visual.typical_clothing:
            parts.append(f"clothing: {visual.typical_clothing}")
    if not parts:
        return f"{character.name}: keep depiction simple and consistent with earlier pages."
    return f"{character.name} ({character.role}) " + "; ".join(parts) + "."


def _describe_group(group: Group) -> str:
    count = group.detected_count if group.count_source != "unknown" else None
    size = f"{count}" if count else "a few"
    singular = group.singular or "person"
    line = f"{group.display_name}: show as ONE group of {size} {singular}(s)"
    if group.members:
        names = ", ".join(member.name for member in group.members)
        line += f" including {names}"
    return line + "."


def _character_rule_lines(
    plan: ScenePlan,
    registry: StoryRegistry,
    models: dict[str, str],
    reference_index: dict[str, int],
) -> list[str]:
    lines: list[str] = []
    for key in plan.characters:
        character = registry.characters[key]
        if key in models:
            lines.append(
                f"{character.name} ({character.role}): MUST match the uploaded character model "
                f"exactly (reference image {reference_index[key]})."
            )
        elif character.is_protagonist:
            lines.append(
                f"{character.name} (protagonist): keep depiction neutral and child-generic."
            )
        else:
            lines.append(_describe_character(character))
    for key in plan.groups:
        lines.append(_describe_group(registry.groups[key]))
    return lines


def _context_registry(registry: StoryRegistry, kid_name: str) -> dict[str, Any]:
    protagonist = registry.protagonist()
    pets = [c for c in registry.characters.values() if c.role == "pet"]
    others = [
        c for c in registry.characters.values() if c.role not in {"pet", "protagonist"}
    ]
    return {
        "child": {
            "name": protagonist.name if protagonist else kid_name,
            "key": protagonist.key if protagonist else None,
        },
        "pets": [
            {
                "key": pet.key,
                "name": pet.name,
                "type": pet.type,
                "breed": pet.breed,
                "colors": list(pet.visual.colors) if pet.visual else [],
            }
            for pet in pets
        ],
        "relationships": [
            {"key": c.key, "name": c.name, "role": c.role, "relationship": c.relationship}
            for c in others
        ],
    }


def _context_continuity_lines(registry: StoryRegistry) -> list[str]:
    lines = [
        "Specific registry entries override generic nouns in the page text.",
    ]
    for character in registry.characters.values():
        if character.role == "pet" and character.type:
            specific = character.breed or character.type
            lines.append(
                f'"her {character.type}", "his {character.type}" or "the {character.type}" '
                f"means {character.name}, the registered {specific}."
            )
        elif character.relationship and character.role != "protagonist":
            lines.append(f'References to "{character.relationship}" mean {character.name}.')
    return lines


def _prop_location_lines(
    plan: ScenePlan,
    registry: StoryRegistry,
    environment: Environment | None,
) -> list[str]:
    lines: list[str] = []
    for key in plan.props:
        prop = registry.props.get(key)
        if prop is None:
            continue
        detail = prop.visual or prop.description
        suffix = f" ({detail})" if detail else ""
        lines.append(f"{prop.name} must appear and look as registered{suffix}.")
    if environment is not None:
        owner = f", belonging to {environment.owner}" if environment.owner else ""
        lines.append(
            f"The setting is {environment.name}{owner}; keep its layout and style identical "
            "to earlier pages set there."
        )
    lines.append("Objects keep the same colors and shapes on every page they appear.")
    return lines


def assemble_scene_prompt(
    *,
    page_text: str,
    plan: ScenePlan,
    registry: StoryRegistry,
    character_models: Sequence[CharacterModel] = (),
    kid_name: str = "",
    environment: Environment | None = None,
) -> ScenePrompt:
    """
    Compose the eleven prompt sections in order and the protagonist-first attachments.

    ``page_text`` is emitted verbatim, including any ``Artist revision notes:`` suffix.
    """
    catalog = {model.character_key: model.model_url for model in character_models}
    models: dict[str, str] = {}
    for key in plan.characters:
        character = registry.characters[key]
        url = catalog.get(key) or (character.model_url if character.has_model else None)
        if url:
            models[key] = url

    ordered_keys = sorted(
        models,
        key=lambda key: (not registry.characters[key].is_protagonist, plan.characters.index(key)),
    )
    reference_index = {key: index for index, key in enumerate(ordered_keys, start=1)}
    attachments = tuple(ImageAttachment(source=models[key], label=key) for key in ordered_keys)

    if environment is None and plan.environment_key:
        environment = registry.environments.get(plan.environment_key)
    if environment is not None:
        setting_body = f"{environment.name}: {environment.description or 'as registered'}"
        if environment.style:
            setting_body += f"\nStyle: {environment.style}"
    else:
        setting_body = (
            "No specific location was detected. Infer a neutral, child-friendly setting that "
            "fits the page."
        )

    _, revision_notes = split_revision_notes(page_text)
    page_section = PromptSection(
        title="PAGE TEXT",
        body=page_text.strip(),
        lines=tuple(
            f"Apply this revision: {note}" for note in normalize_note_input(revision_notes)
        ),
    )

    sections = (
        PromptSection(
            title="TASK",
            body=(
                f"Call the {RENDER_TOOL_NAME} tool exactly once to draw this page. "
                "Do not reply with any prose."
            ),
        ),
        page_section,
        PromptSection(title="SETTING", body=setting_body),
        PromptSection(
            title="CONTEXT REGISTRY",
            body=json.dumps(_context_registry(registry, kid_name), indent=2),
        ),
        PromptSection(
            title="ENVIRONMENT REGISTRY",
            body=json.dumps(
                {key: env.to_dict() for key, env in registry.environments.items()}, indent=2
            ),
        ),
        PromptSection(
            title="PROP REGISTRY",
            body=json.dumps({key: prop.to_dict() for key, prop in registry.props.items()}, indent=2),
        ),
        PromptSection(
            title="CHARACTER VISUAL RULES",
            lines=tuple(_character_rule_lines(plan, registry, models, reference_index)),
        ),
        PromptSection(title="STRICT CHARACTER RULES", lines=STRICT_CHARACTER_RULES),
        PromptSection(
            title="CONTEXT CONTINUITY RULES", lines=tuple(_context_continuity_lines(registry))
        ),
        PromptSection(
            title="PROP AND LOCATION CONTINUITY",
            lines=tuple(_prop_location_lines(plan, registry, environment)),
        ),
        PromptSection(title="STYLE RULES", lines=STYLE_RULES),
    )
    return ScenePrompt(
        sections=sections,
        attachments=attachments,
        metadata={"plan": plan.to_dict(), "reference_keys": list(ordered_keys)},
    )
