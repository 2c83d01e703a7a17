"""
Composition planning: which registered entities must appear in one page's illustration.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from picturebook.ai_generation import LargeModelAdapter
from picturebook.common.keys import normalize_key
from picturebook.models import ROLE_PRIORITY, CharacterModel, StoryPage, StoryRegistry

from .props import deduplicate_props, find_equivalent_prop

logger = logging.getLogger(__name__)

# nouns a page may use for a pet instead of its species
_SPECIES_ALIASES = {
    "puppy": "dog",
    "pup": "dog",
    "doggy": "dog",
    "doggie": "dog",
    "hound": "dog",
    "kitten": "cat",
    "kitty": "cat",
    "bunny": "rabbit",
    "pony": "horse",
}

_POSSESSIVES = frozenset({"her", "his", "their", "my", "our", "your", "the", "a", "an", "its"})


@dataclass
class ScenePlan:
    """
    Ordered entity keys for one illustration.

    ``characters`` always starts with the protagonist; ``groups`` occupy one slot each
    within the same character budget.
    """

    characters: list[str] = field(default_factory=list)
    groups: list[str] = field(default_factory=list)
    props: list[str] = field(default_factory=list)
    environment_key: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "characters": list(self.characters),
            "groups": list(self.groups),
            "props": list(self.props),
            "environment": self.environment_key,
        }


def _reference_tokens(reference: str) -> list[str]:
    words = [word for word in normalize_key(reference).split("_") if word]
    while words and words[0] in _POSSESSIVES:
        words = words[1:]
    # "abby_s_dog" -> drop the owner and the possessive s
    if "s" in words:
        words = words[words.index("s") + 1 :]
    return words


def resolve_reference(reference: Any, registry: StoryRegistry) -> tuple[str, str] | None:
    """
    Map a free-text reference onto the most specific registered entity.

    Returns ``("character", key)`` or ``("group", key)``, or ``None`` when nothing
    in the registry fits. Tried in order: key, name, species or breed ("her dog"),
    relationship ("Mom"), group terms ("the grandkids").
    """
    if reference is None:
        return None
    key = normalize_key(reference)
    if not key:
        return None

    if key in registry.characters:
        return ("character", key)
    if key in registry.groups:
        return ("group", key)

    for character in registry.characters.values():
        if normalize_key(character.name) == key:
            return ("character", character.key)

    tokens = _reference_tokens(str(reference))
    if not tokens:
        return None
    noun = tokens[-1]
    species = _SPECIES_ALIASES.get(noun, noun)
    phrase = "_".join(tokens)

    by_priority = sorted(
        registry.characters.values(),
        key=lambda character: ROLE_PRIORITY.get(character.role, len(ROLE_PRIORITY)),
    )
    for character in by_priority:
        if normalize_key(character.name) == phrase:
            return ("character", character.key)
    for character in by_priority:
        breed = normalize_key(character.breed)
        if normalize_key(character.type) == species or (breed and phrase in breed):
            return ("character", character.key)
    for character in by_priority:
        relationship = normalize_key(character.relationship)
        if relationship and (phrase == relationship or noun in relationship.split("_")):
            return ("character", character.key)

    for group in registry.groups.values():
        terms = {
            normalize_key(group.display_name),
            normalize_key(group.detected_term),
            normalize_key(group.singular),
        }
        terms.discard("")
        if phrase in terms or any(term.endswith(phrase) for term in terms):
            return ("group", group.key)
    return None


def cap_scene_entities(
    characters: Sequence[str],
    groups: Sequence[str],
    registry: StoryRegistry,
    *,
    current_page: int,
    limit: int,
) -> tuple[list[str], list[str]]:
    """
    Keep at most ``limit`` characters plus groups.

    The protagonist is always kept first. The rest are ranked by earliest
    ``first_seen_page`` not after ``current_page`` (later ones rank last), then role
    priority, then their original order. Groups rank with the ``other`` role.
    """
    protagonist = registry.protagonist()
    kept_characters: list[str] = []
    if protagonist is not None:
        kept_characters.append(protagonist.key)

    candidates: list[tuple[tuple[bool, int, int, int], str, str]] = []
    position = 0
    for key in characters:
        if key in kept_characters:
            continue
        character = registry.characters[key]
        first_seen = character.first_seen_page
        rank = (
            first_seen > current_page,
            first_seen,
            ROLE_PRIORITY.get(character.role, len(ROLE_PRIORITY)),
            position,
        )
        candidates.append((rank, "character", key))
        position += 1
    for key in groups:
        first_seen = registry.groups[key].first_seen_page
        rank = (first_seen > current_page, first_seen, ROLE_PRIORITY["other"], position)
        candidates.append((rank, "group", key))
        position += 1

    candidates.sort(key=lambda item: item[0])
    remaining = max(limit - len(kept_characters), 0)
    kept_groups: list[str] = []
    for _, kind, key in candidates[:remaining]:
        if kind == "character":
            kept_characters.append(key)
        else:
            kept_groups.append(key)

    dropped = len(candidates) - remaining
    if dropped > 0:
        logger.info("Scene cap: dropped %d entities beyond the limit of %d", dropped, limit)
    return kept_characters, kept_groups


def build_composition_prompt(
    *,
    page_number: int,
    page_text: str,
    registry: StoryRegistry,
    character_models: Sequence[CharacterModel],
    pages: Sequence[StoryPage],
) -> str:
    modeled = {model.character_key for model in character_models}
    known = {
        "characters": [
            {
                "key": character.key,
                "name": character.name,
                "role": character.role,
                "type": character.type,
                "breed": character.breed,
                "relationship": character.relationship,
                "has_model": character.key in modeled or character.has_model,
            }
            for character in registry.characters.values()
        ],
        "groups": [
            {"key": group.key, "display_name": group.display_name, "term": group.detected_term}
            for group in registry.groups.values()
        ],
        "props": [{"key": prop.key, "name": prop.name} for prop in registry.props.values()],
        "environments": [
            {"key": environment.key, "name": environment.name, "owner": environment.owner}
            for environment in registry.environments.values()
        ],
    }
    before = [page.text for page in pages if page.page_number < page_number][-2:]
    after = [page.text for page in pages if page.page_number > page_number][:1]

    return f"""Plan the illustration for page {page_number} of a children's picture book.

KNOWN ENTITIES (closed set; use ONLY these keys, never invent new ones):
{json.dumps(known, indent=2)}

Resolve generic references to the most specific known entity: "her dog" is the registered dog,
"Mom" is the registered parent. Include only entities that are visually present on this page.

STORY SO FAR:
{chr(10).join(before) or "(this is the first page)"}

CURRENT PAGE:
{page_text}

WHAT COMES NEXT:
{chr(10).join(after) or "(this is the last page)"}

Return ONLY JSON:
{{
  "characters": ["character keys visually present"],
  "groups": ["group keys visually present"],
  "props": ["prop keys visually present"],
  "environment": "environment key or null"
}}
"""


class CompositionPlanner:
    def __init__(self, adapter: LargeModelAdapter, *, max_characters: int | None = None) -> None:
        self._adapter = adapter
        self._max_characters = max_characters or adapter.config.max_character_models_per_scene

    def analyze_scene_composition(
        self,
        *,
        page_number: int,
        page_text: str,
        registry: StoryRegistry,
        character_models: Sequence[CharacterModel] = (),
        pages: Sequence[StoryPage] = (),
        detected_environment: str | None = None,
        detected_props: Sequence[str] = (),
    ) -> ScenePlan:
        """
        Return the capped :class:`ScenePlan` for one page.

        ``registry`` is deduplicated before planning. Anything the model names that
        cannot be resolved to a registered entity is dropped.
        """
        snapshot = registry.copy()
        snapshot.props = deduplicate_props(snapshot.props)

        payload = self._adapter.extract_structured(
            build_composition_prompt(
                page_number=page_number,
                page_text=page_text,
                registry=snapshot,
                character_models=character_models,
                pages=pages,
            ),
            max_tokens=800,
        )

        characters: list[str] = []
        groups: list[str] = []
        for reference in _as_list(payload.get("characters")) + _as_list(payload.get("groups")):
            resolved = resolve_reference(reference, snapshot)
            if resolved is None:
                logger.debug("Ignoring unknown scene reference %r", reference)
                continue
            kind, key = resolved
            target = characters if kind == "character" else groups
            if key not in target:
                target.append(key)

        characters, groups = cap_scene_entities(
            characters,
            groups,
            snapshot,
            current_page=page_number,
            limit=self._max_characters,
        )

        props: list[str] = []
        for reference in _as_list(payload.get("props")) + list(detected_props):
            key = normalize_key(reference)
            if key not in snapshot.props:
                key = find_equivalent_prop(str(reference), snapshot.props) or ""
            if key and key not in props:
                props.append(key)

        return ScenePlan(
            characters=characters,
            groups=groups,
            props=props,
            environment_key=_resolve_environment(
                payload.get("environment"), snapshot
            ) or _resolve_environment(detected_environment, snapshot),
        )


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if value is None or value == "":
        return []
    return [value]


def _resolve_environment(value: Any, registry: StoryRegistry) -> str | None:
    key = normalize_key(value)
    if not key:
        return None
    if key in registry.environments:
        return key
    for environment in registry.environments.values():
        if normalize_key(environment.name) == key:
            return environment.key
    return None
