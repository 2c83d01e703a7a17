"""
Story Registry: the structured record of every entity a book's illustrations depend on.

Every entity has one canonical form. ``from_mapping`` constructors tolerate the
legacy shapes that older project documents carry (lists instead of mappings,
``context`` instead of ``description``, colors as a comma-separated string) and
``to_dict`` always writes the canonical form back.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping

from picturebook.common.keys import normalize_key

ROLES = ("protagonist", "sibling", "friend", "parent", "pet", "other")
ROLE_PRIORITY = {
    role: index
    for index, role in enumerate(("protagonist", "pet", "sibling", "friend", "parent", "other"))
}
VISUAL_SOURCES = ("user", "auto")
COUNT_SOURCES = ("explicit", "implied", "unknown")

_ROLE_ALIASES = {
    "main": "protagonist",
    "main_character": "protagonist",
    "hero": "protagonist",
    "child": "protagonist",
    "brother": "sibling",
    "sister": "sibling",
    "twin": "sibling",
    "cousin": "friend",
    "neighbor": "friend",
    "neighbour": "friend",
    "best_friend": "friend",
    "classmate": "friend",
    "mom": "parent",
    "mother": "parent",
    "mum": "parent",
    "dad": "parent",
    "father": "parent",
    "guardian": "parent",
    "animal": "pet",
    "side_character": "other",
}


def coerce_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def coerce_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def coerce_str_list(value: Any) -> list[str]:
    """Accept a list, a comma/``and`` separated string, or ``None``."""
    if value is None:
        return []
    if isinstance(value, str):
        normalized = value.replace(" and ", ",").replace(";", ",")
        parts = normalized.split(",")
    elif isinstance(value, Iterable) and not isinstance(value, Mapping):
        parts = [str(item) for item in value if item is not None]
    else:
        parts = [str(value)]
    return [part.strip() for part in parts if part and part.strip()]


def normalize_role(value: Any) -> str:
    key = normalize_key(value)
    if key in ROLES:
        return key
    return _ROLE_ALIASES.get(key, "other")


def merge_unique(first: Iterable[str], second: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    merged: list[str] = []
    for item in list(first) + list(second):
        marker = item.lower()
        if marker not in seen:
            seen.add(marker)
            merged.append(item)
    return merged


@dataclass
class CharacterVisual:
    """Reproducible visual description of a character without an uploaded model."""

    age_range: str | None = None
    hair: str | None = None
    skin_tone: str | None = None
    build: str | None = None
    size: str | None = None
    colors: list[str] = field(default_factory=list)
    distinctive_features: str | None = None
    typical_clothing: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "CharacterVisual | None":
        if not isinstance(data, Mapping):
            return None
        features = data.get("distinctive_features")
        if isinstance(features, (list, tuple)):
            features = ", ".join(str(item) for item in features if item)
        return cls(
            age_range=coerce_str(data.get("age_range")),
            hair=coerce_str(data.get("hair")),
            skin_tone=coerce_str(data.get("skin_tone")),
            build=coerce_str(data.get("build")),
            size=coerce_str(data.get("size")),
            colors=coerce_str_list(data.get("colors") or data.get("color")),
            distinctive_features=coerce_str(features),
            typical_clothing=coerce_str(data.get("typical_clothing") or data.get("clothing")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "age_range": self.age_range,
            "hair": self.hair,
            "skin_tone": self.skin_tone,
            "build": self.build,
            "size": self.size,
            "colors": list(self.colors),
            "distinctive_features": self.distinctive_features,
            "typical_clothing": self.typical_clothing,
        }


@dataclass
class Character:
    """
    A named individual in the story.

    Invariants: the protagonist's ``visual_source`` is ``"user"``; when ``has_model``
    is true ``visual`` is ``None`` and ``model_url`` points at the uploaded reference.
    """

    key: str
    name: str
    role: str = "other"
    type: str | None = None
    breed: str | None = None
    gender: str | None = None
    traits: list[str] = field(default_factory=list)
    relationship: str | None = None
    visual: CharacterVisual | None = None
    has_model: bool = False
    visual_source: str = "auto"
    model_url: str | None = None
    locked_at: str | None = None
    first_seen_page: int = 1

    @property
    def is_protagonist(self) -> bool:
        return self.role == "protagonist"

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, key: str | None = None) -> "Character":
        name = coerce_str(data.get("name")) or coerce_str(key) or "Unnamed"
        resolved_key = normalize_key(key or data.get("key") or name)
        visual_payload = data.get("visual")
        species = coerce_str(data.get("type") or data.get("species"))
        breed = coerce_str(data.get("breed"))
        # older registries nested species/breed inside the visual block
        if isinstance(visual_payload, Mapping):
            species = species or coerce_str(visual_payload.get("species"))
            breed = breed or coerce_str(visual_payload.get("breed"))
        visual_source = normalize_key(data.get("visual_source"))
        if visual_source not in VISUAL_SOURCES:
            # "locked" and "pending" were both user-derived in older documents
            visual_source = "user" if visual_source in {"locked", "pending"} else "auto"
        has_model = bool(data.get("has_model"))
        if has_model:
            visual_payload = None
        return cls(
            key=resolved_key,
            name=name,
            role=normalize_role(data.get("role")),
            type=species,
            breed=breed,
            gender=coerce_str(data.get("gender")),
            traits=coerce_str_list(data.get("traits")),
            relationship=coerce_str(
                data.get("relationship") or data.get("relationship_to_protagonist")
            ),
            visual=CharacterVisual.from_mapping(visual_payload),
            has_model=has_model,
            visual_source=visual_source,
            model_url=coerce_str(data.get("model_url")),
            locked_at=coerce_str(data.get("locked_at")),
            first_seen_page=coerce_int(data.get("first_seen_page")) or 1,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "role": self.role,
            "type": self.type,
            "breed": self.breed,
            "gender": self.gender,
            "traits": list(self.traits),
            "relationship": self.relationship,
            "visual": self.visual.to_dict() if self.visual else None,
            "has_model": self.has_model,
            "visual_source": self.visual_source,
            "model_url": self.model_url,
            "locked_at": self.locked_at,
            "first_seen_page": self.first_seen_page,
        }

    def with_model(self, model_url: str | None) -> "Character":
        """Return a copy whose uploaded reference is authoritative."""
        return replace(
            self,
            has_model=True,
            visual_source="user",
            visual=None,
            model_url=model_url or self.model_url,
        )


@dataclass
class GroupMember:
    member_id: str
    name: str
    photo_url: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "GroupMember":
        name = coerce_str(data.get("name")) or "Member"
        return cls(
            member_id=coerce_str(data.get("member_id") or data.get("id")) or normalize_key(name),
            name=name,
            photo_url=coerce_str(data.get("photo_url")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"member_id": self.member_id, "name": self.name, "photo_url": self.photo_url}


@dataclass
class Group:
    """Collective, unnamed plural reference such as "the grandkids"."""

    key: str
    display_name: str
    singular: str | None = None
    detected_term: str | None = None
    detected_count: int | None = None
    count_source: str = "unknown"
    relationship: str | None = None
    members: list[GroupMember] = field(default_factory=list)
    first_seen_page: int = 1

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, key: str | None = None) -> "Group":
        display_name = (
            coerce_str(data.get("display_name") or data.get("name"))
            or coerce_str(data.get("detected_term"))
            or coerce_str(key)
            or "Group"
        )
        count_source = normalize_key(data.get("count_source"))
        if count_source not in COUNT_SOURCES:
            count_source = "unknown"
        members_payload = data.get("members") or []
        members = [
            GroupMember.from_mapping(item) for item in members_payload if isinstance(item, Mapping)
        ]
        return cls(
            key=normalize_key(key or data.get("key") or display_name),
            display_name=display_name,
            singular=coerce_str(data.get("singular")),
            detected_term=coerce_str(data.get("detected_term")),
            detected_count=coerce_int(data.get("detected_count")),
            count_source=count_source,
            relationship=coerce_str(data.get("relationship")),
            members=members,
            first_seen_page=coerce_int(data.get("first_seen_page")) or 1,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "display_name": self.display_name,
            "singular": self.singular,
            "detected_term": self.detected_term,
            "detected_count": self.detected_count,
            "count_source": self.count_source,
            "relationship": self.relationship,
            "members": [member.to_dict() for member in self.members],
            "first_seen_page": self.first_seen_page,
        }


@dataclass
class Prop:
    key: str
    name: str
    description: str | None = None
    visual: str | None = None
    first_seen_page: int | None = None
    reference_image_url: str | None = None
    image_source: str | None = None
    image_uploaded_at: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, key: str | None = None) -> "Prop":
        name = coerce_str(data.get("name")) or coerce_str(key) or "prop"
        visual = data.get("visual")
        if isinstance(visual, Mapping):
            visual = ", ".join(f"{k}: {v}" for k, v in visual.items() if v)
        return cls(
            key=normalize_key(key or data.get("key") or name),
            name=name,
            description=coerce_str(data.get("description") or data.get("context")),
            visual=coerce_str(visual),
            first_seen_page=coerce_int(data.get("first_seen_page")),
            reference_image_url=coerce_str(
                data.get("reference_image_url") or data.get("image_url") or data.get("photo_url")
            ),
            image_source=coerce_str(data.get("image_source")),
            image_uploaded_at=coerce_str(data.get("image_uploaded_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "visual": self.visual,
            "first_seen_page": self.first_seen_page,
            "reference_image_url": self.reference_image_url,
            "image_source": self.image_source,
            "image_uploaded_at": self.image_uploaded_at,
        }


@dataclass
class Environment:
    key: str
    name: str
    description: str | None = None
    owner: str | None = None
    style: str | None = None
    first_seen_page: int | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, key: str | None = None) -> "Environment":
        name = coerce_str(data.get("name")) or coerce_str(key) or "setting"
        return cls(
            key=normalize_key(key or data.get("key") or name),
            name=name,
            description=coerce_str(data.get("description")),
            owner=coerce_str(data.get("owner")),
            style=coerce_str(data.get("style") or data.get("style_description")),
            first_seen_page=coerce_int(data.get("first_seen_page")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "owner": self.owner,
            "style": self.style,
            "first_seen_page": self.first_seen_page,
        }


def iter_entries(value: Any) -> list[tuple[str | None, Mapping[str, Any]]]:
    """Yield ``(key, body)`` pairs from either a mapping or a list of bodies."""
    if isinstance(value, Mapping):
        return [(str(k), v) for k, v in value.items() if isinstance(v, Mapping)]
    if isinstance(value, list):
        return [(None, item) for item in value if isinstance(item, Mapping)]
    return []


@dataclass
class StoryRegistry:
    """
    The four entity sub-mappings plus free-form notes.
    """

    characters: dict[str, Character] = field(default_factory=dict)
    groups: dict[str, Group] = field(default_factory=dict)
    props: dict[str, Prop] = field(default_factory=dict)
    environments: dict[str, Environment] = field(default_factory=dict)
    notes: str = ""

    @classmethod
    def from_mapping(cls, data: Any) -> "StoryRegistry":
        """
        Build a registry from a stored document.

        Accepts ``None``, the canonical mapping, or the legacy single-element list.
        Entities whose normalized key is empty are skipped; the first occurrence of a
        duplicate key wins.
        """
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, Mapping):
            return cls()

        registry = cls(notes=str(data.get("notes") or "").strip())
        for key, body in iter_entries(data.get("characters")):
            character = Character.from_mapping(body, key=key)
            if character.key:
                registry.characters.setdefault(character.key, character)
        for key, body in iter_entries(data.get("groups")):
            group = Group.from_mapping(body, key=key)
            if group.key:
                registry.groups.setdefault(group.key, group)
        for key, body in iter_entries(data.get("props")):
            prop = Prop.from_mapping(body, key=key)
            if prop.key and prop.key not in registry.characters:
                registry.props.setdefault(prop.key, prop)
        for key, body in iter_entries(data.get("environments")):
            environment = Environment.from_mapping(body, key=key)
            if environment.key:
                registry.environments.setdefault(environment.key, environment)
        return registry

    def to_dict(self) -> dict[str, Any]:
        return {
            "characters": {key: value.to_dict() for key, value in self.characters.items()},
            "groups": {key: value.to_dict() for key, value in self.groups.items()},
            "props": {key: value.to_dict() for key, value in self.props.items()},
            "environments": {key: value.to_dict() for key, value in self.environments.items()},
            "notes": self.notes,
        }

    def copy(self) -> "StoryRegistry":
        return copy.deepcopy(self)

    def protagonist(self) -> Character | None:
        for character in self.characters.values():
            if character.is_protagonist:
                return character
        return None

    def find_character(self, child_name: str | None = None) -> Character | None:
        """Return the protagonist, or the character whose name matches ``child_name``."""
        protagonist = self.protagonist()
        if protagonist is not None:
            return protagonist
        if child_name:
            target = child_name.strip().lower()
            for character in self.characters.values():
                if character.name.strip().lower() == target:
                    return character
        return None
