"""
Per-project document: the single root of ownership for a book in progress.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from picturebook.common.keys import normalize_key, strip_query

from .registry import StoryRegistry, coerce_int, coerce_str


@dataclass(frozen=True)
class StoryIdea:
    title: str
    description: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StoryIdea":
        title = coerce_str(data.get("title"))
        if not title:
            raise ValueError(f"Story idea is missing a title: {data!r}")
        return cls(
            title=title,
            description=coerce_str(data.get("description") or data.get("blurb")) or "",
        )

    def as_dict(self) -> dict[str, Any]:
        return {"title": self.title, "description": self.description}


@dataclass(frozen=True)
class StoryPage:
    """
    A single page of story text.
    """

    page_number: int
    text: str

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StoryPage":
        try:
            number = int(data.get("page_number", data.get("page")))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid page entry: {data!r}") from exc
        text = coerce_str(data.get("text") or data.get("story_text")) or ""
        return cls(page_number=number, text=text)

    def as_dict(self) -> dict[str, Any]:
        return {"page": self.page_number, "text": self.text}


@dataclass
class CharacterModel:
    """Catalog entry pairing a character key with its rendered cartoon reference."""

    character_key: str
    model_url: str
    name: str | None = None
    role: str | None = None
    is_protagonist: bool = False
    created_at: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CharacterModel | None":
        key = normalize_key(data.get("character_key") or data.get("name"))
        model_url = coerce_str(data.get("model_url"))
        if not key or not model_url:
            return None
        return cls(
            character_key=key,
            model_url=model_url,
            name=coerce_str(data.get("name")),
            role=coerce_str(data.get("role")),
            is_protagonist=bool(data.get("is_protagonist")),
            created_at=coerce_str(data.get("created_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "character_key": self.character_key,
            "model_url": self.model_url,
            "name": self.name,
            "role": self.role,
            "is_protagonist": self.is_protagonist,
            "created_at": self.created_at,
        }


@dataclass
class RevisionEntry:
    image_url: str
    created_at: str | None = None
    notes: str | None = None
    revision: int | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RevisionEntry | None":
        image_url = coerce_str(data.get("image_url"))
        if not image_url:
            return None
        return cls(
            image_url=image_url,
            created_at=coerce_str(data.get("created_at")),
            notes=coerce_str(data.get("notes")),
            revision=coerce_int(data.get("revision")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "revision": self.revision,
            "image_url": self.image_url,
            "created_at": self.created_at,
            "notes": self.notes,
        }


@dataclass
class IllustrationRecord:
    """
    The active illustration for one page plus its bounded revision history.
    """

    page: int
    image_url: str
    revisions: int = 0
    last_updated: str | None = None
    revision_notes: str | None = None
    revision_history: list[RevisionEntry] = field(default_factory=list)
    scene_composition: dict[str, Any] | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "IllustrationRecord | None":
        page = coerce_int(data.get("page"))
        image_url = coerce_str(data.get("image_url"))
        if page is None or not image_url:
            return None
        history = [
            entry
            for entry in (
                RevisionEntry.from_mapping(item)
                for item in data.get("revision_history") or []
                if isinstance(item, Mapping)
            )
            if entry is not None
        ]
        composition = data.get("scene_composition")
        return cls(
            page=page,
            image_url=image_url,
            revisions=coerce_int(data.get("revisions")) or 0,
            last_updated=coerce_str(data.get("last_updated")),
            revision_notes=coerce_str(data.get("revision_notes")),
            revision_history=history,
            scene_composition=dict(composition) if isinstance(composition, Mapping) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "image_url": self.image_url,
            "revisions": self.revisions,
            "last_updated": self.last_updated,
            "revision_notes": self.revision_notes,
            "revision_history": [entry.to_dict() for entry in self.revision_history],
            "scene_composition": self.scene_composition,
        }

    def history_entry(self, url: str) -> RevisionEntry | None:
        target = strip_query(url)
        for entry in self.revision_history:
            if strip_query(entry.image_url) == target:
                return entry
        return None


@dataclass
class Project:
    """
    One book in progress.

    ``story_locked`` is a one-way flag set by finalization; afterwards the page text
    and the character set are frozen while the registry contents keep evolving.
    """

    project_id: str
    kid_name: str = ""
    kid_interests: str = ""
    owner_id: str | None = None
    story_ideas: list[StoryIdea] = field(default_factory=list)
    selected_idea: StoryIdea | None = None
    title: str | None = None
    pages: list[StoryPage] = field(default_factory=list)
    story_locked: bool = False
    registry: StoryRegistry = field(default_factory=StoryRegistry)
    character_models: list[CharacterModel] = field(default_factory=list)
    illustrations: list[IllustrationRecord] = field(default_factory=list)
    source_photos: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, project_id: str, data: Mapping[str, Any]) -> "Project":
        """
        Read a stored document, normalizing the legacy shapes older rows still carry.
        """
        kid_name = coerce_str(data.get("kid_name")) or ""
        ideas = [
            StoryIdea.from_mapping(item)
            for item in data.get("story_ideas") or []
            if isinstance(item, Mapping) and coerce_str(item.get("title"))
        ]
        selected = data.get("selected_idea")
        pages_payload = data.get("pages")
        if pages_payload is None:
            pages_payload = data.get("story_json") or []
        pages = [StoryPage.from_mapping(item) for item in pages_payload if isinstance(item, Mapping)]

        registry_payload = data.get("registry")
        if registry_payload is None:
            registry_payload = data.get("props_registry")

        models = [
            model
            for model in (
                CharacterModel.from_mapping(item)
                for item in data.get("character_models") or []
                if isinstance(item, Mapping)
            )
            if model is not None
        ]
        legacy_model_url = coerce_str(data.get("character_model_url"))
        if legacy_model_url and not models:
            models.append(
                CharacterModel(
                    character_key=normalize_key(kid_name) or "protagonist",
                    model_url=legacy_model_url,
                    name=kid_name or "Child",
                    role="protagonist",
                    is_protagonist=True,
                )
            )

        illustrations = [
            record
            for record in (
                IllustrationRecord.from_mapping(item)
                for item in data.get("illustrations") or []
                if isinstance(item, Mapping)
            )
            if record is not None
        ]

        photos = data.get("source_photos")
        return cls(
            project_id=project_id,
            kid_name=kid_name,
            kid_interests=coerce_str(data.get("kid_interests")) or "",
            owner_id=coerce_str(data.get("owner_id") or data.get("user_id")),
            story_ideas=ideas,
            selected_idea=StoryIdea.from_mapping(selected) if isinstance(selected, Mapping) else None,
            title=coerce_str(data.get("title")),
            pages=sorted(pages, key=lambda page: page.page_number),
            story_locked=bool(data.get("story_locked")),
            registry=StoryRegistry.from_mapping(registry_payload),
            character_models=models,
            illustrations=sorted(illustrations, key=lambda record: record.page),
            source_photos=(
                {normalize_key(k): str(v) for k, v in photos.items() if v}
                if isinstance(photos, Mapping)
                else {}
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "owner_id": self.owner_id,
            "kid_name": self.kid_name,
            "kid_interests": self.kid_interests,
            "story_ideas": [idea.as_dict() for idea in self.story_ideas],
            "selected_idea": self.selected_idea.as_dict() if self.selected_idea else None,
            "title": self.title,
            "pages": [page.as_dict() for page in self.pages],
            "story_locked": self.story_locked,
            "registry": self.registry.to_dict(),
            "character_models": [model.to_dict() for model in self.character_models],
            "illustrations": [record.to_dict() for record in self.illustrations],
            "source_photos": dict(self.source_photos),
        }

    def page(self, page_number: int) -> StoryPage | None:
        for page in self.pages:
            if page.page_number == page_number:
                return page
        return None

    def illustration(self, page_number: int) -> IllustrationRecord | None:
        for record in self.illustrations:
            if record.page == page_number:
                return record
        return None

    def put_illustration(self, record: IllustrationRecord) -> None:
        """Insert or replace the single active record for ``record.page``."""
        self.illustrations = [item for item in self.illustrations if item.page != record.page]
        self.illustrations.append(record)
        self.illustrations.sort(key=lambda item: item.page)

    def character_model(self, character_key: str) -> CharacterModel | None:
        key = normalize_key(character_key)
        for model in self.character_models:
            if model.character_key == key:
                return model
        return None

    def protagonist_model(self) -> CharacterModel | None:
        for model in self.character_models:
            if model.is_protagonist:
                return model
        protagonist = self.registry.find_character(self.kid_name)
        if protagonist is not None:
            return self.character_model(protagonist.key)
        return self.character_model(self.kid_name)
