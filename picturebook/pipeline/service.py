"""
Public operations of the continuity engine.

Every operation receives the caller's ``user_id`` and verifies project ownership
before reading or writing anything else.
"""

from __future__ import annotations

import logging
import mimetypes
import uuid
from typing import Any, Callable, Mapping, Sequence

from picturebook.ai_generation import ImageAttachment, build_character_model_prompt
from picturebook.common.errors import InvalidInput, Locked, NotFound, Unauthorized
from picturebook.common.keys import normalize_key
from picturebook.models import (
    ROLE_PRIORITY,
    Character,
    CharacterModel,
    GroupMember,
    Project,
    Prop,
    StoryIdea,
    StoryPage,
    StoryRegistry,
)
from picturebook.storage import character_model_path, prop_photo_path, source_photo_path
from picturebook.story_generation import KidProfile, StoryIdeaGenerator, StoryWriter

from .capabilities import EngineCapabilities, with_cache_buster
from .continuity import apply_protagonist_lock
from .extraction import StoryFinalizer
from .illustrations import pin_illustration
from .scene_generator import SceneGenerator, SceneResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], None]


class PicturebookService:
    """
    Facade over story writing, finalization, character models, and page illustrations.
    """

    def __init__(self, capabilities: EngineCapabilities) -> None:
        self._caps = capabilities
        self._ideas = StoryIdeaGenerator(capabilities.adapter)
        self._writer = StoryWriter(capabilities.adapter)
        self._finalizer = StoryFinalizer(capabilities)
        self._scenes = SceneGenerator(capabilities)

    @property
    def capabilities(self) -> EngineCapabilities:
        return self._caps

    # -- projects -----------------------------------------------------------------

    def load_project(self, project_id: str, *, user_id: str | None) -> Project:
        return self._owned_project(project_id, user_id)

    def _owned_project(self, project_id: str, user_id: str | None) -> Project:
        project = self._caps.load(project_id)
        # documents written before ownership was recorded have no owner
        if project.owner_id is not None and project.owner_id != user_id:
            raise Unauthorized(f"User does not own project '{project_id}'.")
        return project

    @staticmethod
    def _ensure_unlocked(project: Project) -> None:
        if project.story_locked:
            raise Locked(f"Story for project '{project.project_id}' is finalized.")

    # -- story --------------------------------------------------------------------

    def generate_story_ideas(
        self,
        name: str,
        interests: str | None,
        *,
        user_id: str | None,
        project_id: str | None = None,
        count: int = 5,
    ) -> tuple[list[StoryIdea], str]:
        """
        Produce story ideas, creating the project on first use.

        Returns ``(ideas, project_id)``.
        """
        if not name or not name.strip():
            raise InvalidInput("A child name is required.")
        profile = KidProfile(name=name.strip(), interests=(interests or "").strip() or None)

        if project_id is None:
            project_id = self._caps.store.create_project(
                {
                    "owner_id": user_id,
                    "kid_name": profile.name,
                    "kid_interests": profile.interests or "",
                }
            )
        else:
            self._ensure_unlocked(self._owned_project(project_id, user_id))

        ideas = self._ideas.generate_ideas(profile, count=count)
        self._caps.write(
            project_id,
            {
                "kid_name": profile.name,
                "kid_interests": profile.interests or "",
                "story_ideas": [idea.as_dict() for idea in ideas],
            },
        )
        return ideas, project_id

    def write_story(
        self,
        name: str,
        interests: str | None,
        selected_idea: StoryIdea | Mapping[str, Any],
        project_id: str,
        *,
        user_id: str | None,
    ) -> tuple[str, list[StoryPage]]:
        project = self._owned_project(project_id, user_id)
        self._ensure_unlocked(project)
        if not name or not name.strip():
            raise InvalidInput("A child name is required.")

        if not isinstance(selected_idea, StoryIdea):
            try:
                selected_idea = StoryIdea.from_mapping(selected_idea)
            except ValueError as exc:
                raise InvalidInput(str(exc)) from exc

        profile = KidProfile(name=name.strip(), interests=(interests or "").strip() or None)
        title, pages = self._writer.write_story(profile, selected_idea)
        self._caps.write(
            project_id,
            {
                "kid_name": profile.name,
                "kid_interests": profile.interests or "",
                "selected_idea": selected_idea.as_dict(),
                "title": title,
                "pages": [page.as_dict() for page in pages],
            },
        )
        logger.info("Wrote %d-page story '%s' for project %s", len(pages), title, project_id)
        return title, pages

    def save_story(
        self,
        project_id: str,
        pages: Sequence[StoryPage | Mapping[str, Any]],
        *,
        user_id: str | None,
        title: str | None = None,
    ) -> list[StoryPage]:
        """Save edited page text. Refused with :class:`Locked` once finalized."""
        project = self._owned_project(project_id, user_id)
        self._ensure_unlocked(project)
        normalized = _coerce_pages(pages)

        fields: dict[str, Any] = {"pages": [page.as_dict() for page in normalized]}
        if title and title.strip():
            fields["title"] = title.strip()
        self._caps.write(project_id, fields)
        return normalized

    def finalize_story(
        self,
        project_id: str,
        pages: Sequence[StoryPage | Mapping[str, Any]] | None = None,
        *,
        user_id: str | None,
    ) -> StoryRegistry:
        self._owned_project(project_id, user_id)
        normalized = _coerce_pages(pages) if pages else None
        return self._finalizer.finalize_story(project_id, normalized)

    # -- character models ---------------------------------------------------------

    def attach_source_photo(
        self,
        project_id: str,
        character_key: str,
        data: bytes,
        extension: str = "jpg",
        *,
        user_id: str | None,
    ) -> str:
        project = self._owned_project(project_id, user_id)
        key = normalize_key(character_key)
        if not key:
            raise InvalidInput("A character key is required.")
        if not data:
            raise InvalidInput("Source photo is empty.")

        path = source_photo_path(project_id, key, extension)
        content_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        url = self._caps.objects.put(path, data, content_type)

        photos = dict(project.source_photos)
        photos[key] = url
        self._caps.write(project_id, {"source_photos": photos})
        return url

    def generate_character_model(
        self,
        project_id: str,
        character_key: str | None = None,
        *,
        user_id: str | None,
    ) -> CharacterModel:
        """
        Turn a character's source photo into its cartoon model sheet.

        Generating the protagonist's model locks the protagonist. A failed render
        raises and leaves the project unchanged.
        """
        caps = self._caps
        project = self._owned_project(project_id, user_id)
        registry = project.registry

        protagonist = registry.find_character(project.kid_name)
        protagonist_key = protagonist.key if protagonist else normalize_key(project.kid_name)
        key = normalize_key(character_key) or protagonist_key
        if not key:
            raise InvalidInput("Cannot determine which character to model.")
        is_protagonist = key == protagonist_key

        photo_url = project.source_photos.get(key)
        if not photo_url:
            raise InvalidInput(f"Upload a source photo for '{key}' first.")

        character = registry.characters.get(key)
        name = character.name if character else (project.kid_name if is_protagonist else key)
        role = "protagonist" if is_protagonist else (character.role if character else "other")

        if caps.config.use_placeholder_character_model:
            model_url = photo_url
            logger.info("Using source photo as placeholder model for '%s'", key)
        else:
            prompt = build_character_model_prompt(
                name=name, role=role, species=character.type if character else None
            )
            image_bytes = caps.adapter.generate_image(
                prompt.render(),
                [ImageAttachment(source=photo_url, label=key)],
                aspect_ratio="2:3",
            )
            stored = caps.objects.put(
                character_model_path(project_id, None if is_protagonist else key),
                image_bytes,
                "image/png",
            )
            model_url = with_cache_buster(stored, caps.cache_buster())

        now = caps.now_iso()
        model = CharacterModel(
            character_key=key,
            model_url=model_url,
            name=name,
            role=role,
            is_protagonist=is_protagonist,
            created_at=now,
        )
        catalog = [item for item in project.character_models if item.character_key != key]
        catalog.append(model)

        if is_protagonist:
            apply_protagonist_lock(
                registry, kid_name=project.kid_name, model_url=model_url, locked_at=now
            )
        elif character is not None and not character.is_locked:
            registry.characters[key] = character.with_model(model_url)

        caps.write(
            project_id,
            {
                "character_models": [item.to_dict() for item in catalog],
                "registry": registry.to_dict(),
            },
        )
        return model

    def remove_character_model(
        self,
        project_id: str,
        character_key: str,
        *,
        user_id: str | None,
    ) -> None:
        project = self._owned_project(project_id, user_id)
        key = normalize_key(character_key)
        character = project.registry.characters.get(key)
        if character is not None and character.is_locked:
            raise Locked(f"Character '{key}' is locked to its model.")
        if project.character_model(key) is None:
            raise NotFound(f"No character model for '{key}'.")

        catalog = [item for item in project.character_models if item.character_key != key]
        if character is not None:
            character.has_model = False
            character.visual_source = "auto"
            character.model_url = None
        self._caps.write(
            project_id,
            {
                "character_models": [item.to_dict() for item in catalog],
                "registry": project.registry.to_dict(),
            },
        )

    def suggest_character_models(self, project_id: str, *, user_id: str | None) -> list[Character]:
        """Registry characters without a model yet, protagonist first."""
        project = self._owned_project(project_id, user_id)
        modeled = {model.character_key for model in project.character_models}
        missing = [
            character
            for character in project.registry.characters.values()
            if not character.has_model and character.key not in modeled
        ]
        return sorted(
            missing,
            key=lambda character: (
                not character.is_protagonist,
                ROLE_PRIORITY.get(character.role, len(ROLE_PRIORITY)),
            ),
        )

    # -- props --------------------------------------------------------------------

    def attach_prop_photo(
        self,
        project_id: str,
        prop_key: str | None,
        data: bytes,
        extension: str = "jpg",
        *,
        user_id: str | None,
        name: str | None = None,
    ) -> Prop:
        """
        Store a caretaker photo of a prop and make it the prop's reference image.

        Unlike characters, props get no generated model sheet; the photo itself is the
        reference. The prop is registered when the story has not mentioned it yet.
        """
        project = self._owned_project(project_id, user_id)
        registry = project.registry
        key = normalize_key(prop_key) or normalize_key(name)
        if not key:
            raise InvalidInput("A prop key or name is required.")
        if key in registry.characters:
            raise InvalidInput(f"'{key}' is a character, not a prop.")
        if not data:
            raise InvalidInput("Prop photo is empty.")

        path = prop_photo_path(project_id, key, extension)
        content_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
        url = self._caps.objects.put(path, data, content_type)

        prop = registry.props.get(key)
        if prop is None:
            prop = Prop(
                key=key,
                name=(name or "").strip() or key.replace("_", " "),
                description="User-uploaded prop",
                first_seen_page=1,
            )
            registry.props[key] = prop
        prop.reference_image_url = url
        prop.image_source = "user"
        prop.image_uploaded_at = self._caps.now_iso()

        self._caps.write(project_id, {"registry": registry.to_dict()})
        logger.info("Attached reference photo to prop '%s' of project %s", key, project_id)
        return prop

    def remove_prop_photo(self, project_id: str, prop_key: str, *, user_id: str | None) -> Prop:
        project = self._owned_project(project_id, user_id)
        key = normalize_key(prop_key)
        prop = project.registry.props.get(key)
        if prop is None:
            raise NotFound(f"Prop '{prop_key}' not found.")

        prop.reference_image_url = None
        prop.image_source = None
        prop.image_uploaded_at = None
        self._caps.write(project_id, {"registry": project.registry.to_dict()})
        return prop

    # -- groups -------------------------------------------------------------------

    def add_group_member(
        self,
        project_id: str,
        group_key: str,
        name: str,
        photo_url: str | None = None,
        *,
        user_id: str | None,
    ) -> GroupMember:
        project = self._owned_project(project_id, user_id)
        group = project.registry.groups.get(normalize_key(group_key))
        if group is None:
            raise NotFound(f"Group '{group_key}' not found.")
        if not name or not name.strip():
            raise InvalidInput("Group members need a name.")

        member = GroupMember(member_id=uuid.uuid4().hex[:12], name=name.strip(), photo_url=photo_url)
        group.members.append(member)
        self._caps.write(project_id, {"registry": project.registry.to_dict()})
        return member

    def remove_group_member(
        self,
        project_id: str,
        group_key: str,
        member_id: str,
        *,
        user_id: str | None,
    ) -> None:
        project = self._owned_project(project_id, user_id)
        group = project.registry.groups.get(normalize_key(group_key))
        if group is None:
            raise NotFound(f"Group '{group_key}' not found.")
        remaining = [member for member in group.members if member.member_id != member_id]
        if len(remaining) == len(group.members):
            raise NotFound(f"Member '{member_id}' not found in group '{group.key}'.")
        group.members = remaining
        self._caps.write(project_id, {"registry": project.registry.to_dict()})

    # -- illustrations ------------------------------------------------------------

    def generate_scene(
        self,
        project_id: str,
        page: int,
        page_text: str | None = None,
        *,
        user_id: str | None,
        is_regeneration: bool = False,
        revision_notes: str | None = None,
    ) -> SceneResult:
        self._owned_project(project_id, user_id)
        return self._scenes.generate_scene(
            project_id,
            page,
            page_text,
            is_regeneration=is_regeneration,
            revision_notes=revision_notes,
        )

    def generate_book_scenes(
        self,
        project_id: str,
        *,
        user_id: str | None,
        progress_callback: ProgressCallback | None = None,
    ) -> list[SceneResult]:
        """Render every page that has no illustration yet, in page order."""
        project = self._owned_project(project_id, user_id)
        pending = [page for page in project.pages if project.illustration(page.page_number) is None]
        self._notify(progress_callback, "scenes:start", total_pages=len(pending))

        results: list[SceneResult] = []
        for index, page in enumerate(pending, start=1):
            self._notify(
                progress_callback,
                "page:processing",
                page_number=page.page_number,
                page_index=index,
                total_pages=len(pending),
            )
            results.append(self._scenes.generate_scene(project_id, page.page_number, page.text))
            self._notify(progress_callback, "page:done", page_number=page.page_number)

        self._notify(progress_callback, "scenes:complete", total_pages=len(results))
        return results

    def set_illustration(
        self,
        project_id: str,
        page: int,
        selected_image_url: str,
        *,
        user_id: str | None,
    ) -> tuple[str, int]:
        """
        Pin a previous revision of ``page`` as its current image.

        Returns ``(image_url, revisions)``.
        """
        project = self._owned_project(project_id, user_id)
        record = project.illustration(page)
        if record is None:
            raise NotFound(f"Page {page} has no illustration.")

        pinned, changed = pin_illustration(
            record,
            selected_image_url,
            now=self._caps.now_iso(),
            history_limit=self._caps.config.revision_history_limit,
        )
        if changed:
            project.put_illustration(pinned)
            self._caps.write(
                project_id,
                {"illustrations": [item.to_dict() for item in project.illustrations]},
            )
            logger.info("Pinned %s as page %d of project %s", pinned.image_url, page, project_id)
        return pinned.image_url, pinned.revisions

    @staticmethod
    def _notify(callback: ProgressCallback | None, stage: str, **payload: Any) -> None:
        if callback is not None:
            callback(stage, payload)


def _coerce_pages(pages: Sequence[StoryPage | Mapping[str, Any]]) -> list[StoryPage]:
    normalized: list[StoryPage] = []
    for item in pages:
        if isinstance(item, StoryPage):
            normalized.append(item)
            continue
        try:
            normalized.append(StoryPage.from_mapping(item))
        except ValueError as exc:
            raise InvalidInput(str(exc)) from exc

    if not normalized:
        raise InvalidInput("A story needs at least one page.")
    numbers = [page.page_number for page in normalized]
    if len(set(numbers)) != len(numbers) or min(numbers) < 1:
        raise InvalidInput("Page numbers must be unique positive integers.")
    if any(not page.text.strip() for page in normalized):
        raise InvalidInput("Every page needs text.")
    return sorted(normalized, key=lambda page: page.page_number)
