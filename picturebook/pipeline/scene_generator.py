"""
Generation Coordinator: renders one page illustration and records it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from picturebook.common.errors import InvalidInput, PageNotFound, StorageFailure
from picturebook.storage import illustration_path

from .capabilities import EngineCapabilities, with_cache_buster
from .composition import CompositionPlanner, ScenePlan
from .continuity import apply_page_updates
from .illustrations import ensure_revision_budget, next_revision_number, upsert_illustration
from .page_entities import PageEntityExtractor
from .prompt_assembler import assemble_scene_prompt, compose_regeneration_text, split_revision_notes
from .props import deduplicate_props

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SceneResult:
    """
    Outcome of one page render.

    ``registry_warning`` is set when the image was stored but the project document
    could not be written; the image URL is still valid.
    """

    page: int
    image_url: str
    revisions: int
    plan: ScenePlan
    registry_warning: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "page": self.page,
            "image_url": self.image_url,
            "revisions": self.revisions,
            "scene_composition": self.plan.to_dict(),
            "registry_warning": self.registry_warning,
        }


class SceneGenerator:
    def __init__(self, capabilities: EngineCapabilities) -> None:
        self._caps = capabilities
        self._entities = PageEntityExtractor(capabilities.adapter)
        self._planner = CompositionPlanner(
            capabilities.adapter,
            max_characters=capabilities.config.max_character_models_per_scene,
        )

    def generate_scene(
        self,
        project_id: str,
        page: int,
        page_text: str | None = None,
        *,
        is_regeneration: bool = False,
        revision_notes: str | None = None,
    ) -> SceneResult:
        """
        Render ``page`` and upsert its illustration record.

        When regenerating, ``page_text`` may already end with the
        ``Artist revision notes:`` suffix; ``revision_notes`` is a convenience that
        appends it. The revision budget is checked before any model call.
        """
        caps = self._caps
        config = caps.config
        project = caps.load(project_id)

        story_page = project.page(page)
        if story_page is None:
            raise PageNotFound(project_id, page)
        if project.protagonist_model() is None:
            raise InvalidInput("The protagonist needs a character model before scenes can be drawn.")

        record = project.illustration(page)
        if is_regeneration:
            ensure_revision_budget(record, max_revisions=config.max_revisions)

        text = page_text if page_text and page_text.strip() else story_page.text
        text = compose_regeneration_text(text, revision_notes)
        story_text, notes = split_revision_notes(text)

        registry = project.registry
        entities = self._entities.extract_page_entities(
            story_text,
            existing_props=[prop.name for prop in registry.props.values()],
        )
        working, registry_changed = apply_page_updates(
            registry,
            page_number=page,
            location=entities.location,
            props=entities.props,
        )
        snapshot = working.copy()
        snapshot.props = deduplicate_props(snapshot.props)

        plan = self._planner.analyze_scene_composition(
            page_number=page,
            page_text=text,
            registry=snapshot,
            character_models=project.character_models,
            pages=project.pages,
            detected_environment=entities.location.key if entities.location else None,
            detected_props=[prop.name for prop in entities.props],
        )
        prompt = assemble_scene_prompt(
            page_text=text,
            plan=plan,
            registry=snapshot,
            character_models=project.character_models,
            kid_name=project.kid_name,
        )

        image_bytes = caps.adapter.generate_image(prompt.render(), prompt.attachments)

        revision = next_revision_number(record, is_regeneration=is_regeneration)
        stored_url = caps.objects.put(
            illustration_path(project_id, page, revision), image_bytes, "image/png"
        )
        image_url = with_cache_buster(stored_url, caps.cache_buster())

        updated_record = upsert_illustration(
            record,
            page=page,
            image_url=image_url,
            now=caps.now_iso(),
            is_regeneration=is_regeneration,
            history_limit=config.revision_history_limit,
            revision_notes=notes,
            scene_composition=plan.to_dict(),
        )
        project.put_illustration(updated_record)

        fields: dict[str, Any] = {
            "illustrations": [item.to_dict() for item in project.illustrations],
        }
        if registry_changed:
            fields["registry"] = working.to_dict()

        registry_warning = False
        try:
            caps.write(project_id, fields)
        except StorageFailure:
            logger.warning(
                "Stored %s for project %s page %d but could not record it",
                image_url,
                project_id,
                page,
                exc_info=True,
            )
            registry_warning = True

        logger.info(
            "Generated page %d for project %s (revisions=%d, characters=%s)",
            page,
            project_id,
            updated_record.revisions,
            plan.characters,
        )
        return SceneResult(
            page=page,
            image_url=image_url,
            revisions=updated_record.revisions,
            plan=plan,
            registry_warning=registry_warning,
        )
