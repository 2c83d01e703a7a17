"""
Story finalization: one extraction call that produces the Story Registry, reconciled
with the character-model catalog and whatever the previous registry had locked.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Mapping, Sequence

from picturebook.ai_generation import LargeModelAdapter
from picturebook.common.errors import InvalidInput, Locked
from picturebook.common.keys import normalize_key
from picturebook.models import (
    Character,
    CharacterModel,
    Environment,
    Group,
    Prop,
    StoryPage,
    StoryRegistry,
)
from picturebook.models.registry import iter_entries, merge_unique, normalize_role
from picturebook.story_generation import KidProfile, build_registry_prompt

from .capabilities import EngineCapabilities

logger = logging.getLogger(__name__)


def parse_extracted_registry(payload: Mapping[str, Any]) -> StoryRegistry:
    """
    Convert the raw extraction payload into a registry.

    Duplicate character keys keep the first entry and merge traits. A prop whose key
    equals a character key is discarded.
    """
    registry = StoryRegistry(notes=str(payload.get("notes") or "").strip())

    for key, body in iter_entries(payload.get("characters")):
        character = Character.from_mapping(body, key=key)
        if not character.key:
            continue
        existing = registry.characters.get(character.key)
        if existing is not None:
            existing.traits = merge_unique(existing.traits, character.traits)
            continue
        registry.characters[character.key] = character

    for key, body in iter_entries(payload.get("groups")):
        group = Group.from_mapping(body, key=key)
        if group.key and group.key not in registry.groups:
            registry.groups[group.key] = group

    for key, body in iter_entries(payload.get("props")):
        prop = Prop.from_mapping(body, key=key)
        if not prop.key or prop.key in registry.props:
            continue
        if prop.key in registry.characters:
            logger.info("Dropping prop '%s': key collides with a character", prop.key)
            continue
        registry.props[prop.key] = prop

    for key, body in iter_entries(payload.get("environments")):
        environment = Environment.from_mapping(body, key=key)
        if environment.key and environment.key not in registry.environments:
            registry.environments[environment.key] = environment

    return registry


def _stub_from_catalog(model: CharacterModel) -> Character:
    role = "protagonist" if model.is_protagonist else normalize_role(model.role)
    return Character(
        key=model.character_key,
        name=model.name or model.character_key.replace("_", " ").title(),
        role=role,
        has_model=True,
        visual_source="user",
        visual=None,
        model_url=model.model_url,
    )


def _ensure_single_protagonist(registry: StoryRegistry, kid_name: str) -> Character:
    child = kid_name.strip().lower()
    candidates = [c for c in registry.characters.values() if c.is_protagonist]

    if candidates:
        chosen = next((c for c in candidates if c.is_locked), None)
        chosen = chosen or next((c for c in candidates if c.name.lower() == child), None)
        chosen = chosen or candidates[0]
        for character in candidates:
            if character is not chosen and not character.is_locked:
                logger.info("Demoting extra protagonist '%s'", character.key)
                character.role = "other"
    else:
        chosen = next(
            (c for c in registry.characters.values() if child and c.name.lower() == child),
            None,
        )
        if chosen is None:
            key = normalize_key(kid_name) or "protagonist"
            chosen = Character(key=key, name=kid_name.strip() or "Child", relationship="self")
            registry.props.pop(key, None)
            registry.characters[key] = chosen
        if chosen.is_locked:
            # locked characters are never edited; name matching still finds the child
            logger.warning("Locked character '%s' has no protagonist role", chosen.key)
        else:
            chosen.role = "protagonist"

    if not chosen.is_locked:
        chosen.visual_source = "user"
        chosen.visual = None
    return chosen


def reconcile_registry(
    extracted: StoryRegistry,
    *,
    previous: StoryRegistry | None = None,
    catalog: Sequence[CharacterModel] = (),
    kid_name: str = "",
) -> StoryRegistry:
    """
    Apply the finalization merge rules to a freshly extracted registry.

    - characters locked in ``previous`` are carried over untouched;
    - catalog keys missing from the extraction become model-backed stubs;
    - extracted characters present in the catalog take the catalog's model;
    - exactly one protagonist remains;
    - groups keep their key and any members recorded under the same key before;
    - props keep a reference image recorded under the same key before, and props
      with a caretaker photo survive even when the extraction misses them.
    """
    registry = extracted.copy()
    previous = previous or StoryRegistry()
    catalog_by_key = {model.character_key: model for model in catalog}

    for key, character in previous.characters.items():
        if character.is_locked:
            registry.characters[key] = copy.deepcopy(character)

    for key, character in list(registry.characters.items()):
        if character.is_locked:
            continue
        model = catalog_by_key.get(key)
        if model is not None:
            registry.characters[key] = character.with_model(model.model_url)
        else:
            character.has_model = False
            character.model_url = None

    for key, model in catalog_by_key.items():
        if key not in registry.characters:
            registry.characters[key] = _stub_from_catalog(model)

    _ensure_single_protagonist(registry, kid_name)

    for key in list(registry.props):
        if key in registry.characters:
            del registry.props[key]

    for key, group in registry.groups.items():
        group.key = key
        prior = previous.groups.get(key)
        group.members = copy.deepcopy(prior.members) if prior is not None else []

    for key, prop in registry.props.items():
        prior_prop = previous.props.get(key)
        if prior_prop is not None and prior_prop.reference_image_url and not prop.reference_image_url:
            prop.reference_image_url = prior_prop.reference_image_url
            prop.image_source = prior_prop.image_source
            prop.image_uploaded_at = prior_prop.image_uploaded_at

    # props the caretaker photographed stay even when the extraction missed them
    for key, prior_prop in previous.props.items():
        if prior_prop.image_source == "user" and key not in registry.props:
            if key not in registry.characters:
                registry.props[key] = copy.deepcopy(prior_prop)

    return registry


class RegistryExtractor:
    """
    Runs the single whole-story extraction call.
    """

    def __init__(self, adapter: LargeModelAdapter) -> None:
        self._adapter = adapter

    def extract(
        self,
        profile: KidProfile,
        pages: Sequence[StoryPage],
        catalog: Sequence[CharacterModel] = (),
    ) -> StoryRegistry:
        instruction = build_registry_prompt(profile, pages, catalog)
        payload = self._adapter.extract_structured(instruction, max_tokens=6000)
        return parse_extracted_registry(payload)


class StoryFinalizer:
    """
    Locks the story text and stores its registry.
    """

    def __init__(self, capabilities: EngineCapabilities) -> None:
        self._caps = capabilities
        self._extractor = RegistryExtractor(capabilities.adapter)

    def finalize_story(
        self,
        project_id: str,
        pages: Sequence[StoryPage] | None = None,
    ) -> StoryRegistry:
        project = self._caps.load(project_id)

        if pages:
            ordered = sorted(pages, key=lambda page: page.page_number)
            if project.story_locked and ordered != project.pages:
                raise Locked("Story text is locked; finalize with the stored pages.")
        else:
            ordered = list(project.pages)
        if not ordered:
            raise InvalidInput("Cannot finalize a story without pages.")
        if not project.kid_name:
            raise InvalidInput("Project has no child name.")

        profile = KidProfile(name=project.kid_name, interests=project.kid_interests or None)
        extracted = self._extractor.extract(profile, ordered, project.character_models)
        registry = reconcile_registry(
            extracted,
            previous=project.registry,
            catalog=project.character_models,
            kid_name=project.kid_name,
        )

        self._caps.write(
            project_id,
            {
                "pages": [page.as_dict() for page in ordered],
                "story_locked": True,
                "registry": registry.to_dict(),
            },
        )
        logger.info(
            "Finalized project %s: %d characters, %d groups, %d props, %d environments",
            project_id,
            len(registry.characters),
            len(registry.groups),
            len(registry.props),
            len(registry.environments),
        )
        return registry
