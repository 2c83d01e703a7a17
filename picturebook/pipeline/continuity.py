"""
Registry mutations that happen after the story is finalized: the per-page registry
update and the one-way protagonist lock.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Sequence

from picturebook.models import Character, Environment, Prop, StoryRegistry

from .props import find_equivalent_prop

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT_STYLE = (
    "Soft storybook rendering that matches the rest of the book; keep layout and colors "
    "consistent whenever this place reappears."
)


def apply_page_updates(
    registry: StoryRegistry,
    *,
    page_number: int,
    location: Environment | None = None,
    props: Sequence[Prop] = (),
) -> tuple[StoryRegistry, bool]:
    """
    Insert the page's newly detected location and props into a copy of ``registry``.

    Only inserts: existing environments, props, and every character are left as they
    are. A prop is skipped when an equivalent one is already registered or when its
    key belongs to a character. Returns the new registry and whether anything changed.
    """
    updated = registry.copy()
    changed = False

    if location is not None and location.key and location.key not in updated.environments:
        updated.environments[location.key] = replace(
            location,
            style=location.style or DEFAULT_ENVIRONMENT_STYLE,
            first_seen_page=page_number,
        )
        logger.info("Registered environment '%s' on page %d", location.key, page_number)
        changed = True

    for prop in props:
        if not prop.key or prop.key in updated.characters or prop.key in updated.props:
            continue
        if find_equivalent_prop(prop.name, updated.props) is not None:
            continue
        updated.props[prop.key] = replace(prop, first_seen_page=page_number)
        logger.info("Registered prop '%s' on page %d", prop.key, page_number)
        changed = True

    return updated, changed


def apply_protagonist_lock(
    registry: StoryRegistry,
    *,
    kid_name: str,
    model_url: str,
    locked_at: str,
) -> Character | None:
    """
    Freeze the protagonist's visuals behind the uploaded model, in place.

    The protagonist is the character whose role is ``protagonist`` or whose name
    matches the child's name. A character locked earlier keeps its original
    ``locked_at`` and only receives the new model URL. Returns ``None`` (after a
    warning) when no such character exists.
    """
    character = registry.find_character(kid_name)
    if character is None:
        logger.warning("No protagonist found to lock (child name %r)", kid_name)
        return None

    character.visual_source = "user"
    character.visual = None
    character.has_model = True
    character.model_url = model_url
    if character.locked_at is None:
        character.locked_at = locked_at
        logger.info("Locked protagonist '%s'", character.key)
    return character
