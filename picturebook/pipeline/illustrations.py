"""
Per-page illustration records: upsert after generation, bounded revisions, pinning.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from picturebook.common.errors import InvalidInput, NotFound
from picturebook.common.keys import strip_query
from picturebook.models import IllustrationRecord, RevisionEntry
from picturebook.storage import illustration_revision


def ensure_revision_budget(
    record: IllustrationRecord | None,
    *,
    max_revisions: int,
) -> None:
    """Raise :class:`InvalidInput` when the page has used all its regenerations."""
    if record is not None and record.revisions >= max_revisions:
        raise InvalidInput(
            f"Page {record.page} already has {record.revisions} revisions "
            f"(limit {max_revisions})."
        )


def next_revision_number(record: IllustrationRecord | None, *, is_regeneration: bool) -> int:
    """
    Storage slot for the next render of a page.

    A regeneration takes a fresh slot. A plain re-render overwrites the slot of the
    current image, which after pinning is not the newest one, so history images are
    never touched.
    """
    if record is None:
        return 0
    if is_regeneration:
        return record.revisions + 1
    current = illustration_revision(record.image_url)
    return record.revisions if current is None else current


def _current_entry(record: IllustrationRecord) -> RevisionEntry:
    slot = illustration_revision(record.image_url)
    return RevisionEntry(
        image_url=record.image_url,
        created_at=record.last_updated,
        notes=record.revision_notes,
        revision=record.revisions if slot is None else slot,
    )


def upsert_illustration(
    record: IllustrationRecord | None,
    *,
    page: int,
    image_url: str,
    now: str,
    is_regeneration: bool,
    history_limit: int,
    revision_notes: str | None = None,
    scene_composition: dict[str, Any] | None = None,
) -> IllustrationRecord:
    """
    Return the record that should replace ``record`` after a successful render.

    - no prior record: a fresh record with ``revisions = 0`` and empty history;
    - regeneration: the prior current image moves into history, ``revisions`` goes up
      by one and history keeps the most recent ``history_limit`` entries;
    - plain re-render: the image is replaced, counters and history stay.
    """
    if record is None:
        return IllustrationRecord(
            page=page,
            image_url=image_url,
            revisions=0,
            last_updated=now,
            revision_notes=revision_notes if is_regeneration else None,
            revision_history=[],
            scene_composition=scene_composition,
        )

    if not is_regeneration:
        return replace(
            record,
            image_url=image_url,
            last_updated=now,
            scene_composition=scene_composition or record.scene_composition,
        )

    history = list(record.revision_history) + [_current_entry(record)]
    return replace(
        record,
        image_url=image_url,
        revisions=record.revisions + 1,
        last_updated=now,
        revision_notes=revision_notes,
        revision_history=history[-history_limit:] if history_limit > 0 else [],
        scene_composition=scene_composition or record.scene_composition,
    )


def pin_illustration(
    record: IllustrationRecord,
    selected_url: str,
    *,
    now: str,
    history_limit: int,
) -> tuple[IllustrationRecord, bool]:
    """
    Make a history entry current again and move the current image into history.

    ``revisions`` is unchanged. Selecting the current image (query strings ignored)
    returns ``(record, False)``. Raises :class:`NotFound` when ``selected_url`` is not
    in the page's history.
    """
    if strip_query(selected_url) == strip_query(record.image_url):
        return record, False

    selected = record.history_entry(selected_url)
    if selected is None:
        raise NotFound(f"Image is not in the revision history of page {record.page}.")

    history = [entry for entry in record.revision_history if entry is not selected]
    history.append(_current_entry(record))
    pinned = replace(
        record,
        image_url=selected.image_url,
        last_updated=now,
        revision_notes=selected.notes,
        revision_history=history[-history_limit:] if history_limit > 0 else [],
    )
    return pinned, True
