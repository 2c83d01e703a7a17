"""
Small per-page extractions that feed scene planning and the registry update.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Sequence

from picturebook.ai_generation import LargeModelAdapter
from picturebook.models import Environment, Prop
from picturebook.models.registry import coerce_str
from picturebook.story_generation import build_location_prompt, build_props_prompt

logger = logging.getLogger(__name__)


@dataclass
class PageEntities:
    """Location and props detected on one page. Either part may be empty."""

    location: Environment | None = None
    props: list[Prop] = field(default_factory=list)


class PageEntityExtractor:
    def __init__(self, adapter: LargeModelAdapter) -> None:
        self._adapter = adapter

    def extract_location(self, page_text: str) -> Environment | None:
        payload = self._adapter.extract_structured(
            build_location_prompt(page_text), max_tokens=400
        )
        location = payload.get("location")
        if not isinstance(location, dict) or not coerce_str(location.get("name")):
            return None
        environment = Environment.from_mapping(location)
        return environment if environment.key else None

    def extract_props(self, page_text: str, existing_props: Sequence[str] = ()) -> list[Prop]:
        payload = self._adapter.extract_structured(
            build_props_prompt(page_text, existing_props), max_tokens=800
        )
        raw_props = payload.get("props")
        if not isinstance(raw_props, list):
            return []
        props: list[Prop] = []
        for item in raw_props:
            if isinstance(item, dict) and coerce_str(item.get("name")):
                prop = Prop.from_mapping(item)
                if prop.key:
                    props.append(prop)
        return props

    def extract_page_entities(
        self,
        page_text: str,
        existing_props: Sequence[str] = (),
    ) -> PageEntities:
        """
        Run both extractions concurrently. A failure in either one is logged and
        leaves that part of the result empty.
        """
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="page-entities") as pool:
            location_future = pool.submit(self.extract_location, page_text)
            props_future = pool.submit(self.extract_props, page_text, list(existing_props))

            entities = PageEntities()
            try:
                entities.location = location_future.result()
            except Exception:
                logger.exception("Location extraction failed; continuing without it")
            try:
                entities.props = props_future.result()
            except Exception:
                logger.exception("Prop extraction failed; continuing without props")
        return entities
