"""
Service layer for producing story ideas and paged stories.
"""

from __future__ import annotations

import logging
from typing import Any

from picturebook.ai_generation import LargeModelAdapter
from picturebook.common.errors import MalformedOutput
from picturebook.models import StoryIdea, StoryPage

from .profile import KidProfile
from .prompting import DEFAULT_IDEA_COUNT, build_ideas_prompt, build_story_prompt

logger = logging.getLogger(__name__)


class StoryIdeaGenerator:
    """
    Turns a child's profile into a short list of story ideas.
    """

    def __init__(self, adapter: LargeModelAdapter) -> None:
        self._adapter = adapter

    def generate_ideas(
        self,
        profile: KidProfile,
        *,
        count: int = DEFAULT_IDEA_COUNT,
        temperature: float = 0.8,
    ) -> list[StoryIdea]:
        prompt = build_ideas_prompt(profile, count=count)
        payload = self._adapter.extract_structured(
            prompt.as_instruction(),
            model=self._adapter.config.story_model,
            temperature=temperature,
        )

        raw_ideas = payload.get("ideas")
        if not isinstance(raw_ideas, list):
            raise MalformedOutput("Story ideas JSON must contain an 'ideas' list.")

        ideas: list[StoryIdea] = []
        for item in raw_ideas:
            if not isinstance(item, dict):
                continue
            try:
                ideas.append(StoryIdea.from_mapping(item))
            except ValueError:
                logger.warning("Skipping story idea without a title: %r", item)
        if not ideas:
            raise MalformedOutput("Story ideas response contained no usable ideas.")
        return ideas


class StoryWriter:
    """
    Writes the full paged story for a chosen idea.
    """

    def __init__(self, adapter: LargeModelAdapter) -> None:
        self._adapter = adapter

    def write_story(
        self,
        profile: KidProfile,
        idea: StoryIdea,
        *,
        temperature: float = 0.7,
        **prompt_kwargs: Any,
    ) -> tuple[str, list[StoryPage]]:
        """
        Invoke the configured model and return ``(title, pages)``.
        """
        prompt = build_story_prompt(profile, idea, **prompt_kwargs)
        payload = self._adapter.extract_structured(
            prompt.as_instruction(),
            model=self._adapter.config.story_model,
            temperature=temperature,
        )

        raw_pages = payload.get("story") or payload.get("pages")
        if not isinstance(raw_pages, list) or not raw_pages:
            raise MalformedOutput("Story JSON must contain a non-empty 'story' list.")

        pages = self._convert_to_pages(raw_pages)
        title = str(payload.get("title") or idea.title).strip()
        return title, pages

    def _convert_to_pages(self, raw_pages: list[Any]) -> list[StoryPage]:
        pages: list[StoryPage] = []
        for index, item in enumerate(raw_pages, start=1):
            if not isinstance(item, dict):
                raise MalformedOutput(f"Invalid page payload: {item!r}")
            text = str(item.get("text") or item.get("story_text") or "").strip()
            if not text:
                raise MalformedOutput(f"Page {index} is missing its text.")
            # page numbers are reassigned so they are always sequential from 1
            pages.append(StoryPage(page_number=index, text=text))
        return pages
