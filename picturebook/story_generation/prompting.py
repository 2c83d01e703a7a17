"""
Prompt construction utilities for story ideas, story writing, and registry extraction.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Sequence

from picturebook.models import CharacterModel, StoryIdea, StoryPage

from .profile import KidProfile

DEFAULT_IDEA_COUNT = 5

DEFAULT_LENGTH_GUIDANCE = (
    "Write 10-14 pages of 2-4 short rhyming lines each so the book reads aloud in a few minutes."
)


@dataclass(frozen=True)
class StoryPrompt:
    """
    Container for the system and user prompts passed to the model.
    """

    system: str
    user: str

    def as_instruction(self) -> str:
        return f"{self.system.strip()}\n\n{self.user.strip()}"


def build_ideas_prompt(profile: KidProfile, *, count: int = DEFAULT_IDEA_COUNT) -> StoryPrompt:
    system_prompt = f"""You are a children's author. Create {count} fun, kid-friendly story ideas for a child.
Each idea must let the child be the hero and should weave in the interests the caretaker described.
Keep every idea gentle, imaginative, and safe for young readers."""

    user_prompt = f"""Child:
{profile.summary_for_prompt()}

Return ONLY JSON:
{{
  "ideas": [
    {{ "title": "...", "description": "one or two sentences" }}
  ]
}}"""
    return StoryPrompt(system=system_prompt, user=user_prompt)


def build_story_prompt(
    profile: KidProfile,
    idea: StoryIdea,
    *,
    length_guidance: str = DEFAULT_LENGTH_GUIDANCE,
) -> StoryPrompt:
    """
    Build the prompt pair used to solicit a complete paged story from the model.
    """
    system_prompt = f"""You are a children's author writing a short, rhyming picture book for a child aged {profile.age_range}.

Writing directives:
- Treat the child as the unmistakable hero. Keep their agency central on every page.
- Honour every concrete detail the caretaker gave (pet names, breeds, colors, family members).
- Every page must describe something an illustrator can draw.
- {length_guidance}
- Keep the tone warm and hopeful; avoid frightening peril or mature themes.
- Do not include author notes or meta commentary."""

    user_prompt = f"""CHILD:
{profile.summary_for_prompt()}

STORY IDEA:
- Title: {idea.title}
- Description: {idea.description}

Return ONLY JSON:
{{
  "title": "book title",
  "story": [
    {{ "page": 1, "text": "..." }}
  ]
}}"""
    return StoryPrompt(system=system_prompt, user=user_prompt)


def format_story_text(pages: Sequence[StoryPage]) -> str:
    return "\n".join(f"[Page {page.page_number}] {page.text}" for page in pages)


def build_registry_prompt(
    profile: KidProfile,
    pages: Sequence[StoryPage],
    character_models: Sequence[CharacterModel] = (),
) -> str:
    """
    Single extraction prompt for the whole Story Registry.
    """
    modeled = [
        {
            "key": model.character_key,
            "name": model.name,
            "role": model.role,
            "is_protagonist": model.is_protagonist,
        }
        for model in character_models
    ]
    schema: dict[str, Any] = {
        "characters": [
            {
                "name": "specific name (Biscuit, Mom, Grandpa Joe)",
                "role": "protagonist | sibling | friend | parent | pet | other",
                "type": "human | dog | cat | ...",
                "breed": "EXACT breed from the caretaker's description if given, else null",
                "gender": "boy | girl | unspecified",
                "traits": ["..."],
                "relationship": "relationship to the protagonist",
                "first_seen_page": 1,
                "visual": {
                    "age_range": "child | adult | elderly",
                    "hair": "",
                    "skin_tone": "",
                    "build": "",
                    "size": "",
                    "colors": ["..."],
                    "distinctive_features": "",
                    "typical_clothing": "",
                },
            }
        ],
        "groups": [
            {
                "display_name": "the grandkids",
                "singular": "grandkid",
                "detected_term": "grandkids",
                "detected_count": None,
                "count_source": "explicit | implied | unknown",
                "relationship": "",
                "first_seen_page": 1,
            }
        ],
        "props": [
            {"name": "", "description": "", "visual": "", "first_seen_page": 1}
        ],
        "environments": [
            {"name": "", "description": "", "owner": "", "style": "", "first_seen_page": 1}
        ],
        "notes": "which characters appear together, anything an illustrator must keep consistent",
    }

    return f"""Extract the canonical STORY REGISTRY for an illustrated children's picture book.
This registry is reused for every illustration, so it must be coherent and specific enough to redraw each entity identically.

CRITICAL - ORIGINAL CARETAKER INPUT:
"{profile.interests or 'None provided'}"
These details are AUTHORITATIVE. If the caretaker specified a breed, a name, a color, or any other
concrete detail, use that EXACT information even when the story text is more generic.
The story text may elaborate on these details but never override them.
Examples:
- "golden retriever named Max" -> name MUST be "Max", type "dog", breed "golden retriever"
- "tabby cat called Whiskers" -> name MUST be "Whiskers", type "cat", breed "tabby"

The protagonist is {profile.name}. Exactly one character has role "protagonist".

CHARACTERS WITH UPLOADED MODELS (do NOT describe their visuals; set "visual": null):
{json.dumps(modeled, indent=2)}

RULES:
- "characters" lists NAMED individuals or specific roles addressed directly (Mom, Dad, Grandma).
- Generic words like "friends", "everyone", "family" are NOT characters.
- "groups" are unnamed plural people (three or more) such as "the grandkids". If individual names
  appear, list each named person as a character instead of a group.
- "her dog" and similar references resolve to the registered pet, never to a new character.
- "props" are objects that matter visually. List each object once, using its most specific name.
- A prop must never share a name with a character.
- "environments" are recurring places. Record ownership ("Gary's house" -> owner "Gary").
- For pets use type, breed, size, colors, distinctive_features.
- Use the [Page N] markers to fill "first_seen_page".
- Do NOT invent entities that are not in the story or the caretaker input.

Return ONLY JSON in this exact shape:
{json.dumps(schema, indent=2)}

STORY TEXT:
{format_story_text(pages)}
"""


def build_location_prompt(page_text: str) -> str:
    return f"""Identify the single physical setting where this picture-book page takes place.

Return ONLY JSON:
{{
  "location": {{ "name": "short place name", "description": "one sentence", "owner": "whose place it is, or null" }}
}}
Use "location": null when the page does not imply any setting.

PAGE TEXT:
{page_text}
"""


def build_props_prompt(page_text: str, existing_props: Sequence[str]) -> str:
    known = ", ".join(existing_props) if existing_props else "none yet"
    return f"""List the physical objects that must be visible in the illustration of this picture-book page.

Already registered props (reuse these exact names when the page refers to them): {known}

Rules:
- Only concrete, drawable objects. No people, animals, or places.
- Use the most specific name the text supports ("PlayStation controller", not "controller").

Return ONLY JSON:
{{
  "props": [
    {{ "name": "", "description": "one short sentence", "visual": "colors, size, shape" }}
  ]
}}

PAGE TEXT:
{page_text}
"""
