"""Pytest fixtures for the picturebook continuity engine.

No test touches the network: the LiteLLM completion function and the image renderer
are replaced by scripted fakes, and both stores live in memory.
"""

import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from picturebook.common import ChatResult, EngineConfig, ToolCall
from picturebook.pipeline import EngineCapabilities, PicturebookService
from picturebook.storage import InMemoryObjectStorage, InMemoryProjectStore

USER_ID = "parent-1"

ABBY_DESCRIPTION = "Abby loves her brown miniature dachshund named Biscuit"


class ScriptedCompletion:
    """Stands in for ``call_chat_completion``.

    Requests are routed by a marker phrase of the prompt that produced them, so the
    concurrent page extractions get the right answer regardless of call order.
    Requests that carry tools are routed to ``"image"``.
    """

    ROUTES = (
        ("location", "single physical setting"),
        ("props", "physical objects that must be visible"),
        ("plan", "Plan the illustration"),
        ("registry", "STORY REGISTRY"),
        ("ideas", "story ideas for a child"),
        ("story", "rhyming picture book"),
    )

    DEFAULTS = {
        "location": {"location": None},
        "props": {"props": []},
        "plan": {"characters": [], "groups": [], "props": [], "environment": None},
    }

    def __init__(self):
        self.responses = {}
        self.calls = []
        self._lock = threading.Lock()

    def respond(self, route, payload):
        self.responses[route] = payload

    def routes(self):
        return [route for route, _ in self.calls]

    def count(self, route):
        return self.routes().count(route)

    def last_instruction(self, route):
        for name, kwargs in reversed(self.calls):
            if name == route:
                return _user_text(kwargs["messages"])
        raise AssertionError(f"No '{route}' call was made")

    def last_call(self, route):
        for name, kwargs in reversed(self.calls):
            if name == route:
                return kwargs
        raise AssertionError(f"No '{route}' call was made")

    def __call__(self, **kwargs):
        text = _user_text(kwargs["messages"])
        if kwargs.get("tools"):
            route = "image"
        else:
            route = next((name for name, marker in self.ROUTES if marker in text), "unknown")
        with self._lock:
            self.calls.append((route, kwargs))

        payload = self.responses.get(route, self.DEFAULTS.get(route))
        if isinstance(payload, Exception):
            raise payload
        if isinstance(payload, ChatResult):
            return payload
        if route == "image" and payload is None:
            arguments = json.dumps({"prompt": "storybook illustration", "aspect_ratio": "1:1"})
            return ChatResult(
                text="",
                raw=None,
                tool_calls=[ToolCall(name="render_illustration", arguments=arguments)],
            )
        if isinstance(payload, str):
            return ChatResult(text=payload, raw=None)
        return ChatResult(text=json.dumps(payload if payload is not None else {}), raw=None)


def _user_text(messages):
    content = messages[-1]["content"]
    if isinstance(content, str):
        return content
    return "\n".join(part.get("text", "") for part in content if part.get("type") == "text")


class FakeRenderer:
    """Records render requests and returns fixed PNG bytes."""

    def __init__(self, output=b"\x89PNG fake image"):
        self.output = output
        self.calls = []

    def render(self, *, prompt, references, aspect_ratio="1:1"):
        self.calls.append(
            {"prompt": prompt, "references": list(references), "aspect_ratio": aspect_ratio}
        )
        return self.output


class FixedClock:
    def __init__(self):
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def completion():
    return ScriptedCompletion()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return InMemoryProjectStore()


@pytest.fixture
def objects():
    return InMemoryObjectStorage(base_url="https://cdn.test")


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def capabilities(config, completion, renderer, store, objects, clock):
    return EngineCapabilities.from_config(
        config,
        completion_fn=completion,
        renderer=renderer,
        store=store,
        objects=objects,
        clock=clock,
    )


@pytest.fixture
def service(capabilities):
    return PicturebookService(capabilities)


@pytest.fixture
def story_pages():
    return [
        {"page": 1, "text": "Abby and her dog played fetch in the backyard."},
        {"page": 2, "text": "Mom called them in for lunch."},
        {"page": 3, "text": "The grandkids raced to the park with the red ball."},
    ]


@pytest.fixture
def registry_payload():
    """What the whole-story extraction returns for Abby's book."""
    return {
        "characters": [
            {
                "name": "Abby",
                "role": "protagonist",
                "type": "human",
                "gender": "girl",
                "traits": ["curious"],
                "first_seen_page": 1,
                "visual": {"age_range": "child", "hair": "brown pigtails"},
            },
            {
                "name": "Biscuit",
                "role": "pet",
                "type": "dog",
                "breed": "miniature dachshund",
                "traits": ["playful"],
                "relationship": "Abby's dog",
                "first_seen_page": 1,
                "visual": {
                    "size": "small",
                    "colors": ["brown"],
                    "distinctive_features": "long body, floppy ears",
                },
            },
            {
                "name": "Mom",
                "role": "parent",
                "type": "human",
                "relationship": "mother",
                "first_seen_page": 2,
                "visual": {"age_range": "adult", "hair": "short black hair"},
            },
        ],
        "groups": [
            {
                "display_name": "the grandkids",
                "singular": "grandkid",
                "detected_term": "grandkids",
                "detected_count": None,
                "count_source": "unknown",
                "first_seen_page": 3,
            }
        ],
        "props": [
            {"name": "PlayStation controller", "description": "Abby's game controller"},
            {"name": "red ball", "visual": "bright red rubber ball", "first_seen_page": 3},
        ],
        "environments": [
            {"name": "Backyard", "description": "grassy yard with a wooden fence", "owner": "Abby"}
        ],
        "notes": "Biscuit follows Abby everywhere.",
    }


@pytest.fixture
def project_id(store, story_pages):
    """A written, not yet finalized story owned by ``USER_ID``."""
    return store.create_project(
        {
            "owner_id": USER_ID,
            "kid_name": "Abby",
            "kid_interests": ABBY_DESCRIPTION,
            "title": "Abby and Biscuit",
            "pages": story_pages,
        }
    )


@pytest.fixture
def finalized_project(service, completion, project_id, registry_payload):
    """Finalized story whose protagonist already has a character model."""
    completion.respond("registry", registry_payload)
    service.finalize_story(project_id, user_id=USER_ID)
    service.attach_source_photo(project_id, "abby", b"jpeg-bytes", "jpg", user_id=USER_ID)
    service.generate_character_model(project_id, user_id=USER_ID)
    return project_id
