"""Tests for the large-model adapter."""

import json

import pytest

from picturebook.ai_generation import ImageAttachment, LargeModelAdapter, parse_json_object
from picturebook.common import ChatResult, EngineConfig, MalformedOutput, NoImage, ToolCall


@pytest.fixture
def adapter(completion, renderer):
    return LargeModelAdapter(config=EngineConfig(), completion_fn=completion, renderer=renderer)


def test_parse_json_object_strips_fences_and_prose():
    text = 'Here you go:\n```json\n{"ideas": [{"title": "Moon Pup"}]}\n```\nEnjoy!'
    assert parse_json_object(text) == {"ideas": [{"title": "Moon Pup"}]}


@pytest.mark.parametrize("text", ["", "no braces at all", "{not: json}", "[1, 2, 3]"])
def test_parse_json_object_rejects_unparseable_text(text):
    with pytest.raises(MalformedOutput):
        parse_json_object(text)


def test_extract_structured_uses_extract_model_and_timeout(adapter, completion):
    completion.respond("unknown", '```json\n{"answer": 42}\n```')

    result = adapter.extract_structured("Return the answer as JSON.")

    assert result == {"answer": 42}
    call = completion.last_call("unknown")
    assert call["model"] == "gpt-4.1"
    assert call["timeout"] == 30.0
    assert "tools" not in call


def test_extract_structured_sends_attachments_as_image_parts(adapter, completion):
    completion.respond("unknown", {"ok": True})
    attachment = ImageAttachment(source="https://cdn.test/abby.png", label="abby")

    adapter.extract_structured("Describe the child.", [attachment])

    content = completion.last_call("unknown")["messages"][-1]["content"]
    assert content[0] == {"type": "text", "text": "Describe the child."}
    assert content[1]["image_url"]["url"] == "https://cdn.test/abby.png"


def test_generate_image_executes_the_tool_call(adapter, completion, renderer):
    completion.respond(
        "image",
        ChatResult(
            text="",
            raw=None,
            tool_calls=[
                ToolCall(
                    name="render_illustration",
                    arguments=json.dumps({"prompt": "Abby in the garden", "aspect_ratio": "2:3"}),
                )
            ],
        ),
    )
    reference = ImageAttachment(source="https://cdn.test/abby.png", label="abby")

    image = adapter.generate_image("Draw page 1.", [reference])

    assert image == renderer.output
    assert renderer.calls == [
        {"prompt": "Abby in the garden", "references": [reference], "aspect_ratio": "2:3"}
    ]
    call = completion.last_call("image")
    assert call["tool_choice"] == "required"
    assert call["timeout"] == 120.0
    assert call["tools"][0]["function"]["name"] == "render_illustration"


def test_generate_image_without_tool_call_raises_no_image(adapter, completion, renderer):
    completion.respond("image", ChatResult(text="I would rather describe it.", raw=None))

    with pytest.raises(NoImage):
        adapter.generate_image("Draw page 1.")

    assert renderer.calls == []


def test_generate_image_with_broken_arguments_is_malformed(adapter, completion):
    completion.respond(
        "image",
        ChatResult(
            text="",
            raw=None,
            tool_calls=[ToolCall(name="render_illustration", arguments="{prompt: oops")],
        ),
    )

    with pytest.raises(MalformedOutput):
        adapter.generate_image("Draw page 1.")


def test_generate_image_with_empty_render_raises_no_image(adapter, renderer):
    renderer.output = b""

    with pytest.raises(NoImage):
        adapter.generate_image("Draw page 1.")
