"""Tests for story finalization and registry reconciliation."""

import pytest

from picturebook.common import Locked, MalformedOutput, Unauthorized
from picturebook.models import CharacterModel, StoryRegistry
from picturebook.pipeline.extraction import parse_extracted_registry, reconcile_registry


def test_duplicate_characters_merge_traits():
    registry = parse_extracted_registry(
        {
            "characters": [
                {"name": "Biscuit", "type": "dog", "traits": ["playful"]},
                {"name": "biscuit", "type": "cat", "traits": ["loyal", "Playful"]},
            ]
        }
    )

    biscuit = registry.characters["biscuit"]
    assert biscuit.type == "dog"
    assert biscuit.traits == ["playful", "loyal"]


def test_prop_colliding_with_character_is_discarded():
    registry = parse_extracted_registry(
        {
            "characters": [{"name": "Biscuit", "role": "pet"}],
            "props": [{"name": "Biscuit", "description": "a cookie"}, {"name": "kite"}],
        }
    )

    assert "biscuit" in registry.characters
    assert list(registry.props) == ["kite"]


def test_catalog_entries_become_model_backed_characters():
    extracted = parse_extracted_registry(
        {
            "characters": [
                {"name": "Abby", "role": "protagonist"},
                {"name": "Biscuit", "role": "pet", "visual": {"colors": ["brown"]}},
            ]
        }
    )
    catalog = [
        CharacterModel(character_key="biscuit", model_url="https://m/biscuit.png"),
        CharacterModel(
            character_key="grandpa_joe", model_url="https://m/joe.png", name="Grandpa Joe", role="parent"
        ),
    ]

    registry = reconcile_registry(extracted, catalog=catalog, kid_name="Abby")

    biscuit = registry.characters["biscuit"]
    assert biscuit.has_model and biscuit.visual is None
    assert biscuit.visual_source == "user"
    assert biscuit.model_url == "https://m/biscuit.png"
    joe = registry.characters["grandpa_joe"]
    assert joe.name == "Grandpa Joe"
    assert joe.role == "parent"
    assert joe.has_model and joe.visual is None and joe.model_url == "https://m/joe.png"
    for character in registry.characters.values():
        if character.has_model:
            assert character.visual is None and character.model_url


def test_exactly_one_protagonist_is_kept():
    extracted = parse_extracted_registry(
        {
            "characters": [
                {"name": "Abigail", "role": "protagonist"},
                {"name": "Abby", "role": "protagonist", "visual": {"hair": "red"}},
            ]
        }
    )

    registry = reconcile_registry(extracted, kid_name="Abby")

    protagonists = [c for c in registry.characters.values() if c.is_protagonist]
    assert [c.key for c in protagonists] == ["abby"]
    assert protagonists[0].visual_source == "user"
    assert protagonists[0].visual is None
    assert registry.characters["abigail"].role == "other"


def test_missing_protagonist_is_synthesized_from_child_name():
    extracted = parse_extracted_registry(
        {"characters": [{"name": "Biscuit", "role": "pet"}], "props": [{"name": "Abby"}]}
    )

    registry = reconcile_registry(extracted, kid_name="Abby")

    assert registry.protagonist().key == "abby"
    assert "abby" not in registry.props


def test_locked_characters_survive_reextraction_unchanged():
    previous = StoryRegistry.from_mapping(
        {
            "characters": [
                {
                    "name": "Abby",
                    "role": "protagonist",
                    "has_model": True,
                    "visual_source": "user",
                    "model_url": "https://m/abby.png",
                    "locked_at": "2024-05-01T12:00:00+00:00",
                }
            ]
        }
    )
    extracted = parse_extracted_registry(
        {"characters": [{"name": "Abby", "role": "protagonist", "visual": {"hair": "blue"}}]}
    )

    registry = reconcile_registry(extracted, previous=previous, kid_name="Abby")

    assert registry.characters["abby"] == previous.characters["abby"]


def test_group_members_and_prop_references_are_preserved():
    previous = StoryRegistry.from_mapping(
        {
            "groups": [
                {
                    "display_name": "the grandkids",
                    "members": [{"member_id": "m1", "name": "Lily"}],
                }
            ],
            "props": [{"name": "kite", "reference_image_url": "https://cdn.test/kite.png"}],
        }
    )
    extracted = parse_extracted_registry(
        {
            "characters": [{"name": "Abby", "role": "protagonist"}],
            "groups": [{"display_name": "the grandkids"}, {"display_name": "the twins"}],
            "props": [{"name": "kite"}],
        }
    )

    registry = reconcile_registry(extracted, previous=previous, kid_name="Abby")

    assert [m.name for m in registry.groups["the_grandkids"].members] == ["Lily"]
    assert registry.groups["the_twins"].members == []
    assert registry.groups["the_twins"].key == "the_twins"
    assert registry.props["kite"].reference_image_url == "https://cdn.test/kite.png"


def test_finalize_keeps_caretaker_details(service, completion, store, project_id, user_id, registry_payload):
    """Abby's brown miniature dachshund stays a miniature dachshund named Biscuit."""
    completion.respond("registry", registry_payload)

    registry = service.finalize_story(project_id, user_id=user_id)

    biscuit = registry.characters["biscuit"]
    assert biscuit.type == "dog"
    assert biscuit.breed == "miniature dachshund"
    assert "brown" in biscuit.visual.colors
    assert sum(1 for c in registry.characters.values() if c.is_protagonist) == 1
    assert not set(registry.props) & set(registry.characters)

    instruction = completion.last_instruction("registry")
    assert "Abby loves her brown miniature dachshund named Biscuit" in instruction
    assert "[Page 1] Abby and her dog played fetch in the backyard." in instruction

    document = store.load_project(project_id)
    assert document["story_locked"] is True
    assert document["registry"]["characters"]["biscuit"]["breed"] == "miniature dachshund"


def test_finalize_propagates_malformed_output(service, completion, store, project_id, user_id):
    completion.respond("registry", "I could not find any characters.")

    with pytest.raises(MalformedOutput):
        service.finalize_story(project_id, user_id=user_id)

    assert not store.load_project(project_id).get("story_locked")


def test_finalized_story_text_is_locked(service, completion, project_id, user_id, registry_payload, story_pages):
    completion.respond("registry", registry_payload)
    service.finalize_story(project_id, user_id=user_id)

    with pytest.raises(Locked):
        service.save_story(project_id, story_pages, user_id=user_id)

    edited = [dict(page) for page in story_pages]
    edited[0]["text"] = "Abby and Biscuit went to the moon."
    with pytest.raises(Locked):
        service.finalize_story(project_id, edited, user_id=user_id)

    # re-finalizing with the stored text is allowed
    service.finalize_story(project_id, story_pages, user_id=user_id)


def test_finalize_checks_ownership(service, project_id):
    with pytest.raises(Unauthorized):
        service.finalize_story(project_id, user_id="someone-else")


def test_locked_name_match_is_not_promoted():
    locked = {
        "name": "Abby",
        "role": "friend",
        "has_model": True,
        "visual_source": "user",
        "model_url": "https://m/abby.png",
        "locked_at": "2024-05-01T12:00:00+00:00",
    }
    previous = StoryRegistry.from_mapping({"characters": [locked]})
    extracted = parse_extracted_registry(
        {"characters": [{"name": "Abby", "role": "protagonist"}, {"name": "Mom", "role": "parent"}]}
    )

    registry = reconcile_registry(extracted, previous=previous, kid_name="Abby")

    assert registry.characters["abby"] == previous.characters["abby"]
    assert sorted(registry.characters) == ["abby", "mom"]
    assert registry.find_character("Abby").key == "abby"
