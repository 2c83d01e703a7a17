"""Tests for character models, the protagonist lock, and group members."""

import pytest

from picturebook import EngineCapabilities, EngineConfig, PicturebookService
from picturebook.common.errors import InvalidInput, Locked, NotFound, Unauthorized

USER_ID = "parent-1"
LOCKED_AT = "2024-05-01T12:00:00+00:00"


def _registry(service, project_id):
    return service.load_project(project_id, user_id=USER_ID).registry


def test_protagonist_model_locks_character(service, finalized_project, objects):
    abby = _registry(service, finalized_project).characters["abby"]

    assert abby.has_model is True
    assert abby.visual_source == "user"
    assert abby.visual is None
    assert abby.locked_at == LOCKED_AT
    assert abby.model_url == (
        f"https://cdn.test/character_models/{finalized_project}.png?v=1714564800"
    )
    assert f"character_models/{finalized_project}.png" in objects.objects

    model = service.load_project(finalized_project, user_id=USER_ID).protagonist_model()
    assert model.character_key == "abby"
    assert model.is_protagonist is True


def test_model_sheet_is_rendered_from_source_photo(service, finalized_project, renderer, completion):
    render = renderer.calls[-1]

    assert [reference.label for reference in render["references"]] == ["abby"]
    assert render["references"][0].source == (
        f"https://cdn.test/source_photos/{finalized_project}/abby.jpg"
    )
    assert "full-body cartoon character model sheet of the child" in completion.last_instruction(
        "image"
    )


def test_lock_survives_refinalize(service, finalized_project, completion, registry_payload, clock):
    registry_payload["characters"][0]["visual"] = {"hair": "blonde curls"}
    completion.respond("registry", registry_payload)
    clock.advance(3600)

    registry = service.finalize_story(finalized_project, user_id=USER_ID)

    abby = registry.characters["abby"]
    assert abby.locked_at == LOCKED_AT
    assert abby.visual is None
    assert abby.has_model is True
    assert [c.key for c in registry.characters.values() if c.is_protagonist] == ["abby"]


def test_regenerating_protagonist_model_keeps_lock_time(service, finalized_project, clock):
    clock.advance(3600)
    service.attach_source_photo(finalized_project, "abby", b"new-jpeg", "jpg", user_id=USER_ID)

    model = service.generate_character_model(finalized_project, user_id=USER_ID)

    abby = _registry(service, finalized_project).characters["abby"]
    assert abby.locked_at == LOCKED_AT
    assert abby.model_url == model.model_url
    assert model.model_url.endswith("?v=1714568400")
    catalog = service.load_project(finalized_project, user_id=USER_ID).character_models
    assert [item.character_key for item in catalog] == ["abby"]


def test_model_before_finalize_is_applied_at_finalize(
    service, project_id, completion, registry_payload
):
    service.attach_source_photo(project_id, "Abby", b"jpeg-bytes", "jpg", user_id=USER_ID)
    model = service.generate_character_model(project_id, user_id=USER_ID)
    assert model.is_protagonist is True

    completion.respond("registry", registry_payload)
    registry = service.finalize_story(project_id, user_id=USER_ID)

    abby = registry.characters["abby"]
    assert abby.has_model is True
    assert abby.model_url == model.model_url
    assert abby.visual is None


def test_placeholder_mode_reuses_photo(completion, renderer, store, objects, clock, project_id):
    capabilities = EngineCapabilities.from_config(
        EngineConfig(use_placeholder_character_model=True),
        completion_fn=completion,
        renderer=renderer,
        store=store,
        objects=objects,
        clock=clock,
    )
    service = PicturebookService(capabilities)
    photo_url = service.attach_source_photo(project_id, "abby", b"jpeg", "png", user_id=USER_ID)

    model = service.generate_character_model(project_id, user_id=USER_ID)

    assert model.model_url == photo_url
    assert objects.objects[f"source_photos/{project_id}/abby.png"][1] == "image/png"
    assert completion.count("image") == 0
    assert renderer.calls == []


def test_model_requires_source_photo(service, project_id, completion):
    with pytest.raises(InvalidInput):
        service.generate_character_model(project_id, user_id=USER_ID)

    assert completion.calls == []


def test_secondary_character_model(service, finalized_project, objects, completion):
    service.attach_source_photo(finalized_project, "biscuit", b"dog-photo", "jpg", user_id=USER_ID)

    model = service.generate_character_model(finalized_project, "Biscuit", user_id=USER_ID)

    assert model.is_protagonist is False
    assert model.role == "pet"
    assert f"character_models/{finalized_project}-biscuit.png" in objects.objects
    assert "model sheet of the dog" in completion.last_instruction("image")
    biscuit = _registry(service, finalized_project).characters["biscuit"]
    assert biscuit.has_model is True
    assert biscuit.visual is None
    assert biscuit.locked_at is None


def test_secondary_model_is_attached_after_protagonist(service, finalized_project, completion, renderer):
    service.attach_source_photo(finalized_project, "biscuit", b"dog-photo", "jpg", user_id=USER_ID)
    service.generate_character_model(finalized_project, "biscuit", user_id=USER_ID)
    completion.respond("plan", {"characters": ["Biscuit", "Abby"]})

    service.generate_scene(finalized_project, 1, user_id=USER_ID)

    labels = [reference.label for reference in renderer.calls[-1]["references"]]
    assert labels == ["abby", "biscuit"]


def test_remove_character_model(service, finalized_project):
    service.attach_source_photo(finalized_project, "biscuit", b"dog-photo", "jpg", user_id=USER_ID)
    service.generate_character_model(finalized_project, "biscuit", user_id=USER_ID)

    service.remove_character_model(finalized_project, "biscuit", user_id=USER_ID)

    project = service.load_project(finalized_project, user_id=USER_ID)
    biscuit = project.registry.characters["biscuit"]
    assert biscuit.has_model is False
    assert biscuit.visual_source == "auto"
    assert biscuit.model_url is None
    assert project.character_model("biscuit") is None


def test_locked_protagonist_model_cannot_be_removed(service, finalized_project):
    with pytest.raises(Locked):
        service.remove_character_model(finalized_project, "abby", user_id=USER_ID)


def test_removing_missing_model_is_not_found(service, finalized_project):
    with pytest.raises(NotFound):
        service.remove_character_model(finalized_project, "mom", user_id=USER_ID)


def test_suggestions_list_unmodeled_characters(service, finalized_project):
    suggestions = service.suggest_character_models(finalized_project, user_id=USER_ID)

    assert [character.key for character in suggestions] == ["biscuit", "mom"]


def test_group_members_survive_refinalize(service, finalized_project, completion, registry_payload):
    member = service.add_group_member(
        finalized_project, "the_grandkids", "Lily", user_id=USER_ID
    )
    assert len(member.member_id) == 12

    completion.respond("registry", registry_payload)
    registry = service.finalize_story(finalized_project, user_id=USER_ID)

    assert [m.name for m in registry.groups["the_grandkids"].members] == ["Lily"]


def test_remove_group_member(service, finalized_project):
    member = service.add_group_member(finalized_project, "the grandkids", "Noah", user_id=USER_ID)

    service.remove_group_member(finalized_project, "the_grandkids", member.member_id, user_id=USER_ID)

    assert _registry(service, finalized_project).groups["the_grandkids"].members == []
    with pytest.raises(NotFound):
        service.remove_group_member(
            finalized_project, "the_grandkids", member.member_id, user_id=USER_ID
        )


def test_group_operations_validate_input(service, finalized_project):
    with pytest.raises(NotFound):
        service.add_group_member(finalized_project, "the_cousins", "Ava", user_id=USER_ID)
    with pytest.raises(InvalidInput):
        service.add_group_member(finalized_project, "the_grandkids", "  ", user_id=USER_ID)


def test_character_operations_check_ownership(service, finalized_project):
    with pytest.raises(Unauthorized):
        service.attach_source_photo(finalized_project, "abby", b"x", user_id="intruder")
    with pytest.raises(Unauthorized):
        service.suggest_character_models(finalized_project, user_id="intruder")
