"""Tests for prop equivalence and deduplication."""

import itertools

import pytest

from picturebook.models import Prop
from picturebook.pipeline.props import (
    are_props_equivalent,
    deduplicate_props,
    find_equivalent_prop,
)


def _props(*names, **references):
    props = {}
    for name in names:
        key = name.lower().replace(" ", "_")
        props[key] = Prop(key=key, name=name, reference_image_url=references.get(key))
    return props


@pytest.mark.parametrize(
    "first, second",
    [
        ("ball", "Ball "),
        ("controller", "PlayStation controller"),
        ("the big red wagon", "an old wagon"),
        ("berries", "berry"),
        ("puppies", "puppy"),
    ],
)
def test_equivalent_names(first, second):
    assert are_props_equivalent(first, second)
    assert are_props_equivalent(second, first)


@pytest.mark.parametrize("first, second", [("kite", "ball"), ("", "ball"), (None, "ball")])
def test_distinct_names(first, second):
    assert not are_props_equivalent(first, second)


def test_controller_collapses_into_most_specific_name():
    """Page 1 extracted both "controller" and "PlayStation controller"."""
    props = _props("controller", "PlayStation controller")

    deduped = deduplicate_props(props)

    assert list(deduped) == ["playstation_controller"]
    assert deduped["playstation_controller"].name == "PlayStation controller"
    # page 2 sees the same key again
    assert list(deduplicate_props(deduped)) == ["playstation_controller"]


def test_reference_image_beats_longer_name():
    props = _props("ball", "big red bouncy ball", ball="https://cdn.test/ball.png")

    assert list(deduplicate_props(props)) == ["ball"]


def test_grouping_is_transitive():
    """"ball" ~ "ball pit" ~ "pit" even though "ball" and "pit" differ."""
    props = _props("ball", "ball pit", "pit", "kite")

    deduped = deduplicate_props(props)

    assert list(deduped) == ["ball_pit", "kite"]


def test_deduplication_is_idempotent_and_leaves_no_equivalent_pair():
    props = _props(
        "controller",
        "PlayStation controller",
        "red wagon",
        "wagons",
        "blueberries",
        "blueberry",
        "kite",
        "sandcastle",
    )

    once = deduplicate_props(props)
    twice = deduplicate_props(once)

    assert once == twice
    for (key_a, a), (key_b, b) in itertools.combinations(once.items(), 2):
        assert not are_props_equivalent(a.name, b.name), (key_a, key_b)


def test_find_equivalent_prop():
    props = _props("PlayStation controller", "kite")

    assert find_equivalent_prop("controller", props) == "playstation_controller"
    assert find_equivalent_prop("sandcastle", props) is None
