"""
Prop deduplication.

Two prop names are equivalent when, after lowercase-trim normalization, any of these
hold:

1. they are equal;
2. one contains the other;
3. after dropping leading articles and color/size/age modifiers, the stripped forms
   are equal or one contains the other;
4. their naive singular forms (``-ies -> -y``, ``-es -> ''``, ``-s -> ''``) are equal.

Grouping is transitive. Each class keeps one survivor: the entry with a reference
image, otherwise the one with the longest name (earliest on ties). The survivor
keeps its own key and body; the other bodies are dropped.
"""

from __future__ import annotations

from typing import Mapping, Sequence

from picturebook.models import Prop

_ARTICLES = frozenset({"the", "a", "an"})

_MODIFIERS = frozenset(
    {
        # colors
        "red", "orange", "yellow", "green", "blue", "purple", "pink", "brown",
        "black", "white", "gray", "grey", "golden", "gold", "silver", "tan",
        "beige", "rainbow", "colorful", "colourful", "bright", "dark", "light",
        # size
        "big", "small", "little", "large", "tiny", "huge", "giant", "mini",
        "medium", "tall", "short", "long",
        # age
        "old", "new", "young", "shiny", "worn", "ancient", "brand-new",
    }
)


def normalize_prop_name(name: str | None) -> str:
    if not name:
        return ""
    return " ".join(str(name).strip().lower().replace("_", " ").split())


def strip_modifiers(name: str) -> str:
    words = name.split()
    while words and words[0] in _ARTICLES:
        words = words[1:]
    kept = [word for word in words if word not in _MODIFIERS]
    return " ".join(kept) or " ".join(words) or name


def naive_singular(name: str) -> str:
    if name.endswith("ies") and len(name) > 3:
        return name[:-3] + "y"
    if name.endswith("es") and len(name) > 2:
        return name[:-2]
    if name.endswith("s") and len(name) > 1:
        return name[:-1]
    return name


def _contains(first: str, second: str) -> bool:
    return bool(first) and bool(second) and (first in second or second in first)


def are_props_equivalent(first: str | None, second: str | None) -> bool:
    left = normalize_prop_name(first)
    right = normalize_prop_name(second)
    if not left or not right:
        return False

    if left == right or _contains(left, right):
        return True

    stripped_left = strip_modifiers(left)
    stripped_right = strip_modifiers(right)
    if stripped_left == stripped_right or _contains(stripped_left, stripped_right):
        return True

    return naive_singular(stripped_left) == naive_singular(stripped_right)


def prop_display_name(key: str, prop: Prop) -> str:
    return prop.name or key.replace("_", " ")


def _find(parents: list[int], index: int) -> int:
    while parents[index] != index:
        parents[index] = parents[parents[index]]
        index = parents[index]
    return index


def group_equivalent_props(props: Mapping[str, Prop]) -> list[list[str]]:
    """Return the equivalence classes of ``props`` as lists of keys in input order."""
    keys = list(props)
    names = [prop_display_name(key, props[key]) for key in keys]
    parents = list(range(len(keys)))

    for i in range(len(keys)):
        for j in range(i + 1, len(keys)):
            if are_props_equivalent(names[i], names[j]):
                root_i, root_j = _find(parents, i), _find(parents, j)
                if root_i != root_j:
                    parents[max(root_i, root_j)] = min(root_i, root_j)

    classes: dict[int, list[str]] = {}
    for index, key in enumerate(keys):
        classes.setdefault(_find(parents, index), []).append(key)
    return list(classes.values())


def _choose_survivor(keys: Sequence[str], props: Mapping[str, Prop]) -> str:
    def rank(item: tuple[int, str]) -> tuple[bool, int, int]:
        position, key = item
        prop = props[key]
        return (bool(prop.reference_image_url), len(prop_display_name(key, prop)), -position)

    return max(enumerate(keys), key=rank)[1]


def deduplicate_props(props: Mapping[str, Prop]) -> dict[str, Prop]:
    """
    Collapse equivalent props into one survivor per class.

    Applying it twice gives the same result as applying it once.
    """
    survivors = {
        _choose_survivor(keys, props)
        for keys in group_equivalent_props(props)
    }
    return {key: prop for key, prop in props.items() if key in survivors}


def find_equivalent_prop(name: str, props: Mapping[str, Prop]) -> str | None:
    """Return the key of an existing prop equivalent to ``name``, if any."""
    for key, prop in props.items():
        if are_props_equivalent(name, prop_display_name(key, prop)):
            return key
    return None
