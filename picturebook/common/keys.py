"""
Key normalization used at every registry boundary.
"""

from __future__ import annotations

import re
from typing import Any

_NON_KEY_CHARS = re.compile(r"[^a-z0-9]+")


def normalize_key(value: Any) -> str:
    """
    Turn a display name into a stable registry key.

    Lowercases, trims, collapses each run of characters outside ``[a-z0-9]`` into a
    single underscore and strips underscores from both ends. ``"Grandpa Joe's Dog"``
    becomes ``"grandpa_joe_s_dog"``. Returns ``""`` for ``None`` or blank input.
    """
    if value is None:
        return ""
    text = str(value).strip().lower()
    return _NON_KEY_CHARS.sub("_", text).strip("_")


def strip_query(url: str | None) -> str:
    """Drop the query string (cache busters) from a URL for comparisons."""
    if not url:
        return ""
    return str(url).split("?", 1)[0]
