"""
Structured representation of the caretaker's description of the child.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping


def _coerce_optional_str(value: Any) -> str | None:
    if value is None:
        return None

    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class KidProfile:
    """
    Canonical representation of the personalized kid inputs.

    Attributes
    ----------
    name:
        Child's primary name (required).
    interests:
        Free-form description supplied by the caretaker: interests, pets, family,
        favourite things. Treated as authoritative for concrete details such as a
        pet's breed, name, or colors.
    age_range:
        Reading age the story should target.
    """

    name: str
    interests: str | None = None
    age_range: str = "4-7"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "KidProfile":
        """
        Build a profile from a dict-like object (e.g., parsed JSON/YAML or a project row).
        """
        name = data.get("name") or data.get("kid_name")
        if not name or not str(name).strip():
            raise ValueError("Profile data must include a non-empty 'name' field.")

        return cls(
            name=str(name).strip(),
            interests=_coerce_optional_str(
                data.get("interests") or data.get("kid_interests") or data.get("description")
            ),
            age_range=_coerce_optional_str(data.get("age_range")) or "4-7",
        )

    def context_bullets(self) -> list[str]:
        """
        Produce bullet-friendly lines describing the child, for prompt conditioning.
        """
        bullets = [f"Name: {self.name}"]
        bullets.append(f"Interests and details: {self.interests or 'not specified'}")
        bullets.append(f"Age: assume {self.age_range} years old")
        return bullets

    def summary_for_prompt(self) -> str:
        """
        Format the profile as a readable block suitable for LLM prompting.
        """
        return "\n".join(f"- {line}" for line in self.context_bullets())
