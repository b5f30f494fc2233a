"""Repository tag descriptions attached to commits."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

_FIELDS = (
    ("name", "tag_name"),
    ("channel", "tag_channel"),
    ("description", "tag_description"),
)


@dataclass(frozen=True)
class RepositoryTag:
    """A named tag of a repository revision."""

    name: str = ""
    channel: str = ""
    description: str = ""

    def to_dict(self) -> dict[str, str]:
        """Return the tag in its wire form."""
        return {key: getattr(self, attr) for attr, key in _FIELDS}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RepositoryTag":
        """Build a tag from its wire form; missing fields are empty."""
        values = {}
        for attr, key in _FIELDS:
            value = data.get(key, "")
            if value is None:
                value = ""
            if not isinstance(value, str):
                raise TypeError(f"{key} must be a string, got {type(value).__name__}")
            values[attr] = value
        return cls(**values)