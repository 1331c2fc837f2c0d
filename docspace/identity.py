"""User identity and identifier normalisation shared by space services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .core import strip_table_prefix

UNKNOWN_EMAIL = "unknown@example.com"


@dataclass
class User:
    """An authenticated user."""

    id: str
    email: str = UNKNOWN_EMAIL
    display_name: Optional[str] = None


def clean_user_id_format(user_id: str) -> str:
    """Drop surrounding whitespace and a ``user:`` prefix, keeping ⟨⟩ brackets."""
    cleaned = user_id.strip()
    if cleaned.startswith("user:"):
        cleaned = cleaned[len("user:"):]
    return cleaned.strip()


def strip_space_prefix(space_id: str) -> str:
    """Remove a leading ``space:`` from a space identifier."""
    return strip_table_prefix(space_id, "space")


_NESTED_OPEN = "⟨⟨space:"
_NESTED_CLOSE = "⟩⟩"


def extract_space_id(raw_space_id: str) -> str:
    """Bare space key, unwrapping nested forms such as ``space:⟨⟨space:key⟩⟩``."""
    start = raw_space_id.find(_NESTED_OPEN)
    if start != -1:
        rest = raw_space_id[start + len(_NESTED_OPEN):]
        end = rest.find(_NESTED_CLOSE)
        return rest[:end] if end != -1 else raw_space_id
    return strip_space_prefix(raw_space_id)


def inviter_display_name(user: User) -> str:
    """Display name, else a real e-mail address, else the user id."""
    if user.display_name:
        return user.display_name
    if user.email != UNKNOWN_EMAIL:
        return user.email
    return user.id