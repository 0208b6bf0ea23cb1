from __future__ import annotations

import re
from typing import Optional

from .errors import InvalidReference

LINKED_ID_KINDS = ("email", "eip155", "flow", "did")


def normalize_email(s: str) -> str:
    s = (s or "").strip().lower()
    if "@" not in s or len(s) > 254:
        raise InvalidReference("Invalid email")
    return s


def email_linked_id(email: str) -> str:
    return f"email:{normalize_email(email)}"


def linked_id_kind(linked_id: str) -> str:
    kind = (linked_id or "").split(":", 1)[0]
    if kind not in LINKED_ID_KINDS or ":" not in linked_id:
        raise InvalidReference(f"Unsupported linked id: {linked_id!r}")
    return kind


def username_from_handle(handle: Optional[str]) -> str:
    """Local part of a handle: ``@alice.example.io`` -> ``alice``."""
    h = (handle or "").strip().lstrip("@")
    return h.split(".", 1)[0]


def search_key(s: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (s or "").strip()).lower()
