"""Tag cleaning shared by the IMAP providers."""
from __future__ import annotations

import re
from typing import Dict

SYSTEM_FLAGS: Dict[str, str] = {
    "seen": "\\Seen",
    "answered": "\\Answered",
    "flagged": "\\Flagged",
    "draft": "\\Draft",
    "deleted": "\\Deleted",
}

# Flags the server owns; they never become tags.
IGNORED_FLAGS = frozenset({"\\recent"})

_GMAIL_PREFIX = "[gmail]/"
_WHITESPACE = re.compile(r"\s+")
_INVALID = re.compile(r"[^a-z0-9_-]")


def clean_tag(name: str, max_length: int = 20) -> str:
    """Normalise a folder name, flag or label into a tag.

    Drops a leading backslash and ``[Gmail]/`` prefix, lowercases, turns
    whitespace runs into ``-``, removes anything outside ``[a-z0-9_-]`` and
    truncates to ``max_length``. Ignored flags and blank input yield ``""``.
    """

    value = (name or "").strip().lower()
    if not value or value in IGNORED_FLAGS:
        return ""
    value = value.lstrip("\\")
    if value.startswith(_GMAIL_PREFIX):
        value = value[len(_GMAIL_PREFIX):]
    value = _WHITESPACE.sub("-", value)
    value = _INVALID.sub("", value)
    return value[:max_length]


def flag_for_tag(tag: str) -> str:
    return SYSTEM_FLAGS.get((tag or "").strip().lower(), "")
