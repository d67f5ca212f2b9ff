"""
Username normalization shared by every place that compares or writes
a username index key.
"""

import re
from typing import Optional

_WHITESPACE_RE = re.compile(r'\s+')
_DISALLOWED_RE = re.compile(r'[^a-zA-Z0-9_]')


def normalize_username(username: Optional[str]) -> str:
    """
    Canonical form of a username, used as the `usernames` document id.

    Trims surrounding whitespace, collapses internal whitespace runs to a
    single underscore, strips anything that is not an ASCII letter, digit or
    underscore, and lowercases the result. An empty string means the user
    has no username.

    Examples:
        "John Doe!"   -> "john_doe"
        "  a  b  "    -> "a_b"
    """
    if not isinstance(username, str) or not username:
        return ''
    cleaned = _WHITESPACE_RE.sub('_', username.strip())
    cleaned = _DISALLOWED_RE.sub('', cleaned)
    return cleaned.lower()


def fallback_username(user_id: str, prefix: str = 'User_', length: int = 6) -> str:
    """Placeholder username for users that never picked one."""
    return f"{prefix}{user_id[:length]}"
