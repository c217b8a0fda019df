"""Username normalization and format rules.

Usernames are trimmed but never case-folded: the remote canonical form is
case-sensitive and is what gets stored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 30
_USERNAME_RE = re.compile(r"[A-Za-z0-9_-]+")


@dataclass(frozen=True)
class FormatCheck:
    valid: bool
    error: Optional[str] = None


def normalize_username(username: str) -> str:
    return (username or "").strip()


def validate_username_format(username: str) -> FormatCheck:
    if not username:
        return FormatCheck(False, "Username cannot be empty")
    if len(username) < MIN_USERNAME_LENGTH:
        return FormatCheck(False, f"Username too short (min {MIN_USERNAME_LENGTH} characters)")
    if len(username) > MAX_USERNAME_LENGTH:
        return FormatCheck(False, f"Username too long (max {MAX_USERNAME_LENGTH} characters)")
    if not _USERNAME_RE.fullmatch(username):
        return FormatCheck(
            False,
            "Username contains invalid characters (only letters, numbers, _ and - allowed)",
        )
    return FormatCheck(True)
