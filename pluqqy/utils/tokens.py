"""Token estimation for composed output.

A fixed characters-per-token ratio, monotone in text length.
"""

from __future__ import annotations

import math
from enum import Enum

CHARS_PER_TOKEN = 4

GOOD_THRESHOLD = 10_000
WARNING_THRESHOLD = 50_000


class TokenStatus(str, Enum):
    GOOD = "good"
    WARNING = "warning"
    DANGER = "danger"


def estimate_tokens(text: str) -> int:
    """Estimate the token count of ``text``."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def token_status(count: int) -> TokenStatus:
    if count < GOOD_THRESHOLD:
        return TokenStatus.GOOD
    if count < WARNING_THRESHOLD:
        return TokenStatus.WARNING
    return TokenStatus.DANGER


def format_token_count(count: int) -> str:
    """Human readable count, e.g. ``~850 tokens`` or ``~12.5K tokens``."""
    if count < 1000:
        return f"~{count} tokens"
    if count < 10_000:
        return f"~{count / 1000:.1f}K tokens"
    return f"~{count // 1000}K tokens"
