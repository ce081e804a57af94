"""Name handling: filename slugs, display-name validation and tag names."""

from __future__ import annotations

import re
from collections.abc import Iterable

from pluqqy.errors import ValidationError

MAX_NAME_LENGTH = 100
MAX_TAG_LENGTH = 50

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_ONLY_SPECIAL = re.compile(r"^[^a-zA-Z0-9\s\-_#]+$")
_TAG_ALLOWED_INPUT = re.compile(r"^[a-zA-Z0-9 \-/]+$")
_TAG_DISALLOWED = re.compile(r"[^a-z0-9\-/]")

TAG_PALETTE = [
    "#e74c3c",
    "#3498db",
    "#2ecc71",
    "#f39c12",
    "#9b59b6",
    "#1abc9c",
    "#34495e",
    "#e67e22",
    "#16a085",
    "#8e44ad",
    "#f1c40f",
    "#d35400",
    "#27ae60",
    "#2980b9",
    "#c0392b",
]


def slugify(name: str) -> str:
    """Lowercase, collapse runs of non-alphanumerics to ``-``; never empty."""
    slug = _NON_ALNUM.sub("-", name.lower()).strip("-")
    return slug or "unnamed"


def validate_display_name(name: str) -> str:
    """Return the trimmed name or raise ValidationError."""
    trimmed = name.strip()
    if not trimmed:
        raise ValidationError("name cannot be empty")
    if len(trimmed) > MAX_NAME_LENGTH:
        raise ValidationError(f"name too long (max {MAX_NAME_LENGTH} characters)")
    if _ONLY_SPECIAL.match(trimmed):
        raise ValidationError("name must contain at least one letter or number")
    return trimmed


def normalize_tag(name: str) -> str:
    """Canonical tag form: lowercase, dashes for spaces, ``[a-z0-9-/]`` only."""
    tag = name.strip().lower().replace(" ", "-")
    return _TAG_DISALLOWED.sub("", tag)


def validate_tag(name: str) -> str:
    """Validate user input for a tag and return its normalized form."""
    trimmed = name.strip()
    if not trimmed:
        raise ValidationError("tag name cannot be empty")
    if len(trimmed) > MAX_TAG_LENGTH:
        raise ValidationError(f"tag name too long (max {MAX_TAG_LENGTH} characters)")
    if not _TAG_ALLOWED_INPUT.match(trimmed):
        raise ValidationError(
            "tag name can only contain letters, numbers, spaces, hyphens and slashes"
        )
    normalized = normalize_tag(trimmed)
    if not normalized.strip("-/"):
        raise ValidationError(f"invalid tag name: {name!r}")
    return normalized


def dedupe_tags(tags: Iterable[str]) -> list[str]:
    """Normalize and dedupe, keeping first-seen order and dropping empties."""
    seen: dict[str, None] = {}
    for tag in tags:
        normalized = normalize_tag(tag)
        if normalized:
            seen.setdefault(normalized, None)
    return list(seen)


def _fnv1a_32(data: bytes) -> int:
    h = 0x811C9DC5
    for byte in data:
        h ^= byte
        h = (h * 0x01000193) & 0xFFFFFFFF
    return h


def tag_color(name: str) -> str:
    """Deterministic palette color for a tag."""
    return TAG_PALETTE[_fnv1a_32(name.lower().encode("utf-8")) % len(TAG_PALETTE)]
