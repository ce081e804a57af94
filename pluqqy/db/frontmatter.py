"""YAML front-matter and heading helpers for component markdown."""

from __future__ import annotations

import posixpath
import re
from typing import Any

import yaml

from pluqqy.errors import Malformed

DELIMITER = "---\n"
_CLOSING = "\n---\n"

HEADING_PATTERN = re.compile(r"^# (.+?)[ \t]*$", re.MULTILINE)


def split_front_matter(text: str, source: str = "<component>") -> tuple[dict[str, Any], str]:
    """Split ``text`` into (front-matter mapping, body).

    Text without an opening delimiter, or whose block never closes, has no
    front-matter and is returned whole as the body.
    """
    if not text.startswith(DELIMITER):
        return {}, text

    rest = text[len(DELIMITER):]
    if rest.startswith(DELIMITER):
        return {}, rest[len(DELIMITER):]

    end = rest.find(_CLOSING)
    if end == -1:
        if rest.endswith("\n---"):
            block, body = rest[: -len("\n---")], ""
        else:
            return {}, text
    else:
        block, body = rest[:end], rest[end + len(_CLOSING):]

    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError as e:
        raise Malformed(source, f"invalid front-matter: {e}") from e
    if data is None:
        return {}, body
    if not isinstance(data, dict):
        raise Malformed(source, "front-matter must be a mapping")
    return data, body


def join_front_matter(front_matter: dict[str, Any], body: str) -> str:
    """Inverse of :func:`split_front_matter`; no block is written for an empty mapping."""
    if not front_matter:
        return body
    block = yaml.safe_dump(
        front_matter, sort_keys=False, allow_unicode=True, default_flow_style=False
    )
    return f"{DELIMITER}{block}{DELIMITER}{body}"


def first_heading(body: str) -> str | None:
    match = HEADING_PATTERN.search(body)
    return match.group(1).strip() if match else None


def replace_first_heading(body: str, title: str) -> tuple[str, bool]:
    """Replace the first level-one heading; returns (body, replaced)."""
    new_body, count = HEADING_PATTERN.subn(lambda _m: f"# {title}", body, count=1)
    return new_body, bool(count)


def title_from_filename(filename: str) -> str:
    """``api-design_notes.md`` -> ``Api Design Notes``."""
    stem = posixpath.splitext(posixpath.basename(filename))[0]
    words = [w for w in re.split(r"[-_]+", stem) if w]
    return " ".join(w[:1].upper() + w[1:] for w in words)


def display_name(front_matter: dict[str, Any], body: str, filename: str) -> str:
    """Explicit ``name`` key, else the first heading, else the title-cased filename."""
    name = front_matter.get("name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    return first_heading(body) or title_from_filename(filename)


def normalize_tag_list(value: Any) -> list[str]:
    """Front-matter ``tags`` may be a list or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, str):
        return [t.strip() for t in value.split(",") if t.strip()]
    if isinstance(value, list):
        return [str(t).strip() for t in value if str(t).strip()]
    return [str(value)]
