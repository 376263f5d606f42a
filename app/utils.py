"""Utility helpers for the Stackr sync service."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Mapping


YEAR_RE = re.compile(r"(1[5-9]|20|21)\d{2}")

ID_PREFIXES: dict[str, str] = {
    "games": "game",
    "movies": "movie",
    "books": "book",
    "music": "music",
    "boardgames": "boardgame",
}


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime, matching stored values."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def make_item_id(domain: str, raw_id: object) -> str:
    """Return a domain-prefixed identifier such as ``game-3498``."""

    prefix = ID_PREFIXES.get(domain)
    if prefix is None:
        raise ValueError(f"Unknown content domain: {domain}")
    value = re.sub(r"\s+", "-", str(raw_id).strip())
    if not value:
        raise ValueError("Item identifiers may not be empty")
    if value.startswith(f"{prefix}-"):
        return value
    return f"{prefix}-{value}"


def extract_year(value: Any) -> int | None:
    """Pull a four digit year out of ints, ISO dates or free text."""

    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 1500 <= value <= 2199 else None
    if isinstance(value, datetime):
        return value.year
    if not value:
        return None
    match = YEAR_RE.search(str(value))
    if not match:
        return None
    return int(match.group(0))


def build_cache_key(endpoint: str, params: Mapping[str, Any] | None = None) -> str:
    """Return a stable cache key with parameters sorted by name."""

    if not params:
        return endpoint
    parts = [
        f"{key}:{str(value).strip().casefold()}"
        for key, value in sorted(params.items())
        if value is not None
    ]
    if not parts:
        return endpoint
    return f"{endpoint}?{'|'.join(parts)}"
