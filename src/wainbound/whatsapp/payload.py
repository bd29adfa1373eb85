"""Helpers for reading untrusted, loosely-shaped webhook payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from wainbound.infra.time import date_stamp

# Timestamps above this are milliseconds (year 2001 in ms, year 33658 in s)
_MILLIS_THRESHOLD = 10**12


def dig(data: Any, *path: str | int, default: Any = None) -> Any:
    """Follow keys/indexes into nested dicts and lists, None-safe.

    >>> dig({"a": {"b": [{"c": 1}]}}, "a", "b", 0, "c")
    1
    """
    current = data
    for step in path:
        if isinstance(current, dict):
            current = current.get(step)
        elif isinstance(current, list) and isinstance(step, int):
            current = current[step] if -len(current) <= step < len(current) else None
        else:
            return default
        if current is None:
            return default
    return current


def present(value: Any) -> Any:
    """Return value unless it is None, empty or whitespace-only."""
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    if isinstance(value, (dict, list, tuple)) and not value:
        return None
    return value


def as_str(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def to_epoch_seconds(value: Any) -> int | None:
    """Normalize a provider timestamp to epoch seconds.

    Accepts ints, floats, numeric strings and protobuf Long objects
    ({"low": ..., "high": ...}). Millisecond values are divided down.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dict):
        low = value.get("low")
        high = value.get("high") or 0
        if low is None:
            return None
        try:
            value = (int(high) << 32) | (int(low) & 0xFFFFFFFF)
        except (TypeError, ValueError):
            return None
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return None
    if number >= _MILLIS_THRESHOLD:
        number //= 1000
    return number


def mimetype_extension(mimetype: str | None) -> str | None:
    """'audio/ogg; codecs=opus' -> 'ogg'."""
    if not mimetype:
        return None
    subtype = mimetype.split(";")[0].split("/")[-1].strip()
    return subtype or None


def synthesize_filename(
    content_type: str,
    source_id: str,
    mimetype: str | None,
    moment: datetime | None = None,
) -> str:
    """Build '{content_type}_{source_id}_{YYYYMMDD}.{ext}' for unnamed media."""
    ext = mimetype_extension(mimetype)
    name = f"{content_type}_{source_id}_{date_stamp(moment)}"
    return f"{name}.{ext}" if ext else name
