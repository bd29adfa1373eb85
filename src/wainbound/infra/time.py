"""Time utilities for consistent timestamp handling."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def date_stamp(moment: datetime | None = None) -> str:
    """Return the YYYYMMDD stamp used in synthesized attachment names."""
    return (moment or utc_now()).strftime("%Y%m%d")
