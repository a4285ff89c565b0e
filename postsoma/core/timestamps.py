from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_now() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def from_unix(seconds: int | float | None) -> str:
    if seconds is None:
        return iso_now()
    return format_timestamp(datetime.fromtimestamp(seconds, tz=timezone.utc))


def parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def latest(current: str | None, candidate: str) -> str:
    """Return whichever timestamp is later, preferring ``candidate`` on ties or parse failures."""
    current_dt = parse_timestamp(current)
    candidate_dt = parse_timestamp(candidate)
    if current_dt is not None and candidate_dt is not None and current_dt > candidate_dt:
        return current  # type: ignore[return-value]
    return candidate
