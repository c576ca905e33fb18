"""
Dowser
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {
    "h": timedelta(hours=1),
    "m": timedelta(minutes=1),
    "s": timedelta(seconds=1),
    "ms": timedelta(milliseconds=1),
}


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an RFC3339 timestamp into an aware UTC datetime.

    Accepts a trailing Z and fractional seconds of any precision (Prow emits
    nanoseconds, which fromisoformat cannot take on older interpreters).
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid timestamp: {value!r}")
    raw = value.strip()
    if raw.endswith("Z") or raw.endswith("z"):
        raw = f"{raw[:-1]}+00:00"
    match = re.match(r"^(.*T\d{2}:\d{2}:\d{2})\.(\d+)(.*)$", raw)
    if match:
        raw = f"{match.group(1)}.{match.group(2)[:6].ljust(6, '0')}{match.group(3)}"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Return UTC as ISO-8601 with trailing Z and seconds precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    current = value.astimezone(timezone.utc).replace(microsecond=0)
    return current.isoformat().replace("+00:00", "Z")


def from_unix_seconds(value: int | float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def parse_duration(value: str) -> timedelta:
    """Parse Go-style durations such as ``24h``, ``1h30m``, ``90s`` or ``0``."""
    raw = (value or "").strip().lower()
    if raw in ("0", "0s"):
        return timedelta(0)
    if not raw:
        raise ValueError("Invalid duration: empty value")
    pos = 0
    total = timedelta(0)
    for match in _DURATION_PART.finditer(raw):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(raw):
        raise ValueError(f"Invalid duration: {value!r} (expected e.g. 24h, 90m, 1h30m)")
    return total
