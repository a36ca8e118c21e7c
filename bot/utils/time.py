from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta

_DURATION_RE = re.compile(r"^(\d+)\s*([smhdw])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86_400, "w": 604_800}


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso(dt: datetime | None) -> str | None:
    # Fixed-width output keeps lexical order equal to chronological order in TEXT columns.
    if dt is None:
        return None
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def parse_iso(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def parse_relative_duration(value: str) -> timedelta:
    """Parse ``30s``, ``10m``, ``2h``, ``1d`` or ``1w`` into a positive timedelta."""
    match = _DURATION_RE.match(value.strip().lower())
    if not match:
        raise ValueError("Invalid duration. Use a number followed by s, m, h, d or w.")
    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError("Duration must be greater than zero.")
    try:
        return timedelta(seconds=amount * _UNIT_SECONDS[match.group(2)])
    except OverflowError as exc:
        raise ValueError("Duration is too long.") from exc


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    for unit, size in (("w", 604_800), ("d", 86_400), ("h", 3600), ("m", 60)):
        if seconds >= size and seconds % size == 0:
            return f"{seconds // size}{unit}"
    return f"{seconds}s"
