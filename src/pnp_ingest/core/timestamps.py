"""Source timestamp grammar and comparison.

The ticketing system sends naive ``YYYY-MM-DD HH:MM:SS`` strings that are
implicitly UTC. The pipeline re-emits every timestamp as
``YYYY-MM-DDTHH:MM:SSZ`` so stored values carry an explicit UTC indicator.
RFC 3339 input (``Z`` or a numeric offset, optional fraction) is accepted too
and converted to UTC.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta, timezone

from pnp_ingest.core.errors import BadTimestampError

CANONICAL_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_TIMESTAMP_RE = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2})[ T](?P<time>\d{2}:\d{2}:\d{2})(?:\.\d+)?"
    r"(?P<tz>Z|[+-]\d{2}(?::?\d{2})?)?$"
)


def _parse(value: str) -> datetime | None:
    match = _TIMESTAMP_RE.match(value.strip())
    if match is None:
        return None
    try:
        parsed = datetime.strptime(f"{match['date']} {match['time']}", "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None

    tz = match["tz"]
    if tz is None or tz == "Z":
        return parsed.replace(tzinfo=UTC)

    sign = -1 if tz[0] == "-" else 1
    digits = tz[1:].replace(":", "")
    hours = int(digits[:2])
    minutes = int(digits[2:4]) if len(digits) > 2 else 0
    offset = timezone(sign * timedelta(hours=hours, minutes=minutes))
    return parsed.replace(tzinfo=offset).astimezone(UTC)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a source or canonical timestamp into an aware UTC datetime.

    Returns ``None`` for ``None``, empty, non-string or unparseable input.
    """
    if not value or not isinstance(value, str):
        return None
    return _parse(value)


def normalize_timestamp(value: str, *, field_name: str = "timestamp") -> str:
    """Validate a source timestamp and return it in canonical UTC form.

    Raises:
        BadTimestampError: if *value* does not match the grammar.
    """
    if not isinstance(value, str):
        raise BadTimestampError(field_name, value)
    parsed = _parse(value)
    if parsed is None:
        raise BadTimestampError(field_name, value)
    return format_timestamp(parsed)


def format_timestamp(value: datetime) -> str:
    """Render a datetime in canonical form. Naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime(CANONICAL_FORMAT)


def to_naive_utc(value: str | None) -> datetime | None:
    """Canonical string to the naive UTC datetime stored in the database."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.replace(tzinfo=None)


def from_naive_utc(value: datetime | None) -> str | None:
    if value is None:
        return None
    return format_timestamp(value)


def compare_times(new: str | None, existing: str | None) -> int:
    """Compare two timestamps.

    Returns 1 if *new* is later, 0 if equal, -1 if earlier. A missing or
    unparseable *existing* counts as older than any valid *new*; a missing or
    unparseable *new* never counts as later than anything.
    """
    new_dt = parse_timestamp(new)
    existing_dt = parse_timestamp(existing)

    if new_dt is None and existing_dt is None:
        return 0
    if existing_dt is None:
        return 1
    if new_dt is None:
        return -1
    if new_dt > existing_dt:
        return 1
    if new_dt < existing_dt:
        return -1
    return 0


def minutes_between(start: str | None, end: str | None) -> int | None:
    """Whole minutes from *start* to *end*, or ``None`` if either is unusable."""
    start_dt = parse_timestamp(start)
    end_dt = parse_timestamp(end)
    if start_dt is None or end_dt is None:
        return None
    return int((end_dt - start_dt).total_seconds() // 60)


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)
