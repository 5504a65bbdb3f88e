"""Timestamp parsing and formatting.

Notes and transcripts carry RFC 3339 timestamps. Everything is normalized
to timezone-aware UTC so comparisons across sources are safe.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

# Redaction targets are matched within this window to absorb rounding
# introduced by serializers that drop sub-second precision.
DEFAULT_MATCH_TOLERANCE = timedelta(seconds=1)

_GIT_DATE_FORMATS = (
    "%a %b %d %H:%M:%S %Y %z",
    "%Y-%m-%d %H:%M:%S %z",
)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an RFC 3339 / ISO 8601 timestamp into aware UTC.

    Returns None for empty or unparseable input. Naive values are taken
    to be UTC.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return to_utc(parsed)


def parse_git_date(value: str) -> datetime | None:
    """Parse the date formats git accepts in GIT_*_DATE and ``log`` output."""
    value = value.strip()
    if not value:
        return None
    if value.startswith("@"):
        try:
            return datetime.fromtimestamp(int(value[1:].split()[0]), UTC)
        except ValueError:
            return None
    parsed = parse_timestamp(value)
    if parsed is not None:
        return parsed
    for fmt in _GIT_DATE_FORMATS:
        try:
            return to_utc(datetime.strptime(value, fmt))
        except ValueError:
            continue
    return None


def to_utc(value: datetime) -> datetime:
    """Return ``value`` as aware UTC, assuming UTC for naive datetimes."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as RFC 3339 in UTC with a ``Z`` suffix."""
    return to_utc(value).isoformat().replace("+00:00", "Z")


def utc_now() -> datetime:
    return datetime.now(UTC)


def within_tolerance(a: datetime, b: datetime, tolerance: timedelta = DEFAULT_MATCH_TOLERANCE) -> bool:
    """True when ``a`` and ``b`` are strictly less than ``tolerance`` apart."""
    return abs(to_utc(a) - to_utc(b)) < tolerance
