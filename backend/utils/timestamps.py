"""ISO 8601 timestamp utilities for the console.

This module provides consistent timestamp formatting for conversation
records, scheduled messages and audit log entries, plus the zone handling
used to turn a scheduled wall-clock date/time into a UTC instant.
"""

import re
from datetime import UTC, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# "+HH:MM" / "-HH:MM" / "UTC-3" style fixed offsets
OFFSET_PATTERN = re.compile(r"^(?:UTC|GMT)?\s*([+-])(\d{1,2})(?::?(\d{2}))?$", re.IGNORECASE)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_PATTERN = re.compile(r"^\d{1,2}:\d{2}$")


def utc_now() -> datetime:
    """Get the current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def now_iso() -> str:
    """Get the current UTC timestamp in ISO 8601 format.

    Returns:
        Current timestamp as ISO 8601 string (YYYY-MM-DDTHH:MM:SSZ).

    Examples:
        >>> ts = now_iso()
        >>> ts  # e.g., "2025-02-04T14:30:22Z"
    """
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def to_iso_ms(moment: datetime) -> str:
    """Format a datetime as a millisecond-precision UTC ISO string.

    Matches the ``YYYY-MM-DDTHH:MM:SS.mmmZ`` shape browsers produce, which is
    what the dashboard sorts and displays.

    Examples:
        >>> to_iso_ms(datetime(2024, 1, 1, 12, 0, tzinfo=UTC))
        '2024-01-01T12:00:00.000Z'
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(timestamp: str) -> datetime:
    """Parse an ISO 8601 timestamp string to a datetime object.

    Handles both 'Z' suffix and '+00:00' timezone formats.

    Args:
        timestamp: ISO 8601 formatted timestamp string.

    Returns:
        Timezone-aware datetime object in UTC.

    Raises:
        ValueError: If the timestamp format is invalid.

    Examples:
        >>> dt = parse_iso("2025-02-04T14:30:22Z")
        >>> dt.year
        2025
    """
    # Normalize timezone suffix
    normalized = timestamp.replace("Z", "+00:00")

    # Handle case where there's no timezone
    if "+" not in normalized and "-" not in normalized[10:]:
        normalized = normalized + "+00:00"

    return datetime.fromisoformat(normalized)


def today_iso() -> str:
    """Get today's date in ISO format (YYYY-MM-DD).

    Useful for daily log file naming.

    Examples:
        >>> date = today_iso()
        >>> date  # e.g., "2025-02-04"
    """
    return datetime.now(UTC).strftime("%Y-%m-%d")


def resolve_timezone(name: str) -> tzinfo:
    """Turn a configured zone into a tzinfo.

    Accepts fixed offsets (``-03:00``, ``+0530``, ``UTC-3``), ``UTC`` and IANA
    names (``America/Sao_Paulo``).

    Raises:
        ValueError: If the zone cannot be resolved.

    Examples:
        >>> resolve_timezone("-03:00").utcoffset(None)
        datetime.timedelta(days=-1, seconds=75600)
    """
    value = (name or "").strip()
    if not value or value.upper() in ("UTC", "Z", "GMT"):
        return UTC

    match = OFFSET_PATTERN.match(value)
    if match:
        sign, hours, minutes = match.groups()
        delta = timedelta(hours=int(hours), minutes=int(minutes or 0))
        if delta >= timedelta(hours=24):
            raise ValueError(f"Offset out of range: {name}")
        return timezone(-delta if sign == "-" else delta)

    try:
        return ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


def wall_clock_to_utc(date: str, time: str, zone: tzinfo) -> datetime | None:
    """Interpret a ``YYYY-MM-DD`` date and ``HH:MM`` time in ``zone``.

    Returns:
        The matching instant in UTC, or None when either part is malformed.

    Examples:
        >>> wall_clock_to_utc("2024-01-01", "09:00", resolve_timezone("-03:00"))
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if not date or not time:
        return None
    if not DATE_PATTERN.match(date.strip()) or not TIME_PATTERN.match(time.strip()):
        return None
    try:
        local = datetime.strptime(f"{date.strip()} {time.strip()}", "%Y-%m-%d %H:%M")
    except ValueError:
        return None
    return local.replace(tzinfo=zone).astimezone(UTC)


def format_local(moment: datetime, zone: tzinfo) -> str:
    """Format an instant for display as ``DD/MM/YYYY HH:MM:SS`` in ``zone``."""
    return moment.astimezone(zone).strftime("%d/%m/%Y %H:%M:%S")
