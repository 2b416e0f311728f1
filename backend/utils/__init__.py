"""Shared utilities for the console backend."""

from backend.utils.logging_utils import log_action, setup_logging
from backend.utils.phone import digits_only, number_from_data_id
from backend.utils.timestamps import (
    format_local,
    now_iso,
    parse_iso,
    resolve_timezone,
    to_iso_ms,
    utc_now,
    wall_clock_to_utc,
)
from backend.utils.uuid_utils import correlation_id, record_id, short_id

__all__ = [
    "now_iso",
    "parse_iso",
    "to_iso_ms",
    "utc_now",
    "format_local",
    "resolve_timezone",
    "wall_clock_to_utc",
    "correlation_id",
    "record_id",
    "short_id",
    "digits_only",
    "number_from_data_id",
    "log_action",
    "setup_logging",
]
