"""UUID utilities for the console.

This module provides identifiers for audit correlation, conversation
records and scheduled-message key suffixes.
"""

import time
import uuid


def correlation_id() -> str:
    """Generate a new UUID v4 correlation ID.

    Correlation IDs link an action (a delivery, a login) to its audit
    log entry.

    Examples:
        >>> cid = correlation_id()
        >>> len(cid)
        36
    """
    return str(uuid.uuid4())


def short_id() -> str:
    """Generate a short 8-character ID.

    Examples:
        >>> sid = short_id()
        >>> len(sid)
        8
    """
    return str(uuid.uuid4())[:8]


def record_id() -> str:
    """Generate a conversation record ID from the clock plus randomness.

    Examples:
        >>> rid = record_id()  # e.g. "1704110400000-1f3a9c2e"
    """
    return f"{int(time.time() * 1000)}-{short_id()}"
