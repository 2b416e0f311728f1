"""Logging setup and audit logging utilities for the console.

``setup_logging`` configures the process-wide log format once. ``log_action``
writes JSON-formatted audit entries (logins, deliveries, deletions) to daily
files under the data directory's ``logs`` folder.
"""

import json
import logging
import os
import sys
import threading
from pathlib import Path
from typing import Any

from backend.utils.timestamps import today_iso

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

_audit_lock = threading.Lock()


def setup_logging(level: str | None = None) -> None:
    """Configure root logging from ``level`` or the ``LOG_LEVEL`` env var."""
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def log_action(log_dir: str | Path, entry: dict[str, Any]) -> None:
    """Append an action entry to today's log file.

    Creates the log file if it doesn't exist. Each log file contains
    a JSON object with a "date" field and an "entries" array.

    Args:
        log_dir: Path to the log directory (e.g., data/logs/actions).
        entry: Dictionary containing the log entry fields.
            Required: timestamp, correlation_id, actor, action_type, target, result
            Optional: parameters, error

    Examples:
        >>> log_action("data/logs/actions", {
        ...     "timestamp": "2025-02-04T14:30:22Z",
        ...     "correlation_id": "abc-123",
        ...     "actor": "scheduler",
        ...     "action_type": "scheduled_delivery",
        ...     "target": "2025-02-04_09-00_5511999999999.txt",
        ...     "result": "success"
        ... })
    """
    log_path = Path(log_dir)

    with _audit_lock:
        log_path.mkdir(parents=True, exist_ok=True)

        date = today_iso()
        log_file = log_path / f"{date}.json"

        data: dict[str, Any] = {"date": date, "entries": []}
        if log_file.exists():
            try:
                data = json.loads(log_file.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                logging.getLogger(__name__).warning(
                    "Corrupted audit log %s, starting a new one", log_file
                )

        data.setdefault("entries", []).append(entry)

        tmp_file = log_file.with_suffix(".json.tmp")
        tmp_file.write_text(
            json.dumps(data, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        os.replace(tmp_file, log_file)
