"""Bounded conversation log persisted as a single JSON document.

Newest records are prepended; the document never holds more than
``max_records`` entries. Every operation is a whole-document
read-modify-write under the store lock.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from datetime import UTC, datetime, tzinfo
from enum import Enum
from pathlib import Path
from typing import Any

from backend.errors import StoreIOError
from backend.utils.phone import digits_only
from backend.utils.timestamps import format_local, parse_iso, to_iso_ms, utc_now
from backend.utils.uuid_utils import record_id

logger = logging.getLogger(__name__)

MAX_RECORDS = 2000
DEFAULT_QUERY_LIMIT = 100

_OLDEST = datetime.min.replace(tzinfo=UTC)


class Author(str, Enum):
    USER = "user"
    BOT = "bot"


class Direction(str, Enum):
    RECEIVED = "received"
    SENT = "sent"


ORIGIN_LABELS = {Author.USER: "👤 User", Author.BOT: "🤖 Bot"}

QUERY_MODES = {"all": None, "received": Direction.RECEIVED, "sent": Direction.SENT}


@dataclass(frozen=True)
class ConversationRecord:
    id: str
    phone_number: str
    text: str
    author: Author
    direction: Direction
    timestamp: str
    timestamp_local: str
    origin: str

    def to_dict(self) -> dict[str, str]:
        return {
            "id": self.id,
            "phoneNumber": self.phone_number,
            "text": self.text,
            "author": self.author.value,
            "direction": self.direction.value,
            "timestampISO": self.timestamp,
            "timestampLocal": self.timestamp_local,
            "originLabel": self.origin,
        }


def _sort_key(item: dict[str, Any]) -> datetime:
    try:
        return parse_iso(str(item.get("timestampISO", "")))
    except ValueError:
        return _OLDEST


def parse_limit(value: Any, default: int = DEFAULT_QUERY_LIMIT) -> int:
    """Coerce a client-supplied limit; anything non-positive falls back to ``default``."""
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return default
    return limit if limit > 0 else default


class ConversationLog:
    """Append/query/clear over ``conversations.json``."""

    def __init__(
        self,
        path: str | Path,
        max_records: int = MAX_RECORDS,
        display_zone: tzinfo = UTC,
    ) -> None:
        self.path = Path(path)
        self.max_records = max_records
        self.display_zone = display_zone
        self._lock = threading.RLock()

    # ── File access ─────────────────────────────────────────────────

    def ensure_exists(self) -> None:
        with self._lock:
            if not self.path.exists():
                self._write([])
                logger.info("Created conversation log: %s", self.path)

    def _read(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StoreIOError(f"Cannot read conversation log {self.path}: {exc}") from exc
        if not isinstance(data, list):
            raise StoreIOError(f"Conversation log {self.path} is not a JSON list")
        records = [item for item in data if isinstance(item, dict)]
        if len(records) != len(data):
            logger.warning("Ignoring %d non-object entries in %s", len(data) - len(records), self.path)
        return records

    def _write(self, records: list[dict[str, Any]]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(
                json.dumps(records, indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
            os.replace(tmp_path, self.path)
        except OSError as exc:
            raise StoreIOError(f"Cannot write conversation log {self.path}: {exc}") from exc

    # ── Operations ──────────────────────────────────────────────────

    def append(
        self,
        phone_number: str,
        text: str,
        author: Author,
        direction: Direction,
        now: datetime | None = None,
    ) -> ConversationRecord:
        """Prepend a record and trim the log to ``max_records``."""
        moment = now or utc_now()
        author = Author(author)
        record = ConversationRecord(
            id=record_id(),
            phone_number=digits_only(phone_number),
            text=text,
            author=author,
            direction=Direction(direction),
            timestamp=to_iso_ms(moment),
            timestamp_local=format_local(moment, self.display_zone),
            origin=ORIGIN_LABELS[author],
        )

        with self._lock:
            records = self._read()
            records.insert(0, record.to_dict())
            del records[self.max_records :]
            self._write(records)

        logger.info("Conversation saved: %s -> %s", author.value, record.phone_number)
        return record

    def query(
        self,
        limit: Any = DEFAULT_QUERY_LIMIT,
        number_filter: str | None = "",
        mode: str | None = "all",
    ) -> list[dict[str, Any]]:
        """Return up to ``limit`` records, newest first.

        Args:
            limit: Maximum number of records.
            number_filter: Substring matched against the phone number.
            mode: ``all``, ``received`` or ``sent``; unknown modes mean ``all``.
        """
        limit = parse_limit(limit)
        needle = str(number_filter or "").strip()
        direction = QUERY_MODES.get((mode or "all").lower())

        with self._lock:
            records = self._read()

        if needle:
            records = [r for r in records if needle in str(r.get("phoneNumber") or "")]
        if direction is not None:
            records = [r for r in records if r.get("direction") == direction.value]

        records.sort(key=_sort_key, reverse=True)
        return records[:limit]

    def clear(self) -> None:
        with self._lock:
            self._write([])
        logger.info("Conversation log cleared")
