"""File-backed store for scheduled outbound messages.

Each message is one ``key=value`` text file named
``{date}_{HH-MM}_{recipient}.txt``. Records are parsed into a
``ScheduledMessage`` and written back whole; status changes never edit the
file text in place.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime, tzinfo
from enum import Enum
from pathlib import Path
from typing import Any

from backend.errors import StoreIOError
from backend.utils.phone import digits_only
from backend.utils.timestamps import (
    DATE_PATTERN,
    TIME_PATTERN,
    to_iso_ms,
    utc_now,
    wall_clock_to_utc,
)
from backend.utils.uuid_utils import short_id

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".txt"
KNOWN_FIELDS = ("recipient", "date", "time", "body", "status", "created", "sent_at")

# Records written by the older dashboard backend
LEGACY_FIELDS = {"numero": "recipient", "data": "date", "hora": "time", "mensagem": "body", "criado": "created"}
LEGACY_STATUSES = {"pendente": "pending", "enviado": "sent"}

_FAR_FUTURE = datetime.max.replace(tzinfo=UTC)


class ScheduleStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\r", "\\r").replace("\n", "\\n")


def _unescape(value: str) -> str:
    out: list[str] = []
    chars = iter(value)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(chars, "")
        out.append({"n": "\n", "r": "\r", "\\": "\\"}.get(nxt, "\\" + nxt))
    return "".join(out)


def parse_record_text(text: str) -> dict[str, str]:
    """Parse ``key=value`` lines; lines without ``=`` are ignored."""
    fields: dict[str, str] = {}
    for line in text.splitlines():
        idx = line.find("=")
        if idx < 0:
            continue
        key = line[:idx].strip()
        if key:
            fields[key] = _unescape(line[idx + 1 :].strip())
    return fields


@dataclass
class ScheduledMessage:
    key: str
    recipient: str
    date: str
    time: str
    body: str
    status: ScheduleStatus = ScheduleStatus.PENDING
    created_at: str = ""
    sent_at: str | None = None
    extra: dict[str, str] = field(default_factory=dict)

    @property
    def is_sent(self) -> bool:
        return self.status is ScheduleStatus.SENT

    @property
    def is_complete(self) -> bool:
        return bool(self.recipient and self.date and self.time and self.body)

    def trigger_instant(self, zone: tzinfo) -> datetime | None:
        """UTC instant at which this message becomes due, or None if malformed."""
        return wall_clock_to_utc(self.date, self.time, zone)

    @classmethod
    def from_text(cls, key: str, text: str, fallback_created: str = "") -> ScheduledMessage:
        fields = parse_record_text(text)
        for legacy, name in LEGACY_FIELDS.items():
            if legacy in fields:
                value = fields.pop(legacy)
                fields.setdefault(name, value)
        raw_status = fields.get("status", ScheduleStatus.PENDING.value).lower()
        raw_status = LEGACY_STATUSES.get(raw_status, raw_status)
        try:
            status = ScheduleStatus(raw_status)
        except ValueError:
            logger.warning("Unknown status %r in %s, treating as pending", raw_status, key)
            status = ScheduleStatus.PENDING
        return cls(
            key=key,
            recipient=fields.get("recipient", ""),
            date=fields.get("date", ""),
            time=fields.get("time", ""),
            body=fields.get("body", ""),
            status=status,
            created_at=fields.get("created") or fallback_created,
            sent_at=fields.get("sent_at") or None,
            extra={k: v for k, v in fields.items() if k not in KNOWN_FIELDS},
        )

    def to_text(self) -> str:
        lines = [
            f"recipient={_escape(self.recipient)}",
            f"date={_escape(self.date)}",
            f"time={_escape(self.time)}",
            f"body={_escape(self.body)}",
            f"status={self.status.value}",
            f"created={_escape(self.created_at)}",
        ]
        if self.sent_at:
            lines.append(f"sent_at={_escape(self.sent_at)}")
        lines.extend(f"{k}={_escape(v)}" for k, v in self.extra.items())
        return "\n".join(lines) + "\n"

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.extra,
            "key": self.key,
            "recipient": self.recipient,
            "date": self.date,
            "time": self.time,
            "body": self.body,
            "status": self.status.value,
            "created": self.created_at,
            "sent_at": self.sent_at,
        }


class ScheduledMessageStore:
    """Create, list and complete scheduled messages in ``directory``."""

    def __init__(self, directory: str | Path, zone: tzinfo = UTC) -> None:
        self.directory = Path(directory)
        self.zone = zone
        self._lock = threading.RLock()

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid schedule key: {key!r}")
        return self.directory / key

    @staticmethod
    def derive_key(recipient: str, date: str, time: str) -> str:
        """``2024-01-01``, ``09:00``, ``5511...`` -> ``2024-01-01_09-00_5511....txt``."""
        return f"{date}_{time.replace(':', '-')}_{recipient}{RECORD_SUFFIX}"

    def _write(self, message: ScheduledMessage, *, exclusive: bool = False) -> None:
        path = self._path(message.key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            if exclusive:
                with path.open("x", encoding="utf-8") as handle:
                    handle.write(message.to_text())
                return
            tmp_path = path.with_name(path.name + ".tmp")
            tmp_path.write_text(message.to_text(), encoding="utf-8")
            os.replace(tmp_path, path)
        except FileExistsError:
            raise
        except OSError as exc:
            raise StoreIOError(f"Cannot write scheduled message {message.key}: {exc}") from exc

    def _load(self, path: Path) -> ScheduledMessage:
        try:
            text = path.read_text(encoding="utf-8")
            fallback = to_iso_ms(datetime.fromtimestamp(path.stat().st_mtime, UTC))
        except (OSError, UnicodeDecodeError) as exc:
            raise StoreIOError(f"Cannot read scheduled message {path.name}: {exc}") from exc
        return ScheduledMessage.from_text(path.name, text, fallback_created=fallback)

    # ── Operations ──────────────────────────────────────────────────

    def create(
        self,
        recipient: str,
        date: str,
        time: str,
        body: str,
        now: datetime | None = None,
    ) -> ScheduledMessage:
        """Persist a new pending message.

        Raises:
            ValueError: If recipient, date, time or body is invalid.
            StoreIOError: If the record cannot be written.
        """
        number = digits_only(recipient)
        date = (date or "").strip()
        time = (time or "").strip()
        if not number:
            raise ValueError("Recipient must contain a phone number")
        if not DATE_PATTERN.match(date) or not TIME_PATTERN.match(time):
            raise ValueError("Date must be YYYY-MM-DD and time HH:MM")
        if wall_clock_to_utc(date, time, self.zone) is None:
            raise ValueError(f"Invalid date/time: {date} {time}")
        if not body or not body.strip():
            raise ValueError("Message body must not be empty")

        message = ScheduledMessage(
            key=self.derive_key(number, date, time),
            recipient=number,
            date=date,
            time=time,
            body=body,
            status=ScheduleStatus.PENDING,
            created_at=to_iso_ms(now or utc_now()),
        )

        with self._lock:
            try:
                self._write(message, exclusive=True)
            except FileExistsError:
                base = message.key[: -len(RECORD_SUFFIX)]
                message.key = f"{base}_{short_id()}{RECORD_SUFFIX}"
                logger.warning("Schedule key collision, stored as %s", message.key)
                try:
                    self._write(message, exclusive=True)
                except FileExistsError as exc:
                    raise StoreIOError(f"Scheduled message {message.key} already exists") from exc

        logger.info("Message scheduled: %s", message.key)
        return message

    def get(self, key: str) -> ScheduledMessage | None:
        path = self._path(key)
        with self._lock:
            if not path.exists():
                return None
            return self._load(path)

    def list(self) -> list[ScheduledMessage]:
        """All records, soonest trigger first; malformed date/time sort last."""
        with self._lock:
            if not self.directory.exists():
                return []
            try:
                paths = sorted(self.directory.glob(f"*{RECORD_SUFFIX}"))
            except OSError as exc:
                raise StoreIOError(f"Cannot list {self.directory}: {exc}") from exc
            messages = []
            for path in paths:
                try:
                    messages.append(self._load(path))
                except StoreIOError as exc:
                    logger.warning("Skipping unreadable scheduled message: %s", exc)

        def sort_key(message: ScheduledMessage) -> tuple[bool, datetime, str]:
            instant = message.trigger_instant(self.zone)
            return (instant is None, instant or _FAR_FUTURE, message.key)

        return sorted(messages, key=sort_key)

    def pending(self) -> list[ScheduledMessage]:
        return [m for m in self.list() if not m.is_sent]

    def mark_sent(self, key: str, now: datetime | None = None) -> ScheduledMessage:
        """Transition ``key`` to sent. Already-sent records are returned unchanged.

        Raises:
            StoreIOError: If the record is missing or cannot be rewritten.
        """
        with self._lock:
            path = self._path(key)
            if not path.exists():
                raise StoreIOError(f"Scheduled message {key} not found")
            message = self._load(path)
            if message.is_sent:
                return message
            message.status = ScheduleStatus.SENT
            message.sent_at = to_iso_ms(now or utc_now())
            self._write(message)
        return message
