"""Tests for the conversation log (backend.stores.conversations)."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

import pytest

from backend.errors import StoreIOError
from backend.stores.conversations import (
    Author,
    ConversationLog,
    Direction,
    parse_limit,
)

BASE = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture()
def log_path(tmp_path: Path) -> Path:
    return tmp_path / "conversations.json"


@pytest.fixture()
def log(log_path: Path) -> ConversationLog:
    return ConversationLog(log_path, display_zone=timezone(timedelta(hours=-3)))


def _read(path: Path) -> list[dict]:
    return json.loads(path.read_text(encoding="utf-8"))


# ── Append ──────────────────────────────────────────────────────────


class TestAppend:
    def test_record_shape(self, log: ConversationLog, log_path: Path) -> None:
        record = log.append("+55 (11) 99999-0000", "hello", Author.USER, Direction.RECEIVED, now=BASE)

        stored = _read(log_path)[0]
        assert stored == record.to_dict()
        assert stored["phoneNumber"] == "5511999990000"
        assert stored["author"] == "user"
        assert stored["direction"] == "received"
        assert stored["timestampISO"] == "2024-01-01T12:00:00.000Z"
        assert stored["timestampLocal"] == "01/01/2024 09:00:00"
        assert stored["originLabel"] == "👤 User"
        assert stored["id"]

    def test_prepends(self, log: ConversationLog, log_path: Path) -> None:
        log.append("1", "first", Author.USER, Direction.RECEIVED, now=BASE)
        log.append("1", "second", Author.BOT, Direction.SENT, now=BASE + timedelta(seconds=1))

        assert [r["text"] for r in _read(log_path)] == ["second", "first"]

    def test_accepts_plain_strings(self, log: ConversationLog) -> None:
        record = log.append("1", "hi", "bot", "sent", now=BASE)

        assert record.author is Author.BOT
        assert record.origin == "🤖 Bot"

    def test_bounded_size(self, log_path: Path) -> None:
        log = ConversationLog(log_path, max_records=5)
        for i in range(8):
            log.append("1", f"m{i}", Author.USER, Direction.RECEIVED, now=BASE + timedelta(seconds=i))

        stored = _read(log_path)
        assert len(stored) == 5
        assert stored[0]["text"] == "m7"
        assert stored[-1]["text"] == "m3"

    def test_default_bound_is_2000(self, log_path: Path) -> None:
        existing = [
            {"id": str(i), "phoneNumber": "1", "text": f"old{i}", "author": "user",
             "direction": "received", "timestampISO": "2023-01-01T00:00:00.000Z"}
            for i in range(2000)
        ]
        log_path.write_text(json.dumps(existing), encoding="utf-8")

        ConversationLog(log_path).append("1", "new", Author.USER, Direction.RECEIVED, now=BASE)

        stored = _read(log_path)
        assert len(stored) == 2000
        assert stored[0]["text"] == "new"
        assert stored[-1]["text"] == "old1998"

    def test_corrupt_file_raises(self, log: ConversationLog, log_path: Path) -> None:
        log_path.write_text("{not json", encoding="utf-8")

        with pytest.raises(StoreIOError):
            log.append("1", "hi", Author.USER, Direction.RECEIVED)

    def test_non_list_document_raises(self, log: ConversationLog, log_path: Path) -> None:
        log_path.write_text('{"a": 1}', encoding="utf-8")

        with pytest.raises(StoreIOError):
            log.query()

    def test_non_object_entries_ignored(self, log: ConversationLog, log_path: Path) -> None:
        log_path.write_text(
            '[42, "junk", {"phoneNumber": "5511", "text": "kept", "direction": "received",'
            ' "timestampISO": "2024-01-01T12:00:00.000Z"}]',
            encoding="utf-8",
        )

        assert [r["text"] for r in log.query(number_filter="5511")] == ["kept"]

    def test_numeric_filter(self, log: ConversationLog) -> None:
        log.append("5511999990000", "hi", Author.USER, Direction.RECEIVED)

        assert len(log.query(number_filter=5511)) == 1


# ── Query ───────────────────────────────────────────────────────────


class TestQuery:
    @pytest.fixture()
    def filled(self, log: ConversationLog) -> ConversationLog:
        log.append("5511111", "a", Author.USER, Direction.RECEIVED, now=BASE)
        log.append("5511111", "b", Author.BOT, Direction.SENT, now=BASE + timedelta(minutes=1))
        log.append("5522222", "c", Author.USER, Direction.RECEIVED, now=BASE + timedelta(minutes=2))
        return log

    def test_missing_file_is_empty(self, log: ConversationLog) -> None:
        assert log.query() == []

    def test_descending_order(self, filled: ConversationLog) -> None:
        assert [r["text"] for r in filled.query()] == ["c", "b", "a"]

    def test_order_applied_at_query_time(self, log: ConversationLog) -> None:
        log.append("1", "later", Author.USER, Direction.RECEIVED, now=BASE + timedelta(hours=1))
        log.append("1", "earlier", Author.USER, Direction.RECEIVED, now=BASE)

        assert [r["text"] for r in log.query()] == ["later", "earlier"]

    def test_limit(self, filled: ConversationLog) -> None:
        assert [r["text"] for r in filled.query(limit=2)] == ["c", "b"]

    def test_number_filter_is_substring(self, filled: ConversationLog) -> None:
        assert [r["text"] for r in filled.query(number_filter="1111")] == ["b", "a"]

    def test_mode_filters_direction(self, filled: ConversationLog) -> None:
        assert [r["text"] for r in filled.query(mode="received")] == ["c", "a"]
        assert [r["text"] for r in filled.query(mode="sent")] == ["b"]
        assert len(filled.query(mode="all")) == 3

    def test_unknown_mode_means_all(self, filled: ConversationLog) -> None:
        assert len(filled.query(mode="whatever")) == 3

    def test_unparseable_timestamps_sort_last(self, log: ConversationLog, log_path: Path) -> None:
        log_path.write_text(json.dumps([
            {"text": "bad", "phoneNumber": "1", "timestampISO": "garbage"},
            {"text": "good", "phoneNumber": "1", "timestampISO": "2024-01-01T00:00:00.000Z"},
        ]), encoding="utf-8")

        assert [r["text"] for r in log.query()] == ["good", "bad"]


class TestParseLimit:
    @pytest.mark.parametrize("value, expected", [
        (5, 5), ("7", 7), (None, 100), ("abc", 100), (0, 100), (-3, 100),
    ])
    def test_values(self, value: object, expected: int) -> None:
        assert parse_limit(value) == expected


# ── Clear / Ensure ──────────────────────────────────────────────────


class TestClear:
    def test_clear_empties_log(self, log: ConversationLog, log_path: Path) -> None:
        log.append("1", "x", Author.USER, Direction.RECEIVED)

        log.clear()

        assert _read(log_path) == []

    def test_ensure_exists(self, log: ConversationLog, log_path: Path) -> None:
        log.ensure_exists()
        assert _read(log_path) == []

        log.append("1", "x", Author.USER, Direction.RECEIVED)
        log.ensure_exists()
        assert len(_read(log_path)) == 1
