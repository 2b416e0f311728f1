"""Tests for timestamp and zone helpers (backend.utils.timestamps)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from backend.utils.phone import digits_only, number_from_data_id
from backend.utils.timestamps import (
    format_local,
    parse_iso,
    resolve_timezone,
    to_iso_ms,
    wall_clock_to_utc,
)


class TestResolveTimezone:
    @pytest.mark.parametrize("value, hours", [
        ("-03:00", -3), ("+05:30", 5.5), ("-0300", -3), ("UTC-3", -3), ("+2", 2),
    ])
    def test_fixed_offsets(self, value: str, hours: float) -> None:
        assert resolve_timezone(value).utcoffset(None) == timedelta(hours=hours)

    @pytest.mark.parametrize("value", ["", "UTC", "z"])
    def test_utc(self, value: str) -> None:
        assert resolve_timezone(value) is UTC

    def test_iana_name(self) -> None:
        zone = resolve_timezone("America/Sao_Paulo")
        assert datetime(2024, 1, 1, tzinfo=zone).utcoffset() == timedelta(hours=-3)

    @pytest.mark.parametrize("value", ["Mars/Base", "+25:00"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError):
            resolve_timezone(value)


class TestWallClockToUtc:
    def test_default_zone_adds_three_hours(self) -> None:
        result = wall_clock_to_utc("2024-01-01", "09:00", resolve_timezone("-03:00"))
        assert result == datetime(2024, 1, 1, 12, 0, tzinfo=UTC)

    def test_single_digit_hour(self) -> None:
        assert wall_clock_to_utc("2024-01-01", "9:05", UTC) == datetime(2024, 1, 1, 9, 5, tzinfo=UTC)

    @pytest.mark.parametrize("date, time", [
        ("", "09:00"), ("2024-01-01", ""), ("2024-13-01", "09:00"), ("2024-01-01", "24:00"), ("x", "y"),
    ])
    def test_malformed(self, date: str, time: str) -> None:
        assert wall_clock_to_utc(date, time, UTC) is None


class TestFormatting:
    def test_to_iso_ms(self) -> None:
        moment = datetime(2024, 1, 1, 12, 0, 0, 123456, tzinfo=UTC)
        assert to_iso_ms(moment) == "2024-01-01T12:00:00.123Z"

    def test_to_iso_ms_converts_offset(self) -> None:
        moment = datetime(2024, 1, 1, 9, 0, tzinfo=timezone(timedelta(hours=-3)))
        assert to_iso_ms(moment) == "2024-01-01T12:00:00.000Z"

    def test_parse_iso_roundtrip(self) -> None:
        moment = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        assert parse_iso(to_iso_ms(moment)) == moment

    def test_format_local(self) -> None:
        moment = datetime(2024, 1, 1, 2, 30, tzinfo=UTC)
        assert format_local(moment, resolve_timezone("-03:00")) == "31/12/2023 23:30:00"


class TestPhone:
    def test_digits_only(self) -> None:
        assert digits_only("+55 (11) 99999-0000") == "5511999990000"
        assert digits_only(None) == ""

    def test_number_from_data_id(self) -> None:
        assert number_from_data_id("false_5511999990000@c.us_3EB0ABC") == "5511999990000"
        assert number_from_data_id("true_123@g.us_X") == ""
        assert number_from_data_id(None) == ""
