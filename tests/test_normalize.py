from __future__ import annotations

from datetime import datetime, timezone

import pytest

from ingestion.normalize import (
    OPTION_NAME_MAX_LEN,
    as_list,
    build_event_uuid,
    map_active_closed,
    map_status,
    option_type_for,
    parse_price,
    parse_time,
    truncate,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2026-03-01T19:00:00Z", datetime(2026, 3, 1, 19, 0, tzinfo=timezone.utc)),
        ("2026-03-01 19:00:00", datetime(2026, 3, 1, 19, 0, tzinfo=timezone.utc)),
        ("2026-03-01", datetime(2026, 3, 1, tzinfo=timezone.utc)),
        ("2026/03/01", datetime(2026, 3, 1, tzinfo=timezone.utc)),
        ("Sun, 01 Mar 2026 19:00:00 GMT", datetime(2026, 3, 1, 19, 0, tzinfo=timezone.utc)),
    ],
)
def test_parse_time_accepts_known_formats(raw, expected):
    assert parse_time(raw) == expected


def test_parse_time_falls_back_to_now():
    before = datetime.now(timezone.utc)
    parsed = parse_time("not a date")
    after = datetime.now(timezone.utc)

    assert before <= parsed <= after


def test_parse_price_clamps_and_rejects_garbage():
    assert parse_price("0.42") == pytest.approx(0.42)
    assert parse_price(1.7) == 1.0
    assert parse_price("-0.2") == 0.0
    assert parse_price("abc") is None
    assert parse_price("") is None
    assert parse_price(None) is None


def test_truncate_limits_length():
    long_name = "x" * (OPTION_NAME_MAX_LEN + 10)
    assert len(truncate(long_name, OPTION_NAME_MAX_LEN, "option_name")) == OPTION_NAME_MAX_LEN
    assert truncate("  Lakers ", OPTION_NAME_MAX_LEN, "option_name") == "Lakers"
    assert truncate(None, 10, "title") == ""


def test_status_mapping():
    assert map_status("open") == "active"
    assert map_status("CLOSED") == "resolved"
    assert map_status("settled") == "canceled"
    assert map_active_closed(True, False) == "active"
    assert map_active_closed(False, True) == "resolved"
    assert map_active_closed(True, True) == "canceled"
    assert map_active_closed(False, False) == "canceled"


@pytest.mark.parametrize(
    "name, expected",
    [("YES", "win"), ("No", "lose"), ("Draw", "draw"), ("tie", "draw"), ("Lakers", ""), ("default", "")],
)
def test_option_type_for(name, expected):
    assert option_type_for(name) == expected


def test_as_list_decodes_json_strings():
    assert as_list('["Yes", "No"]') == ["Yes", "No"]
    assert as_list(["a"]) == ["a"]
    assert as_list("{bad") == []
    assert as_list(None) == []


def test_build_event_uuid():
    assert build_event_uuid(2, "KXNBA-26MAR01LALBOS") == "2_KXNBA-26MAR01LALBOS"
