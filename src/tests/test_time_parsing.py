from __future__ import annotations

from datetime import date, datetime, timezone

from npm_growth.utils.time import (
    coerce_date,
    data_available_until,
    parse_iso_date,
    week_start,
)


def test_parse_iso_date_accepts_timestamps_and_quotes() -> None:
    assert parse_iso_date("2026-02-12") == date(2026, 2, 12)
    assert parse_iso_date('"2026-02-12"') == date(2026, 2, 12)
    assert parse_iso_date("2026-02-12T08:30:00Z") == date(2026, 2, 12)


def test_coerce_date_handles_datetimes_and_strings() -> None:
    moment = datetime(2026, 2, 12, 23, 59, tzinfo=timezone.utc)

    assert coerce_date(moment) == date(2026, 2, 12)
    assert coerce_date(date(2026, 2, 12)) == date(2026, 2, 12)
    assert coerce_date("2026-02-12 10:00:00") == date(2026, 2, 12)


def test_data_available_until_applies_publication_delay() -> None:
    now = datetime(2026, 3, 2, 1, 0, tzinfo=timezone.utc)

    assert data_available_until(now) == date(2026, 2, 27)
    assert data_available_until(now, delay_days=0) == date(2026, 3, 2)


def test_week_start_is_monday() -> None:
    assert week_start(date(2026, 2, 12)) == date(2026, 2, 9)
    assert week_start(date(2026, 2, 9)) == date(2026, 2, 9)
    assert week_start(date(2026, 2, 15)) == date(2026, 2, 9)
