from __future__ import annotations

from datetime import date, datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def data_available_until(
    reference: datetime | None = None, delay_days: int = 3
) -> date:
    """Most recent day the provider is expected to have published counts for."""
    now = reference or utc_now()
    return (now - timedelta(days=delay_days)).date()


def week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def parse_iso_date(raw: str) -> date:
    return datetime.strptime(raw.strip().strip('"')[:10], "%Y-%m-%d").date()


def coerce_date(value: object) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return parse_iso_date(str(value))
