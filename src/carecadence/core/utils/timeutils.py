"""Date/time helpers shared by the scheduling and analytics code."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..exceptions import ValidationError


def parse_hhmm(value: str) -> time:
    """Parse ``"HH:MM"`` into a ``time``."""
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError) as e:
        raise ValidationError(f"Invalid time of day {value!r}; expected HH:MM") from e


def format_hhmm(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}"


def get_zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValidationError(f"Unknown timezone {name!r}") from e


def combine(day: date, at: time, tz: ZoneInfo) -> datetime:
    """Local wall-clock ``day`` + ``at`` in *tz* as an aware datetime."""
    return datetime.combine(day, at, tzinfo=tz)


def date_range(start: date, end: date) -> list[date]:
    """Inclusive list of dates from *start* to *end*."""
    if end < start:
        return []
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def fmt_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
