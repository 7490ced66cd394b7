"""Schedule matching, time-window resolution and validation."""

from __future__ import annotations

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from carecadence.core.exceptions import ValidationError
from carecadence.core.utils.timeutils import combine, parse_hhmm

from .models import (
    ALL_DAYS,
    DEFAULT_WINDOW_BANDS,
    CarePlanItem,
    Schedule,
    ScheduleFrequency,
    TimeWindow,
    WindowKind,
    WindowLabel,
)


def day_of_week(day: date) -> int:
    """Day index with 0=Sunday .. 6=Saturday."""
    return (day.weekday() + 1) % 7


def matches_date(schedule: Schedule, day: date) -> bool:
    """True when *schedule* produces instances on *day*."""
    if day in schedule.skip_dates:
        return False
    if schedule.frequency == ScheduleFrequency.DAILY:
        return True
    # weekly/custom with no days means every day
    if not schedule.days_of_week:
        return True
    return day_of_week(day) in schedule.days_of_week


def window_bounds(window: TimeWindow) -> tuple[time, time]:
    """Resolve a window to concrete ``(start, end)`` wall-clock times.

    Exact windows collapse to ``(at, at)``. Missing bounds fall back to the
    default band of the window's label.
    """
    if window.kind == WindowKind.EXACT:
        if not window.at:
            raise ValidationError(f"Exact time window {window.id!r} has no 'at' time")
        at = parse_hhmm(window.at)
        return at, at
    default_start, default_end = DEFAULT_WINDOW_BANDS[window.label]
    return parse_hhmm(window.start or default_start), parse_hhmm(window.end or default_end)


def scheduled_time(window: TimeWindow, day: date, tz: ZoneInfo) -> datetime:
    """The instance's nominal time: ``at`` for exact windows, window start otherwise."""
    start, _ = window_bounds(window)
    return combine(day, start, tz)


def window_end(window: TimeWindow, day: date, tz: ZoneInfo) -> datetime:
    _, end = window_bounds(window)
    return combine(day, end, tz)


def window_label_for_hour(hour: int) -> WindowLabel:
    """Coarse label for the current hour, used by the insight rules."""
    if 5 <= hour < 12:
        return WindowLabel.MORNING
    if 12 <= hour < 17:
        return WindowLabel.AFTERNOON
    if 17 <= hour < 21:
        return WindowLabel.EVENING
    return WindowLabel.NIGHT


def validate_schedule(schedule: Schedule) -> None:
    """Reject schedules that cannot resolve to at least one window per active day.

    Raises:
        ValidationError: on empty or duplicate windows, unparseable times,
            inverted windows, or contradictory day-of-week rules.
    """
    if not schedule.times:
        raise ValidationError("Schedule must define at least one time window")

    seen: set[str] = set()
    for window in schedule.times:
        if not window.id:
            raise ValidationError("Time window id cannot be empty")
        if window.id in seen:
            raise ValidationError(f"Duplicate time window id {window.id!r}")
        seen.add(window.id)
        start, end = window_bounds(window)
        if window.kind == WindowKind.WINDOW and end <= start:
            raise ValidationError(f"Time window {window.id!r} ends before it starts")

    days = schedule.days_of_week
    if any(d not in ALL_DAYS for d in days):
        raise ValidationError(f"days_of_week must be within 0-6, got {days}")
    if len(set(days)) != len(days):
        raise ValidationError(f"days_of_week contains duplicates: {days}")
    if schedule.frequency == ScheduleFrequency.DAILY and days and set(days) != ALL_DAYS:
        raise ValidationError("A daily schedule cannot be restricted to specific days; use weekly or custom")


def validate_item(item: CarePlanItem) -> None:
    if not item.name or not item.name.strip():
        raise ValidationError("Care plan item needs a name")
    validate_schedule(item.schedule)
    if item.notification is not None:
        item.notification.validate()
