"""Fire-time arithmetic: timing offsets and quiet-hours clipping."""

from __future__ import annotations

from datetime import datetime, time, timedelta

from carecadence.core.utils.timeutils import parse_hhmm

from .models import NotificationConfig, QuietHours


def raw_fire_time(scheduled_time: datetime, config: NotificationConfig) -> datetime:
    """``scheduled_time`` minus the config's timing offset."""
    return scheduled_time - timedelta(minutes=config.offset_minutes)


def in_quiet_hours(moment: datetime, quiet: QuietHours) -> bool:
    if not quiet.enabled:
        return False
    start, end = parse_hhmm(quiet.start), parse_hhmm(quiet.end)
    if start == end:
        return False
    at = moment.timetz().replace(tzinfo=None)
    if start < end:
        return start <= at < end
    # Window wraps midnight, e.g. 22:00-07:00
    return at >= start or at < end


def clip_to_quiet_hours(moment: datetime, quiet: QuietHours) -> datetime:
    """Move *moment* to the end of quiet hours if it falls inside them.

    Wall-clock comparison happens in *moment*'s own timezone, which for
    reminders is the plan's timezone.
    """
    if not in_quiet_hours(moment, quiet):
        return moment
    start, end = parse_hhmm(quiet.start), parse_hhmm(quiet.end)
    at = moment.timetz().replace(tzinfo=None)
    day = moment.date()
    if start > end and at >= start:
        # Late-evening side of a wrapping window ends tomorrow morning
        day = day + timedelta(days=1)
    return _at(moment, day, end)


def fire_time(scheduled_time: datetime, config: NotificationConfig, quiet: QuietHours) -> tuple[datetime, datetime]:
    """Return ``(scheduled_for, original_time)`` for the first reminder."""
    raw = raw_fire_time(scheduled_time, config)
    return clip_to_quiet_hours(raw, quiet), raw


def _at(moment: datetime, day, wall: time) -> datetime:
    return datetime.combine(day, wall, tzinfo=moment.tzinfo)
