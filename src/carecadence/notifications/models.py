"""Notification data model: per-item reminder configs, scheduled reminders
and global delivery preferences.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any

from carecadence.core.exceptions import ValidationError
from carecadence.core.utils.timeutils import fmt_dt, parse_dt, parse_hhmm


class NotificationTiming(StrEnum):
    AT_TIME = "at_time"
    BEFORE_5 = "before_5"
    BEFORE_15 = "before_15"
    BEFORE_30 = "before_30"
    BEFORE_60 = "before_60"
    CUSTOM = "custom"


class NotificationStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    ACTIONED = "actioned"
    DISMISSED = "dismissed"
    SNOOZED = "snoozed"


_TIMING_MINUTES: dict[NotificationTiming, int] = {
    NotificationTiming.AT_TIME: 0,
    NotificationTiming.BEFORE_5: 5,
    NotificationTiming.BEFORE_15: 15,
    NotificationTiming.BEFORE_30: 30,
    NotificationTiming.BEFORE_60: 60,
}

_TIMING_LABELS: dict[NotificationTiming, str] = {
    NotificationTiming.AT_TIME: "At scheduled time",
    NotificationTiming.BEFORE_5: "5 minutes before",
    NotificationTiming.BEFORE_15: "15 minutes before",
    NotificationTiming.BEFORE_30: "30 minutes before",
    NotificationTiming.BEFORE_60: "1 hour before",
}


def timing_to_minutes(timing: NotificationTiming, custom_minutes: int | None = None) -> int:
    """Minutes before the scheduled time a reminder fires."""
    if timing == NotificationTiming.CUSTOM:
        return custom_minutes or 0
    return _TIMING_MINUTES[timing]


def minutes_to_timing(minutes: int) -> NotificationTiming:
    for timing, value in _TIMING_MINUTES.items():
        if value == minutes:
            return timing
    return NotificationTiming.CUSTOM


def timing_label(timing: NotificationTiming, custom_minutes: int | None = None) -> str:
    if timing == NotificationTiming.CUSTOM:
        return f"{custom_minutes} minutes before" if custom_minutes else "Custom time"
    return _TIMING_LABELS[timing]


# ── Per-item configuration ──────────────────────────────────────────


@dataclass
class FollowUpConfig:
    enabled: bool = False
    interval_minutes: int = 30
    max_attempts: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "interval_minutes": self.interval_minutes,
            "max_attempts": self.max_attempts,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FollowUpConfig:
        return cls(
            enabled=bool(data.get("enabled", False)),
            interval_minutes=int(data.get("interval_minutes", 30)),
            max_attempts=int(data.get("max_attempts", 1)),
        )


@dataclass
class NotificationConfig:
    enabled: bool = False
    timing: NotificationTiming = NotificationTiming.AT_TIME
    custom_minutes_before: int | None = None
    follow_up: FollowUpConfig = field(default_factory=FollowUpConfig)

    @property
    def offset_minutes(self) -> int:
        return timing_to_minutes(self.timing, self.custom_minutes_before)

    def validate(self) -> None:
        if self.timing == NotificationTiming.CUSTOM:
            if self.custom_minutes_before is None or self.custom_minutes_before < 0:
                raise ValidationError("Custom notification timing needs a non-negative custom_minutes_before")
        if self.follow_up.interval_minutes <= 0:
            raise ValidationError("Follow-up interval must be positive")
        if self.follow_up.max_attempts < 0:
            raise ValidationError("Follow-up max_attempts cannot be negative")

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "enabled": self.enabled,
            "timing": self.timing.value,
            "follow_up": self.follow_up.to_dict(),
        }
        if self.custom_minutes_before is not None:
            d["custom_minutes_before"] = self.custom_minutes_before
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NotificationConfig:
        custom = data.get("custom_minutes_before")
        return cls(
            enabled=bool(data.get("enabled", False)),
            timing=NotificationTiming(data.get("timing", "at_time")),
            custom_minutes_before=int(custom) if custom is not None else None,
            follow_up=FollowUpConfig.from_dict(data.get("follow_up") or {}),
        )


# Keyed by item type value; medications nag, appointments warn ahead, the rest are opt-in
DEFAULT_NOTIFICATION_CONFIGS: dict[str, NotificationConfig] = {
    "medication": NotificationConfig(
        enabled=True,
        timing=NotificationTiming.AT_TIME,
        follow_up=FollowUpConfig(enabled=True, interval_minutes=30, max_attempts=3),
    ),
    "appointment": NotificationConfig(enabled=True, timing=NotificationTiming.BEFORE_30),
    "hydration": NotificationConfig(follow_up=FollowUpConfig(interval_minutes=60)),
    "vitals": NotificationConfig(),
    "mood": NotificationConfig(),
    "nutrition": NotificationConfig(),
    "activity": NotificationConfig(),
    "sleep": NotificationConfig(),
    "wellness": NotificationConfig(),
    "custom": NotificationConfig(),
}


def default_config_for_type(item_type: str) -> NotificationConfig:
    """Fresh copy of the default config for *item_type*."""
    config = DEFAULT_NOTIFICATION_CONFIGS.get(str(item_type), DEFAULT_NOTIFICATION_CONFIGS["custom"])
    return copy.deepcopy(config)


def merge_with_defaults(item_type: str, partial: dict[str, Any] | None) -> NotificationConfig:
    """Fill a partial config dict from the type's defaults."""
    defaults = default_config_for_type(item_type)
    if not partial:
        return defaults
    follow_up = partial.get("follow_up") or {}
    return NotificationConfig(
        enabled=bool(partial.get("enabled", defaults.enabled)),
        timing=NotificationTiming(partial.get("timing", defaults.timing)),
        custom_minutes_before=partial.get("custom_minutes_before", defaults.custom_minutes_before),
        follow_up=FollowUpConfig(
            enabled=bool(follow_up.get("enabled", defaults.follow_up.enabled)),
            interval_minutes=int(follow_up.get("interval_minutes", defaults.follow_up.interval_minutes)),
            max_attempts=int(follow_up.get("max_attempts", defaults.follow_up.max_attempts)),
        ),
    )


# ── Scheduled reminders ─────────────────────────────────────────────


@dataclass
class ScheduledNotification:
    id: str
    patient_id: str
    daily_instance_id: str
    care_plan_item_id: str
    item_type: str
    title: str
    body: str
    scheduled_for: datetime
    original_time: datetime
    timing: NotificationTiming = NotificationTiming.AT_TIME
    status: NotificationStatus = NotificationStatus.PENDING
    follow_up_attempt: int = 0
    # Chain policy captured at planning time; follow-ups inherit it
    follow_up: FollowUpConfig | None = None
    snoozed_until: datetime | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def is_active(self) -> bool:
        """Pending or snoozed: still waiting to be delivered."""
        return self.status in (NotificationStatus.PENDING, NotificationStatus.SNOOZED)

    def due_at(self) -> datetime:
        if self.status == NotificationStatus.SNOOZED and self.snoozed_until is not None:
            return self.snoozed_until
        return self.scheduled_for

    def is_due(self, now: datetime) -> bool:
        return self.is_active and self.due_at() <= now

    def with_status(self, status: NotificationStatus, now: datetime, **changes: Any) -> ScheduledNotification:
        return replace(self, status=status, updated_at=now, **changes)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "patient_id": self.patient_id,
            "daily_instance_id": self.daily_instance_id,
            "care_plan_item_id": self.care_plan_item_id,
            "item_type": self.item_type,
            "title": self.title,
            "body": self.body,
            "scheduled_for": fmt_dt(self.scheduled_for),
            "original_time": fmt_dt(self.original_time),
            "timing": self.timing.value,
            "status": self.status.value,
            "follow_up_attempt": self.follow_up_attempt,
            "snoozed_until": fmt_dt(self.snoozed_until),
            "created_at": fmt_dt(self.created_at),
            "updated_at": fmt_dt(self.updated_at),
        }
        if self.follow_up is not None:
            d["follow_up"] = self.follow_up.to_dict()
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduledNotification:
        return cls(
            id=data["id"],
            patient_id=data["patient_id"],
            daily_instance_id=data["daily_instance_id"],
            care_plan_item_id=data["care_plan_item_id"],
            item_type=data.get("item_type", "custom"),
            title=data.get("title", ""),
            body=data.get("body", ""),
            scheduled_for=datetime.fromisoformat(data["scheduled_for"]),
            original_time=datetime.fromisoformat(data.get("original_time") or data["scheduled_for"]),
            timing=NotificationTiming(data.get("timing", "at_time")),
            status=NotificationStatus(data.get("status", "pending")),
            follow_up_attempt=int(data.get("follow_up_attempt", 0)),
            follow_up=FollowUpConfig.from_dict(data["follow_up"]) if data.get("follow_up") else None,
            snoozed_until=parse_dt(data.get("snoozed_until")),
            created_at=parse_dt(data.get("created_at")) or datetime.now(),
            updated_at=parse_dt(data.get("updated_at")) or datetime.now(),
        )


# ── Delivery preferences ────────────────────────────────────────────


@dataclass
class QuietHours:
    enabled: bool = True
    start: str = "22:00"
    end: str = "07:00"

    def to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QuietHours:
        quiet = cls(
            enabled=bool(data.get("enabled", True)),
            start=data.get("start", "22:00"),
            end=data.get("end", "07:00"),
        )
        # Fail early on malformed times
        parse_hhmm(quiet.start)
        parse_hhmm(quiet.end)
        return quiet


@dataclass
class DeliveryPreferences:
    master_enabled: bool = True
    sound_enabled: bool = True
    vibration_enabled: bool = True
    quiet_hours: QuietHours = field(default_factory=QuietHours)

    def to_dict(self) -> dict[str, Any]:
        return {
            "master_enabled": self.master_enabled,
            "sound_enabled": self.sound_enabled,
            "vibration_enabled": self.vibration_enabled,
            "quiet_hours": self.quiet_hours.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeliveryPreferences:
        return cls(
            master_enabled=bool(data.get("master_enabled", True)),
            sound_enabled=bool(data.get("sound_enabled", True)),
            vibration_enabled=bool(data.get("vibration_enabled", True)),
            quiet_hours=QuietHours.from_dict(data.get("quiet_hours") or {}),
        )

    def merged(self, changes: dict[str, Any]) -> DeliveryPreferences:
        """Apply a partial update; ``quiet_hours`` is merged key by key."""
        unknown = set(changes) - {"master_enabled", "sound_enabled", "vibration_enabled", "quiet_hours"}
        if unknown:
            raise ValidationError(f"Unknown delivery preference(s): {sorted(unknown)}")
        data = self.to_dict()
        for key, value in changes.items():
            if key == "quiet_hours":
                if isinstance(value, QuietHours):
                    value = value.to_dict()
                data["quiet_hours"] = {**data["quiet_hours"], **(value or {})}
            else:
                data[key] = value
        return DeliveryPreferences.from_dict(data)
