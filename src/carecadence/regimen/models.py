"""Regimen data model: care plans, items, schedules and time windows.

A ``CarePlan`` is the long-lived source of truth for one patient. Its
``version`` is bumped on every plan or item change so generated daily
instances can tell whether they are stale.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any

from carecadence.core.utils.timeutils import fmt_dt, parse_dt
from carecadence.notifications.models import NotificationConfig


class PlanStatus(StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class ItemType(StrEnum):
    MEDICATION = "medication"
    VITALS = "vitals"
    NUTRITION = "nutrition"
    HYDRATION = "hydration"
    MOOD = "mood"
    SLEEP = "sleep"
    WELLNESS = "wellness"
    ACTIVITY = "activity"
    APPOINTMENT = "appointment"
    CUSTOM = "custom"


class ItemPriority(StrEnum):
    REQUIRED = "required"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"


class ScheduleFrequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"


class WindowKind(StrEnum):
    EXACT = "exact"
    WINDOW = "window"


class WindowLabel(StrEnum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"
    CUSTOM = "custom"


# Fallback bands for windows that omit start/end
DEFAULT_WINDOW_BANDS: dict[WindowLabel, tuple[str, str]] = {
    WindowLabel.MORNING: ("06:00", "10:00"),
    WindowLabel.AFTERNOON: ("12:00", "14:00"),
    WindowLabel.EVENING: ("17:00", "20:00"),
    WindowLabel.NIGHT: ("20:00", "23:00"),
    WindowLabel.CUSTOM: ("09:00", "17:00"),
}

WINDOW_ORDER: tuple[WindowLabel, ...] = (
    WindowLabel.MORNING,
    WindowLabel.AFTERNOON,
    WindowLabel.EVENING,
    WindowLabel.NIGHT,
    WindowLabel.CUSTOM,
)

ALL_DAYS = frozenset(range(7))


@dataclass
class TimeWindow:
    id: str
    kind: WindowKind = WindowKind.WINDOW
    label: WindowLabel = WindowLabel.MORNING
    at: str | None = None
    start: str | None = None
    end: str | None = None
    custom_label: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id, "kind": self.kind.value, "label": self.label.value}
        for key in ("at", "start", "end", "custom_label"):
            value = getattr(self, key)
            if value is not None:
                d[key] = value
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TimeWindow:
        return cls(
            id=str(data["id"]),
            kind=WindowKind(data.get("kind", "window")),
            label=WindowLabel(data.get("label", "morning")),
            at=data.get("at"),
            start=data.get("start"),
            end=data.get("end"),
            custom_label=data.get("custom_label"),
        )


@dataclass
class Schedule:
    frequency: ScheduleFrequency = ScheduleFrequency.DAILY
    times: list[TimeWindow] = field(default_factory=list)
    days_of_week: list[int] = field(default_factory=list)  # 0=Sunday .. 6=Saturday
    skip_dates: list[date] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequency": self.frequency.value,
            "times": [w.to_dict() for w in self.times],
            "days_of_week": list(self.days_of_week),
            "skip_dates": [d.isoformat() for d in self.skip_dates],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Schedule:
        return cls(
            frequency=ScheduleFrequency(data.get("frequency", "daily")),
            times=[TimeWindow.from_dict(w) for w in data.get("times") or []],
            days_of_week=[int(d) for d in data.get("days_of_week") or []],
            skip_dates=[_as_date(d) for d in data.get("skip_dates") or []],
        )


@dataclass
class CarePlan:
    id: str
    patient_id: str
    timezone: str = "UTC"
    start_date: date = field(default_factory=date.today)
    end_date: date | None = None
    status: PlanStatus = PlanStatus.ACTIVE
    version: int = 1
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    def covers(self, day: date) -> bool:
        """True when *day* falls inside the plan's start/end dates."""
        if day < self.start_date:
            return False
        return self.end_date is None or day <= self.end_date

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "timezone": self.timezone,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "status": self.status.value,
            "version": self.version,
            "created_at": fmt_dt(self.created_at),
            "updated_at": fmt_dt(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CarePlan:
        return cls(
            id=data["id"],
            patient_id=data["patient_id"],
            timezone=data.get("timezone", "UTC"),
            start_date=_as_date(data["start_date"]),
            end_date=_as_date(data["end_date"]) if data.get("end_date") else None,
            status=PlanStatus(data.get("status", "active")),
            version=int(data.get("version", 1)),
            created_at=parse_dt(data.get("created_at")) or datetime.now(),
            updated_at=parse_dt(data.get("updated_at")) or datetime.now(),
        )


@dataclass
class CarePlanItem:
    id: str
    care_plan_id: str
    type: ItemType
    name: str
    schedule: Schedule
    priority: ItemPriority = ItemPriority.RECOMMENDED
    instructions: str | None = None
    active: bool = True
    details: dict[str, Any] = field(default_factory=dict)
    notification: NotificationConfig | None = None
    emoji: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def dosage(self) -> str | None:
        """Display dose for medications, e.g. ``"10 mg"``."""
        if self.type != ItemType.MEDICATION:
            return None
        dose = self.details.get("dose")
        if not dose:
            return None
        unit = self.details.get("unit")
        return f"{dose} {unit}" if unit else str(dose)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "care_plan_id": self.care_plan_id,
            "type": self.type.value,
            "name": self.name,
            "schedule": self.schedule.to_dict(),
            "priority": self.priority.value,
            "instructions": self.instructions,
            "active": self.active,
            "details": dict(self.details),
            "notification": self.notification.to_dict() if self.notification else None,
            "emoji": self.emoji,
            "created_at": fmt_dt(self.created_at),
            "updated_at": fmt_dt(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CarePlanItem:
        notification = data.get("notification")
        return cls(
            id=data["id"],
            care_plan_id=data["care_plan_id"],
            type=ItemType(data["type"]),
            name=data["name"],
            schedule=Schedule.from_dict(data.get("schedule") or {}),
            priority=ItemPriority(data.get("priority", "recommended")),
            instructions=data.get("instructions"),
            active=bool(data.get("active", True)),
            details=dict(data.get("details") or {}),
            notification=NotificationConfig.from_dict(notification) if notification else None,
            emoji=data.get("emoji"),
            created_at=parse_dt(data.get("created_at")) or datetime.now(),
            updated_at=parse_dt(data.get("updated_at")) or datetime.now(),
        )


def _as_date(value: str | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))
