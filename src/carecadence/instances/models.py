"""Daily instances: the date-scoped, actionable copies of regimen items."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import StrEnum
from typing import Any

from carecadence.core.exceptions import ValidationError
from carecadence.core.utils.timeutils import fmt_dt, parse_dt


class InstanceStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    MISSED = "missed"
    PARTIAL = "partial"


TERMINAL_STATUSES = frozenset(
    {InstanceStatus.COMPLETED, InstanceStatus.SKIPPED, InstanceStatus.MISSED, InstanceStatus.PARTIAL}
)

# Pending is the only state that can move; terminal states never go back
_TRANSITIONS: dict[InstanceStatus, set[InstanceStatus]] = {
    InstanceStatus.PENDING: set(TERMINAL_STATUSES),
    InstanceStatus.COMPLETED: set(),
    InstanceStatus.SKIPPED: set(),
    InstanceStatus.MISSED: set(),
    InstanceStatus.PARTIAL: set(),
}


def can_transition(current: InstanceStatus, target: InstanceStatus) -> bool:
    return target in _TRANSITIONS[current]


def instance_id(item_id: str, window_id: str, day: date) -> str:
    """Deterministic id for the instance of *item_id*/*window_id* on *day*.

    The date prefix lets callers find the per-date document from the id alone.
    """
    digest = hashlib.sha1(f"{item_id}:{window_id}:{day.isoformat()}".encode()).hexdigest()
    return f"{day.isoformat()}-{digest[:16]}"


def date_from_instance_id(value: str) -> date:
    try:
        return date.fromisoformat(value[:10])
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Malformed instance id {value!r}") from e


@dataclass
class DailyInstance:
    id: str
    care_plan_id: str
    care_plan_item_id: str
    patient_id: str
    date: date
    window_id: str
    window_label: str
    scheduled_time: datetime
    window_end: datetime
    item_name: str
    item_type: str
    priority: str
    status: InstanceStatus = InstanceStatus.PENDING
    log_id: str | None = None
    generated_from_version: int = 0
    item_emoji: str | None = None
    instructions: str | None = None
    item_dosage: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def key(self) -> tuple[str, str]:
        return self.care_plan_item_id, self.window_id

    @property
    def is_pending(self) -> bool:
        return self.status == InstanceStatus.PENDING

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transitioned(self, status: InstanceStatus, now: datetime, log_id: str | None = None) -> DailyInstance:
        """Copy of this instance moved to *status*. Caller checks the transition."""
        return replace(self, status=status, log_id=log_id or self.log_id, updated_at=now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "care_plan_id": self.care_plan_id,
            "care_plan_item_id": self.care_plan_item_id,
            "patient_id": self.patient_id,
            "date": self.date.isoformat(),
            "window_id": self.window_id,
            "window_label": self.window_label,
            "scheduled_time": fmt_dt(self.scheduled_time),
            "window_end": fmt_dt(self.window_end),
            "item_name": self.item_name,
            "item_type": self.item_type,
            "priority": self.priority,
            "status": self.status.value,
            "log_id": self.log_id,
            "generated_from_version": self.generated_from_version,
            "item_emoji": self.item_emoji,
            "instructions": self.instructions,
            "item_dosage": self.item_dosage,
            "created_at": fmt_dt(self.created_at),
            "updated_at": fmt_dt(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DailyInstance:
        scheduled = datetime.fromisoformat(data["scheduled_time"])
        return cls(
            id=data["id"],
            care_plan_id=data["care_plan_id"],
            care_plan_item_id=data["care_plan_item_id"],
            patient_id=data["patient_id"],
            date=date.fromisoformat(data["date"]),
            window_id=data["window_id"],
            window_label=data.get("window_label", "custom"),
            scheduled_time=scheduled,
            window_end=parse_dt(data.get("window_end")) or scheduled,
            item_name=data.get("item_name", ""),
            item_type=data.get("item_type", "custom"),
            priority=data.get("priority", "recommended"),
            status=InstanceStatus(data.get("status", "pending")),
            log_id=data.get("log_id"),
            generated_from_version=int(data.get("generated_from_version", 0)),
            item_emoji=data.get("item_emoji"),
            instructions=data.get("instructions"),
            item_dosage=data.get("item_dosage"),
            created_at=parse_dt(data.get("created_at")) or datetime.now(),
            updated_at=parse_dt(data.get("updated_at")) or datetime.now(),
        )
