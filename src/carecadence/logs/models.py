"""Append-only log entries and their typed payloads.

A ``LogEntry`` is never edited. A correction is a new entry whose
``corrects_log_id`` points at the entry it supersedes.

Payloads are tagged by ``type``; ``parse_log_data`` dispatches on the tag::

    data = parse_log_data({"type": "vitals", "systolic": 128, "diastolic": 82})
    assert isinstance(data, VitalsLogData)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from enum import StrEnum
from typing import Any, ClassVar

from carecadence.core.exceptions import ValidationError
from carecadence.core.utils.timeutils import fmt_dt


class LogOutcome(StrEnum):
    TAKEN = "taken"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    PARTIAL = "partial"
    MISSED = "missed"


class LogSource(StrEnum):
    RECORD = "record"
    JOURNAL = "journal"
    NOW = "now"
    NOTIFICATION = "notification"
    WIDGET = "widget"
    AUTO = "auto"


# ── Payload variants ────────────────────────────────────────────────


@dataclass(frozen=True)
class LogEntryData:
    """Base for typed payloads. Subclasses set ``type``."""

    type: ClassVar[str] = ""

    def to_dict(self) -> dict[str, Any]:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        data["type"] = self.type
        return data

    def validate(self) -> None:
        pass


@dataclass(frozen=True)
class MedicationLogData(LogEntryData):
    type: ClassVar[str] = "medication"
    medication_id: str | None = None
    medication_name: str | None = None
    dose: str | None = None
    side_effects: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["side_effects"] = list(self.side_effects)
        return data


@dataclass(frozen=True)
class VitalsLogData(LogEntryData):
    type: ClassVar[str] = "vitals"
    systolic: float | None = None
    diastolic: float | None = None
    heart_rate: float | None = None
    glucose: float | None = None
    temperature: float | None = None
    oxygen: float | None = None
    weight: float | None = None


@dataclass(frozen=True)
class MoodLogData(LogEntryData):
    type: ClassVar[str] = "mood"
    mood: int = 3
    energy: int | None = None
    pain: int | None = None

    def validate(self) -> None:
        if not 1 <= self.mood <= 5:
            raise ValidationError(f"Mood must be on a 1-5 scale, got {self.mood}")


@dataclass(frozen=True)
class NutritionLogData(LogEntryData):
    type: ClassVar[str] = "nutrition"
    meal_type: str = ""
    description: str | None = None
    appetite: str | None = None  # good, fair, poor, refused
    amount_consumed: str | None = None  # all, most, half, little, none
    assistance_level: str | None = None  # independent, verbal, partial, full


@dataclass(frozen=True)
class HydrationLogData(LogEntryData):
    type: ClassVar[str] = "hydration"
    glasses: int = 0

    def validate(self) -> None:
        if self.glasses < 0:
            raise ValidationError("Hydration glasses cannot be negative")


@dataclass(frozen=True)
class SleepLogData(LogEntryData):
    type: ClassVar[str] = "sleep"
    hours: float = 0.0
    quality: int | None = None

    def validate(self) -> None:
        if not 0 <= self.hours <= 24:
            raise ValidationError(f"Sleep hours must be within 0-24, got {self.hours}")


@dataclass(frozen=True)
class ActivityLogData(LogEntryData):
    type: ClassVar[str] = "activity"
    activity_type: str = ""
    duration: float | None = None  # minutes
    value: float | None = None  # steps, etc.


@dataclass(frozen=True)
class CustomLogData(LogEntryData):
    """Free-form payload; any keys besides ``type`` land in ``values``."""

    type: ClassVar[str] = "custom"
    values: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.values}


_VARIANTS: dict[str, type[LogEntryData]] = {
    cls.type: cls
    for cls in (
        MedicationLogData,
        VitalsLogData,
        MoodLogData,
        NutritionLogData,
        HydrationLogData,
        SleepLogData,
        ActivityLogData,
        CustomLogData,
    )
}


def parse_log_data(data: dict[str, Any] | LogEntryData | None) -> LogEntryData | None:
    """Build the typed payload for *data*, dispatching on its ``type`` tag.

    Raises:
        ValidationError: for a missing or unknown tag, unknown fields, or
            values the variant rejects.
    """
    if data is None or isinstance(data, LogEntryData):
        if data is not None:
            data.validate()
        return data
    if not isinstance(data, dict):
        raise ValidationError(f"Log data must be a mapping, got {type(data).__name__}")

    body = dict(data)
    tag = body.pop("type", None)
    cls = _VARIANTS.get(tag)
    if cls is None:
        raise ValidationError(f"Unknown log data type {tag!r}")

    if cls is CustomLogData:
        payload: LogEntryData = CustomLogData(values=body)
    else:
        allowed = {f.name for f in fields(cls)}
        unknown = set(body) - allowed
        if unknown:
            raise ValidationError(f"Unknown field(s) for {tag} log data: {sorted(unknown)}")
        if "side_effects" in body:
            body["side_effects"] = tuple(body["side_effects"] or ())
        try:
            payload = cls(**body)
        except TypeError as e:
            raise ValidationError(f"Invalid {tag} log data: {e}") from e
    payload.validate()
    return payload


def check_payload_for_item(payload: LogEntryData | None, item_type: str) -> None:
    """Reject a payload whose variant belongs to another item type.

    ``custom`` payloads fit any item.
    """
    if payload is None or payload.type in (CustomLogData.type, str(item_type)):
        return
    raise ValidationError(f"{payload.type} log data cannot be recorded for a {item_type} item")


# ── Log entries ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class LogEntry:
    id: str
    patient_id: str
    timestamp: datetime
    date: date
    outcome: LogOutcome
    source: LogSource = LogSource.RECORD
    care_plan_id: str | None = None
    care_plan_item_id: str | None = None
    daily_instance_id: str | None = None
    notes: str | None = None
    data: LogEntryData | None = None
    caregiver_name: str | None = None
    corrects_log_id: str | None = None

    @property
    def is_correction(self) -> bool:
        return self.corrects_log_id is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "timestamp": fmt_dt(self.timestamp),
            "date": self.date.isoformat(),
            "outcome": self.outcome.value,
            "source": self.source.value,
            "care_plan_id": self.care_plan_id,
            "care_plan_item_id": self.care_plan_item_id,
            "daily_instance_id": self.daily_instance_id,
            "notes": self.notes,
            "data": self.data.to_dict() if self.data else None,
            "caregiver_name": self.caregiver_name,
            "corrects_log_id": self.corrects_log_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LogEntry:
        return cls(
            id=data["id"],
            patient_id=data["patient_id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            date=date.fromisoformat(data["date"]),
            outcome=LogOutcome(data["outcome"]),
            source=LogSource(data.get("source", "record")),
            care_plan_id=data.get("care_plan_id"),
            care_plan_item_id=data.get("care_plan_item_id"),
            daily_instance_id=data.get("daily_instance_id"),
            notes=data.get("notes"),
            data=parse_log_data(data.get("data")),
            caregiver_name=data.get("caregiver_name"),
            corrects_log_id=data.get("corrects_log_id"),
        )
