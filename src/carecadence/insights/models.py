"""Result types for adherence analytics and contextual insights."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any

from carecadence.instances.models import DailyInstance
from carecadence.regimen.models import WindowLabel


class InsightType(StrEnum):
    REINFORCEMENT = "reinforcement"
    PATTERN = "pattern"
    DEPENDENCY = "dependency"
    SUGGESTION = "suggestion"


class ObservationKind(StrEnum):
    CONCERN = "concern"
    SUGGESTION = "suggestion"
    POSITIVE = "positive"


class ObservationCategory(StrEnum):
    ADHERENCE = "adherence"
    TIMING = "timing"
    BURDEN = "burden"
    STREAK = "streak"


WINDOW_DISPLAY_NAMES: dict[str, str] = {
    WindowLabel.MORNING: "Morning",
    WindowLabel.AFTERNOON: "Afternoon",
    WindowLabel.EVENING: "Evening",
    WindowLabel.NIGHT: "Night",
    WindowLabel.CUSTOM: "Custom",
}


@dataclass
class TaskStats:
    total: int = 0
    pending: int = 0
    completed: int = 0
    skipped: int = 0
    missed: int = 0
    partial: int = 0
    overdue: int = 0
    completion_rate: int = 0  # 0-100


@dataclass
class AdherenceByItem:
    item_id: str
    item_name: str
    item_type: str
    total_instances: int
    completed_count: int
    skipped_count: int
    missed_count: int
    partial_count: int
    adherence_rate: int  # (completed + skipped) / total, 0-100
    completion_rate: int  # completed / total, 0-100
    emoji: str | None = None


@dataclass
class AdherenceByWindow:
    window_label: str
    display_name: str
    total_instances: int
    completed_count: int
    skipped_count: int
    missed_count: int
    adherence_rate: int  # (completed + skipped) / total, 0-100
    completion_rate: int  # completed / total, 0-100


@dataclass
class DailyBurden:
    date: date
    total_tasks: int
    required_tasks: int
    recommended_tasks: int
    optional_tasks: int
    completed_tasks: int
    weighted_load: int
    burden_score: int  # 0-100, higher = heavier day


@dataclass
class Streak:
    item_id: str
    item_name: str
    current_streak: int
    longest_streak: int
    last_completed_date: date | None
    is_active: bool


@dataclass
class Observation:
    """Range-level finding, e.g. an item that keeps getting missed."""

    kind: ObservationKind
    category: ObservationCategory
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Insight:
    """A single contextual, supportive nudge produced by one rule."""

    id: str
    icon: str
    title: str
    message: str
    type: InsightType
    confidence: float  # 0-1
    priority: int  # lower = more important
    category: str | None = None


@dataclass(frozen=True)
class InsightContext:
    """Snapshot the rule table is evaluated against."""

    tasks: tuple[DailyInstance, ...]
    stats: TaskStats
    by_window: dict[str, list[DailyInstance]]
    current_hour: int
    current_window: str
    consecutive_logging_days: int | None = None
    recent_completion_rate: float | None = None


@dataclass
class InsightsSummary:
    patient_id: str
    start: date
    end: date
    generated_at: datetime
    overall_adherence: int
    adherence_by_item: list[AdherenceByItem]
    adherence_by_window: list[AdherenceByWindow]
    daily_burden: list[DailyBurden]
    average_daily_burden: int
    streaks: list[Streak]
    observations: list[Observation]
    insights: list[Insight]
    total_instances: int
    total_logs: int

    def primary(self) -> Insight | None:
        """Most important contextual insight, if any rule fired."""
        return self.insights[0] if self.insights else None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return _jsonable(data)


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value
