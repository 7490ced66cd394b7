"""Pure derived views over a day's instances.

Nothing here touches storage: every function takes the instances it needs
and returns a fresh structure, so the same views can back the CLI, the
insight rules and any embedding application.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum

from carecadence.instances.models import DailyInstance, InstanceStatus
from carecadence.regimen.models import WINDOW_ORDER, WindowLabel

from .models import WINDOW_DISPLAY_NAMES, TaskStats

WINDOW_EMOJI: dict[str, str] = {
    WindowLabel.MORNING: "🌅",
    WindowLabel.AFTERNOON: "☀️",
    WindowLabel.EVENING: "🌆",
    WindowLabel.NIGHT: "🌙",
    WindowLabel.CUSTOM: "📋",
}


class WindowStatus(StrEnum):
    UPCOMING = "upcoming"
    AVAILABLE = "available"
    COMPLETED = "completed"


@dataclass
class WindowGroup:
    window_label: str
    display_name: str
    emoji: str
    instances: list[DailyInstance]
    completed_count: int
    total_count: int
    status: WindowStatus


@dataclass
class DailySchedule:
    date: date
    instances: list[DailyInstance]
    by_window: dict[str, list[DailyInstance]]
    stats: TaskStats
    next_pending: DailyInstance | None
    groups: list[WindowGroup] = field(default_factory=list)

    @property
    def all_complete(self) -> bool:
        return self.stats.total > 0 and self.stats.pending == 0


def group_by_window(instances: list[DailyInstance]) -> dict[str, list[DailyInstance]]:
    """Instances keyed by window label, every label present, each list time-ordered."""
    grouped: dict[str, list[DailyInstance]] = {str(label): [] for label in WINDOW_ORDER}
    for instance in sorted(instances, key=lambda i: i.scheduled_time):
        grouped.setdefault(instance.window_label, []).append(instance)
    return grouped


def compute_stats(instances: list[DailyInstance], now: datetime | None = None) -> TaskStats:
    """Status counts; ``overdue`` counts pending instances whose scheduled time has passed."""
    stats = TaskStats(total=len(instances))
    for instance in instances:
        if instance.status == InstanceStatus.PENDING:
            stats.pending += 1
            if now is not None and instance.scheduled_time < now:
                stats.overdue += 1
        elif instance.status == InstanceStatus.COMPLETED:
            stats.completed += 1
        elif instance.status == InstanceStatus.SKIPPED:
            stats.skipped += 1
        elif instance.status == InstanceStatus.MISSED:
            stats.missed += 1
        elif instance.status == InstanceStatus.PARTIAL:
            stats.partial += 1
    stats.completion_rate = round(stats.completed / stats.total * 100) if stats.total else 0
    return stats


def next_pending(instances: list[DailyInstance]) -> DailyInstance | None:
    pending = [i for i in instances if i.is_pending]
    return min(pending, key=lambda i: (i.scheduled_time, i.item_name)) if pending else None


def window_status(label: str, instances: list[DailyInstance], current_window: str) -> WindowStatus:
    """Whether a window group is done, actionable now, or still ahead."""
    pending = sum(1 for i in instances if i.is_pending)
    if instances and not pending:
        return WindowStatus.COMPLETED

    order = [str(w) for w in WINDOW_ORDER if w != WindowLabel.CUSTOM]
    if label not in order or current_window not in order:
        # Custom windows have no place in the day's sequence
        return WindowStatus.AVAILABLE
    this_index, current_index = order.index(label), order.index(current_window)
    if this_index <= current_index:
        return WindowStatus.AVAILABLE
    return WindowStatus.UPCOMING


def build_daily_schedule(
    day: date,
    instances: list[DailyInstance],
    current_window: str,
    now: datetime | None = None,
) -> DailySchedule:
    """Everything a "today" screen needs for *day* in one structure."""
    by_window = group_by_window(instances)
    groups = []
    for label in WINDOW_ORDER:
        members = by_window.get(str(label), [])
        if not members:
            continue
        groups.append(
            WindowGroup(
                window_label=str(label),
                display_name=WINDOW_DISPLAY_NAMES[label],
                emoji=WINDOW_EMOJI[label],
                instances=members,
                completed_count=sum(
                    1 for i in members if i.status in (InstanceStatus.COMPLETED, InstanceStatus.SKIPPED)
                ),
                total_count=len(members),
                status=window_status(str(label), members, current_window),
            )
        )
    return DailySchedule(
        date=day,
        instances=sorted(instances, key=lambda i: (i.scheduled_time, i.item_name)),
        by_window=by_window,
        stats=compute_stats(instances, now),
        next_pending=next_pending(instances),
        groups=groups,
    )
