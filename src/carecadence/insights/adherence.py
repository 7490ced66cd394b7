"""Adherence analytics over generated instances and the completion log.

All figures come from what actually happened (daily instances and log
entries), never from the regimen alone; the regimen only supplies display
metadata and priorities for items that still exist.

The ``compute_*`` functions are pure. :class:`AdherenceEngine` loads the
data, assembles an :class:`InsightsSummary` and caches it per patient until
a change event invalidates the cache.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

from loguru import logger

from carecadence.core.events import Event
from carecadence.core.types import Clock
from carecadence.core.utils.timeutils import date_range, get_zone
from carecadence.instances.models import DailyInstance, InstanceStatus
from carecadence.instances.repository import InstanceRepository
from carecadence.logs.store import LogStore
from carecadence.regimen.models import WINDOW_ORDER, CarePlanItem, ItemPriority
from carecadence.regimen.schedule import window_label_for_hour
from carecadence.regimen.store import RegimenStore

from .derived import compute_stats, group_by_window
from .models import (
    WINDOW_DISPLAY_NAMES,
    AdherenceByItem,
    AdherenceByWindow,
    DailyBurden,
    InsightContext,
    InsightsSummary,
    Observation,
    ObservationCategory,
    ObservationKind,
    Streak,
)
from .rules import evaluate_rules

DEFAULT_MAX_LOAD = 30

PRIORITY_WEIGHTS: dict[str, int] = {
    ItemPriority.REQUIRED: 3,
    ItemPriority.RECOMMENDED: 2,
    ItemPriority.OPTIONAL: 1,
}

_OBSERVATION_ORDER = {ObservationKind.CONCERN: 0, ObservationKind.SUGGESTION: 1, ObservationKind.POSITIVE: 2}


def _rate(part: int, total: int) -> int:
    return round(part / total * 100) if total else 0


def _by_item(instances: Iterable[DailyInstance]) -> dict[str, list[DailyInstance]]:
    grouped: dict[str, list[DailyInstance]] = defaultdict(list)
    for instance in instances:
        grouped[instance.care_plan_item_id].append(instance)
    return grouped


# -- Pure computations --------------------------------------------------------


def compute_adherence_by_item(
    instances: list[DailyInstance],
    items: dict[str, CarePlanItem] | None = None,
) -> list[AdherenceByItem]:
    """Per-item rates, lowest adherence first. Items without instances are left out."""
    items = items or {}
    results = []
    for item_id, members in _by_item(instances).items():
        item = items.get(item_id)
        counts = defaultdict(int)
        for instance in members:
            counts[instance.status] += 1
        total = len(members)
        completed = counts[InstanceStatus.COMPLETED]
        skipped = counts[InstanceStatus.SKIPPED]
        results.append(
            AdherenceByItem(
                item_id=item_id,
                item_name=item.name if item else members[0].item_name or "Unknown",
                item_type=str(item.type) if item else members[0].item_type,
                emoji=(item.emoji if item else None) or members[0].item_emoji,
                total_instances=total,
                completed_count=completed,
                skipped_count=skipped,
                missed_count=counts[InstanceStatus.MISSED],
                partial_count=counts[InstanceStatus.PARTIAL],
                # Skipping is a deliberate decision, so it counts toward adherence
                adherence_rate=_rate(completed + skipped, total),
                completion_rate=_rate(completed, total),
            )
        )
    return sorted(results, key=lambda a: (a.adherence_rate, a.item_name))


def compute_adherence_by_window(instances: list[DailyInstance]) -> list[AdherenceByWindow]:
    """Adherence and completion per window label, in day order, for labels that have instances."""
    results = []
    for label in WINDOW_ORDER:
        members = [i for i in instances if i.window_label == label]
        if not members:
            continue
        counts = defaultdict(int)
        for instance in members:
            counts[instance.status] += 1
        completed, skipped = counts[InstanceStatus.COMPLETED], counts[InstanceStatus.SKIPPED]
        results.append(
            AdherenceByWindow(
                window_label=str(label),
                display_name=WINDOW_DISPLAY_NAMES[label],
                total_instances=len(members),
                completed_count=completed,
                skipped_count=skipped,
                missed_count=counts[InstanceStatus.MISSED],
                adherence_rate=_rate(completed + skipped, len(members)),
                completion_rate=_rate(completed, len(members)),
            )
        )
    return results


def compute_daily_burden(
    instances: list[DailyInstance],
    start: date,
    end: date,
    items: dict[str, CarePlanItem] | None = None,
    max_load: int = DEFAULT_MAX_LOAD,
) -> list[DailyBurden]:
    """Weighted task load for every date in the range, including empty days.

    ``burden_score = min(100, weighted / max_load * 100)`` with weights
    required=3, recommended=2, optional=1.
    """
    items = items or {}
    by_date: dict[date, list[DailyInstance]] = defaultdict(list)
    for instance in instances:
        by_date[instance.date].append(instance)

    results = []
    for day in date_range(start, end):
        members = by_date.get(day, [])
        counts = {p: 0 for p in PRIORITY_WEIGHTS}
        for instance in members:
            item = items.get(instance.care_plan_item_id)
            priority = str(item.priority) if item else instance.priority
            if priority in counts:
                counts[priority] += 1
        weighted = sum(PRIORITY_WEIGHTS[p] * n for p, n in counts.items())
        results.append(
            DailyBurden(
                date=day,
                total_tasks=len(members),
                required_tasks=counts[ItemPriority.REQUIRED],
                recommended_tasks=counts[ItemPriority.RECOMMENDED],
                optional_tasks=counts[ItemPriority.OPTIONAL],
                completed_tasks=sum(1 for i in members if i.status == InstanceStatus.COMPLETED),
                weighted_load=weighted,
                burden_score=min(100, round(weighted / max_load * 100)) if max_load > 0 else 0,
            )
        )
    return results


def compute_streaks(
    instances: list[DailyInstance],
    today: date,
    items: dict[str, CarePlanItem] | None = None,
) -> list[Streak]:
    """Consecutive fully-completed days per item, longest current streak first.

    A day qualifies when every instance of the item that day is completed.
    Any other decided day breaks the run; today's still-pending instances
    do not. A streak is current only while its last qualifying day is today
    or yesterday.
    """
    items = items or {}
    yesterday = today - timedelta(days=1)
    results = []
    for item_id, members in _by_item(instances).items():
        by_date: dict[date, list[DailyInstance]] = defaultdict(list)
        for instance in members:
            by_date[instance.date].append(instance)

        run = longest = 0
        last_completed: date | None = None
        for day in sorted(by_date):
            statuses = [i.status for i in by_date[day]]
            if all(s == InstanceStatus.COMPLETED for s in statuses):
                run += 1
                longest = max(longest, run)
                last_completed = day
            elif day >= today and InstanceStatus.PENDING in statuses:
                # Today is still open
                continue
            else:
                run = 0

        is_active = last_completed in (today, yesterday) and run > 0
        item = items.get(item_id)
        results.append(
            Streak(
                item_id=item_id,
                item_name=item.name if item else members[0].item_name or "Unknown",
                current_streak=run if is_active else 0,
                longest_streak=longest,
                last_completed_date=last_completed,
                is_active=is_active,
            )
        )
    return sorted(results, key=lambda s: (-s.current_streak, s.item_name))


def detect_patterns(
    by_item: list[AdherenceByItem],
    by_window: list[AdherenceByWindow],
    burden: list[DailyBurden],
    streaks: list[Streak],
) -> list[Observation]:
    """Range-level observations: concerns first, then suggestions, then positives."""
    found: list[Observation] = []

    for item in by_item:
        if item.total_instances >= 5 and item.adherence_rate < 50:
            found.append(
                Observation(
                    kind=ObservationKind.CONCERN,
                    category=ObservationCategory.ADHERENCE,
                    title=f"{item.item_name} needs attention",
                    message=(
                        f"Only {item.adherence_rate}% adherence over the period. "
                        "Consider adjusting the schedule or checking if this is still needed."
                    ),
                    data={"item_id": item.item_id, "adherence_rate": item.adherence_rate},
                )
            )

    for window in by_window:
        if window.total_instances >= 5 and window.completion_rate < 60:
            found.append(
                Observation(
                    kind=ObservationKind.SUGGESTION,
                    category=ObservationCategory.TIMING,
                    title=f"{window.display_name} tasks often missed",
                    message=(
                        f"{window.display_name} has {window.completion_rate}% completion. "
                        "Consider rescheduling some tasks to a better time."
                    ),
                    data={"window_label": window.window_label, "missed_count": window.missed_count},
                )
            )

    heavy_days = [d for d in burden if d.burden_score >= 70]
    if len(heavy_days) >= 3:
        found.append(
            Observation(
                kind=ObservationKind.CONCERN,
                category=ObservationCategory.BURDEN,
                title="High daily task load detected",
                message=(
                    f"{len(heavy_days)} days had high task burden. "
                    "Consider spreading tasks across the week or reducing optional items."
                ),
                data={"high_burden_days": len(heavy_days)},
            )
        )

    for streak in streaks:
        if streak.current_streak >= 7:
            found.append(
                Observation(
                    kind=ObservationKind.POSITIVE,
                    category=ObservationCategory.STREAK,
                    title=f"{streak.current_streak}-day streak for {streak.item_name}!",
                    message=f"Great consistency! Keep up the good work with {streak.item_name}.",
                    data={"item_id": streak.item_id, "streak": streak.current_streak},
                )
            )

    excellent = [i for i in by_item if i.total_instances >= 10 and i.adherence_rate >= 90]
    if excellent:
        verb = "items have" if len(excellent) > 1 else "item has"
        found.append(
            Observation(
                kind=ObservationKind.POSITIVE,
                category=ObservationCategory.ADHERENCE,
                title="Excellent adherence",
                message=f"{len(excellent)} {verb} 90%+ adherence. Great job staying consistent!",
                data={"count": len(excellent), "items": [i.item_name for i in excellent]},
            )
        )

    return sorted(found, key=lambda o: _OBSERVATION_ORDER[o.kind])


# -- Engine -------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdherenceEngine:
    """Builds :class:`InsightsSummary` objects, cached per patient.

    Args:
        repository: Instance storage.
        logs: Completion log.
        regimen: Used for item metadata and the plan timezone.
        clock: Injected wall clock (timezone-aware).
        max_load: Weighted points that map to a burden score of 100.
    """

    def __init__(
        self,
        repository: InstanceRepository,
        logs: LogStore,
        regimen: RegimenStore,
        clock: Clock | None = None,
        max_load: int = DEFAULT_MAX_LOAD,
    ) -> None:
        self.repository = repository
        self.logs = logs
        self.regimen = regimen
        self.clock = clock or _utcnow
        self.max_load = max_load
        self._cache: dict[str, dict[tuple[Any, ...], InsightsSummary]] = {}

    # -- Cache --------------------------------------------------------------

    def invalidate(self, patient_id: str | None = None) -> None:
        """Drop cached summaries for one patient, or for everyone."""
        if patient_id is None:
            self._cache.clear()
        else:
            self._cache.pop(patient_id, None)

    def on_changes(self, events: list[Event]) -> None:
        """Debounced target for change events."""
        patients = {e.payload.get("patient_id") for e in events}
        if None in patients:
            self.invalidate()
        else:
            for patient_id in patients:
                self.invalidate(patient_id)
        logger.debug(f"Adherence cache invalidated after {len(events)} change event(s)")

    @property
    def cached_patients(self) -> list[str]:
        return sorted(self._cache)

    # -- Public API ---------------------------------------------------------

    async def local_now(self, patient_id: str) -> datetime:
        """Current time in the patient's plan timezone (UTC without a plan)."""
        plan = await self.regimen.get_plan(patient_id)
        tz = get_zone(plan.timezone) if plan else ZoneInfo("UTC")
        return self.clock().astimezone(tz)

    async def summarize(self, patient_id: str, start: date, end: date) -> InsightsSummary:
        """Full adherence summary for the inclusive range *start*..*end*."""
        now = await self.local_now(patient_id)
        key = (start, end, now.date(), now.hour)
        cached = self._cache.get(patient_id, {}).get(key)
        if cached is not None:
            return cached

        summary = await self._build(patient_id, start, end, now)
        self._cache.setdefault(patient_id, {})[key] = summary
        return summary

    async def weekly(self, patient_id: str) -> InsightsSummary:
        """Last 7 days including today."""
        today = (await self.local_now(patient_id)).date()
        return await self.summarize(patient_id, today - timedelta(days=6), today)

    async def monthly(self, patient_id: str) -> InsightsSummary:
        """Last 30 days including today."""
        today = (await self.local_now(patient_id)).date()
        return await self.summarize(patient_id, today - timedelta(days=29), today)

    async def item_adherence(self, patient_id: str, item_id: str, start: date, end: date) -> AdherenceByItem | None:
        summary = await self.summarize(patient_id, start, end)
        return next((a for a in summary.adherence_by_item if a.item_id == item_id), None)

    async def top_concerns(self, patient_id: str, limit: int = 3) -> list[AdherenceByItem]:
        """Weekly items with meaningful data and adherence under 80%, worst first."""
        summary = await self.weekly(patient_id)
        return [a for a in summary.adherence_by_item if a.total_instances >= 3 and a.adherence_rate < 80][:limit]

    async def today_completion_rate(self, patient_id: str) -> dict[str, int]:
        today = (await self.local_now(patient_id)).date()
        summary = await self.summarize(patient_id, today, today)
        completed = sum(a.completed_count for a in summary.adherence_by_item)
        return {"completed": completed, "total": summary.total_instances, "rate": _rate(completed, summary.total_instances)}

    async def context_for(self, patient_id: str, day: date, now: datetime) -> InsightContext:
        """Rule context for *day*; logging streak and weekly rate are measured up to *day*."""
        tasks = await self.repository.list_for_date(patient_id, day)
        recent = await self.repository.list_in_range(patient_id, day - timedelta(days=6), day)
        recent_rate = compute_stats(recent).completion_rate if recent else None
        return InsightContext(
            tasks=tuple(tasks),
            stats=compute_stats(tasks, now),
            by_window=group_by_window(tasks),
            current_hour=now.hour,
            current_window=str(window_label_for_hour(now.hour)),
            consecutive_logging_days=await self.logs.consecutive_logging_days(patient_id, day),
            recent_completion_rate=recent_rate,
        )

    # -- Internals ----------------------------------------------------------

    async def _build(self, patient_id: str, start: date, end: date, now: datetime) -> InsightsSummary:
        instances = await self.repository.list_in_range(patient_id, start, end)
        logs = await self.logs.list_in_range(patient_id, start, end)
        items = {item.id: item for item in await self.regimen.list_items(patient_id)}
        today = now.date()

        by_item = compute_adherence_by_item(instances, items)
        by_window = compute_adherence_by_window(instances)
        burden = compute_daily_burden(instances, start, end, items, self.max_load)
        streaks = compute_streaks(instances, today, items)
        completed = sum(1 for i in instances if i.status == InstanceStatus.COMPLETED)

        # Contextual rules describe "right now", so they only run when today is in range
        insights = []
        if start <= today <= end:
            insights = evaluate_rules(await self.context_for(patient_id, today, now))

        logger.debug(f"Summarized {len(instances)} instance(s) for {patient_id} {start}..{end}")
        return InsightsSummary(
            patient_id=patient_id,
            start=start,
            end=end,
            generated_at=now,
            overall_adherence=_rate(completed, len(instances)),
            adherence_by_item=by_item,
            adherence_by_window=by_window,
            daily_burden=burden,
            average_daily_burden=round(sum(d.burden_score for d in burden) / len(burden)) if burden else 0,
            streaks=streaks,
            observations=detect_patterns(by_item, by_window, burden, streaks),
            insights=insights,
            total_instances=len(instances),
            total_logs=len(logs),
        )
