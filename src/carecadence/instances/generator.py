"""Idempotent generation of daily instances from the regimen.

``ensure(patient_id, day)`` is the main entry point: call it whenever a
caller is about to look at a date. It is cheap when nothing changed (the
stored document already matches the plan version) and safe to call
concurrently (one generation per patient/date at a time).

Regeneration after a plan change:
    * terminal instances (completed/skipped/missed/partial) are kept as-is;
    * pending instances whose item/window is still scheduled are refreshed
      from the current item (name, time, priority...);
    * pending instances that are no longer scheduled are removed;
    * newly scheduled item/window pairs are added.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import date, datetime, timezone
from typing import Any

from loguru import logger

from carecadence.core.events import INSTANCES_CHANGED, Event, EventBus
from carecadence.core.exceptions import ConcurrentGenerationSkipped
from carecadence.core.types import Clock
from carecadence.core.utils.timeutils import date_range, get_zone
from carecadence.regimen.models import CarePlan, CarePlanItem, TimeWindow
from carecadence.regimen.schedule import matches_date, scheduled_time, window_end
from carecadence.regimen.store import RegimenStore

from .models import DailyInstance, InstanceStatus, instance_id
from .repository import DayDocument, InstanceRepository

MissedSweep = Callable[[str, date], Awaitable[Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_instance(
    plan: CarePlan,
    item: CarePlanItem,
    window: TimeWindow,
    day: date,
    now: datetime,
) -> DailyInstance:
    """Materialize one item/window pair on *day*."""
    tz = get_zone(plan.timezone)
    return DailyInstance(
        id=instance_id(item.id, window.id, day),
        care_plan_id=plan.id,
        care_plan_item_id=item.id,
        patient_id=plan.patient_id,
        date=day,
        window_id=window.id,
        window_label=str(window.label),
        scheduled_time=scheduled_time(window, day, tz),
        window_end=window_end(window, day, tz),
        item_name=item.name,
        item_type=str(item.type),
        priority=str(item.priority),
        status=InstanceStatus.PENDING,
        generated_from_version=plan.version,
        item_emoji=item.emoji,
        instructions=item.instructions,
        item_dosage=item.dosage,
        created_at=now,
        updated_at=now,
    )


def desired_instances(plan: CarePlan, items: list[CarePlanItem], day: date, now: datetime) -> dict[tuple[str, str], DailyInstance]:
    """Every instance the regimen calls for on *day*, keyed by (item_id, window_id)."""
    if not plan.covers(day):
        return {}
    desired: dict[tuple[str, str], DailyInstance] = {}
    for item in items:
        if not item.active or not matches_date(item.schedule, day):
            continue
        for window in item.schedule.times:
            instance = build_instance(plan, item, window, day, now)
            desired[instance.key] = instance
    return desired


class InstanceGenerator:
    """Turns the regimen into stored daily instances, one date at a time."""

    def __init__(
        self,
        regimen: RegimenStore,
        repository: InstanceRepository,
        bus: EventBus | None = None,
        clock: Clock | None = None,
        sweep_missed: MissedSweep | None = None,
    ) -> None:
        self.regimen = regimen
        self.repository = repository
        self.bus = bus or EventBus()
        self.clock = clock or _utcnow
        self.sweep_missed = sweep_missed

    async def ensure(self, patient_id: str, day: date, *, wait: bool = True) -> list[DailyInstance]:
        """Make sure *day* has instances for the current plan version and return them.

        Raises:
            ConcurrentGenerationSkipped: when ``wait`` is False and another
                generation for the same patient/date is in flight.
        """
        plan = await self.regimen.get_active_plan(patient_id)
        if plan is None:
            logger.debug(f"No active plan for {patient_id}; returning stored instances for {day}")
        else:
            lock = await self.repository.locks.get((patient_id, day))
            if not wait and lock.locked():
                raise ConcurrentGenerationSkipped(f"Generation for {patient_id} on {day} already in progress")
            async with lock:
                changes = await self._generate_locked(plan, day)
            if changes:
                await self.bus.emit(
                    Event(
                        name=INSTANCES_CHANGED,
                        payload={"patient_id": patient_id, "date": day.isoformat(), **changes},
                        source="generator",
                    )
                )

        if self.sweep_missed is not None:
            await self.sweep_missed(patient_id, day)
        return await self.repository.list_for_date(patient_id, day)

    async def ensure_range(self, patient_id: str, start: date, end: date) -> dict[date, list[DailyInstance]]:
        return {day: await self.ensure(patient_id, day) for day in date_range(start, end)}

    async def _generate_locked(self, plan: CarePlan, day: date) -> dict[str, list[str]] | None:
        """Reconcile the stored document with the plan. Caller holds the day lock.

        Returns the added/removed/refreshed instance ids, or None when the
        document was already current.
        """
        document = await self.repository.read_day(plan.patient_id, day)
        if document.generated_version == plan.version:
            return None

        now = self.clock()
        items = await self.regimen.list_items(plan.patient_id, active_only=True)
        desired = desired_instances(plan, items, day, now)

        kept: list[DailyInstance] = []
        added: list[str] = []
        removed: list[str] = []
        refreshed: list[str] = []
        seen: set[tuple[str, str]] = set()

        for existing in document.instances:
            if existing.key in seen:
                # Never store two instances for the same item/window/date
                logger.warning(f"Dropping duplicate instance {existing.id} for {existing.key} on {day}")
                continue
            seen.add(existing.key)
            if existing.is_terminal:
                kept.append(existing)
            elif existing.key in desired:
                fresh = desired[existing.key]
                fresh.created_at = existing.created_at
                if not _same_content(fresh, existing):
                    refreshed.append(fresh.id)
                else:
                    fresh.updated_at = existing.updated_at
                kept.append(fresh)
            else:
                removed.append(existing.id)

        for key, fresh in desired.items():
            if key not in seen:
                kept.append(fresh)
                added.append(fresh.id)

        await self.repository.write_day(plan.patient_id, day, DayDocument(generated_version=plan.version, instances=kept))
        logger.debug(
            f"Generated {plan.patient_id} {day} at v{plan.version}: "
            f"+{len(added)} -{len(removed)} ~{len(refreshed)} ({len(kept)} total)"
        )
        if not (added or removed or refreshed):
            return None
        return {"added": added, "removed": removed, "refreshed": refreshed}


_VOLATILE_FIELDS = ("updated_at", "generated_from_version")


def _same_content(a: DailyInstance, b: DailyInstance) -> bool:
    left, right = a.to_dict(), b.to_dict()
    for key in _VOLATILE_FIELDS:
        left.pop(key, None)
        right.pop(key, None)
    return left == right
