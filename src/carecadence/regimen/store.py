"""Regimen store: the active care plan and its items, per patient.

Documents:
    regimen/{patient_id}.json      -> the patient's CarePlan
    regimen-items/{plan_id}.json   -> list of CarePlanItem dicts

Every plan or item change bumps ``CarePlan.version`` and emits
``regimen.changed`` so the generator knows stored instances are stale.
"""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any

from loguru import logger

from carecadence.core.events import REGIMEN_CHANGED, Event, EventBus
from carecadence.core.exceptions import NotFoundError, ValidationError
from carecadence.core.storage import JsonDocumentStore, StorageBackend
from carecadence.core.types import Clock
from carecadence.core.utils.locks import KeyedLock
from carecadence.core.utils.timeutils import get_zone

from .models import CarePlan, CarePlanItem, ItemPriority, ItemType, PlanStatus, Schedule
from .schedule import validate_item

_ITEM_FIELDS = {"type", "name", "schedule", "priority", "instructions", "active", "details", "notification", "emoji"}


def _plan_key(patient_id: str) -> str:
    return f"regimen/{patient_id}.json"


def _items_key(plan_id: str) -> str:
    return f"regimen-items/{plan_id}.json"


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RegimenStore:
    """Persistent, versioned regimen per patient."""

    def __init__(self, storage: StorageBackend, bus: EventBus | None = None, clock: Clock | None = None) -> None:
        self.docs = JsonDocumentStore(storage)
        self.bus = bus or EventBus()
        self.clock = clock or _utcnow
        self._locks = KeyedLock()

    # -- Plans --------------------------------------------------------------

    async def get_plan(self, patient_id: str) -> CarePlan | None:
        data = await self.docs.read(_plan_key(patient_id))
        return CarePlan.from_dict(data) if data else None

    async def get_active_plan(self, patient_id: str) -> CarePlan | None:
        """The patient's plan, or None when there is none or it is paused/archived."""
        plan = await self.get_plan(patient_id)
        if plan is None or plan.status != PlanStatus.ACTIVE:
            return None
        return plan

    async def require_plan(self, patient_id: str) -> CarePlan:
        plan = await self.get_plan(patient_id)
        if plan is None:
            raise NotFoundError(f"No care plan for patient {patient_id!r}")
        return plan

    async def create_plan(
        self,
        patient_id: str,
        *,
        timezone_name: str = "UTC",
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> CarePlan:
        """Create the patient's plan. A patient has at most one plan."""
        get_zone(timezone_name)
        now = self.clock()
        start = start_date or now.date()
        if end_date is not None and end_date < start:
            raise ValidationError("Plan end_date is before start_date")

        async with self._locks.hold(patient_id):
            if await self.get_plan(patient_id) is not None:
                raise ValidationError(f"Patient {patient_id!r} already has a care plan")
            plan = CarePlan(
                id=_new_id("plan"),
                patient_id=patient_id,
                timezone=timezone_name,
                start_date=start,
                end_date=end_date,
                status=PlanStatus.ACTIVE,
                version=1,
                created_at=now,
                updated_at=now,
            )
            await self.docs.write(_plan_key(patient_id), plan.to_dict())
            await self.docs.write(_items_key(plan.id), [])

        logger.info(f"Created care plan {plan.id} for patient {patient_id}")
        await self._emit(plan, "plan_created")
        return plan

    async def update_plan(self, patient_id: str, **changes: Any) -> CarePlan:
        """Update plan fields (timezone, start_date, end_date, status); bumps the version."""
        allowed = {"timezone", "start_date", "end_date", "status"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unknown plan field(s): {sorted(unknown)}")
        if "timezone" in changes:
            get_zone(changes["timezone"])
        if "status" in changes:
            changes["status"] = PlanStatus(changes["status"])

        async with self._locks.hold(patient_id):
            plan = await self.require_plan(patient_id)
            updated = replace(plan, **changes)
            if updated.end_date is not None and updated.end_date < updated.start_date:
                raise ValidationError("Plan end_date is before start_date")
            updated = await self._bump(updated)

        await self._emit(updated, "plan_updated")
        return updated

    async def set_status(self, patient_id: str, status: PlanStatus | str) -> CarePlan:
        return await self.update_plan(patient_id, status=PlanStatus(status))

    # -- Items --------------------------------------------------------------

    async def list_items(self, patient_id: str, *, active_only: bool = False) -> list[CarePlanItem]:
        plan = await self.get_plan(patient_id)
        if plan is None:
            return []
        items = await self._read_items(plan.id)
        if active_only:
            items = [i for i in items if i.active]
        return items

    async def get_item(self, patient_id: str, item_id: str) -> CarePlanItem:
        for item in await self.list_items(patient_id):
            if item.id == item_id:
                return item
        raise NotFoundError(f"Care plan item {item_id!r} not found for patient {patient_id!r}")

    async def add_item(
        self,
        patient_id: str,
        *,
        type: ItemType | str,
        name: str,
        schedule: Schedule | dict[str, Any],
        priority: ItemPriority | str = ItemPriority.RECOMMENDED,
        item_id: str | None = None,
        **extra: Any,
    ) -> CarePlanItem:
        """Add an item to the patient's plan; validates its schedule first."""
        unknown = set(extra) - _ITEM_FIELDS
        if unknown:
            raise ValidationError(f"Unknown item field(s): {sorted(unknown)}")

        async with self._locks.hold(patient_id):
            plan = await self.require_plan(patient_id)
            now = self.clock()
            try:
                item = CarePlanItem.from_dict(
                    {
                        "id": item_id or _new_id("item"),
                        "care_plan_id": plan.id,
                        "type": str(type),
                        "name": name,
                        "schedule": schedule.to_dict() if isinstance(schedule, Schedule) else schedule,
                        "priority": str(priority),
                        **{k: _as_dict(v) for k, v in extra.items()},
                    }
                )
            except (KeyError, ValueError) as e:
                raise ValidationError(f"Invalid care plan item: {e}") from e
            item.created_at = item.updated_at = now
            validate_item(item)

            items = await self._read_items(plan.id)
            if any(existing.id == item.id for existing in items):
                raise ValidationError(f"Item id {item.id!r} already exists")
            items.append(item)
            await self._write_items(plan.id, items)
            plan = await self._bump(plan)

        logger.info(f"Added {item.type} item {item.name!r} ({item.id}) to plan {plan.id} v{plan.version}")
        await self._emit(plan, "item_added", item_id=item.id)
        return item

    async def update_item(self, patient_id: str, item_id: str, **changes: Any) -> CarePlanItem:
        unknown = set(changes) - _ITEM_FIELDS
        if unknown:
            raise ValidationError(f"Unknown item field(s): {sorted(unknown)}")

        async with self._locks.hold(patient_id):
            plan = await self.require_plan(patient_id)
            items = await self._read_items(plan.id)
            for idx, item in enumerate(items):
                if item.id == item_id:
                    break
            else:
                raise NotFoundError(f"Care plan item {item_id!r} not found for patient {patient_id!r}")

            data = item.to_dict()
            data.update({k: _as_dict(v) for k, v in changes.items()})
            try:
                updated = CarePlanItem.from_dict(data)
            except (KeyError, ValueError) as e:
                raise ValidationError(f"Invalid care plan item: {e}") from e
            updated.updated_at = self.clock()
            validate_item(updated)
            items[idx] = updated
            await self._write_items(plan.id, items)
            plan = await self._bump(plan)

        await self._emit(plan, "item_updated", item_id=item_id)
        return updated

    async def deactivate_item(self, patient_id: str, item_id: str) -> CarePlanItem:
        return await self.update_item(patient_id, item_id, active=False)

    async def remove_item(self, patient_id: str, item_id: str) -> bool:
        async with self._locks.hold(patient_id):
            plan = await self.require_plan(patient_id)
            items = await self._read_items(plan.id)
            remaining = [i for i in items if i.id != item_id]
            if len(remaining) == len(items):
                return False
            await self._write_items(plan.id, remaining)
            plan = await self._bump(plan)

        await self._emit(plan, "item_removed", item_id=item_id)
        return True

    # -- Import -------------------------------------------------------------

    async def import_regimen(self, data: dict[str, Any]) -> tuple[CarePlan, list[CarePlanItem]]:
        """Create a plan plus items from a plain dict (e.g. a parsed YAML file).

        Expected shape::

            patient_id: mom
            timezone: America/New_York
            start_date: 2026-01-01
            items:
              - type: medication
                name: Lisinopril
                priority: required
                details: {dose: "10", unit: mg}
                schedule:
                  frequency: daily
                  times: [{id: am, kind: exact, label: morning, at: "08:00"}]
        """
        patient_id = str(data.get("patient_id") or "").strip()
        if not patient_id:
            raise ValidationError("Regimen import needs a patient_id")
        raw_items = data.get("items") or []
        if not isinstance(raw_items, list):
            raise ValidationError("Regimen 'items' must be a list")

        plan = await self.get_plan(patient_id)
        if plan is None:
            plan = await self.create_plan(
                patient_id,
                timezone_name=data.get("timezone", "UTC"),
                start_date=_parse_date(data.get("start_date")),
                end_date=_parse_date(data.get("end_date")),
            )

        items: list[CarePlanItem] = []
        for raw in raw_items:
            raw = dict(raw)
            try:
                item = await self.add_item(
                    patient_id,
                    type=raw.pop("type"),
                    name=raw.pop("name"),
                    schedule=raw.pop("schedule"),
                    priority=raw.pop("priority", ItemPriority.RECOMMENDED),
                    item_id=raw.pop("id", None),
                    **raw,
                )
            except KeyError as e:
                raise ValidationError(f"Regimen item is missing field {e}") from e
            items.append(item)

        plan = await self.require_plan(patient_id)
        logger.info(f"Imported {len(items)} item(s) into plan {plan.id} for {patient_id}")
        return plan, items

    # -- Internals ----------------------------------------------------------

    async def _read_items(self, plan_id: str) -> list[CarePlanItem]:
        raw = await self.docs.read(_items_key(plan_id), default=[])
        return [CarePlanItem.from_dict(d) for d in raw]

    async def _write_items(self, plan_id: str, items: list[CarePlanItem]) -> None:
        await self.docs.write(_items_key(plan_id), [i.to_dict() for i in items])

    async def _bump(self, plan: CarePlan) -> CarePlan:
        bumped = replace(plan, version=plan.version + 1, updated_at=self.clock())
        await self.docs.write(_plan_key(plan.patient_id), bumped.to_dict())
        return bumped

    async def _emit(self, plan: CarePlan, action: str, **extra: Any) -> None:
        await self.bus.emit(
            Event(
                name=REGIMEN_CHANGED,
                payload={"patient_id": plan.patient_id, "plan_id": plan.id, "version": plan.version, "action": action, **extra},
                source="regimen",
            )
        )


def _as_dict(value: Any) -> Any:
    to_dict = getattr(value, "to_dict", None)
    return to_dict() if callable(to_dict) else value


def _parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise ValidationError(f"Invalid date {value!r}") from e
