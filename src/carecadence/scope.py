"""Day-scoped suppression of regimen items.

"Not today" for an item: the caregiver hides it from one date's view
without editing the regimen or touching stored instances. Suppressions are
stored per patient per date at ``scope/{patient_id}/{date}.json`` and simply
stop applying once the date has passed.
"""

from __future__ import annotations

from datetime import date

from loguru import logger

from carecadence.core.events import SCOPE_CHANGED, Event, EventBus
from carecadence.core.storage import JsonDocumentStore, StorageBackend
from carecadence.core.utils.locks import KeyedLock
from carecadence.instances.models import DailyInstance


def _scope_key(patient_id: str, day: date) -> str:
    return f"scope/{patient_id}/{day.isoformat()}.json"


class ScopeFilter:
    """Non-destructive per-date item filter."""

    def __init__(self, storage: StorageBackend, bus: EventBus | None = None) -> None:
        self.docs = JsonDocumentStore(storage)
        self.bus = bus or EventBus()
        self._locks = KeyedLock()

    async def suppressed_items(self, patient_id: str, day: date) -> set[str]:
        data = await self.docs.read(_scope_key(patient_id, day), default={})
        return set(data.get("suppressed_item_ids", []))

    async def is_suppressed(self, patient_id: str, day: date, item_id: str) -> bool:
        return item_id in await self.suppressed_items(patient_id, day)

    async def suppress(self, patient_id: str, day: date, item_id: str) -> set[str]:
        return await self._change(patient_id, day, add={item_id})

    async def unsuppress(self, patient_id: str, day: date, item_id: str) -> set[str]:
        return await self._change(patient_id, day, remove={item_id})

    async def toggle(self, patient_id: str, day: date, item_id: str) -> bool:
        """Flip the item's suppression; returns True when it is now suppressed."""
        if await self.is_suppressed(patient_id, day, item_id):
            await self.unsuppress(patient_id, day, item_id)
            return False
        await self.suppress(patient_id, day, item_id)
        return True

    async def reset(self, patient_id: str, day: date) -> None:
        """Clear every suppression for the date."""
        async with self._locks.hold((patient_id, day)):
            removed = await self.docs.delete(_scope_key(patient_id, day))
        if removed:
            await self._emit(patient_id, day, set())

    async def apply(self, patient_id: str, day: date, instances: list[DailyInstance]) -> list[DailyInstance]:
        """Instances minus those of suppressed items. The input list is not modified."""
        hidden = await self.suppressed_items(patient_id, day)
        if not hidden:
            return list(instances)
        return [i for i in instances if i.care_plan_item_id not in hidden]

    async def _change(
        self,
        patient_id: str,
        day: date,
        add: set[str] | None = None,
        remove: set[str] | None = None,
    ) -> set[str]:
        async with self._locks.hold((patient_id, day)):
            before = await self.suppressed_items(patient_id, day)
            after = (before | (add or set())) - (remove or set())
            if after != before:
                if after:
                    await self.docs.write(_scope_key(patient_id, day), {"suppressed_item_ids": sorted(after)})
                else:
                    await self.docs.delete(_scope_key(patient_id, day))
        if after != before:
            logger.debug(f"Scope for {patient_id} on {day}: {len(after)} suppressed item(s)")
            await self._emit(patient_id, day, after)
        return after

    async def _emit(self, patient_id: str, day: date, suppressed: set[str]) -> None:
        await self.bus.emit(
            Event(
                name=SCOPE_CHANGED,
                payload={"patient_id": patient_id, "date": day.isoformat(), "suppressed_item_ids": sorted(suppressed)},
                source="scope",
            )
        )
