"""Per-date persistence of daily instances.

Each patient/date pair is one document at ``instances/{patient_id}/{date}.json``::

    {"generated_version": 3, "instances": [...]}

``generated_version`` is the plan version the document was last generated
from; the generator compares it with the current plan to decide whether
any work is needed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from loguru import logger

from carecadence.core.exceptions import InvalidTransitionError, NotFoundError
from carecadence.core.storage import JsonDocumentStore, StorageBackend
from carecadence.core.utils.locks import KeyedLock
from carecadence.core.utils.timeutils import date_range

from .models import DailyInstance, InstanceStatus, date_from_instance_id


@dataclass
class DayDocument:
    generated_version: int | None = None
    instances: list[DailyInstance] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "generated_version": self.generated_version,
            "instances": [i.to_dict() for i in self.instances],
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> DayDocument:
        if not data:
            return cls()
        return cls(
            generated_version=data.get("generated_version"),
            instances=[DailyInstance.from_dict(d) for d in data.get("instances") or []],
        )


def _day_key(patient_id: str, day: date) -> str:
    return f"instances/{patient_id}/{day.isoformat()}.json"


def sort_instances(instances: list[DailyInstance]) -> list[DailyInstance]:
    return sorted(instances, key=lambda i: (i.scheduled_time, i.item_name, i.id))


class InstanceRepository:
    """Stores and retrieves daily instances, one document per patient per date.

    ``locks`` is keyed by ``(patient_id, date)`` and shared with the
    generator, so generation and status updates for the same day never
    interleave their read-modify-write cycles.
    """

    def __init__(self, storage: StorageBackend) -> None:
        self.docs = JsonDocumentStore(storage)
        self.locks = KeyedLock()

    # -- Raw documents (callers hold the lock) --------------------------------

    async def read_day(self, patient_id: str, day: date) -> DayDocument:
        return DayDocument.from_dict(await self.docs.read(_day_key(patient_id, day)))

    async def write_day(self, patient_id: str, day: date, document: DayDocument) -> None:
        document.instances = sort_instances(document.instances)
        await self.docs.write(_day_key(patient_id, day), document.to_dict())

    # -- Queries ------------------------------------------------------------

    async def list_for_date(self, patient_id: str, day: date) -> list[DailyInstance]:
        document = await self.read_day(patient_id, day)
        return sort_instances(document.instances)

    async def list_in_range(self, patient_id: str, start: date, end: date) -> list[DailyInstance]:
        result: list[DailyInstance] = []
        for day in date_range(start, end):
            result.extend(await self.list_for_date(patient_id, day))
        return result

    async def get(self, patient_id: str, instance_id: str) -> DailyInstance:
        day = date_from_instance_id(instance_id)
        for instance in (await self.read_day(patient_id, day)).instances:
            if instance.id == instance_id:
                return instance
        raise NotFoundError(f"Instance {instance_id!r} not found for patient {patient_id!r}")

    async def stored_dates(self, patient_id: str) -> list[date]:
        """Dates that have an instance document for *patient_id*."""
        dates = []
        for key in await self.docs.keys(prefix=f"instances/{patient_id}/"):
            stem = key.rsplit("/", 1)[-1].removesuffix(".json")
            try:
                dates.append(date.fromisoformat(stem))
            except ValueError:
                logger.debug(f"Ignoring unexpected instance document {key}")
        return sorted(dates)

    # -- Mutation -----------------------------------------------------------

    async def update(
        self,
        instance: DailyInstance,
        *,
        expected_status: InstanceStatus | None = None,
    ) -> DailyInstance:
        """Replace the stored copy of *instance*.

        When *expected_status* is given the write only happens if the stored
        instance still has that status (compare-and-set under the day lock).

        Raises:
            NotFoundError: if the instance is not stored.
            InvalidTransitionError: if the stored status differs from *expected_status*.
        """
        async with self.locks.hold((instance.patient_id, instance.date)):
            document = await self.read_day(instance.patient_id, instance.date)
            for idx, stored in enumerate(document.instances):
                if stored.id == instance.id:
                    break
            else:
                raise NotFoundError(f"Instance {instance.id!r} not found for patient {instance.patient_id!r}")

            if expected_status is not None and stored.status != expected_status:
                raise InvalidTransitionError(
                    f"Instance {instance.id} is {stored.status}, expected {expected_status}"
                )
            document.instances[idx] = instance
            await self.write_day(instance.patient_id, instance.date, document)
        return instance

    async def purge_range(self, patient_id: str, start: date, end: date) -> int:
        """Delete instance documents for every date in the range. Returns count removed."""
        removed = 0
        for day in date_range(start, end):
            async with self.locks.hold((patient_id, day)):
                if await self.docs.delete(_day_key(patient_id, day)):
                    removed += 1
        if removed:
            logger.info(f"Purged {removed} instance document(s) for {patient_id} {start}..{end}")
        return removed
