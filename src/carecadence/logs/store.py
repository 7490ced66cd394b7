"""Append-only log store, one document per patient per date.

Documents live at ``logs/{patient_id}/{date}.json`` and hold a JSON list of
entries in append order. Entries are never rewritten; the only way to
change history is to append a correction.
"""

from __future__ import annotations

from datetime import date, timedelta

from loguru import logger

from carecadence.core.exceptions import NotFoundError, ValidationError
from carecadence.core.storage import JsonDocumentStore, StorageBackend
from carecadence.core.utils.locks import KeyedLock
from carecadence.core.utils.timeutils import date_range

from .models import LogEntry


def _day_key(patient_id: str, day: date) -> str:
    return f"logs/{patient_id}/{day.isoformat()}.json"


class LogStore:
    """Immutable record of what actually happened."""

    def __init__(self, storage: StorageBackend) -> None:
        self.docs = JsonDocumentStore(storage)
        self._locks = KeyedLock()

    async def append(self, entry: LogEntry) -> LogEntry:
        """Append *entry* to its date's document.

        Raises:
            ValidationError: if an entry with the same id already exists.
        """
        key = _day_key(entry.patient_id, entry.date)
        async with self._locks.hold((entry.patient_id, entry.date)):
            raw = await self.docs.read(key, default=[])
            if any(existing.get("id") == entry.id for existing in raw):
                raise ValidationError(f"Log entry {entry.id} already exists; log entries are never rewritten")
            raw.append(entry.to_dict())
            await self.docs.write(key, raw)
        logger.debug(f"Appended {entry.outcome} log {entry.id} for {entry.patient_id} on {entry.date}")
        return entry

    async def list_for_date(self, patient_id: str, day: date) -> list[LogEntry]:
        raw = await self.docs.read(_day_key(patient_id, day), default=[])
        return [LogEntry.from_dict(d) for d in raw]

    async def list_in_range(self, patient_id: str, start: date, end: date) -> list[LogEntry]:
        entries: list[LogEntry] = []
        for day in date_range(start, end):
            entries.extend(await self.list_for_date(patient_id, day))
        return entries

    async def get(self, patient_id: str, log_id: str, day: date | None = None) -> LogEntry:
        """Find an entry by id; scans every stored date when *day* is not given."""
        days = [day] if day is not None else await self.stored_dates(patient_id)
        for candidate in days:
            for entry in await self.list_for_date(patient_id, candidate):
                if entry.id == log_id:
                    return entry
        raise NotFoundError(f"Log entry {log_id!r} not found for patient {patient_id!r}")

    async def for_instance(self, patient_id: str, instance_id: str, day: date) -> list[LogEntry]:
        return [e for e in await self.list_for_date(patient_id, day) if e.daily_instance_id == instance_id]

    async def corrections_of(self, patient_id: str, log_id: str, day: date) -> list[LogEntry]:
        return [e for e in await self.list_for_date(patient_id, day) if e.corrects_log_id == log_id]

    async def stored_dates(self, patient_id: str) -> list[date]:
        dates = []
        for key in await self.docs.keys(prefix=f"logs/{patient_id}/"):
            stem = key.rsplit("/", 1)[-1].removesuffix(".json")
            try:
                dates.append(date.fromisoformat(stem))
            except ValueError:
                logger.debug(f"Ignoring unexpected log document {key}")
        return sorted(dates)

    async def consecutive_logging_days(self, patient_id: str, until: date) -> int:
        """Run of consecutive days ending at *until* (or the day before) with at least one entry."""
        logged = {d for d in await self.stored_dates(patient_id) if d <= until}
        cursor = until if until in logged else until - timedelta(days=1)
        count = 0
        while cursor in logged and await self.list_for_date(patient_id, cursor):
            count += 1
            cursor -= timedelta(days=1)
        return count

    async def purge_range(self, patient_id: str, start: date, end: date) -> int:
        removed = 0
        for day in date_range(start, end):
            async with self._locks.hold((patient_id, day)):
                if await self.docs.delete(_day_key(patient_id, day)):
                    removed += 1
        if removed:
            logger.info(f"Purged {removed} log document(s) for {patient_id} {start}..{end}")
        return removed
