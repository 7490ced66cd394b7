"""Completion coordinator: every user action on an instance goes through here.

Completing or skipping a pending instance is one unit of work:

    1. the instance is moved out of ``pending`` (compare-and-set, so a
       concurrent completion loses cleanly);
    2. the log entry is appended;
    3. if the append fails, the instance snapshot taken before step 1 is
       written back and the error propagates.

Missed instances are detected lazily: ``sweep_missed`` runs whenever a
date's instances are read and marks every pending instance whose window
ended more than the grace period ago. Missing writes no log entry.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from loguru import logger

from carecadence.core.events import (
    INSTANCE_STATUS_CHANGED,
    INSTANCES_CHANGED,
    LOGS_CHANGED,
    Event,
    EventBus,
)
from carecadence.core.exceptions import InvalidTransitionError, ValidationError
from carecadence.core.types import Clock
from carecadence.instances.models import DailyInstance, InstanceStatus, can_transition
from carecadence.instances.repository import InstanceRepository
from carecadence.logs.models import (
    LogEntry,
    LogEntryData,
    LogOutcome,
    LogSource,
    check_payload_for_item,
    parse_log_data,
)
from carecadence.logs.store import LogStore

DEFAULT_GRACE_MINUTES = 120

_OUTCOME_STATUS: dict[LogOutcome, InstanceStatus] = {
    LogOutcome.TAKEN: InstanceStatus.COMPLETED,
    LogOutcome.COMPLETED: InstanceStatus.COMPLETED,
    LogOutcome.SKIPPED: InstanceStatus.SKIPPED,
    LogOutcome.PARTIAL: InstanceStatus.PARTIAL,
}


def status_for_outcome(outcome: LogOutcome | str) -> InstanceStatus:
    """Instance status a user-reported outcome leads to.

    Raises:
        ValidationError: for unknown outcomes and for ``missed``, which is
            system-assigned only.
    """
    try:
        outcome = LogOutcome(outcome)
    except ValueError as e:
        raise ValidationError(f"Unknown outcome {outcome!r}") from e
    if outcome not in _OUTCOME_STATUS:
        raise ValidationError(f"Outcome {outcome!r} cannot be reported by a caregiver")
    return _OUTCOME_STATUS[outcome]


def _new_log_id() -> str:
    return f"log-{uuid.uuid4().hex}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CompletionResult:
    instance: DailyInstance
    log: LogEntry


class CompletionCoordinator:
    """Applies status changes to instances and writes the matching log entries."""

    def __init__(
        self,
        repository: InstanceRepository,
        logs: LogStore,
        bus: EventBus | None = None,
        clock: Clock | None = None,
        grace_minutes: int = DEFAULT_GRACE_MINUTES,
    ) -> None:
        self.repository = repository
        self.logs = logs
        self.bus = bus or EventBus()
        self.clock = clock or _utcnow
        self.grace = timedelta(minutes=grace_minutes)

    # -- User actions -------------------------------------------------------

    async def complete(
        self,
        patient_id: str,
        instance_id: str,
        outcome: LogOutcome | str = LogOutcome.COMPLETED,
        *,
        data: dict[str, Any] | LogEntryData | None = None,
        notes: str | None = None,
        source: LogSource | str = LogSource.RECORD,
        caregiver_name: str | None = None,
    ) -> CompletionResult:
        """Record an outcome for a pending instance.

        Raises:
            ValidationError: for ``missed`` or unknown outcomes, bad payloads and
                payloads meant for another item type.
            NotFoundError: if the instance does not exist.
            InvalidTransitionError: if the instance is no longer pending.
        """
        target = status_for_outcome(outcome)
        outcome = LogOutcome(outcome)
        payload = parse_log_data(data)
        try:
            source = LogSource(source)
        except ValueError as e:
            raise ValidationError(f"Unknown log source {source!r}") from e

        snapshot = await self.repository.get(patient_id, instance_id)
        check_payload_for_item(payload, snapshot.item_type)
        if not can_transition(snapshot.status, target):
            raise InvalidTransitionError(f"Instance {instance_id} is already {snapshot.status}")

        now = self.clock()
        log = LogEntry(
            id=_new_log_id(),
            patient_id=patient_id,
            timestamp=now,
            date=snapshot.date,
            outcome=outcome,
            source=source,
            care_plan_id=snapshot.care_plan_id,
            care_plan_item_id=snapshot.care_plan_item_id,
            daily_instance_id=snapshot.id,
            notes=notes,
            data=payload,
            caregiver_name=caregiver_name,
        )
        updated = snapshot.transitioned(target, now, log_id=log.id)

        # A failure here leaves nothing to undo
        await self.repository.update(updated, expected_status=InstanceStatus.PENDING)
        try:
            await self.logs.append(log)
        except Exception:
            logger.error(f"Log append failed for {instance_id}; restoring instance to {snapshot.status}")
            await self.repository.update(snapshot)
            raise

        logger.info(f"{patient_id}: {snapshot.item_name} ({instance_id}) -> {target}")
        await self._emit_transition(snapshot, updated, log)
        return CompletionResult(instance=updated, log=log)

    async def skip(
        self,
        patient_id: str,
        instance_id: str,
        *,
        notes: str | None = None,
        source: LogSource | str = LogSource.RECORD,
        caregiver_name: str | None = None,
    ) -> CompletionResult:
        return await self.complete(
            patient_id,
            instance_id,
            LogOutcome.SKIPPED,
            notes=notes,
            source=source,
            caregiver_name=caregiver_name,
        )

    async def add_correction(
        self,
        patient_id: str,
        log_id: str,
        day: date,
        outcome: LogOutcome | str,
        *,
        notes: str | None = None,
        data: dict[str, Any] | LogEntryData | None = None,
        source: LogSource | str = LogSource.RECORD,
        caregiver_name: str | None = None,
    ) -> LogEntry:
        """Append an entry that supersedes *log_id*. The instance is left untouched."""
        original = await self.logs.get(patient_id, log_id, day)
        try:
            outcome = LogOutcome(outcome)
            source = LogSource(source)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        correction = LogEntry(
            id=_new_log_id(),
            patient_id=patient_id,
            timestamp=self.clock(),
            date=original.date,
            outcome=outcome,
            source=source,
            care_plan_id=original.care_plan_id,
            care_plan_item_id=original.care_plan_item_id,
            daily_instance_id=original.daily_instance_id,
            notes=notes,
            data=parse_log_data(data),
            caregiver_name=caregiver_name,
            corrects_log_id=original.id,
        )
        await self.logs.append(correction)
        await self.bus.emit(
            Event(
                name=LOGS_CHANGED,
                payload={"patient_id": patient_id, "date": original.date.isoformat(), "log_id": correction.id},
                source="completion",
            )
        )
        return correction

    # -- Missed detection ---------------------------------------------------

    def missed_deadline(self, instance: DailyInstance) -> datetime:
        return instance.window_end + self.grace

    def is_overdue(self, instance: DailyInstance, now: datetime | None = None) -> bool:
        now = now or self.clock()
        return instance.is_pending and instance.log_id is None and now > self.missed_deadline(instance)

    async def mark_missed(self, patient_id: str, instance_id: str) -> DailyInstance:
        """Mark a pending instance missed once its window plus grace has passed.

        Raises:
            InvalidTransitionError: if the instance is not pending, has a log,
                or its grace period has not elapsed yet.
        """
        instance = await self.repository.get(patient_id, instance_id)
        now = self.clock()
        if not instance.is_pending or instance.log_id is not None:
            raise InvalidTransitionError(f"Instance {instance_id} is {instance.status}; only pending instances can be missed")
        if now <= self.missed_deadline(instance):
            raise InvalidTransitionError(
                f"Instance {instance_id} is still within its grace period (until {self.missed_deadline(instance).isoformat()})"
            )

        updated = instance.transitioned(InstanceStatus.MISSED, now)
        await self.repository.update(updated, expected_status=InstanceStatus.PENDING)
        logger.info(f"{patient_id}: {instance.item_name} ({instance_id}) -> missed")
        await self._emit_transition(instance, updated, None)
        return updated

    async def sweep_missed(self, patient_id: str, day: date) -> list[DailyInstance]:
        """Mark every overdue pending instance on *day* as missed."""
        now = self.clock()
        marked: list[DailyInstance] = []
        for instance in await self.repository.list_for_date(patient_id, day):
            if not self.is_overdue(instance, now):
                continue
            try:
                marked.append(await self.mark_missed(patient_id, instance.id))
            except InvalidTransitionError as exc:
                # Completed by someone else between the read and the write
                logger.debug(f"Skipping missed sweep for {instance.id}: {exc}")
        return marked

    # -- Events -------------------------------------------------------------

    async def _emit_transition(self, before: DailyInstance, after: DailyInstance, log: LogEntry | None) -> None:
        base = {"patient_id": after.patient_id, "date": after.date.isoformat()}
        await self.bus.emit(
            Event(
                name=INSTANCE_STATUS_CHANGED,
                payload={
                    **base,
                    "instance_id": after.id,
                    "item_id": after.care_plan_item_id,
                    "previous": before.status.value,
                    "status": after.status.value,
                    "log_id": log.id if log else None,
                },
                source="completion",
            )
        )
        await self.bus.emit(Event(name=INSTANCES_CHANGED, payload={**base, "updated": [after.id]}, source="completion"))
        if log is not None:
            await self.bus.emit(Event(name=LOGS_CHANGED, payload={**base, "log_id": log.id}, source="completion"))
