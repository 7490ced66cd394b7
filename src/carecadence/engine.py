"""CareEngine: the single entry point callers (CLI, apps, reports) talk to.

Wires the stores and services together over one ``EventBus``:

    generator ──instances.changed──▶ reminders planned / re-planned / dropped
    completion ──instance.status_changed──▶ reminder chain cancelled (immediately)
    any data change ──(debounced)──▶ adherence cache invalidated

Usage::

    engine = CareEngine.from_config()
    today = await engine.list_instances("mom")
    await engine.complete_instance("mom", today[0].id, "taken")
    summary = await engine.generate_insights("mom")
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any

from loguru import logger

from carecadence.completion import CompletionCoordinator, CompletionResult
from carecadence.core.config import Config, get_config
from carecadence.core.events import (
    INSTANCE_STATUS_CHANGED,
    INSTANCES_CHANGED,
    LOGS_CHANGED,
    REGIMEN_CHANGED,
    SHUTDOWN,
    STARTUP,
    DebouncedHook,
    Event,
    EventBus,
)
from carecadence.core.exceptions import NotFoundError
from carecadence.core.storage import LocalStorage, StorageBackend
from carecadence.core.types import Clock
from carecadence.core.utils.timeutils import date_range, get_zone
from carecadence.insights import AdherenceEngine, DailySchedule, InsightsSummary, build_daily_schedule
from carecadence.instances.generator import InstanceGenerator
from carecadence.instances.models import DailyInstance, InstanceStatus, date_from_instance_id
from carecadence.instances.repository import InstanceRepository
from carecadence.logs.models import LogEntry, LogOutcome
from carecadence.logs.store import LogStore
from carecadence.notifications.models import (
    DeliveryPreferences,
    NotificationConfig,
    ScheduledNotification,
    default_config_for_type,
)
from carecadence.notifications.registry import NotificationRegistry
from carecadence.notifications.scheduler import DeliveryChannel, NotificationScheduler
from carecadence.regimen.schedule import window_label_for_hour
from carecadence.regimen.store import RegimenStore
from carecadence.scope import ScopeFilter


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CareEngine:
    """Facade over regimen, instances, completion, reminders, scope and insights.

    Args:
        storage: Backend every repository persists to.
        clock: Injected wall clock (timezone-aware); defaults to UTC now.
        channel: Reminder delivery channel; defaults to logging.
        default_patient_id: Used when a call omits ``patient_id``.
        missed_grace_minutes: How long after a window ends an instance turns missed.
        burden_max_load: Weighted points that map to a burden score of 100.
        debounce_seconds: Delay for collapsing change bursts before recomputation.
        dispatch_interval_seconds: Period of the background dispatch job.
        history_days: Retention of reminder history.
        default_snooze_minutes: Snooze length when none is given.
    """

    def __init__(
        self,
        storage: StorageBackend,
        *,
        clock: Clock | None = None,
        channel: DeliveryChannel | None = None,
        default_patient_id: str = "default",
        missed_grace_minutes: int = 120,
        burden_max_load: float = 30,
        debounce_seconds: float = 0.5,
        dispatch_interval_seconds: int = 60,
        history_days: int = 7,
        default_snooze_minutes: int = 15,
    ) -> None:
        self.storage = storage
        self.clock = clock or _utcnow
        self.default_patient_id = default_patient_id
        self.bus = EventBus()

        self.regimen = RegimenStore(storage, self.bus, self.clock)
        self.repository = InstanceRepository(storage)
        self.logs = LogStore(storage)
        self.scope = ScopeFilter(storage, self.bus)
        self.coordinator = CompletionCoordinator(
            self.repository, self.logs, self.bus, self.clock, grace_minutes=missed_grace_minutes
        )
        self.generator = InstanceGenerator(
            self.regimen, self.repository, self.bus, self.clock, sweep_missed=self.coordinator.sweep_missed
        )
        self.registry = NotificationRegistry(storage, self.bus, self.clock, history_days=history_days)
        self.scheduler = NotificationScheduler(
            self.registry,
            channel=channel,
            clock=self.clock,
            is_pending=self._is_pending,
            resolve_config=self._resolve_config,
            dispatch_interval_seconds=dispatch_interval_seconds,
            default_snooze_minutes=default_snooze_minutes,
        )
        self.adherence = AdherenceEngine(self.repository, self.logs, self.regimen, self.clock, max_load=burden_max_load)

        self._invalidate = DebouncedHook(self.adherence.on_changes, delay=debounce_seconds)
        self._started = False
        self._subscriptions: list[tuple[str, Any]] = []
        self._subscribe()

    @classmethod
    def from_config(cls, config: Config | None = None, **overrides: Any) -> CareEngine:
        """Build an engine from a ``Config`` (the global one by default)."""
        settings = (config or get_config()).validated()
        storage_dir = settings.paths.resolved_storage_dir()
        kwargs: dict[str, Any] = dict(
            default_patient_id=settings.engine.default_patient_id,
            missed_grace_minutes=settings.engine.missed_grace_minutes,
            burden_max_load=settings.engine.burden_max_load,
            debounce_seconds=settings.engine.debounce_seconds,
            dispatch_interval_seconds=settings.notifications.dispatch_interval_seconds,
            history_days=settings.notifications.history_days,
            default_snooze_minutes=settings.notifications.default_snooze_minutes,
        )
        kwargs.update(overrides)
        return cls(LocalStorage(str(storage_dir)), **kwargs)

    # -- Wiring -------------------------------------------------------------

    def _subscribe(self) -> None:
        if self._subscriptions:
            return
        self._subscriptions = [
            (INSTANCE_STATUS_CHANGED, self._on_status_changed),
            (INSTANCES_CHANGED, self._on_instances_changed),
        ]
        self._subscriptions += [(topic, self._invalidate) for topic in (INSTANCES_CHANGED, LOGS_CHANGED, REGIMEN_CHANGED)]
        for topic, hook in self._subscriptions:
            self.bus.on(topic, hook)

    def _unsubscribe(self) -> None:
        for topic, hook in self._subscriptions:
            self.bus.off(topic, hook)
        self._subscriptions = []

    async def _on_status_changed(self, event: Event) -> None:
        if event.payload.get("status") == InstanceStatus.PENDING:
            return
        await self.scheduler.cancel_for_instance(event.payload["patient_id"], event.payload["instance_id"])

    async def _on_instances_changed(self, event: Event) -> None:
        patient_id = event.payload["patient_id"]
        for instance_id in event.payload.get("removed", []):
            await self.scheduler.discard_instance(patient_id, instance_id)
        for instance_id in event.payload.get("added", []):
            instance = await self.repository.get(patient_id, instance_id)
            await self._plan_reminder(instance)
        for instance_id in event.payload.get("refreshed", []):
            instance = await self.repository.get(patient_id, instance_id)
            await self._plan_reminder(instance, replace=True)

    async def _plan_reminder(self, instance: DailyInstance, *, replace: bool = False) -> ScheduledNotification | None:
        if not instance.is_pending or self.coordinator.is_overdue(instance):
            if replace:
                await self.scheduler.discard_instance(instance.patient_id, instance.id)
            return None
        config = await self.get_config_for_item(instance.patient_id, instance.care_plan_item_id)
        if replace:
            return await self.scheduler.reschedule_instance(instance, config)
        return await self.scheduler.schedule_for_instance(instance, config)

    async def _is_pending(self, patient_id: str, instance_id: str) -> bool:
        try:
            return (await self.repository.get(patient_id, instance_id)).is_pending
        except NotFoundError:
            return False

    def _patient(self, patient_id: str | None) -> str:
        return patient_id or self.default_patient_id

    async def now(self, patient_id: str | None = None) -> datetime:
        """Current time in the patient's plan timezone."""
        return await self.adherence.local_now(self._patient(patient_id))

    async def today(self, patient_id: str | None = None) -> date:
        return (await self.now(patient_id)).date()

    # -- Instances ----------------------------------------------------------

    async def ensure_daily_instances(self, patient_id: str | None = None, day: date | None = None) -> list[DailyInstance]:
        patient_id = self._patient(patient_id)
        return await self.generator.ensure(patient_id, day or await self.today(patient_id))

    async def list_instances(
        self,
        patient_id: str | None = None,
        day: date | None = None,
        *,
        apply_scope: bool = True,
    ) -> list[DailyInstance]:
        """Instances for *day* (today by default), generated on demand."""
        patient_id = self._patient(patient_id)
        day = day or await self.today(patient_id)
        instances = await self.generator.ensure(patient_id, day)
        if apply_scope:
            instances = await self.scope.apply(patient_id, day, instances)
        return instances

    async def list_instances_in_range(self, patient_id: str | None, start: date, end: date) -> list[DailyInstance]:
        patient_id = self._patient(patient_id)
        by_day = await self.generator.ensure_range(patient_id, start, end)
        return [instance for day in sorted(by_day) for instance in by_day[day]]

    async def get_daily_schedule(
        self,
        patient_id: str | None = None,
        day: date | None = None,
        *,
        apply_scope: bool = True,
    ) -> DailySchedule:
        patient_id = self._patient(patient_id)
        now = await self.now(patient_id)
        day = day or now.date()
        instances = await self.list_instances(patient_id, day, apply_scope=apply_scope)
        return build_daily_schedule(day, instances, str(window_label_for_hour(now.hour)), now)

    # -- Completion ---------------------------------------------------------

    async def complete_instance(
        self,
        patient_id: str | None,
        instance_id: str,
        outcome: LogOutcome | str = LogOutcome.COMPLETED,
        **kwargs: Any,
    ) -> CompletionResult:
        return await self.coordinator.complete(self._patient(patient_id), instance_id, outcome, **kwargs)

    async def skip_instance(self, patient_id: str | None, instance_id: str, **kwargs: Any) -> CompletionResult:
        return await self.coordinator.skip(self._patient(patient_id), instance_id, **kwargs)

    async def mark_missed(self, patient_id: str | None, instance_id: str) -> DailyInstance:
        return await self.coordinator.mark_missed(self._patient(patient_id), instance_id)

    async def add_correction(
        self,
        patient_id: str | None,
        log_id: str,
        day: date,
        outcome: LogOutcome | str,
        **kwargs: Any,
    ) -> LogEntry:
        return await self.coordinator.add_correction(self._patient(patient_id), log_id, day, outcome, **kwargs)

    async def list_logs_in_range(self, patient_id: str | None, start: date, end: date) -> list[LogEntry]:
        return await self.logs.list_in_range(self._patient(patient_id), start, end)

    # -- Reminders ----------------------------------------------------------

    async def get_upcoming_notifications(self, patient_id: str | None = None, limit: int = 10) -> list[ScheduledNotification]:
        return await self.scheduler.get_upcoming(self._patient(patient_id), limit=limit)

    async def snooze(self, patient_id: str | None, notification_id: str, minutes: int | None = None) -> ScheduledNotification:
        return await self.scheduler.snooze(self._patient(patient_id), notification_id, minutes)

    async def dismiss(self, patient_id: str | None, notification_id: str) -> ScheduledNotification:
        return await self.scheduler.dismiss(self._patient(patient_id), notification_id)

    async def dispatch_due(self, patient_id: str | None = None) -> list[ScheduledNotification]:
        return await self.scheduler.dispatch_due(self._patient(patient_id))

    async def get_delivery_preferences(self) -> DeliveryPreferences:
        return await self.registry.get_delivery_preferences()

    async def update_delivery_preferences(self, **changes: Any) -> DeliveryPreferences:
        return await self.registry.update_delivery_preferences(**changes)

    async def get_config_for_item(self, patient_id: str | None, item_id: str) -> NotificationConfig:
        """Stored override, else the item's own config, else its type default."""
        return await self._resolve_config(self._patient(patient_id), item_id, "custom")

    async def _resolve_config(self, patient_id: str, item_id: str, item_type: str) -> NotificationConfig:
        override = await self.registry.get_item_config(patient_id, item_id)
        if override is not None:
            return override
        try:
            item = await self.regimen.get_item(patient_id, item_id)
        except NotFoundError:
            return default_config_for_type(item_type)
        return item.notification or default_config_for_type(item.type)

    async def update_config_for_item(
        self,
        patient_id: str | None,
        item_id: str,
        config: NotificationConfig,
    ) -> NotificationConfig:
        """Store an override and re-plan the item's pending reminders for today."""
        patient_id = self._patient(patient_id)
        await self.regimen.get_item(patient_id, item_id)
        await self.registry.set_item_config(patient_id, item_id, config)
        for instance in await self.repository.list_for_date(patient_id, await self.today(patient_id)):
            if instance.care_plan_item_id == item_id:
                await self._plan_reminder(instance, replace=True)
        return config

    async def reschedule_for_date(self, patient_id: str | None, day: date) -> list[ScheduledNotification]:
        """Re-plan reminders for every pending instance on *day*."""
        patient_id = self._patient(patient_id)
        planned = []
        for instance in await self.generator.ensure(patient_id, day):
            notification = await self._plan_reminder(instance, replace=True)
            if notification is not None:
                planned.append(notification)
        logger.info(f"Rescheduled {len(planned)} reminder(s) for {patient_id} on {day}")
        return planned

    # -- Insights -----------------------------------------------------------

    async def generate_insights(
        self,
        patient_id: str | None = None,
        start: date | None = None,
        end: date | None = None,
    ) -> InsightsSummary:
        """Adherence summary for *start*..*end*; defaults to the last 7 days."""
        patient_id = self._patient(patient_id)
        # Apply any buffered invalidation before reading the cache
        await self._invalidate.flush()
        end = end or await self.today(patient_id)
        start = start or end - timedelta(days=6)
        return await self.adherence.summarize(patient_id, start, end)

    # -- Maintenance --------------------------------------------------------

    async def purge_range(self, patient_id: str | None, start: date, end: date) -> dict[str, int]:
        """Delete instances, logs, scope entries and reminders dated within the range."""
        patient_id = self._patient(patient_id)
        instance_ids = {
            n.daily_instance_id
            for n in await self.registry.list_all(patient_id)
            if start <= date_from_instance_id(n.daily_instance_id) <= end
        }
        reminders = 0
        for instance_id in sorted(instance_ids):
            reminders += await self.scheduler.discard_instance(patient_id, instance_id)
        for day in date_range(start, end):
            await self.scope.reset(patient_id, day)
        counts = {
            "instances": await self.repository.purge_range(patient_id, start, end),
            "logs": await self.logs.purge_range(patient_id, start, end),
            "notifications": reminders,
        }
        self.adherence.invalidate(patient_id)
        return counts

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Start reminder timers and the periodic dispatch job. Needs a running loop."""
        if self._started:
            return
        self._subscribe()
        plan = await self.regimen.get_plan(self.default_patient_id)
        tz_name = plan.timezone if plan else "UTC"
        get_zone(tz_name)
        await self.scheduler.start(tz_name)
        self._started = True
        await self.bus.emit(Event(name=STARTUP, source="engine"))

    async def shutdown(self) -> None:
        """Release every timer, pending debounce and bus hook; safe to call more than once."""
        await self._invalidate.flush()
        self._invalidate.cancel()
        self.scheduler.shutdown()
        self._unsubscribe()
        if self._started:
            self._started = False
            await self.bus.emit(Event(name=SHUTDOWN, source="engine"))
