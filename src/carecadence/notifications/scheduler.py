"""Reminder scheduling, delivery and follow-up escalation.

Each pending instance owns at most one reminder chain: an initial
notification plus up to ``follow_up.max_attempts`` follow-ups, each
``interval_minutes`` after the previous fire time. The chain ends the
moment the instance leaves ``pending``.

Runtime pieces:
    * ``ReminderTimer``: one cancellable ``asyncio.Task`` per instance that
      sleeps until the chain's next due time and then triggers a dispatch.
    * ``dispatch_due``: delivers everything due for a patient. APScheduler
      runs ``periodic_pass`` as a safety net for missed timers; it also
      prunes reminders older than a day and expired history.
    * ``DeliveryChannel``: where reminders actually go. A
      ``NotificationDeliveryFailure`` leaves the reminder pending for the
      next pass.

APScheduler is imported lazily (only in :meth:`NotificationScheduler.start`).
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from loguru import logger

from carecadence.core.exceptions import InvalidTransitionError, NotificationDeliveryFailure
from carecadence.core.types import Clock
from carecadence.instances.models import DailyInstance

from .models import (
    DeliveryPreferences,
    NotificationConfig,
    NotificationStatus,
    ScheduledNotification,
    default_config_for_type,
)
from .registry import NotificationRegistry, new_notification_id
from .timing import clip_to_quiet_hours, fire_time

PendingCheck = Callable[[str, str], Awaitable[bool]]
"""``(patient_id, instance_id) -> bool``: is the instance still pending?"""

ConfigResolver = Callable[[str, str, str], Awaitable[NotificationConfig]]
"""``(patient_id, item_id, item_type) -> NotificationConfig`` for an item."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Delivery ────────────────────────────────────────────────────────


class DeliveryChannel(Protocol):
    async def deliver(self, notification: ScheduledNotification, preferences: DeliveryPreferences) -> None:
        """Hand the reminder to the outside world; raise NotificationDeliveryFailure on failure."""


class LogDeliveryChannel:
    """Default channel: writes reminders to the log."""

    async def deliver(self, notification: ScheduledNotification, preferences: DeliveryPreferences) -> None:
        flags = []
        if preferences.sound_enabled:
            flags.append("sound")
        if preferences.vibration_enabled:
            flags.append("vibrate")
        logger.info(f"[reminder] {notification.title}: {notification.body} ({', '.join(flags) or 'silent'})")


class MemoryDeliveryChannel:
    """Collects delivered reminders in memory; handy for embedding and tests."""

    def __init__(self) -> None:
        self.delivered: list[ScheduledNotification] = []

    async def deliver(self, notification: ScheduledNotification, preferences: DeliveryPreferences) -> None:
        self.delivered.append(notification)


# ── Timers ──────────────────────────────────────────────────────────


class ReminderTimer:
    """Owned handle for one instance's next wake-up.

    ``cancel()`` is a no-op once the callback has started, so a dispatch
    triggered by this timer can re-arm the chain without cancelling itself.
    """

    def __init__(self, key: tuple[str, str], due_at: datetime, callback: Callable[[], Awaitable[Any]], clock: Clock):
        self.key = key
        self.due_at = due_at
        self._callback = callback
        self._clock = clock
        self._firing = False
        self._task: asyncio.Task | None = None

    def start(self, on_done: Callable[[ReminderTimer], None] | None = None) -> ReminderTimer:
        self._task = asyncio.get_running_loop().create_task(self._run())
        if on_done is not None:
            self._task.add_done_callback(lambda _task: on_done(self))
        return self

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        delay = (self.due_at - self._clock()).total_seconds()
        if delay > 0:
            await asyncio.sleep(delay)
        self._firing = True
        try:
            await self._callback()
        except Exception as exc:
            logger.warning(f"Reminder timer for {self.key[1]} failed: {exc}")

    def cancel(self) -> None:
        if self._task is not None and not self._task.done() and not self._firing:
            self._task.cancel()


# ── Scheduler ───────────────────────────────────────────────────────


class NotificationScheduler:
    """Plans, delivers and cancels reminder chains.

    Args:
        registry: Persistent notification state.
        channel: Delivery target; defaults to logging.
        clock: Injected wall clock (timezone-aware).
        is_pending: Callback to re-check an instance before delivery.
        resolve_config: Looks up an item's reminder config; defaults to the
            stored override, else the item type's default.
        dispatch_interval_seconds: Period of the APScheduler safety-net job.
        default_snooze_minutes: Used when ``snooze`` is called without minutes.
    """

    def __init__(
        self,
        registry: NotificationRegistry,
        channel: DeliveryChannel | None = None,
        clock: Clock | None = None,
        is_pending: PendingCheck | None = None,
        resolve_config: ConfigResolver | None = None,
        dispatch_interval_seconds: int = 60,
        default_snooze_minutes: int = 15,
    ) -> None:
        self.registry = registry
        self.channel = channel or LogDeliveryChannel()
        self.clock = clock or _utcnow
        self.is_pending = is_pending
        self.resolve_config = resolve_config
        self.dispatch_interval_seconds = dispatch_interval_seconds
        self.default_snooze_minutes = default_snooze_minutes
        self._timers: dict[tuple[str, str], ReminderTimer] = {}
        self._scheduler: Any = None  # AsyncIOScheduler, lazily created
        self._timers_enabled = False
        self._dispatch_lock = asyncio.Lock()

    # ── Planning ───────────────────────────────────────────────────

    async def schedule_for_instance(
        self,
        instance: DailyInstance,
        config: NotificationConfig | None = None,
    ) -> ScheduledNotification | None:
        """Plan the initial reminder for a pending instance.

        Returns the existing active reminder when the instance already has a
        chain, and None when reminders are disabled or the instance is done.
        """
        config = config or await self.config_for_item(instance.patient_id, instance.care_plan_item_id, instance.item_type)
        if not config.enabled or not instance.is_pending:
            return None

        existing = await self.registry.for_instance(instance.patient_id, instance.id)
        active = [n for n in existing if n.is_active]
        if active:
            return active[0]
        if existing:
            # Chain already ran (sent/dismissed); don't start a second one
            return None

        preferences = await self.registry.get_delivery_preferences()
        scheduled_for, original = fire_time(instance.scheduled_time, config, preferences.quiet_hours)
        now = self.clock()
        notification = ScheduledNotification(
            id=new_notification_id(),
            patient_id=instance.patient_id,
            daily_instance_id=instance.id,
            care_plan_item_id=instance.care_plan_item_id,
            item_type=instance.item_type,
            title=_title(instance),
            body=_body(instance),
            scheduled_for=scheduled_for,
            original_time=original,
            timing=config.timing,
            status=NotificationStatus.PENDING,
            follow_up_attempt=0,
            follow_up=copy.copy(config.follow_up),
            created_at=now,
            updated_at=now,
        )
        await self.registry.add(notification)
        if scheduled_for != original:
            logger.debug(f"Reminder for {instance.id} moved out of quiet hours: {original} -> {scheduled_for}")
        self._arm(notification)
        return notification

    async def reschedule_instance(self, instance: DailyInstance, config: NotificationConfig | None = None) -> ScheduledNotification | None:
        """Drop the instance's chain and plan it again (e.g. after a time change)."""
        await self.discard_instance(instance.patient_id, instance.id)
        return await self.schedule_for_instance(instance, config)

    async def config_for_item(self, patient_id: str, item_id: str, item_type: str) -> NotificationConfig:
        """The item's reminder config, via ``resolve_config`` when one was given."""
        if self.resolve_config is not None:
            return await self.resolve_config(patient_id, item_id, item_type)
        override = await self.registry.get_item_config(patient_id, item_id)
        return override or default_config_for_type(item_type)

    # ── Cancellation and user actions ──────────────────────────────

    async def cancel_for_instance(self, patient_id: str, instance_id: str) -> int:
        """End the instance's chain: pending/snoozed removed, sent marked actioned."""
        key = (patient_id, instance_id)
        self._drop_timer(key)
        removed, actioned = await self.registry.cancel_for_instance(patient_id, instance_id)
        if removed or actioned:
            logger.debug(f"Cancelled reminders for {instance_id}: {removed} removed, {actioned} actioned")
        return removed

    async def discard_instance(self, patient_id: str, instance_id: str) -> int:
        """Forget every reminder of the instance without recording history."""
        self._drop_timer((patient_id, instance_id))
        return await self.registry.remove_for_instance(patient_id, instance_id)

    async def snooze(self, patient_id: str, notification_id: str, minutes: int | None = None) -> ScheduledNotification:
        notification = await self.registry.get(patient_id, notification_id)
        if notification.status in (NotificationStatus.ACTIONED, NotificationStatus.DISMISSED):
            raise InvalidTransitionError(f"Notification {notification_id} is {notification.status}; cannot snooze")
        minutes = minutes or self.default_snooze_minutes
        preferences = await self.registry.get_delivery_preferences()
        # Quiet hours are wall-clock times in the plan's timezone
        wake = (self.clock() + timedelta(minutes=minutes)).astimezone(notification.scheduled_for.tzinfo)
        until = clip_to_quiet_hours(wake, preferences.quiet_hours)
        updated = await self.registry.update_status(patient_id, notification_id, NotificationStatus.SNOOZED, snoozed_until=until)
        self._arm(updated)
        return updated

    async def dismiss(self, patient_id: str, notification_id: str) -> ScheduledNotification:
        """Dismiss one reminder. Later follow-ups in the chain are unaffected."""
        updated = await self.registry.update_status(patient_id, notification_id, NotificationStatus.DISMISSED)
        await self._rearm_instance(patient_id, updated.daily_instance_id)
        return updated

    async def mark_actioned(self, patient_id: str, notification_id: str) -> ScheduledNotification:
        updated = await self.registry.update_status(patient_id, notification_id, NotificationStatus.ACTIONED)
        await self._rearm_instance(patient_id, updated.daily_instance_id)
        return updated

    # ── Queries ────────────────────────────────────────────────────

    async def get_upcoming(self, patient_id: str, limit: int = 10) -> list[ScheduledNotification]:
        return await self.registry.upcoming(patient_id, limit=limit, now=self.clock())

    async def get_next(self, patient_id: str) -> ScheduledNotification | None:
        return await self.registry.next(patient_id, now=self.clock())

    async def pending_count_by_type(self, patient_id: str) -> dict[str, int]:
        return await self.registry.pending_count_by_type(patient_id)

    async def history(self, patient_id: str, limit: int = 50) -> list[dict[str, Any]]:
        return await self.registry.history(patient_id, limit=limit)

    async def cleanup_old(self, patient_id: str) -> int:
        return await self.registry.cleanup_old(patient_id, now=self.clock())

    # ── Dispatch ───────────────────────────────────────────────────

    async def dispatch_due(self, patient_id: str, now: datetime | None = None) -> list[ScheduledNotification]:
        """Deliver every due reminder for *patient_id*; schedule follow-ups.

        Reminders whose instance is no longer pending are cancelled instead
        of delivered. With ``master_enabled`` off nothing is delivered and
        nothing stored changes.
        """
        async with self._dispatch_lock:
            return await self._dispatch_locked(patient_id, now or self.clock())

    async def dispatch_all(self, now: datetime | None = None) -> list[ScheduledNotification]:
        delivered: list[ScheduledNotification] = []
        for patient_id in await self.registry.patients():
            delivered.extend(await self.dispatch_due(patient_id, now))
        return delivered

    async def periodic_pass(self, now: datetime | None = None) -> list[ScheduledNotification]:
        """Background job body: deliver what is due, then prune stale reminders and history."""
        now = now or self.clock()
        delivered = await self.dispatch_all(now)
        for patient_id in await self.registry.patients():
            await self.registry.cleanup_old(patient_id, now=now)
        return delivered

    async def _dispatch_locked(self, patient_id: str, now: datetime) -> list[ScheduledNotification]:
        preferences = await self.registry.get_delivery_preferences()
        if not preferences.master_enabled:
            logger.debug("Delivery disabled by master switch; skipping dispatch")
            return []

        due = sorted((n for n in await self.registry.list_all(patient_id) if n.is_due(now)), key=lambda n: n.due_at())
        delivered: list[ScheduledNotification] = []
        for notification in due:
            if self.is_pending is not None and not await self.is_pending(patient_id, notification.daily_instance_id):
                await self.cancel_for_instance(patient_id, notification.daily_instance_id)
                continue
            try:
                await self.channel.deliver(notification, preferences)
            except NotificationDeliveryFailure as exc:
                logger.warning(f"Delivery failed for reminder {notification.id}; will retry: {exc}")
                continue

            fired_at = notification.due_at()
            sent = await self.registry.update_status(patient_id, notification.id, NotificationStatus.SENT, snoozed_until=None)
            delivered.append(sent)
            await self._schedule_follow_up(sent, fired_at, preferences)

        if delivered:
            logger.debug(f"Delivered {len(delivered)} reminder(s) for {patient_id}")
        return delivered

    async def _schedule_follow_up(
        self,
        previous: ScheduledNotification,
        fired_at: datetime,
        preferences: DeliveryPreferences,
    ) -> ScheduledNotification | None:
        follow_up = previous.follow_up
        if follow_up is None:
            config = await self.config_for_item(previous.patient_id, previous.care_plan_item_id, previous.item_type)
            follow_up = config.follow_up
        attempt = previous.follow_up_attempt + 1
        if not follow_up.enabled or attempt > follow_up.max_attempts:
            return None

        chain = await self.registry.for_instance(previous.patient_id, previous.daily_instance_id)
        if any(n.follow_up_attempt >= attempt for n in chain):
            # A re-delivered (snoozed) reminder already spawned its follow-up
            return None

        raw = fired_at.astimezone(previous.original_time.tzinfo) + timedelta(minutes=follow_up.interval_minutes)
        now = self.clock()
        notification = ScheduledNotification(
            id=new_notification_id(),
            patient_id=previous.patient_id,
            daily_instance_id=previous.daily_instance_id,
            care_plan_item_id=previous.care_plan_item_id,
            item_type=previous.item_type,
            title=f"Reminder: {_strip_prefix(previous.title)}",
            body=previous.body,
            scheduled_for=clip_to_quiet_hours(raw, preferences.quiet_hours),
            original_time=raw,
            timing=previous.timing,
            status=NotificationStatus.PENDING,
            follow_up_attempt=attempt,
            follow_up=copy.copy(follow_up),
            created_at=now,
            updated_at=now,
        )
        await self.registry.add(notification)
        self._arm(notification)
        return notification

    # ── Timers ─────────────────────────────────────────────────────

    def _arm(self, notification: ScheduledNotification) -> None:
        if not self._timers_enabled or not notification.is_active:
            return
        key = (notification.patient_id, notification.daily_instance_id)
        existing = self._timers.get(key)
        if existing is not None:
            existing.cancel()
        patient_id = notification.patient_id
        self._timers[key] = ReminderTimer(
            key,
            notification.due_at(),
            lambda: self.dispatch_due(patient_id),
            self.clock,
        ).start(on_done=self._forget_timer)

    def _forget_timer(self, timer: ReminderTimer) -> None:
        # A re-armed chain has already replaced this handle
        if self._timers.get(timer.key) is timer:
            del self._timers[timer.key]

    async def _rearm_instance(self, patient_id: str, instance_id: str) -> None:
        key = (patient_id, instance_id)
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        active = [n for n in await self.registry.for_instance(patient_id, instance_id) if n.is_active]
        if active:
            self._arm(min(active, key=lambda n: n.due_at()))

    def _drop_timer(self, key: tuple[str, str]) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()

    @property
    def active_timers(self) -> int:
        return sum(1 for t in self._timers.values() if t.active)

    # ── Lifecycle ──────────────────────────────────────────────────

    async def start(self, timezone_name: str = "UTC") -> None:
        """Arm timers for every stored active reminder and start the periodic dispatch job.

        Must be called from a running asyncio event loop.
        """
        from apscheduler.schedulers.asyncio import AsyncIOScheduler
        from apscheduler.triggers.interval import IntervalTrigger

        self._timers_enabled = True
        for patient_id in await self.registry.patients():
            await self.registry.cleanup_old(patient_id)
            for notification in await self.registry.list_all(patient_id):
                if notification.is_active:
                    await self._rearm_instance(patient_id, notification.daily_instance_id)

        self._scheduler = AsyncIOScheduler(timezone=timezone_name)
        self._scheduler.add_job(
            self.periodic_pass,
            trigger=IntervalTrigger(seconds=self.dispatch_interval_seconds, timezone=timezone_name),
            id="carecadence_dispatch",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(
            f"NotificationScheduler started: {self.active_timers} timer(s), dispatch every {self.dispatch_interval_seconds}s"
        )

    def shutdown(self) -> None:
        """Cancel every timer and stop the periodic job."""
        self._timers_enabled = False
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            logger.info("NotificationScheduler shut down")

    @property
    def apscheduler(self) -> Any:
        """Raw APScheduler instance; None until :meth:`start` has been called."""
        return self._scheduler


def _title(instance: DailyInstance) -> str:
    prefix = f"{instance.item_emoji} " if instance.item_emoji else ""
    return f"{prefix}{instance.item_name}"


def _strip_prefix(title: str) -> str:
    return title.removeprefix("Reminder: ")


def _body(instance: DailyInstance) -> str:
    parts = [f"Scheduled for {instance.scheduled_time.strftime('%H:%M')}"]
    if instance.item_dosage:
        parts.append(instance.item_dosage)
    if instance.instructions:
        parts.append(instance.instructions)
    return " · ".join(parts)
