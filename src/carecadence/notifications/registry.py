"""Notification registry: persistent state of every scheduled reminder.

Documents:
    notifications/{patient_id}/scheduled.json   -> active and recent reminders
    notifications/{patient_id}/history.json     -> sent/actioned/dismissed, last N days
    notifications/{patient_id}/configs.json     -> per-item NotificationConfig overrides
    notifications/delivery-preferences.json     -> global DeliveryPreferences

The registry is the source of truth; the scheduler's in-memory timers are
rebuilt from it.
"""

from __future__ import annotations

import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any

from loguru import logger

from carecadence.core.events import (
    DELIVERY_PREFERENCES_CHANGED,
    NOTIFICATIONS_CHANGED,
    Event,
    EventBus,
)
from carecadence.core.exceptions import NotFoundError
from carecadence.core.storage import JsonDocumentStore, StorageBackend
from carecadence.core.types import Clock
from carecadence.core.utils.locks import KeyedLock

from .models import (
    DeliveryPreferences,
    NotificationConfig,
    NotificationStatus,
    ScheduledNotification,
)

_HISTORY_STATUSES = {NotificationStatus.SENT, NotificationStatus.ACTIONED, NotificationStatus.DISMISSED}
_PREFS_KEY = "notifications/delivery-preferences.json"


def _scheduled_key(patient_id: str) -> str:
    return f"notifications/{patient_id}/scheduled.json"


def _history_key(patient_id: str) -> str:
    return f"notifications/{patient_id}/history.json"


def _configs_key(patient_id: str) -> str:
    return f"notifications/{patient_id}/configs.json"


def new_notification_id() -> str:
    return f"ntf-{uuid.uuid4().hex[:16]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationRegistry:
    """CRUD over scheduled reminders, history, item configs and delivery preferences."""

    def __init__(
        self,
        storage: StorageBackend,
        bus: EventBus | None = None,
        clock: Clock | None = None,
        history_days: int = 7,
    ) -> None:
        self.docs = JsonDocumentStore(storage)
        self.bus = bus or EventBus()
        self.clock = clock or _utcnow
        self.history_days = history_days
        self._locks = KeyedLock()

    # -- Scheduled ----------------------------------------------------------

    async def list_all(self, patient_id: str) -> list[ScheduledNotification]:
        raw = await self.docs.read(_scheduled_key(patient_id), default=[])
        return [ScheduledNotification.from_dict(d) for d in raw]

    async def get(self, patient_id: str, notification_id: str) -> ScheduledNotification:
        for notification in await self.list_all(patient_id):
            if notification.id == notification_id:
                return notification
        raise NotFoundError(f"Notification {notification_id!r} not found for patient {patient_id!r}")

    async def for_instance(self, patient_id: str, instance_id: str) -> list[ScheduledNotification]:
        return sorted(
            (n for n in await self.list_all(patient_id) if n.daily_instance_id == instance_id),
            key=lambda n: (n.follow_up_attempt, n.scheduled_for),
        )

    async def for_item(self, patient_id: str, item_id: str) -> list[ScheduledNotification]:
        return [n for n in await self.list_all(patient_id) if n.care_plan_item_id == item_id]

    async def add(self, notification: ScheduledNotification) -> ScheduledNotification:
        async with self._locks.hold(notification.patient_id):
            current = await self.list_all(notification.patient_id)
            current.append(notification)
            await self._save(notification.patient_id, current)
        await self._changed(notification.patient_id, notification_id=notification.id)
        return notification

    async def update_status(
        self,
        patient_id: str,
        notification_id: str,
        status: NotificationStatus,
        **changes: Any,
    ) -> ScheduledNotification:
        """Set *status* (plus extra fields) on one notification.

        Sent, actioned and dismissed notifications are also copied to history.
        """
        now = self.clock()
        async with self._locks.hold(patient_id):
            current = await self.list_all(patient_id)
            for idx, notification in enumerate(current):
                if notification.id == notification_id:
                    break
            else:
                raise NotFoundError(f"Notification {notification_id!r} not found for patient {patient_id!r}")
            updated = notification.with_status(status, now, **changes)
            current[idx] = updated
            await self._save(patient_id, current)
        await self._changed(patient_id, notification_id=notification_id)

        if status in _HISTORY_STATUSES:
            await self._add_to_history(patient_id, updated)
        return updated

    async def cancel_for_instance(self, patient_id: str, instance_id: str) -> tuple[int, int]:
        """Drop pending/snoozed reminders and mark sent ones actioned.

        Returns ``(removed, actioned)`` counts.
        """
        now = self.clock()
        actioned: list[ScheduledNotification] = []
        async with self._locks.hold(patient_id):
            current = await self.list_all(patient_id)
            kept: list[ScheduledNotification] = []
            removed = 0
            for notification in current:
                if notification.daily_instance_id != instance_id:
                    kept.append(notification)
                elif notification.is_active:
                    removed += 1
                elif notification.status == NotificationStatus.SENT:
                    updated = notification.with_status(NotificationStatus.ACTIONED, now)
                    actioned.append(updated)
                    kept.append(updated)
                else:
                    kept.append(notification)
            if removed or actioned:
                await self._save(patient_id, kept)
        if removed or actioned:
            await self._changed(patient_id, instance_id=instance_id)

        for notification in actioned:
            await self._add_to_history(patient_id, notification)
        return removed, len(actioned)

    async def remove_for_instance(self, patient_id: str, instance_id: str) -> int:
        """Forget every reminder of an instance, whatever its status."""
        async with self._locks.hold(patient_id):
            current = await self.list_all(patient_id)
            kept = [n for n in current if n.daily_instance_id != instance_id]
            if len(kept) != len(current):
                await self._save(patient_id, kept)
        if len(kept) != len(current):
            await self._changed(patient_id, instance_id=instance_id)
        return len(current) - len(kept)

    async def remove_for_item(self, patient_id: str, item_id: str) -> int:
        async with self._locks.hold(patient_id):
            current = await self.list_all(patient_id)
            kept = [n for n in current if n.care_plan_item_id != item_id]
            if len(kept) != len(current):
                await self._save(patient_id, kept)
        if len(kept) != len(current):
            await self._changed(patient_id, item_id=item_id)
        return len(current) - len(kept)

    async def upcoming(self, patient_id: str, limit: int = 10, now: datetime | None = None) -> list[ScheduledNotification]:
        """Pending reminders not yet due, soonest first."""
        now = now or self.clock()
        pending = [n for n in await self.list_all(patient_id) if n.status == NotificationStatus.PENDING and n.scheduled_for >= now]
        pending.sort(key=lambda n: n.scheduled_for)
        return pending[:limit]

    async def next(self, patient_id: str, now: datetime | None = None) -> ScheduledNotification | None:
        upcoming = await self.upcoming(patient_id, limit=1, now=now)
        return upcoming[0] if upcoming else None

    async def pending_count_by_type(self, patient_id: str) -> dict[str, int]:
        return dict(Counter(n.item_type for n in await self.list_all(patient_id) if n.status == NotificationStatus.PENDING))

    async def cleanup_old(self, patient_id: str, now: datetime | None = None) -> int:
        """Remove reminders scheduled more than a day ago, and expired history."""
        now = now or self.clock()
        cutoff = now - timedelta(days=1)
        async with self._locks.hold(patient_id):
            current = await self.list_all(patient_id)
            kept = [n for n in current if n.scheduled_for > cutoff]
            removed = len(current) - len(kept)
            if removed:
                await self._save(patient_id, kept)
            await self._prune_history(patient_id, now)
        if removed:
            await self._changed(patient_id)
            logger.info(f"Cleaned up {removed} old notification(s) for {patient_id}")
        return removed

    async def patients(self) -> list[str]:
        """Patients that have a scheduled-notification document."""
        found = set()
        for key in await self.docs.keys(prefix="notifications/"):
            parts = key.split("/")
            if len(parts) == 3 and parts[2] == "scheduled.json":
                found.add(parts[1])
        return sorted(found)

    # -- History ------------------------------------------------------------

    async def history(self, patient_id: str, limit: int = 50) -> list[dict[str, Any]]:
        raw = await self.docs.read(_history_key(patient_id), default=[])
        return raw[-limit:]

    async def clear_history(self, patient_id: str) -> None:
        await self.docs.write(_history_key(patient_id), [])

    async def _add_to_history(self, patient_id: str, notification: ScheduledNotification) -> None:
        now = self.clock()
        async with self._locks.hold(("history", patient_id)):
            history = await self.docs.read(_history_key(patient_id), default=[])
            history.append({**notification.to_dict(), "final_status": notification.status.value, "completed_at": now.isoformat()})
            cutoff = now - timedelta(days=self.history_days)
            history = [h for h in history if datetime.fromisoformat(h["completed_at"]) >= cutoff]
            await self.docs.write(_history_key(patient_id), history)

    async def _prune_history(self, patient_id: str, now: datetime) -> None:
        async with self._locks.hold(("history", patient_id)):
            history = await self.docs.read(_history_key(patient_id), default=[])
            cutoff = now - timedelta(days=self.history_days)
            kept = [h for h in history if datetime.fromisoformat(h["completed_at"]) >= cutoff]
            if len(kept) != len(history):
                await self.docs.write(_history_key(patient_id), kept)

    # -- Per-item configs ---------------------------------------------------

    async def get_item_config(self, patient_id: str, item_id: str) -> NotificationConfig | None:
        raw = await self.docs.read(_configs_key(patient_id), default={})
        data = raw.get(item_id)
        return NotificationConfig.from_dict(data) if data else None

    async def set_item_config(self, patient_id: str, item_id: str, config: NotificationConfig) -> NotificationConfig:
        config.validate()
        async with self._locks.hold(("configs", patient_id)):
            raw = await self.docs.read(_configs_key(patient_id), default={})
            raw[item_id] = config.to_dict()
            await self.docs.write(_configs_key(patient_id), raw)
        return config

    # -- Delivery preferences -----------------------------------------------

    async def get_delivery_preferences(self) -> DeliveryPreferences:
        data = await self.docs.read(_PREFS_KEY)
        return DeliveryPreferences.from_dict(data) if data else DeliveryPreferences()

    async def update_delivery_preferences(self, **changes: Any) -> DeliveryPreferences:
        """Partial update; ``quiet_hours`` may itself be partial."""
        async with self._locks.hold("delivery-preferences"):
            updated = (await self.get_delivery_preferences()).merged(changes)
            await self.docs.write(_PREFS_KEY, updated.to_dict())
        await self.bus.emit(Event(name=DELIVERY_PREFERENCES_CHANGED, payload=updated.to_dict(), source="notifications"))
        return updated

    # -- Internals ----------------------------------------------------------

    async def _save(self, patient_id: str, notifications: list[ScheduledNotification]) -> None:
        await self.docs.write(_scheduled_key(patient_id), [n.to_dict() for n in notifications])

    async def _changed(self, patient_id: str, **payload: Any) -> None:
        # Emitted outside the patient lock so hooks may call back into the registry
        await self.bus.emit(Event(name=NOTIFICATIONS_CHANGED, payload={"patient_id": patient_id, **payload}, source="notifications"))
