"""Tests for the persistent notification registry."""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from carecadence.core.events import DELIVERY_PREFERENCES_CHANGED, NOTIFICATIONS_CHANGED, Event, EventBus
from carecadence.core.exceptions import NotFoundError, ValidationError
from carecadence.notifications.models import (
    NotificationConfig,
    NotificationStatus,
    NotificationTiming,
    ScheduledNotification,
)
from carecadence.notifications.registry import NotificationRegistry, new_notification_id


def _notification(instance: str, hour: int, item_type: str = "medication", **kwargs) -> ScheduledNotification:
    when = datetime(2026, 3, 2, hour, tzinfo=timezone.utc)
    return ScheduledNotification(
        id=kwargs.pop("id", new_notification_id()),
        patient_id=kwargs.pop("patient_id", "mom"),
        daily_instance_id=instance,
        care_plan_item_id=kwargs.pop("item_id", "lisinopril"),
        item_type=item_type,
        title="Lisinopril",
        body="Scheduled for 08:00",
        scheduled_for=when,
        original_time=when,
        **kwargs,
    )


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def registry(storage, bus, clock):
    return NotificationRegistry(storage, bus, clock, history_days=7)


class TestScheduled:
    async def test_add_and_query(self, registry, bus):
        seen: list[Event] = []
        bus.on(NOTIFICATIONS_CHANGED, seen.append)

        first = await registry.add(_notification("inst-a", 8))
        follow_up = await registry.add(_notification("inst-a", 9, follow_up_attempt=1))
        await registry.add(_notification("inst-b", 12, item_id="water", item_type="hydration"))

        assert len(await registry.list_all("mom")) == 3
        assert await registry.get("mom", first.id) == first
        assert [n.id for n in await registry.for_instance("mom", "inst-a")] == [first.id, follow_up.id]
        assert len(await registry.for_item("mom", "water")) == 1
        assert len(seen) == 3
        assert seen[0].payload == {"patient_id": "mom", "notification_id": first.id}

    async def test_get_missing(self, registry):
        with pytest.raises(NotFoundError):
            await registry.get("mom", "ntf-missing")

    async def test_update_status_records_history(self, registry):
        notification = await registry.add(_notification("inst-a", 8))
        sent = await registry.update_status("mom", notification.id, NotificationStatus.SENT)
        assert sent.status == NotificationStatus.SENT

        history = await registry.history("mom")
        assert len(history) == 1
        assert history[0]["final_status"] == "sent"

        await registry.update_status("mom", notification.id, NotificationStatus.SNOOZED)
        assert len(await registry.history("mom")) == 1

    async def test_cancel_for_instance(self, registry):
        sent = await registry.add(_notification("inst-a", 8, status=NotificationStatus.SENT))
        await registry.add(_notification("inst-a", 9, follow_up_attempt=1))
        await registry.add(_notification("inst-b", 12))

        assert await registry.cancel_for_instance("mom", "inst-a") == (1, 1)
        remaining = await registry.for_instance("mom", "inst-a")
        assert [(n.id, n.status) for n in remaining] == [(sent.id, NotificationStatus.ACTIONED)]
        assert len(await registry.for_instance("mom", "inst-b")) == 1
        assert await registry.cancel_for_instance("mom", "inst-a") == (0, 0)

    async def test_remove_for_instance_and_item(self, registry):
        await registry.add(_notification("inst-a", 8, status=NotificationStatus.SENT))
        await registry.add(_notification("inst-b", 12, item_id="water"))
        assert await registry.remove_for_instance("mom", "inst-a") == 1
        assert await registry.remove_for_item("mom", "water") == 1
        assert await registry.list_all("mom") == []

    async def test_upcoming(self, registry, clock):
        clock.set(9)
        await registry.add(_notification("past", 8))
        later = await registry.add(_notification("later", 18))
        soon = await registry.add(_notification("soon", 10))
        await registry.add(_notification("sent", 11, status=NotificationStatus.SENT))

        assert [n.id for n in await registry.upcoming("mom")] == [soon.id, later.id]
        assert [n.id for n in await registry.upcoming("mom", limit=1)] == [soon.id]
        assert (await registry.next("mom")).id == soon.id

    async def test_pending_count_by_type(self, registry):
        await registry.add(_notification("a", 8))
        await registry.add(_notification("b", 9))
        await registry.add(_notification("c", 12, item_type="hydration"))
        await registry.add(_notification("d", 13, item_type="hydration", status=NotificationStatus.SENT))
        assert await registry.pending_count_by_type("mom") == {"medication": 2, "hydration": 1}

    async def test_cleanup_old(self, registry, clock):
        await registry.add(_notification("old", 8))
        clock.set(12, days=2)
        await registry.add(replace(_notification("fresh", 8, id="ntf-fresh"), scheduled_for=clock()))

        assert await registry.cleanup_old("mom") == 1
        assert [n.id for n in await registry.list_all("mom")] == ["ntf-fresh"]

    async def test_history_retention(self, registry, clock):
        notification = await registry.add(_notification("a", 8))
        await registry.update_status("mom", notification.id, NotificationStatus.DISMISSED)
        clock.advance(days=8)
        await registry.cleanup_old("mom")
        assert await registry.history("mom") == []

    async def test_patients(self, registry):
        await registry.add(_notification("a", 8))
        await registry.add(_notification("b", 8, patient_id="dad"))
        assert await registry.patients() == ["dad", "mom"]


class TestConfigsAndPreferences:
    async def test_item_config_override(self, registry):
        assert await registry.get_item_config("mom", "water") is None
        config = NotificationConfig(enabled=True, timing=NotificationTiming.BEFORE_15)
        await registry.set_item_config("mom", "water", config)
        assert await registry.get_item_config("mom", "water") == config
        assert await registry.get_item_config("dad", "water") is None

    async def test_invalid_item_config_rejected(self, registry):
        with pytest.raises(ValidationError):
            await registry.set_item_config("mom", "water", NotificationConfig(timing=NotificationTiming.CUSTOM))

    async def test_delivery_preferences(self, registry, bus):
        seen: list[Event] = []
        bus.on(DELIVERY_PREFERENCES_CHANGED, seen.append)

        assert (await registry.get_delivery_preferences()).master_enabled
        updated = await registry.update_delivery_preferences(master_enabled=False, quiet_hours={"enabled": False})
        assert not updated.master_enabled
        assert not updated.quiet_hours.enabled
        assert updated.quiet_hours.start == "22:00"
        assert await registry.get_delivery_preferences() == updated
        assert seen[0].payload["master_enabled"] is False

    async def test_history_is_bounded_by_limit(self, registry):
        for hour in range(6, 12):
            notification = await registry.add(_notification(f"inst-{hour}", hour))
            await registry.update_status("mom", notification.id, NotificationStatus.SENT)
        assert len(await registry.history("mom", limit=4)) == 4
        assert len(await registry.history("mom")) == 6

    async def test_clear_history(self, registry):
        notification = await registry.add(_notification("a", 8))
        await registry.update_status("mom", notification.id, NotificationStatus.ACTIONED)
        await registry.clear_history("mom")
        assert await registry.history("mom") == []

