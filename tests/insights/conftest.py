"""Factory for hand-built instances used by the insight tests."""

from datetime import date, datetime, timedelta, timezone

import pytest

from carecadence.instances.models import DailyInstance, InstanceStatus, instance_id

_LABEL_HOURS = {"morning": 8, "afternoon": 13, "evening": 18, "night": 22, "custom": 10}


@pytest.fixture
def make_instance():
    def _make(
        item_id: str = "med",
        day: date = date(2026, 3, 2),
        status: str = "pending",
        *,
        label: str = "morning",
        hour: int | None = None,
        item_type: str = "medication",
        priority: str = "required",
        name: str | None = None,
        window_id: str | None = None,
        instructions: str | None = None,
    ) -> DailyInstance:
        scheduled = datetime(day.year, day.month, day.day, hour or _LABEL_HOURS[label], tzinfo=timezone.utc)
        window_id = window_id or label
        return DailyInstance(
            id=instance_id(item_id, window_id, day),
            care_plan_id="plan-1",
            care_plan_item_id=item_id,
            patient_id="mom",
            date=day,
            window_id=window_id,
            window_label=label,
            scheduled_time=scheduled,
            window_end=scheduled + timedelta(hours=1),
            item_name=name or item_id.title(),
            item_type=item_type,
            priority=priority,
            status=InstanceStatus(status),
            instructions=instructions,
        )

    return _make
