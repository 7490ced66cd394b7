"""Tests for idempotent daily-instance generation."""

import asyncio
from datetime import date, datetime, timezone

import pytest

from carecadence.core.events import INSTANCES_CHANGED, Event, EventBus
from carecadence.core.exceptions import ConcurrentGenerationSkipped
from carecadence.instances.generator import InstanceGenerator
from carecadence.instances.models import InstanceStatus, instance_id
from carecadence.instances.repository import DayDocument, InstanceRepository
from carecadence.regimen.store import RegimenStore

MONDAY = date(2026, 3, 2)
TUESDAY = date(2026, 3, 3)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events(bus):
    seen: list[Event] = []
    bus.on(INSTANCES_CHANGED, seen.append)
    return seen


@pytest.fixture
def regimen(storage, bus, clock):
    return RegimenStore(storage, bus, clock)


@pytest.fixture
def repository(storage):
    return InstanceRepository(storage)


@pytest.fixture
async def generator(regimen, repository, bus, clock, regimen_data):
    await regimen.import_regimen(regimen_data)
    return InstanceGenerator(regimen, repository, bus, clock)


class TestEnsure:
    async def test_generates_scheduled_items(self, generator):
        monday = await generator.ensure("mom", MONDAY)
        tuesday = await generator.ensure("mom", TUESDAY)

        assert [i.care_plan_item_id for i in monday] == ["bp-check", "lisinopril", "water", "mood"]
        # Mood is Monday/Wednesday/Friday only
        assert [i.care_plan_item_id for i in tuesday] == ["bp-check", "lisinopril", "water"]
        assert all(i.status == InstanceStatus.PENDING for i in monday)

    async def test_instance_fields(self, generator):
        instances = await generator.ensure("mom", MONDAY)
        med = next(i for i in instances if i.care_plan_item_id == "lisinopril")
        assert med.id == instance_id("lisinopril", "am", MONDAY)
        assert med.scheduled_time == datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
        assert med.window_end == med.scheduled_time
        assert med.item_dosage == "10 mg"
        assert med.item_emoji == "💊"
        assert med.priority == "required"
        assert med.generated_from_version == 5

        water = next(i for i in instances if i.care_plan_item_id == "water")
        assert (water.scheduled_time.hour, water.window_end.hour) == (12, 14)
        assert water.window_label == "afternoon"

    async def test_idempotent(self, generator, events):
        first = await generator.ensure("mom", MONDAY)
        second = await generator.ensure("mom", MONDAY)

        assert [i.id for i in first] == [i.id for i in second]
        assert len(events) == 1
        assert sorted(events[0].payload["added"]) == sorted(i.id for i in first)
        assert events[0].payload["date"] == "2026-03-02"

    async def test_concurrent_calls_do_not_duplicate(self, generator, repository):
        results = await asyncio.gather(*(generator.ensure("mom", MONDAY) for _ in range(5)))
        assert all(len(r) == 4 for r in results)
        stored = await repository.list_for_date("mom", MONDAY)
        assert len({i.key for i in stored}) == len(stored) == 4

    async def test_wait_false_skips_when_busy(self, generator, repository):
        async with repository.locks.hold(("mom", MONDAY)):
            with pytest.raises(ConcurrentGenerationSkipped):
                await generator.ensure("mom", MONDAY, wait=False)

    async def test_before_plan_start(self, generator):
        assert await generator.ensure("mom", date(2026, 2, 28)) == []

    async def test_paused_plan_returns_stored(self, generator, regimen):
        await generator.ensure("mom", MONDAY)
        await regimen.set_status("mom", "paused")
        assert len(await generator.ensure("mom", MONDAY)) == 4
        assert await generator.ensure("mom", TUESDAY) == []

    async def test_skip_dates(self, generator, regimen):
        await regimen.update_item(
            "mom",
            "water",
            schedule={"frequency": "daily", "skip_dates": ["2026-03-02"], "times": [{"id": "noon", "label": "afternoon"}]},
        )
        ids = [i.care_plan_item_id for i in await generator.ensure("mom", MONDAY)]
        assert "water" not in ids

    async def test_runs_missed_sweep(self, regimen, repository, bus, clock, regimen_data):
        await regimen.import_regimen(regimen_data)
        swept: list[tuple[str, date]] = []

        async def sweep(patient_id, day):
            swept.append((patient_id, day))

        generator = InstanceGenerator(regimen, repository, bus, clock, sweep_missed=sweep)
        await generator.ensure("mom", MONDAY)
        await generator.ensure("mom", MONDAY)
        assert swept == [("mom", MONDAY), ("mom", MONDAY)]

    async def test_ensure_range(self, generator):
        by_day = await generator.ensure_range("mom", MONDAY, TUESDAY)
        assert sorted(by_day) == [MONDAY, TUESDAY]
        assert len(by_day[MONDAY]) == 4


class TestRegeneration:
    async def test_item_change_refreshes_pending(self, generator, regimen, events):
        await generator.ensure("mom", MONDAY)
        await regimen.update_item("mom", "lisinopril", name="Lisinopril 20mg")

        instances = await generator.ensure("mom", MONDAY)
        med = next(i for i in instances if i.care_plan_item_id == "lisinopril")
        assert med.item_name == "Lisinopril 20mg"
        assert med.generated_from_version == 6
        assert events[-1].payload["refreshed"] == [med.id]
        assert events[-1].payload["added"] == []

    async def test_terminal_instances_survive_plan_changes(self, generator, regimen, repository, clock):
        instances = await generator.ensure("mom", MONDAY)
        med = next(i for i in instances if i.care_plan_item_id == "lisinopril")
        await repository.update(med.transitioned(InstanceStatus.COMPLETED, clock()), expected_status=InstanceStatus.PENDING)

        await regimen.remove_item("mom", "lisinopril")
        await regimen.remove_item("mom", "water")
        regenerated = await generator.ensure("mom", MONDAY)

        by_item = {i.care_plan_item_id: i for i in regenerated}
        assert by_item["lisinopril"].status == InstanceStatus.COMPLETED
        assert by_item["lisinopril"].item_name == "Lisinopril"
        assert "water" not in by_item

    async def test_removed_and_added_items(self, generator, regimen, events):
        await generator.ensure("mom", MONDAY)
        await regimen.remove_item("mom", "water")
        await regimen.add_item(
            "mom",
            type="activity",
            name="Short walk",
            schedule={"frequency": "daily", "times": [{"id": "pm", "label": "afternoon", "start": "15:00", "end": "16:00"}]},
            item_id="walk",
        )

        instances = await generator.ensure("mom", MONDAY)
        assert {i.care_plan_item_id for i in instances} == {"bp-check", "lisinopril", "mood", "walk"}
        assert events[-1].payload["removed"] == [instance_id("water", "noon", MONDAY)]
        assert events[-1].payload["added"] == [instance_id("walk", "pm", MONDAY)]

    async def test_version_bump_without_content_change_is_quiet(self, generator, regimen, events):
        await generator.ensure("mom", MONDAY)
        # Bumps the version without changing any instance content
        await regimen.update_plan("mom", end_date=date(2026, 12, 31))
        instances = await generator.ensure("mom", MONDAY)

        assert len(events) == 1
        assert all(i.generated_from_version == 6 for i in instances)

    async def test_stored_duplicates_are_dropped(self, generator, repository):
        instances = await generator.ensure("mom", MONDAY)
        doubled = DayDocument(generated_version=0, instances=instances + [instances[0]])
        await repository.write_day("mom", MONDAY, doubled)

        regenerated = await generator.ensure("mom", MONDAY)
        assert len(regenerated) == 4
