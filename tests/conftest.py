"""Shared test fixtures for carecadence."""

import copy
import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from carecadence.core.storage import LocalStorage
from carecadence.engine import CareEngine
from carecadence.notifications.scheduler import MemoryDeliveryChannel

# Monday
START = datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc)

SAMPLE_REGIMEN = {
    "patient_id": "mom",
    "timezone": "UTC",
    "start_date": "2026-03-01",
    "items": [
        {
            "id": "lisinopril",
            "type": "medication",
            "name": "Lisinopril",
            "priority": "required",
            "emoji": "💊",
            "instructions": "Take with water",
            "details": {"dose": "10", "unit": "mg"},
            "schedule": {
                "frequency": "daily",
                "times": [{"id": "am", "kind": "exact", "label": "morning", "at": "08:00"}],
            },
        },
        {
            "id": "bp-check",
            "type": "vitals",
            "name": "Blood pressure check",
            "priority": "recommended",
            "schedule": {
                "frequency": "daily",
                "times": [{"id": "am", "kind": "window", "label": "morning", "start": "07:00", "end": "09:00"}],
            },
        },
        {
            "id": "water",
            "type": "hydration",
            "name": "Glass of water",
            "priority": "optional",
            "schedule": {"frequency": "daily", "times": [{"id": "noon", "kind": "window", "label": "afternoon"}]},
        },
        {
            "id": "mood",
            "type": "mood",
            "name": "Mood check-in",
            "priority": "optional",
            # Monday, Wednesday, Friday
            "schedule": {
                "frequency": "weekly",
                "days_of_week": [1, 3, 5],
                "times": [{"id": "eve", "kind": "window", "label": "evening"}],
            },
        },
    ],
}


class FakeClock:
    """Settable, timezone-aware wall clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, hour: int, minute: int = 0, days: int = 0) -> datetime:
        """Jump to *hour*:*minute* on the start date plus *days*."""
        self.now = START.replace(hour=hour, minute=minute) + timedelta(days=days)
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def tmp_dir():
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as d:
        yield d


@pytest.fixture
def tmp_config_file(tmp_dir):
    """Create a temporary YAML config file."""
    import yaml

    config_data = {
        "paths": {"data_dir": os.path.join(tmp_dir, "data")},
        "engine": {"default_patient_id": "mom", "missed_grace_minutes": 90},
    }
    config_path = os.path.join(tmp_dir, "config.yaml")
    with open(config_path, "w") as f:
        yaml.dump(config_data, f)
    return config_path


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(base_path=str(tmp_path / "store"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def regimen_data():
    return copy.deepcopy(SAMPLE_REGIMEN)


@pytest.fixture
def channel():
    return MemoryDeliveryChannel()


@pytest.fixture
async def engine(storage, clock, channel):
    eng = CareEngine(storage, clock=clock, channel=channel, default_patient_id="mom", debounce_seconds=0)
    yield eng
    await eng.shutdown()


@pytest.fixture
async def seeded_engine(engine, regimen_data):
    """Engine with the sample regimen imported for patient ``mom``."""
    await engine.regimen.import_regimen(regimen_data)
    return engine
