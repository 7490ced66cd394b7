"""Tests for carecadence.core.config_schema and Config.validated()."""

import os
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from carecadence.core.config import Config, reset_config
from carecadence.core.config_schema import CareCadenceConfig
from carecadence.core.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def _reset_singleton():
    reset_config()
    yield
    reset_config()


@pytest.mark.smoke
class TestConfigSchema:
    def test_valid_config_roundtrip(self):
        data = {
            "paths": {"data_dir": "/tmp/test-data", "storage_dir": "/tmp/test-store"},
            "engine": {"default_patient_id": "mom", "missed_grace_minutes": 60, "burden_max_load": 40},
            "notifications": {"dispatch_interval_seconds": 30, "history_days": 14},
            "logging": {"level": "info"},
        }
        cfg = CareCadenceConfig.model_validate(data)
        assert cfg.paths.data_dir == Path("/tmp/test-data")
        assert cfg.paths.resolved_storage_dir() == Path("/tmp/test-store")
        assert cfg.engine.default_patient_id == "mom"
        assert cfg.engine.burden_max_load == 40
        assert cfg.notifications.history_days == 14
        assert cfg.logging.level == "INFO"

    def test_defaults_populate(self):
        cfg = CareCadenceConfig()
        assert cfg.paths.data_dir is not None
        assert cfg.engine.missed_grace_minutes == 120
        assert cfg.engine.debounce_seconds == 0.5
        assert cfg.notifications.default_snooze_minutes == 15
        assert cfg.logging.level == "WARNING"

    def test_path_expansion(self):
        cfg = CareCadenceConfig.model_validate({"paths": {"data_dir": "~/.carecadence-data"}})
        assert cfg.paths.data_dir.is_absolute()
        assert "~" not in str(cfg.paths.data_dir)

    def test_storage_dir_falls_back_to_data_dir(self):
        cfg = CareCadenceConfig.model_validate({"paths": {"data_dir": "/tmp/d"}})
        assert cfg.paths.resolved_storage_dir() == Path("/tmp/d/storage")

    def test_negative_grace_rejected(self):
        with pytest.raises(ValidationError):
            CareCadenceConfig.model_validate({"paths": {"data_dir": "/tmp/d"}, "engine": {"missed_grace_minutes": -1}})

    def test_zero_max_load_rejected(self):
        with pytest.raises(ValidationError):
            CareCadenceConfig.model_validate({"paths": {"data_dir": "/tmp/d"}, "engine": {"burden_max_load": 0}})

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError, match="unknown log level"):
            CareCadenceConfig.model_validate({"paths": {"data_dir": "/tmp/d"}, "logging": {"level": "LOUD"}})

    def test_extra_keys_allowed_at_root(self):
        cfg = CareCadenceConfig.model_validate(
            {
                "paths": {"data_dir": "/tmp/d"},
                "custom_section": {"key": "value"},
            }
        )
        assert cfg.model_extra["custom_section"] == {"key": "value"}

    def test_config_validated_integration(self, tmp_dir):
        config_data = {
            "paths": {"data_dir": os.path.join(tmp_dir, "data")},
            "engine": {"default_patient_id": "dad"},
        }
        config_path = os.path.join(tmp_dir, "config.yaml")
        with open(config_path, "w") as f:
            yaml.dump(config_data, f)

        config = Config(config_file=config_path, data_dir=tmp_dir)
        validated = config.validated()
        assert isinstance(validated, CareCadenceConfig)
        assert validated.paths.data_dir == Path(tmp_dir) / "data"
        assert validated.engine.default_patient_id == "dad"

    def test_validated_wraps_errors(self, tmp_dir, monkeypatch):
        monkeypatch.setenv("CARECADENCE_NOTIFICATIONS__HISTORY_DAYS", "lots")
        config = Config(data_dir=tmp_dir)
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            config.validated()
