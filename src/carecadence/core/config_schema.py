"""Pydantic models for config validation.

Opt-in schema validation for ``Config.config_data``.  Call
``Config.validated()`` to obtain a typed, validated ``CareCadenceConfig``
instance.  Env-var overrides arrive as strings; pydantic coerces them.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PathsConfig(BaseModel):
    """File-system paths used by the application."""

    data_dir: Path
    storage_dir: Path | None = None
    log_dir: Path | None = None

    @field_validator("data_dir", "storage_dir", "log_dir", mode="before")
    @classmethod
    def _expand_user(cls, v: Any) -> Any:
        if isinstance(v, str):
            return Path(v).expanduser()
        if isinstance(v, Path):
            return v.expanduser()
        return v

    def resolved_storage_dir(self) -> Path:
        return self.storage_dir or self.data_dir / "storage"


class EngineConfig(BaseModel):
    """Generation, completion and analytics tuning."""

    default_patient_id: str = "default"
    missed_grace_minutes: int = Field(default=120, ge=0)
    burden_max_load: float = Field(default=30, gt=0)
    debounce_seconds: float = Field(default=0.5, ge=0)


class NotificationsConfig(BaseModel):
    """Reminder dispatch settings."""

    dispatch_interval_seconds: int = Field(default=60, gt=0)
    history_days: int = Field(default=7, ge=0)
    default_snooze_minutes: int = Field(default=15, gt=0)


class LoggingConfig(BaseModel):
    level: str = "WARNING"
    file: str | bool | None = None

    @field_validator("level")
    @classmethod
    def _upper(cls, v: str) -> str:
        level = v.upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {v!r}")
        return level


class CareCadenceConfig(BaseModel):
    """Root configuration model.

    Uses ``extra="allow"`` so deployments can bolt on custom sections
    without touching this schema.
    """

    model_config = ConfigDict(extra="allow")

    paths: PathsConfig = PathsConfig(data_dir=Path("~/.carecadence-data"))
    engine: EngineConfig = EngineConfig()
    notifications: NotificationsConfig = NotificationsConfig()
    logging: LoggingConfig = LoggingConfig()
