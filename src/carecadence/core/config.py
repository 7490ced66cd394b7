"""
Layered configuration for the care engine.

Three layers are merged, later ones winning key by key:

    built-in defaults  <  config file (YAML or JSON)  <  environment

Environment overrides use ``CARECADENCE_<SECTION>__<KEY>``; the values stay
strings here and are coerced by :meth:`Config.validated`.

Usage:
    config = Config(config_file="~/.carecadence/config.yaml")
    config.get("engine.missed_grace_minutes")
    settings = config.validated()       # typed CareCadenceConfig
"""

import json
import os
from collections.abc import Mapping
from typing import Any

import yaml

from .exceptions import ConfigurationError

_DEFAULT_ENV_PREFIX = "CARECADENCE_"
_DEFAULT_DATA_DIR = os.path.join("~", ".carecadence-data")


def default_settings(data_dir: str) -> dict[str, Any]:
    """Defaults for a deployment rooted at *data_dir* (already expanded)."""
    return {
        "paths": {
            "data_dir": data_dir,
            "storage_dir": os.path.join(data_dir, "storage"),
            "log_dir": os.path.join(data_dir, "logs"),
        },
        "engine": {
            "default_patient_id": "default",
            "missed_grace_minutes": 120,
            "burden_max_load": 30,
            "debounce_seconds": 0.5,
        },
        "notifications": {
            "dispatch_interval_seconds": 60,
            "history_days": 7,
            "default_snooze_minutes": 15,
        },
        "logging": {"level": "WARNING", "file": None},
    }


def merge_settings(base: dict[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge *overlay* into *base* in place and return *base*."""
    for key, value in overlay.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            merge_settings(current, value)
        else:
            base[key] = value
    return base


def read_settings_file(path: str) -> dict[str, Any]:
    """Parse a ``.yaml``/``.yml``/``.json`` settings file; other suffixes yield ``{}``."""
    suffix = os.path.splitext(path)[1].lower()
    try:
        with open(path) as f:
            if suffix in (".yaml", ".yml"):
                loaded = yaml.safe_load(f)
            elif suffix == ".json":
                loaded = json.load(f)
            else:
                return {}
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot parse config file {path}: {e}") from e
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping at the top level")
    return loaded


def env_overrides(prefix: str, environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Nested dict built from ``<prefix>SECTION__KEY=value`` variables."""
    overrides: dict[str, Any] = {}
    if not prefix:
        return overrides
    for name, value in (os.environ if environ is None else environ).items():
        if not name.startswith(prefix):
            continue
        *sections, leaf = name[len(prefix) :].lower().split("__")
        node = overrides
        for section in sections:
            node = node.setdefault(section, {})
        node[leaf] = value
    return overrides


class Config:
    """Merged settings with dot-path access.

    ``CARECADENCE_ENGINE__BURDEN_MAX_LOAD=40`` sets ``engine.burden_max_load``.
    """

    def __init__(
        self,
        config_file: str | None = None,
        env_prefix: str = _DEFAULT_ENV_PREFIX,
        data_dir: str | None = None,
        defaults: dict[str, Any] | None = None,
    ):
        self.config_file = os.path.expanduser(config_file) if config_file else None
        self.env_prefix = env_prefix or ""
        self._data_dir = os.path.expanduser(data_dir or _DEFAULT_DATA_DIR)

        self.config_data = default_settings(self._data_dir)
        merge_settings(self.config_data, defaults or {})
        if self.config_file and os.path.isfile(self.config_file):
            merge_settings(self.config_data, read_settings_file(self.config_file))
        merge_settings(self.config_data, env_overrides(self.env_prefix))

    def get(self, key_path: str, default: Any = None) -> Any:
        """Value at a dotted path such as ``"notifications.history_days"``, else *default*."""
        node: Any = self.config_data
        for part in key_path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key_path: str, value: Any) -> None:
        *sections, leaf = key_path.split(".")
        node = self.config_data
        for section in sections:
            node = node.setdefault(section, {})
        node[leaf] = value

    def get_data_dir(self) -> str:
        return os.path.expanduser(self.get("paths.data_dir", self._data_dir))

    def ensure_directories(self) -> None:
        """Create every directory listed under ``paths``."""
        for value in self.get("paths", {}).values():
            if isinstance(value, str):
                os.makedirs(os.path.expanduser(value), exist_ok=True)

    def validated(self):
        """Return the settings as a typed ``CareCadenceConfig``.

        Raises:
            ConfigurationError: if any section fails validation.
        """
        from pydantic import ValidationError as PydanticValidationError

        from .config_schema import CareCadenceConfig

        try:
            return CareCadenceConfig.model_validate(self.config_data)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


_config_instance: Config | None = None


def get_config(
    config_file: str | None = None,
    env_prefix: str = _DEFAULT_ENV_PREFIX,
    data_dir: str | None = None,
) -> Config:
    """Process-wide ``Config``, created on first use."""
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(config_file=config_file, env_prefix=env_prefix, data_dir=data_dir)
    return _config_instance


def reset_config() -> None:
    global _config_instance
    _config_instance = None
