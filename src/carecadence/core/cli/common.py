"""Shared setup logic for CLI commands."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import click

CARECADENCE_DIR = Path.home() / ".carecadence"
CONFIG_PATH = CARECADENCE_DIR / "config.yaml"

T = TypeVar("T")


def ensure_init(config_path: str) -> None:
    """Check that carecadence init has been run."""
    if not Path(config_path).expanduser().exists():
        click.echo("No configuration found. Run 'carecadence init' first.")
        sys.exit(1)


def load_config(config_path: str):
    """Load config from the given YAML file and configure logging from it."""
    from carecadence.core.config import Config
    from carecadence.core.utils.logging import setup_logging_from_config

    config = Config(config_file=config_path)
    setup_logging_from_config(config)
    return config


def run_with_engine(ctx: click.Context, work: Callable[[Any, str], Awaitable[T]]) -> T:
    """Build an engine from the CLI context and run *work(engine, patient_id)*.

    Engine errors are turned into ``ClickException`` so users see a message,
    not a traceback.
    """
    from carecadence.core.exceptions import CareCadenceError
    from carecadence.engine import CareEngine

    config_path = ctx.obj["config_path"]
    ensure_init(config_path)
    config = load_config(config_path)
    engine = CareEngine.from_config(config)
    patient_id = ctx.obj.get("patient_id") or engine.default_patient_id

    async def _run() -> T:
        try:
            return await work(engine, patient_id)
        finally:
            await engine.shutdown()

    try:
        return asyncio.run(_run())
    except CareCadenceError as e:
        raise click.ClickException(str(e)) from e


def parse_day(value: str | None):
    """``YYYY-MM-DD`` option value to a date (None passes through)."""
    from datetime import date

    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise click.BadParameter(f"expected YYYY-MM-DD, got {value!r}") from e
