"""carecadence init: write a starter config file."""

from __future__ import annotations

from pathlib import Path

import click
import yaml

from .common import CARECADENCE_DIR


def _load_existing_config(path: Path) -> dict:
    """Load existing config if present."""
    if path.exists():
        with open(path) as f:
            return yaml.safe_load(f) or {}
    return {}


@click.command()
@click.option("--data-dir", default=None, help="Where regimen, instances and logs are stored.")
@click.option("--patient-id", default=None, help="Default patient id for commands that omit --patient.")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
)
@click.option("--force", is_flag=True, help="Overwrite values in an existing config.")
@click.pass_context
def init(ctx: click.Context, data_dir: str | None, patient_id: str | None, log_level: str | None, force: bool) -> None:
    """Set up carecadence: create the config file and data directories."""
    from rich.console import Console
    from rich.panel import Panel

    from carecadence.core.config import Config

    console = Console()
    config_path = Path(ctx.obj["config_path"]).expanduser()
    existing = _load_existing_config(config_path)
    if existing and not force:
        console.print(Panel(f"Config already exists at {config_path}. Use --force to overwrite.", title="carecadence"))
        return

    data_dir = data_dir or existing.get("paths", {}).get("data_dir") or str(CARECADENCE_DIR / "data")
    data_dir = str(Path(data_dir).expanduser())
    engine = existing.get("engine", {})
    logging_cfg = existing.get("logging", {})
    config_data = {
        **existing,
        "paths": {
            "data_dir": data_dir,
            "storage_dir": str(Path(data_dir) / "storage"),
            "log_dir": str(Path(data_dir) / "logs"),
        },
        "engine": {**engine, "default_patient_id": patient_id or engine.get("default_patient_id", "default")},
        "logging": {**logging_cfg, "level": (log_level or logging_cfg.get("level", "WARNING")).upper()},
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        yaml.safe_dump(config_data, f, sort_keys=False)

    config = Config(config_file=str(config_path), data_dir=data_dir)
    config.ensure_directories()

    console.print(
        Panel(
            f"Config written to {config_path}\n"
            f"Data directory: {data_dir}\n"
            f"Default patient: {config_data['engine']['default_patient_id']}\n\n"
            "Next: carecadence import-regimen regimen.yaml",
            title="carecadence is ready",
        )
    )
