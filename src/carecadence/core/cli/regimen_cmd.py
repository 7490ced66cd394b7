"""carecadence import-regimen: load a YAML regimen into the store."""

from __future__ import annotations

import click
import yaml

from .common import run_with_engine


@click.command("import-regimen")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_regimen(ctx: click.Context, file: str) -> None:
    """Import a care plan and its items from a YAML FILE."""
    with open(file) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise click.ClickException(f"{file} does not contain a regimen mapping")

    async def _import(engine, patient_id):
        data.setdefault("patient_id", patient_id)
        return await engine.regimen.import_regimen(data)

    plan, items = run_with_engine(ctx, _import)
    click.echo(f"Imported {len(items)} item(s) into plan {plan.id} (v{plan.version}) for {plan.patient_id}")
