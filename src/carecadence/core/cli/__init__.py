"""carecadence CLI: set up, import a regimen, and work through the day."""

import click

from carecadence import __version__

from .common import CONFIG_PATH


@click.group()
@click.version_option(version=__version__, package_name="carecadence")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=str(CONFIG_PATH),
    envvar="CARECADENCE_CONFIG",
    show_default=True,
    help="Path to the carecadence config file.",
)
@click.option("--patient", "patient_id", default=None, help="Patient id (defaults to engine.default_patient_id).")
@click.pass_context
def main(ctx: click.Context, config_path: str, patient_id: str | None) -> None:
    """carecadence: daily care routines, reminders and adherence."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["patient_id"] = patient_id


# Register subcommands (lazy imports keep startup fast)
from .care_cmd import complete, skip, today
from .init_cmd import init
from .regimen_cmd import import_regimen
from .report_cmd import insights, reminders

main.add_command(init)
main.add_command(import_regimen)
main.add_command(today)
main.add_command(complete)
main.add_command(skip)
main.add_command(insights)
main.add_command(reminders)
