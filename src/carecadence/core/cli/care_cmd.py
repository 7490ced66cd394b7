"""carecadence today, complete and skip: work through the day's tasks."""

from __future__ import annotations

import click

from .common import parse_day, run_with_engine

_STATUS_STYLE = {
    "pending": "yellow",
    "completed": "green",
    "skipped": "cyan",
    "missed": "red",
    "partial": "magenta",
}


@click.command()
@click.option("--date", "day", default=None, help="Date to show (YYYY-MM-DD); defaults to today.")
@click.option("--all", "show_all", is_flag=True, help="Include items suppressed for the day.")
@click.pass_context
def today(ctx: click.Context, day: str | None, show_all: bool) -> None:
    """Show the day's care tasks grouped by time window."""
    from rich.console import Console
    from rich.table import Table

    target = parse_day(day)

    async def _load(engine, patient_id):
        return await engine.get_daily_schedule(patient_id, target, apply_scope=not show_all)

    schedule = run_with_engine(ctx, _load)
    console = Console()
    if not schedule.instances:
        console.print(f"Nothing scheduled for {schedule.date}.")
        return

    table = Table(title=f"Care tasks for {schedule.date}")
    table.add_column("Time")
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("ID", style="dim")
    for group in schedule.groups:
        table.add_section()
        table.add_row(f"{group.emoji} {group.display_name}", f"{group.completed_count}/{group.total_count}", group.status, "")
        for instance in group.instances:
            name = f"{instance.item_emoji} {instance.item_name}" if instance.item_emoji else instance.item_name
            if instance.item_dosage:
                name = f"{name} ({instance.item_dosage})"
            style = _STATUS_STYLE.get(instance.status, "")
            table.add_row(
                instance.scheduled_time.strftime("%H:%M"),
                name,
                f"[{style}]{instance.status}[/{style}]" if style else str(instance.status),
                instance.id,
            )
    console.print(table)

    stats = schedule.stats
    summary = f"{stats.completed}/{stats.total} completed ({stats.completion_rate}%)"
    if schedule.all_complete:
        summary += ": all done for today"
    elif schedule.next_pending is not None:
        summary += f" · next: {schedule.next_pending.item_name} at {schedule.next_pending.scheduled_time.strftime('%H:%M')}"
    console.print(summary)


@click.command()
@click.argument("instance_id")
@click.option(
    "--outcome",
    type=click.Choice(["completed", "taken", "partial"]),
    default="completed",
    show_default=True,
)
@click.option("--notes", default=None)
@click.option("--by", "caregiver_name", default=None, help="Who did it.")
@click.pass_context
def complete(ctx: click.Context, instance_id: str, outcome: str, notes: str | None, caregiver_name: str | None) -> None:
    """Record INSTANCE_ID as done."""

    async def _complete(engine, patient_id):
        return await engine.complete_instance(patient_id, instance_id, outcome, notes=notes, caregiver_name=caregiver_name)

    result = run_with_engine(ctx, _complete)
    click.echo(f"{result.instance.item_name}: {result.instance.status} (log {result.log.id})")


@click.command()
@click.argument("instance_id")
@click.option("--notes", default=None, help="Why it was skipped.")
@click.pass_context
def skip(ctx: click.Context, instance_id: str, notes: str | None) -> None:
    """Mark INSTANCE_ID as intentionally skipped."""

    async def _skip(engine, patient_id):
        return await engine.skip_instance(patient_id, instance_id, notes=notes)

    result = run_with_engine(ctx, _skip)
    click.echo(f"{result.instance.item_name}: skipped")
