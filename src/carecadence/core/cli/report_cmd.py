"""carecadence insights and reminders: adherence reports and upcoming reminders."""

from __future__ import annotations

from datetime import timedelta

import click

from .common import run_with_engine


@click.command()
@click.option("--days", default=7, show_default=True, type=click.IntRange(1, 365), help="Length of the report window.")
@click.pass_context
def insights(ctx: click.Context, days: int) -> None:
    """Adherence, streaks and observations for the last N days."""
    from rich.console import Console
    from rich.panel import Panel
    from rich.table import Table

    async def _summarize(engine, patient_id):
        end = await engine.today(patient_id)
        return await engine.generate_insights(patient_id, end - timedelta(days=days - 1), end)

    summary = run_with_engine(ctx, _summarize)
    console = Console()
    console.print(
        Panel(
            f"{summary.start} to {summary.end}\n"
            f"Overall adherence: {summary.overall_adherence}%  ·  "
            f"{summary.total_instances} task(s), {summary.total_logs} log entr{'y' if summary.total_logs == 1 else 'ies'}\n"
            f"Average daily burden: {summary.average_daily_burden}/100",
            title=f"Insights for {summary.patient_id}",
        )
    )

    if summary.adherence_by_item:
        table = Table(title="By item")
        table.add_column("Item")
        table.add_column("Adherence", justify="right")
        table.add_column("Completion", justify="right")
        table.add_column("Missed", justify="right")
        table.add_column("Streak", justify="right")
        streaks = {s.item_id: s for s in summary.streaks}
        for row in summary.adherence_by_item:
            streak = streaks.get(row.item_id)
            table.add_row(
                row.item_name,
                f"{row.adherence_rate}%",
                f"{row.completion_rate}%",
                str(row.missed_count),
                f"{streak.current_streak} (best {streak.longest_streak})" if streak else "-",
            )
        console.print(table)

    for observation in summary.observations:
        console.print(f"[bold]{observation.title}[/bold]: {observation.message}")

    primary = summary.primary()
    if primary is not None:
        console.print(Panel(primary.message, title=f"{primary.icon} {primary.title}"))


@click.command()
@click.option("--limit", default=10, show_default=True, type=click.IntRange(1, 100))
@click.option("--dispatch", is_flag=True, help="Deliver anything already due before listing.")
@click.pass_context
def reminders(ctx: click.Context, limit: int, dispatch: bool) -> None:
    """List upcoming reminders."""
    from rich.console import Console
    from rich.table import Table

    async def _upcoming(engine, patient_id):
        # Generating today's instances plans their reminders
        await engine.ensure_daily_instances(patient_id)
        delivered = await engine.dispatch_due(patient_id) if dispatch else []
        return delivered, await engine.get_upcoming_notifications(patient_id, limit)

    delivered, upcoming = run_with_engine(ctx, _upcoming)
    console = Console()
    if delivered:
        console.print(f"Delivered {len(delivered)} due reminder(s).")
    if not upcoming:
        console.print("No upcoming reminders.")
        return

    table = Table(title="Upcoming reminders")
    table.add_column("When")
    table.add_column("Reminder")
    table.add_column("Attempt", justify="right")
    table.add_column("ID", style="dim")
    for notification in upcoming:
        when = notification.scheduled_for.strftime("%Y-%m-%d %H:%M")
        if notification.scheduled_for != notification.original_time:
            when += " (after quiet hours)"
        table.add_row(when, notification.title, str(notification.follow_up_attempt), notification.id)
    console.print(table)
