"""Operator CLI for the scheduling engine."""

from datetime import date, datetime

import click

from portal.database import SessionLocal, ensure_schema
from portal.integrations.dispatcher import IntegrationDispatcher
from portal.models import appointment, availability, integration_job, profile  # noqa: F401
from portal.services import availability_service
from portal.services.errors import SchedulingError


def _parse_date(ctx, param, value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise click.BadParameter("expected YYYY-MM-DD") from exc


@click.group()
def cli():
    """Scheduling CLI tools."""
    ensure_schema()


@cli.command()
@click.option("--date", "target_date", required=True, callback=_parse_date, help="Date as YYYY-MM-DD")
@click.option("--duration", default=None, type=int, help="Slot length in minutes")
@click.option("--all", "show_all", is_flag=True, help="Include taken slots")
def slots(target_date: date, duration: int | None, show_all: bool):
    """
    List bookable slots for one date.

    Example:
        python -m portal.cli slots --date 2026-01-05 --duration 60
    """
    with SessionLocal() as db:
        try:
            results = availability_service.get_available_slots(db, target_date, duration)
        except SchedulingError as exc:
            raise click.ClickException(str(exc)) from exc

    shown = [slot for slot in results if show_all or slot.is_available]
    if not shown:
        click.echo(f"No slots on {target_date.isoformat()}")
        return

    for slot in shown:
        marker = "open" if slot.is_available else "taken"
        click.echo(f"{slot.start_time:%H:%M}-{slot.end_time:%H:%M}  {marker}")


@cli.command("block-range")
@click.option("--start", "start_date", required=True, callback=_parse_date, help="First date, YYYY-MM-DD")
@click.option("--end", "end_date", required=True, callback=_parse_date, help="Last date, YYYY-MM-DD")
def block_range(start_date: date, end_date: date):
    """Mark every date in the range unavailable."""
    with SessionLocal() as db:
        try:
            blocked = availability_service.block_range(db, start_date, end_date)
        except SchedulingError as exc:
            raise click.ClickException(str(exc)) from exc

    click.echo(f"Blocked {blocked} dates ({start_date.isoformat()} to {end_date.isoformat()})")


@cli.command("unblock-range")
@click.option("--start", "start_date", required=True, callback=_parse_date, help="First date, YYYY-MM-DD")
@click.option("--end", "end_date", required=True, callback=_parse_date, help="Last date, YYYY-MM-DD")
def unblock_range(start_date: date, end_date: date):
    """Remove overrides in the range so the weekly schedule applies again."""
    with SessionLocal() as db:
        try:
            removed = availability_service.unblock_range(db, start_date, end_date)
        except SchedulingError as exc:
            raise click.ClickException(str(exc)) from exc

    click.echo(f"Removed {removed} overrides ({start_date.isoformat()} to {end_date.isoformat()})")


@cli.command("run-jobs")
@click.option("--limit", default=None, type=int, help="Maximum jobs to run")
def run_jobs(limit: int | None):
    """Run due integration jobs once and exit."""
    with SessionLocal() as db:
        succeeded = IntegrationDispatcher().run_pending_jobs(db, limit=limit)

    click.echo(f"{succeeded} jobs completed")


if __name__ == "__main__":
    cli()
