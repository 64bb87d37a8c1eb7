"""dqscan schedules command - Manage scan schedules."""

import asyncio
import json
from datetime import date, datetime
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from dqscan.cli.error_handler import handle_errors
from dqscan.cli.exit_codes import ExitCode

app = typer.Typer(help="Manage data-quality scan schedules.")
console = Console()


def _get_service():
    from dqscan.config import get_config
    from dqscan.database.connection import create_tables
    from dqscan.services.schedules import ScheduleService

    create_tables(get_config())
    return ScheduleService()


def _format_time(value: Optional[datetime], default: str = "N/A") -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else default


def _status_markup(status: str) -> str:
    colors = {"active": "green", "paused": "yellow", "deleted": "red"}
    color = colors.get(status, "white")
    return f"[{color}]{status}[/{color}]"


def _resolve_id(service, schedule_id: str) -> str:
    """Expand a schedule id prefix (as shown by ``list``) to the full id."""
    matches = [
        s.schedule_id
        for s in service.list_all()
        if s.schedule_id == schedule_id or s.schedule_id.startswith(schedule_id)
    ]
    if len(matches) > 1 and schedule_id not in matches:
        console.print(f"[red]Ambiguous schedule id: {schedule_id}[/red]")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)
    if matches:
        return schedule_id if schedule_id in matches else matches[0]
    # Let the service report it (deleted schedules are not listed)
    return schedule_id


def _parse_date(value: Optional[str], option: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Invalid date for {option}: {value} (expected YYYY-MM-DD)[/red]")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)


@app.command("list")
@handle_errors
def list_schedules(
    database: Optional[str] = typer.Option(None, "--database", "-d", help="Database name."),
    schema: Optional[str] = typer.Option(None, "--schema", "-s", help="Schema name."),
    table: Optional[str] = typer.Option(None, "--table", "-t", help="Table name."),
    status: Optional[str] = typer.Option(
        None,
        "--status",
        help="Filter by status (active, paused, deleted).",
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List scan schedules.

    Give --database, --schema and --table together to list one table's
    schedules; otherwise all schedules are listed.

    Example:
        dqscan schedules list
        dqscan schedules list -d ANALYTICS -s PUBLIC -t ORDERS
    """
    from dqscan.scheduler.resolver import summarize

    target = (database, schema, table)
    if any(target) and not all(target):
        console.print("[red]--database, --schema and --table must be given together[/red]")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    service = _get_service()
    if all(target):
        schedules = asyncio.run(service.list_for_table(database, schema, table))
        if status:
            schedules = [s for s in schedules if s.status == status]
    else:
        schedules = service.list_all(status=status)

    if json_output:
        console.print_json(json.dumps([s.to_dict() for s in schedules]))
        return

    if not schedules:
        console.print("[dim]No schedules found.[/dim]")
        return

    table_view = Table(title="Scan Schedules")
    table_view.add_column("ID", style="cyan")
    table_view.add_column("Table", style="magenta")
    table_view.add_column("Scan", style="blue")
    table_view.add_column("Timing", style="green")
    table_view.add_column("Status", style="bold")
    table_view.add_column("Next Run")
    table_view.add_column("Last Run")
    table_view.add_column("Failures", justify="right")

    for schedule in schedules:
        table_view.add_row(
            schedule.schedule_id[:8],
            schedule.qualified_name,
            schedule.scan_type,
            summarize(schedule),
            _status_markup(schedule.status),
            _format_time(schedule.next_run_at),
            _format_time(schedule.last_run_at, "Never"),
            str(schedule.failure_count),
        )

    console.print(table_view)


@app.command("create")
@handle_errors
def create_schedule(
    database: str = typer.Option(..., "--database", "-d", help="Database name."),
    schema: str = typer.Option(..., "--schema", "-s", help="Schema name."),
    table: str = typer.Option(..., "--table", "-t", help="Table name."),
    scan_type: str = typer.Option(
        "profiling",
        "--scan-type",
        help="Scan type: profiling, checks, full, anomalies.",
    ),
    recurring: bool = typer.Option(
        False,
        "--recurring/--once",
        help="Repeat on a recurrence or run a single time.",
    ),
    recurrence: Optional[str] = typer.Option(
        None,
        "--type",
        "-r",
        help="Recurrence type: hourly, daily, weekly, monthly. Implies --recurring.",
    ),
    time_of_day: Optional[str] = typer.Option(
        None,
        "--time",
        help="Time of day as HH:MM in the schedule's timezone.",
    ),
    days: Optional[List[str]] = typer.Option(
        None,
        "--day",
        help="Day of week for weekly schedules; repeat for several days.",
    ),
    timezone: str = typer.Option("UTC", "--timezone", "--tz", help="IANA timezone name."),
    start_date: Optional[str] = typer.Option(None, "--start-date", help="First date (YYYY-MM-DD)."),
    end_date: Optional[str] = typer.Option(None, "--end-date", help="Last date (YYYY-MM-DD)."),
    on_failure: str = typer.Option(
        "continue",
        "--on-failure",
        help="Action after max failures: continue, pause.",
    ),
    max_failures: int = typer.Option(3, "--max-failures", help="Consecutive failures allowed."),
    created_by: Optional[str] = typer.Option(None, "--created-by", help="Owner of the schedule."),
) -> None:
    """Create a scan schedule.

    Example:
        dqscan schedules create -d ANALYTICS -s PUBLIC -t ORDERS --type daily --time 09:00
        dqscan schedules create -d ANALYTICS -s PUBLIC -t ORDERS --type weekly --time 06:30 --day Monday --day Friday
        dqscan schedules create -d ANALYTICS -s PUBLIC -t ORDERS --scan-type checks --time 22:00
    """
    service = _get_service()
    schedule, summary = service.create(
        database=database,
        schema=schema,
        table=table,
        scan_type=scan_type,
        is_recurring=recurring or recurrence is not None,
        recurrence_type=recurrence,
        time_of_day=time_of_day,
        days_of_week=days or None,
        timezone=timezone,
        start_date=_parse_date(start_date, "--start-date"),
        end_date=_parse_date(end_date, "--end-date"),
        on_failure_action=on_failure,
        max_failures=max_failures,
        created_by=created_by,
    )

    console.print(f"[green]✓[/green] Created schedule: {schedule.schedule_id}")
    console.print(f"  Table: {schedule.qualified_name}")
    console.print(f"  Scan: {schedule.scan_type}")
    console.print(f"  Timing: {summary}")
    console.print(f"  Next run: {_format_time(schedule.next_run_at)} UTC")


@app.command("pause")
@handle_errors
def pause_schedule(
    schedule_id: str = typer.Argument(..., help="Schedule ID (or prefix)."),
) -> None:
    """Pause a schedule.

    Example:
        dqscan schedules pause abc123
    """
    service = _get_service()
    schedule = service.pause(_resolve_id(service, schedule_id))
    console.print(f"[yellow]⏸[/yellow] Paused schedule: {schedule.schedule_id}")


@app.command("resume")
@handle_errors
def resume_schedule(
    schedule_id: str = typer.Argument(..., help="Schedule ID (or prefix)."),
) -> None:
    """Resume a paused schedule.

    Example:
        dqscan schedules resume abc123
    """
    service = _get_service()
    schedule = service.resume(_resolve_id(service, schedule_id))
    console.print(f"[green]▶[/green] Resumed schedule: {schedule.schedule_id}")
    console.print(f"  Next run: {_format_time(schedule.next_run_at)} UTC")


@app.command("delete")
@handle_errors
def delete_schedule(
    schedule_id: str = typer.Argument(..., help="Schedule ID (or prefix)."),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation."),
) -> None:
    """Delete a schedule. Its execution history is kept.

    Example:
        dqscan schedules delete abc123
        dqscan schedules delete abc123 --force
    """
    service = _get_service()
    full_id = _resolve_id(service, schedule_id)
    schedule = service.get(full_id)

    if not force:
        confirm = typer.confirm(
            f"Delete schedule {full_id} for {schedule.qualified_name}?"
        )
        if not confirm:
            console.print("Cancelled.")
            raise typer.Exit()

    service.delete(full_id)
    console.print(f"[red]✗[/red] Deleted schedule: {full_id}")


@app.command("run-now")
@handle_errors
def run_now(
    schedule_id: str = typer.Argument(..., help="Schedule ID (or prefix)."),
) -> None:
    """Make a schedule due so the next scheduler tick runs it.

    Example:
        dqscan schedules run-now abc123
    """
    service = _get_service()
    schedule = service.run_now(_resolve_id(service, schedule_id))
    console.print(f"[green]✓[/green] Schedule {schedule.schedule_id} will run on the next tick")


@app.command("history")
@handle_errors
def show_history(
    schedule_id: Optional[str] = typer.Argument(None, help="Schedule ID (or prefix)."),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of entries to show."),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Show schedule execution history.

    Example:
        dqscan schedules history
        dqscan schedules history abc123 --limit 20
    """
    service = _get_service()
    if schedule_id:
        schedule_id = _resolve_id(service, schedule_id)
    executions = service.history(schedule_id, limit=limit)

    if json_output:
        console.print_json(json.dumps([e.to_dict() for e in executions]))
        return

    if not executions:
        console.print("[dim]No execution history found.[/dim]")
        return

    table = Table(title="Execution History")
    table.add_column("Started", style="dim")
    table.add_column("Schedule", style="cyan")
    table.add_column("Table", style="magenta")
    table.add_column("Scan")
    table.add_column("Result")
    table.add_column("Duration", justify="right")
    table.add_column("Run / Error")

    for execution in executions:
        result = "[green]success[/green]" if execution.success else "[red]failed[/red]"
        duration = execution.duration_seconds
        detail = (execution.run_id or "") if execution.success else (execution.error or "")
        table.add_row(
            _format_time(execution.started_at),
            execution.schedule_id[:8],
            execution.table_name,
            execution.scan_type,
            result,
            f"{duration:.1f}s" if duration is not None else "-",
            detail[:60],
        )

    console.print(table)


@app.command("describe")
@handle_errors
def describe(
    expression: str = typer.Argument(..., help="5-field cron expression."),
    timezone: str = typer.Option("UTC", "--timezone", "--tz", help="IANA timezone name."),
    count: int = typer.Option(5, "--count", "-n", help="Number of upcoming runs to show."),
) -> None:
    """Describe a cron expression and show its upcoming runs.

    Example:
        dqscan schedules describe "0 9 * * 1-5" --tz Europe/Paris
    """
    from dqscan.scheduler.resolver import ScheduleResolver

    resolver = ScheduleResolver()
    if not resolver.validate(expression):
        console.print(f"[red]Invalid cron expression: {expression}[/red]")
        console.print("Format: minute hour day month weekday")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    console.print(f"[bold]{resolver.describe(expression)}[/bold]")
    console.print(f"Next {count} runs ({timezone}):")
    for run in resolver.next_run_times(expression, count=count, timezone=timezone):
        console.print(f"  • {_format_time(run)} UTC")
