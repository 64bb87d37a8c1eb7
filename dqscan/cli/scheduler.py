"""dqscan scheduler command - Run due schedules once or as a daemon."""

import asyncio
import json
import logging
import os
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from dqscan.cli.error_handler import handle_errors
from dqscan.cli.exit_codes import ExitCode

app = typer.Typer(help="Run the scan scheduler.")
console = Console()


def _print_report(report) -> None:
    if not report.runs:
        console.print("[dim]No schedules due.[/dim]")
        return

    table = Table(title="Scheduler Tick")
    table.add_column("Schedule", style="cyan")
    table.add_column("Table", style="magenta")
    table.add_column("Scan")
    table.add_column("Result")
    table.add_column("Next Run")
    table.add_column("Detail")

    for run in report.runs:
        result = "[green]completed[/green]" if run.succeeded else "[red]failed[/red]"
        if run.paused:
            result += " [yellow](paused)[/yellow]"
        next_run = run.next_run_at.strftime("%Y-%m-%d %H:%M") if run.next_run_at else "-"
        detail = (run.run_id or "") if run.succeeded else f"{run.error_code}: {run.error}"
        table.add_row(run.schedule_id[:8], run.table, run.scan_type, result, next_run, detail)

    console.print(table)
    console.print(
        f"{report.executed} executed, [green]{report.succeeded} succeeded[/green], "
        f"[red]{report.failed} failed[/red]"
    )


@app.command()
@handle_errors
def tick(
    json_output: bool = typer.Option(False, "--json", help="Output the report as JSON."),
) -> None:
    """Run every schedule that is due now, then exit.

    Suitable for an external trigger such as cron.

    Example:
        dqscan scheduler tick
    """
    from dqscan.config import get_config
    from dqscan.database.connection import create_tables
    from dqscan.scans.dispatch import create_http_dispatcher
    from dqscan.scheduler.driver import SchedulerDriver
    from dqscan.scheduler.job_queue import JobQueue

    config = get_config()
    create_tables(config)

    async def execute():
        dispatcher = create_http_dispatcher(config)
        queue = None
        if config.scheduler.use_queue:
            queue = JobQueue(
                dispatcher,
                max_concurrent=config.scheduler.max_concurrent_jobs,
                poll_interval=config.scheduler.poll_interval,
                retry_base_delay=config.scheduler.retry_base_delay,
            )
        driver = SchedulerDriver(
            dispatcher,
            job_queue=queue,
            batch_size=config.scheduler.batch_size,
        )
        try:
            return await driver.tick()
        finally:
            await dispatcher.close()

    report = asyncio.run(execute())

    if json_output:
        console.print_json(json.dumps(report.to_dict()))
    else:
        _print_report(report)

    if report.failed:
        raise typer.Exit(code=ExitCode.SCAN_ERROR)


@app.command()
@handle_errors
def serve(
    interval: Optional[int] = typer.Option(
        None,
        "--interval",
        "-i",
        help="Seconds between ticks (default: scheduler.check_interval).",
        min=1,
    ),
    pid_file: Optional[Path] = typer.Option(
        None,
        "--pid-file",
        help="PID file path (default: <data_dir>/scheduler.pid).",
    ),
) -> None:
    """Run the scheduler in the foreground until interrupted.

    Example:
        dqscan scheduler serve
        dqscan scheduler serve --interval 30
    """
    from dqscan.config import ensure_directories, get_config
    from dqscan.daemon.service import PIDFile, run_daemon

    config = get_config()
    if not config.scheduler.enabled:
        console.print("[yellow]Scheduler is disabled in configuration (scheduler.enabled)[/yellow]")
        raise typer.Exit(code=ExitCode.CONFIGURATION_ERROR)

    existing = PIDFile(pid_file or config.pid_file).running_pid()
    if existing is not None:
        console.print(f"[red]Scheduler is already running (PID: {existing})[/red]")
        raise typer.Exit(code=ExitCode.SCHEDULER_ERROR)

    ensure_directories(config)
    console.print(
        f"[green]●[/green] Scheduler starting, ticking every "
        f"{interval or config.scheduler.check_interval}s (Ctrl+C to stop)"
    )
    logging.getLogger(__name__).info("Scheduler serve command started")
    asyncio.run(run_daemon(config, {"interval": interval, "pid_file": pid_file}))
    console.print("[dim]Scheduler stopped.[/dim]")


@app.command()
@handle_errors
def status() -> None:
    """Show whether the scheduler daemon is running and what is due.

    Example:
        dqscan scheduler status
    """
    from dqscan.config import get_config
    from dqscan.daemon.service import PIDFile
    from dqscan.database.connection import create_tables, get_db_session
    from dqscan.database.models import ScheduleStatus
    from dqscan.database.repositories import RepositoryFactory
    from dqscan.timeutil import utcnow

    config = get_config()
    pid = PIDFile(config.pid_file).running_pid()
    if pid is not None:
        console.print(f"[green]● Scheduler is running[/green] (PID: {pid})")
    else:
        console.print("[yellow]○ Scheduler is not running[/yellow]")

    create_tables(config)
    with get_db_session() as session:
        schedules = RepositoryFactory(session).schedules
        active = len(schedules.get_all(status=ScheduleStatus.ACTIVE.value))
        paused = len(schedules.get_all(status=ScheduleStatus.PAUSED.value))
        due = schedules.count_due(utcnow())

    console.print(f"  Check interval: {config.scheduler.check_interval}s")
    console.print(f"  Batch size: {config.scheduler.batch_size}")
    console.print(f"  Schedules: {active} active, {paused} paused")
    console.print(f"  Due now: {due}")


@app.command()
@handle_errors
def stop() -> None:
    """Send SIGTERM to the running scheduler daemon.

    Example:
        dqscan scheduler stop
    """
    from dqscan.config import get_config
    from dqscan.daemon.service import PIDFile

    pid = PIDFile(get_config().pid_file).running_pid()
    if pid is None:
        console.print("[yellow]Scheduler is not running[/yellow]")
        raise typer.Exit()

    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        console.print("[yellow]Scheduler process not found (already stopped)[/yellow]")
        return
    except PermissionError:
        console.print(f"[red]Permission denied: cannot signal process {pid}[/red]")
        raise typer.Exit(code=ExitCode.SCHEDULER_ERROR)

    console.print(f"[green]Shutdown signal sent to scheduler (PID: {pid})[/green]")
