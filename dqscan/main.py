"""Main CLI entry point for dqscan."""

import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console

from dqscan import __app_name__, __version__
from dqscan.cli import config, scheduler, schedules
from dqscan.cli.exit_codes import ExitCode

app = typer.Typer(
    name=__app_name__,
    help="dqscan - Scheduled data-quality scans for warehouse tables.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
app.add_typer(schedules.app, name="schedules")
app.add_typer(scheduler.app, name="scheduler")
app.add_typer(config.app, name="config")

console = Console()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEBUG_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"


def _show_version(value: bool) -> None:
    if value:
        console.print(f"{__app_name__} v{__version__}")
        raise typer.Exit(code=ExitCode.SUCCESS)


def _console_level(verbose: bool, debug: bool, quiet: bool, configured: str) -> int:
    """Pick the console log level; flags win over the configured level."""
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    if quiet:
        return logging.ERROR
    level = logging.getLevelName(configured.upper())
    return level if isinstance(level, int) else logging.WARNING


def configure_logging(
    level: int,
    log_file: Optional[Path] = None,
    quiet: bool = False,
    debug: bool = False,
) -> None:
    """Install root handlers for a CLI run.

    The console handler logs at ``level`` to stderr (none when quiet); the
    optional file handler always captures DEBUG.
    """
    handlers: List[logging.Handler] = []

    if not quiet:
        stream = logging.StreamHandler(sys.stderr)
        stream.setLevel(level)
        handlers.append(stream)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        to_file = logging.FileHandler(log_file)
        to_file.setLevel(logging.DEBUG)
        handlers.append(to_file)

    logging.basicConfig(
        level=logging.DEBUG if log_file is not None else level,
        format=DEBUG_LOG_FORMAT if debug else LOG_FORMAT,
        handlers=handlers or [logging.NullHandler()],
        force=True,
    )

    # APScheduler logs every job run at INFO
    if not debug:
        logging.getLogger("apscheduler").setLevel(logging.WARNING)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=_show_version,
        is_eager=True,
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a configuration file.",
        exists=True,
        dir_okay=False,
        resolve_path=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Log at INFO level."),
    debug: bool = typer.Option(False, "--debug", help="Log at DEBUG level with source locations."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log errors."),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Also log to this file at DEBUG level.",
    ),
) -> None:
    """dqscan - Scheduled data-quality scans for warehouse tables.

    [bold]Commands:[/bold]

    • [cyan]schedules[/cyan] - Create and manage scan schedules
    • [cyan]scheduler[/cyan] - Run due schedules once or as a daemon
    • [cyan]config[/cyan] - Manage configuration

    [bold]Examples:[/bold]

        dqscan schedules create -d ANALYTICS -s PUBLIC -t ORDERS --type daily --time 09:00
        dqscan scheduler tick
        dqscan scheduler serve
    """
    from dqscan.config import get_config, load_config, set_config

    if quiet and (verbose or debug):
        flag = "--verbose" if verbose else "--debug"
        console.print(f"[red]Error:[/red] --quiet cannot be combined with {flag}")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    if config_file is not None:
        set_config(load_config(config_file))
    settings = get_config()

    level = _console_level(verbose, debug, quiet, settings.logging.level)
    configure_logging(level, log_file or settings.logging.file, quiet=quiet, debug=debug)
    logging.getLogger(__name__).debug(
        f"dqscan v{__version__} starting (level={logging.getLevelName(level)})"
    )


if __name__ == "__main__":
    app()
