"""Global exception handling for the dqscan CLI.

Commands are wrapped in :func:`handle_errors`, which prints a short
message on stderr and exits with the code matching the exception.
"""

from functools import wraps
from typing import Callable, TypeVar, Any, Tuple, Type
import logging

import httpx
import typer
from rich.console import Console
from sqlalchemy.exc import SQLAlchemyError

from dqscan.cli.exit_codes import ExitCode
from dqscan.exceptions import (
    ConfigurationError,
    DQScanError,
    InvalidExpression,
    InvalidScheduleError,
    ScanFailedError,
    ScheduleNotFoundError,
    UnsupportedScanType,
    UnsupportedScheduleType,
)
from dqscan.scheduler.errors import ScanError

console = Console(stderr=True)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# First match wins, so subclasses come before their bases
_EXIT_CODES: Tuple[Tuple[Tuple[Type[BaseException], ...], int], ...] = (
    ((ConfigurationError,), ExitCode.CONFIGURATION_ERROR),
    ((ScheduleNotFoundError,), ExitCode.NOT_FOUND),
    (
        (InvalidExpression, InvalidScheduleError, UnsupportedScheduleType, UnsupportedScanType),
        ExitCode.INVALID_ARGUMENT,
    ),
    ((ScanFailedError, ScanError), ExitCode.SCAN_ERROR),
    ((DQScanError,), ExitCode.SCHEDULER_ERROR),
    ((httpx.HTTPError,), ExitCode.NETWORK_ERROR),
    ((SQLAlchemyError,), ExitCode.DATABASE_ERROR),
)


def exit_code_for(error: BaseException) -> int:
    """Exit code for an exception raised by a command."""
    for types, code in _EXIT_CODES:
        if isinstance(error, types):
            return code
    return ExitCode.GENERAL_ERROR


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling across CLI commands.

    - dqscan, HTTP and database errors: message plus details, mapped exit code
    - KeyboardInterrupt: cancellation message, exit code 130
    - Anything else: generic message, exit code 1

    Example:
        @app.command()
        @handle_errors
        def pause(schedule_id: str):
            ...
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except DQScanError as e:
            code = exit_code_for(e)
            logger.error(
                f"{type(e).__name__}: {e.message}",
                extra={"exit_code": code, "details": e.details},
            )
            console.print(f"[red]Error:[/red] {e.message}")
            for key, value in e.details.items():
                console.print(f"  [dim]{key}:[/dim] {value}")
            raise typer.Exit(code=code)

        except (httpx.HTTPError, SQLAlchemyError) as e:
            code = exit_code_for(e)
            logger.error(f"{type(e).__name__}: {e}")
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=code)

        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user.[/yellow]")
            logger.info("Operation cancelled by user (KeyboardInterrupt)")
            raise typer.Exit(code=ExitCode.CANCELLED)

        except (typer.Exit, typer.Abort):
            raise

        except Exception as e:
            logger.exception("Unexpected error occurred")
            console.print(f"[red]Unexpected error:[/red] {e}")
            console.print("[dim]Run with --verbose for more details[/dim]")
            raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    return wrapper  # type: ignore[return-value]
