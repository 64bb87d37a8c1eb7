"""Tests for CLI exit codes and the error handler."""

import httpx
import pytest
import typer
from sqlalchemy.exc import OperationalError

from dqscan.cli.error_handler import exit_code_for, handle_errors
from dqscan.cli.exit_codes import ExitCode
from dqscan.exceptions import (
    ConfigurationError,
    DQScanError,
    InvalidExpression,
    InvalidScheduleError,
    ScanFailedError,
    ScheduleNotFoundError,
    UnsupportedScanType,
)
from dqscan.scheduler.errors import ErrorCode, ScanError


class TestExitCode:
    """Tests for ExitCode."""

    def test_values(self) -> None:
        assert ExitCode.SUCCESS == 0
        assert ExitCode.GENERAL_ERROR == 1
        assert ExitCode.CONFIGURATION_ERROR == 2
        assert ExitCode.SCHEDULER_ERROR == 3
        assert ExitCode.SCAN_ERROR == 4
        assert ExitCode.NETWORK_ERROR == 5
        assert ExitCode.DATABASE_ERROR == 6
        assert ExitCode.INVALID_ARGUMENT == 7
        assert ExitCode.NOT_FOUND == 8
        assert ExitCode.CANCELLED == 130

    def test_get_name(self) -> None:
        assert ExitCode.get_name(ExitCode.NOT_FOUND) == "NOT_FOUND"
        assert ExitCode.get_name(99) == "UNKNOWN(99)"

    def test_get_description(self) -> None:
        assert ExitCode.get_description(ExitCode.SCAN_ERROR) == "A scan failed"
        assert "Unknown" in ExitCode.get_description(99)


class TestExitCodeFor:
    """Exception to exit code mapping."""

    @pytest.mark.parametrize(
        "error, code",
        [
            (ConfigurationError("bad"), ExitCode.CONFIGURATION_ERROR),
            (ScheduleNotFoundError("missing"), ExitCode.NOT_FOUND),
            (InvalidExpression("bad cron"), ExitCode.INVALID_ARGUMENT),
            (InvalidScheduleError("bad schedule"), ExitCode.INVALID_ARGUMENT),
            (UnsupportedScanType("lineage"), ExitCode.INVALID_ARGUMENT),
            (ScanFailedError("failed"), ExitCode.SCAN_ERROR),
            (ScanError("timeout", ErrorCode.QUERY_TIMEOUT), ExitCode.SCAN_ERROR),
            (DQScanError("generic"), ExitCode.SCHEDULER_ERROR),
            (httpx.ConnectError("refused"), ExitCode.NETWORK_ERROR),
            (OperationalError("SELECT 1", {}, Exception("locked")), ExitCode.DATABASE_ERROR),
            (ValueError("other"), ExitCode.GENERAL_ERROR),
        ],
    )
    def test_mapping(self, error: BaseException, code: int) -> None:
        assert exit_code_for(error) == code


class TestHandleErrors:
    """Tests for the handle_errors decorator."""

    def test_passes_through_result(self) -> None:
        @handle_errors
        def command() -> str:
            return "done"

        assert command() == "done"

    def test_dqscan_error_exit_code(self) -> None:
        @handle_errors
        def command() -> None:
            raise ScheduleNotFoundError("Schedule not found: abc", {"schedule_id": "abc"})

        with pytest.raises(typer.Exit) as exc_info:
            command()

        assert exc_info.value.exit_code == ExitCode.NOT_FOUND

    def test_network_error_exit_code(self) -> None:
        @handle_errors
        def command() -> None:
            raise httpx.ConnectError("connection refused")

        with pytest.raises(typer.Exit) as exc_info:
            command()

        assert exc_info.value.exit_code == ExitCode.NETWORK_ERROR

    def test_keyboard_interrupt(self) -> None:
        @handle_errors
        def command() -> None:
            raise KeyboardInterrupt()

        with pytest.raises(typer.Exit) as exc_info:
            command()

        assert exc_info.value.exit_code == ExitCode.CANCELLED

    def test_typer_exit_reraised(self) -> None:
        @handle_errors
        def command() -> None:
            raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

        with pytest.raises(typer.Exit) as exc_info:
            command()

        assert exc_info.value.exit_code == ExitCode.INVALID_ARGUMENT

    def test_unexpected_error(self) -> None:
        @handle_errors
        def command() -> None:
            raise RuntimeError("kaboom")

        with pytest.raises(typer.Exit) as exc_info:
            command()

        assert exc_info.value.exit_code == ExitCode.GENERAL_ERROR

    def test_preserves_metadata(self) -> None:
        @handle_errors
        def my_command() -> None:
            """Docstring."""

        assert my_command.__name__ == "my_command"
        assert my_command.__doc__ == "Docstring."
