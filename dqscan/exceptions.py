"""Exceptions raised by the dqscan scheduling core."""

from typing import Any


class DQScanError(Exception):
    """Base exception for dqscan.

    Attributes:
        message: Error message
        details: Optional dictionary of additional error details
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(DQScanError):
    """Raised when configuration is missing or invalid."""
    pass


class InvalidExpression(DQScanError):
    """Raised when a cron expression, time of day or timezone cannot be parsed."""
    pass


class UnsupportedScheduleType(DQScanError):
    """Raised when a recurrence type cannot be turned into a cron expression."""
    pass


class UnsupportedScanType(DQScanError):
    """Raised when no scan operation exists for a scan type."""
    pass


class InvalidScheduleError(DQScanError):
    """Raised when a schedule definition fails validation."""
    pass


class ScheduleNotFoundError(DQScanError):
    """Raised when a schedule id does not match any stored schedule."""
    pass


class ScanFailedError(DQScanError):
    """Raised when a scan operation reports an unsuccessful run."""

    def __init__(
        self,
        message: str,
        run_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.run_id = run_id
