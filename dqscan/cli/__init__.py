"""CLI command modules for dqscan.

This package contains the command groups and the shared exit codes and
error handling they use.
"""

from dqscan.cli import config, scheduler, schedules
from dqscan.cli.exit_codes import ExitCode
from dqscan.cli.error_handler import exit_code_for, handle_errors

__all__ = [
    # Command modules
    "config",
    "scheduler",
    "schedules",
    # Exit codes
    "ExitCode",
    # Error handling
    "exit_code_for",
    "handle_errors",
]
