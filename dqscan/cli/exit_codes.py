"""Process exit codes returned by dqscan commands.

0 and 1 keep their usual meaning and 130 mirrors a shell's SIGINT
status. Everything in between identifies which subsystem failed so
cron wrappers and systemd units can react without parsing output.
"""

from typing import Dict, Tuple


class ExitCode:
    """Exit codes for dqscan commands."""

    SUCCESS = 0
    GENERAL_ERROR = 1

    CONFIGURATION_ERROR = 2
    SCHEDULER_ERROR = 3
    SCAN_ERROR = 4  # at least one scan in a tick failed
    NETWORK_ERROR = 5
    DATABASE_ERROR = 6
    INVALID_ARGUMENT = 7
    NOT_FOUND = 8

    CANCELLED = 130

    @classmethod
    def _table(cls) -> Dict[int, Tuple[str, str]]:
        return {
            cls.SUCCESS: ("SUCCESS", "Operation completed successfully"),
            cls.GENERAL_ERROR: ("GENERAL_ERROR", "An unexpected error occurred"),
            cls.CONFIGURATION_ERROR: ("CONFIGURATION_ERROR", "Invalid or unreadable configuration"),
            cls.SCHEDULER_ERROR: ("SCHEDULER_ERROR", "Scheduler or daemon error"),
            cls.SCAN_ERROR: ("SCAN_ERROR", "A scan failed"),
            cls.NETWORK_ERROR: ("NETWORK_ERROR", "Could not reach the scan service"),
            cls.DATABASE_ERROR: ("DATABASE_ERROR", "Schedule database error"),
            cls.INVALID_ARGUMENT: ("INVALID_ARGUMENT", "Invalid command-line argument"),
            cls.NOT_FOUND: ("NOT_FOUND", "Schedule not found"),
            cls.CANCELLED: ("CANCELLED", "Interrupted by the user"),
        }

    @classmethod
    def get_name(cls, code: int) -> str:
        entry = cls._table().get(code)
        return entry[0] if entry else f"UNKNOWN({code})"

    @classmethod
    def get_description(cls, code: int) -> str:
        entry = cls._table().get(code)
        return entry[1] if entry else f"Unknown exit code: {code}"
