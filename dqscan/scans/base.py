"""Scan targets, results and the operation interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ScanType(str, Enum):
    """Kinds of scan a schedule can request."""

    PROFILING = "profiling"
    CHECKS = "checks"
    FULL = "full"
    ANOMALIES = "anomalies"


@dataclass(frozen=True)
class ScanTarget:
    """A warehouse table to scan."""

    database: str
    schema: str
    table: str

    @property
    def qualified_name(self) -> str:
        return f"{self.database}.{self.schema}.{self.table}"

    def __str__(self) -> str:
        return self.qualified_name


@dataclass
class ScanResult:
    """Outcome reported by a scan operation.

    Attributes:
        success: Whether the scan ran to completion
        run_id: Identifier of the scan run, when the service assigns one
        error: Error text for unsuccessful scans
        data: Raw payload returned by the service
    """

    success: bool
    run_id: Optional[str] = None
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


class ScanOperation(ABC):
    """A single kind of scan that can be run against a table.

    Implementations raise on transport failures and return an
    unsuccessful :class:`ScanResult` when the scan itself fails.
    """

    name: str = "scan"

    @abstractmethod
    async def run(self, target: ScanTarget, options: Optional[Dict[str, Any]] = None) -> ScanResult:
        """Run the scan.

        Args:
            target: Table to scan
            options: Extra request options merged into the scan request

        Returns:
            The scan result
        """
        pass

    async def close(self) -> None:
        """Release any resources held by the operation."""
        pass
