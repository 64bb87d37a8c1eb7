"""Scan operations consumed by the scheduler."""

from dqscan.scans.base import ScanOperation, ScanResult, ScanTarget, ScanType
from dqscan.scans.dispatch import ScanDispatcher, create_http_dispatcher
from dqscan.scans.http import HttpScanOperation

__all__ = [
    "HttpScanOperation",
    "ScanDispatcher",
    "ScanOperation",
    "ScanResult",
    "ScanTarget",
    "ScanType",
    "create_http_dispatcher",
]
