"""Maps scan types onto the scan operations that implement them."""

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from dqscan.exceptions import ScanFailedError, UnsupportedScanType
from dqscan.scans.base import ScanOperation, ScanResult, ScanTarget, ScanType
from dqscan.scans.http import HttpScanOperation
from dqscan.scheduler.retry import RetryPolicy, retry_with_backoff

logger = logging.getLogger(__name__)

# Operations run, in order, for each scan type
SCAN_PLAN: Dict[ScanType, Tuple[Tuple[str, Dict[str, Any]], ...]] = {
    ScanType.PROFILING: (("profiling", {}),),
    ScanType.CHECKS: (("checks", {}),),
    ScanType.FULL: (("profiling", {}), ("checks", {})),
    ScanType.ANOMALIES: (("profiling", {"detect_anomalies": True}),),
}


class ScanDispatcher:
    """Runs the operations behind a scan type.

    ``full`` runs profiling then checks and stops at the first failure;
    ``anomalies`` runs profiling with anomaly detection enabled. An
    unsuccessful scan result is raised as :class:`ScanFailedError`.

    Args:
        operations: Operations keyed by name ("profiling", "checks")
        retry_policy: When given, each operation call is retried with backoff
    """

    def __init__(
        self,
        operations: Mapping[str, ScanOperation],
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._operations = dict(operations)
        self._retry_policy = retry_policy

    @property
    def operations(self) -> Dict[str, ScanOperation]:
        return dict(self._operations)

    async def run(
        self,
        scan_type: str,
        target: ScanTarget,
        options: Optional[Dict[str, Any]] = None,
    ) -> ScanResult:
        """Run a scan of the given type against ``target``.

        Returns:
            The result of the last operation run

        Raises:
            UnsupportedScanType: Unknown scan type or missing operation
            ScanFailedError: An operation reported an unsuccessful scan
        """
        try:
            kind = ScanType(scan_type)
        except ValueError:
            raise UnsupportedScanType(f"Unsupported scan type: {scan_type}")

        result: Optional[ScanResult] = None
        for operation_name, extra in SCAN_PLAN[kind]:
            operation = self._operations.get(operation_name)
            if operation is None:
                raise UnsupportedScanType(
                    f"No '{operation_name}' operation registered for {kind.value} scans"
                )

            merged = {**extra, **(options or {})}
            result = await self._call(operation, target, merged)

            if not result.success:
                raise ScanFailedError(
                    result.error or f"{operation_name} scan failed",
                    run_id=result.run_id,
                    details={"table": target.qualified_name, "operation": operation_name},
                )

        return result

    async def _call(self, operation: ScanOperation, target: ScanTarget, options: Dict[str, Any]) -> ScanResult:
        if self._retry_policy is None:
            return await operation.run(target, options)
        return await retry_with_backoff(
            lambda: operation.run(target, options),
            self._retry_policy,
            context=f"{operation.name} scan of {target.qualified_name}",
        )

    async def close(self) -> None:
        for operation in self._operations.values():
            await operation.close()


def create_http_dispatcher(config) -> ScanDispatcher:
    """Build the default dispatcher from a ``DQScanConfig``."""
    scans = config.scans
    operations = {
        "profiling": HttpScanOperation(
            "profiling",
            scans.profiling_endpoint,
            base_url=scans.base_url,
            timeout=scans.timeout,
            default_options={"profile_level": scans.profile_level},
        ),
        "checks": HttpScanOperation(
            "checks",
            scans.checks_endpoint,
            base_url=scans.base_url,
            timeout=scans.timeout,
        ),
    }
    retry_policy = RetryPolicy.from_config(config.retry) if config.retry.enabled else None
    return ScanDispatcher(operations, retry_policy=retry_policy)
