"""Scan operations backed by the dashboard's HTTP API."""

import logging
from typing import Any, Dict, Optional

import httpx

from dqscan.scans.base import ScanOperation, ScanResult, ScanTarget

logger = logging.getLogger(__name__)


class HttpScanOperation(ScanOperation):
    """Runs a scan by POSTing the target to a dashboard endpoint.

    The request body is ``{database, schema, table, triggered_by}`` merged
    with the operation's default options and any per-call options. HTTP
    and transport errors propagate as httpx exceptions.

    Example:
        profiling = HttpScanOperation(
            "profiling",
            "/api/dq/run-profiling",
            base_url="http://localhost:3000",
            default_options={"profile_level": "BASIC"},
        )
        result = await profiling.run(ScanTarget("DB", "PUBLIC", "ORDERS"))
    """

    def __init__(
        self,
        name: str,
        endpoint: str,
        base_url: str = "http://localhost:3000",
        timeout: float = 300.0,
        client: Optional[httpx.AsyncClient] = None,
        default_options: Optional[Dict[str, Any]] = None,
        triggered_by: str = "scheduled",
    ):
        self.name = name
        self.endpoint = endpoint
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.default_options = dict(default_options or {})
        self.triggered_by = triggered_by
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        return self._client

    def build_payload(self, target: ScanTarget, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "database": target.database,
            "schema": target.schema,
            "table": target.table,
            "triggered_by": self.triggered_by,
        }
        payload.update(self.default_options)
        payload.update(options or {})
        return payload

    async def run(self, target: ScanTarget, options: Optional[Dict[str, Any]] = None) -> ScanResult:
        client = self._get_client()
        logger.info(f"Requesting {self.name} scan for {target.qualified_name}")

        response = await client.post(self.endpoint, json=self.build_payload(target, options))
        response.raise_for_status()
        body = response.json()

        data = body.get("data") or {}
        success = bool(body.get("success"))
        result = ScanResult(
            success=success,
            run_id=data.get("runId") or data.get("run_id"),
            error=None if success else _error_text(body.get("error")),
            data=data,
        )

        if success:
            logger.info(f"{self.name} scan for {target.qualified_name} finished (run {result.run_id})")
        else:
            logger.warning(f"{self.name} scan for {target.qualified_name} failed: {result.error}")
        return result

    async def close(self) -> None:
        """Close the HTTP client if this operation created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None


def _error_text(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or error.get("userMessage") or error.get("code") or error)
    if error:
        return str(error)
    return "Scan reported failure without an error message"
