"""Tests for the scan dispatcher."""

from typing import Any, Dict, List, Optional

import pytest

from dqscan.config import DQScanConfig
from dqscan.exceptions import InvalidExpression, ScanFailedError, UnsupportedScanType
from dqscan.scans.base import ScanOperation, ScanResult, ScanTarget
from dqscan.scans.dispatch import ScanDispatcher, create_http_dispatcher
from dqscan.scans.http import HttpScanOperation
from dqscan.scheduler.retry import RetryPolicy

TARGET = ScanTarget("ANALYTICS", "PUBLIC", "ORDERS")


class FakeOperation(ScanOperation):
    """Operation double returning queued results or raising queued errors."""

    def __init__(self, name: str, outcomes: Optional[List[Any]] = None) -> None:
        self.name = name
        self.outcomes = list(outcomes or [])
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    async def run(self, target: ScanTarget, options: Optional[Dict[str, Any]] = None) -> ScanResult:
        self.calls.append({"target": target, "options": options})
        outcome = self.outcomes.pop(0) if self.outcomes else ScanResult(success=True, run_id=f"{self.name}-run")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def profiling() -> FakeOperation:
    return FakeOperation("profiling")


@pytest.fixture
def checks() -> FakeOperation:
    return FakeOperation("checks")


@pytest.fixture
def dispatcher(profiling: FakeOperation, checks: FakeOperation) -> ScanDispatcher:
    return ScanDispatcher({"profiling": profiling, "checks": checks})


class TestScanDispatcher:
    """Routing scan types to operations."""

    @pytest.mark.asyncio
    async def test_profiling(self, dispatcher: ScanDispatcher, profiling: FakeOperation, checks: FakeOperation) -> None:
        result = await dispatcher.run("profiling", TARGET)

        assert result.run_id == "profiling-run"
        assert len(profiling.calls) == 1
        assert checks.calls == []

    @pytest.mark.asyncio
    async def test_checks(self, dispatcher: ScanDispatcher, checks: FakeOperation) -> None:
        result = await dispatcher.run("checks", TARGET, {"limit": 5})

        assert result.run_id == "checks-run"
        assert checks.calls[0]["options"] == {"limit": 5}

    @pytest.mark.asyncio
    async def test_full_runs_profiling_then_checks(
        self, dispatcher: ScanDispatcher, profiling: FakeOperation, checks: FakeOperation
    ) -> None:
        result = await dispatcher.run("full", TARGET)

        assert len(profiling.calls) == 1
        assert len(checks.calls) == 1
        assert result.run_id == "checks-run"

    @pytest.mark.asyncio
    async def test_full_stops_at_first_failure(
        self, profiling: FakeOperation, checks: FakeOperation
    ) -> None:
        profiling.outcomes = [ScanResult(success=False, run_id="p-1", error="profiling broke")]
        dispatcher = ScanDispatcher({"profiling": profiling, "checks": checks})

        with pytest.raises(ScanFailedError) as exc_info:
            await dispatcher.run("full", TARGET)

        assert exc_info.value.run_id == "p-1"
        assert exc_info.value.message == "profiling broke"
        assert exc_info.value.details["table"] == "ANALYTICS.PUBLIC.ORDERS"
        assert checks.calls == []

    @pytest.mark.asyncio
    async def test_anomalies_enable_detection(self, dispatcher: ScanDispatcher, profiling: FakeOperation) -> None:
        await dispatcher.run("anomalies", TARGET)

        assert profiling.calls[0]["options"] == {"detect_anomalies": True}

    @pytest.mark.asyncio
    async def test_unknown_scan_type(self, dispatcher: ScanDispatcher) -> None:
        with pytest.raises(UnsupportedScanType):
            await dispatcher.run("lineage", TARGET)

    @pytest.mark.asyncio
    async def test_missing_operation(self, profiling: FakeOperation) -> None:
        dispatcher = ScanDispatcher({"profiling": profiling})

        with pytest.raises(UnsupportedScanType):
            await dispatcher.run("checks", TARGET)

    @pytest.mark.asyncio
    async def test_close_closes_operations(
        self, dispatcher: ScanDispatcher, profiling: FakeOperation, checks: FakeOperation
    ) -> None:
        await dispatcher.close()
        assert profiling.closed and checks.closed


class TestDispatcherRetries:
    """Retry policy around operation calls."""

    @pytest.mark.asyncio
    async def test_transient_error_retried(self) -> None:
        profiling = FakeOperation("profiling", [ConnectionResetError("reset"), ScanResult(success=True, run_id="r")])
        policy = RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0)
        dispatcher = ScanDispatcher({"profiling": profiling}, retry_policy=policy)

        result = await dispatcher.run("profiling", TARGET)

        assert result.run_id == "r"
        assert len(profiling.calls) == 2

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self) -> None:
        profiling = FakeOperation("profiling", [InvalidExpression("bad")])
        policy = RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0)
        dispatcher = ScanDispatcher({"profiling": profiling}, retry_policy=policy)

        with pytest.raises(InvalidExpression):
            await dispatcher.run("profiling", TARGET)

        assert len(profiling.calls) == 1

    @pytest.mark.asyncio
    async def test_without_policy_errors_propagate(self) -> None:
        profiling = FakeOperation("profiling", [ConnectionResetError("reset")])
        dispatcher = ScanDispatcher({"profiling": profiling})

        with pytest.raises(ConnectionResetError):
            await dispatcher.run("profiling", TARGET)

        assert len(profiling.calls) == 1


class TestCreateHttpDispatcher:
    """Building the dispatcher from configuration."""

    def test_operations_from_config(self, tmp_path) -> None:
        config = DQScanConfig(data_dir=tmp_path)
        config.scans.base_url = "http://dq.internal:8080"

        dispatcher = create_http_dispatcher(config)
        operations = dispatcher.operations

        assert set(operations) == {"profiling", "checks"}
        profiling = operations["profiling"]
        assert isinstance(profiling, HttpScanOperation)
        assert profiling.base_url == "http://dq.internal:8080"
        assert profiling.endpoint == config.scans.profiling_endpoint
        assert profiling.default_options == {"profile_level": "BASIC"}
        assert operations["checks"].endpoint == config.scans.checks_endpoint

    def test_retry_disabled(self, tmp_path) -> None:
        config = DQScanConfig(data_dir=tmp_path)
        config.retry.enabled = False

        dispatcher = create_http_dispatcher(config)

        assert dispatcher._retry_policy is None
