"""Tests for retry with exponential backoff."""

import logging
from typing import List
from unittest.mock import AsyncMock

import pytest

from dqscan.config import RetryConfig
from dqscan.exceptions import InvalidExpression
from dqscan.scheduler.retry import RetryPolicy, retry_connection, retry_query, retry_with_backoff


class RecordingSleep:
    """Sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_defaults(self) -> None:
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.initial_delay == 1.0
        assert policy.max_delay == 10.0
        assert policy.backoff_multiplier == 2.0

    def test_delays_grow_and_cap(self) -> None:
        policy = RetryPolicy(max_attempts=7, initial_delay=1.0, max_delay=10.0, backoff_multiplier=2.0)
        assert [policy.delay_for(n) for n in range(1, 7)] == [1, 2, 4, 8, 10, 10]

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_rejects_shrinking_multiplier(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(backoff_multiplier=0.5)

    def test_from_config(self) -> None:
        config = RetryConfig(max_attempts=5, initial_delay=0.5, max_delay=4.0, backoff_multiplier=3.0)
        policy = RetryPolicy.from_config(config)
        assert policy == RetryPolicy(5, 0.5, 4.0, 3.0)


class TestRetryWithBackoff:
    """Tests for retry_with_backoff."""

    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        operation = AsyncMock(return_value="ok")
        sleep = RecordingSleep()

        result = await retry_with_backoff(operation, RetryPolicy(), sleep=sleep)

        assert result == "ok"
        assert operation.await_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_non_retryable_error_called_once(self) -> None:
        operation = AsyncMock(side_effect=InvalidExpression("bad expression"))
        sleep = RecordingSleep()

        with pytest.raises(InvalidExpression):
            await retry_with_backoff(operation, RetryPolicy(max_attempts=5), sleep=sleep)

        assert operation.await_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retryable_error_exhausts_attempts(self) -> None:
        error = ConnectionResetError("connection reset")
        operation = AsyncMock(side_effect=error)
        sleep = RecordingSleep()
        policy = RetryPolicy(max_attempts=7, initial_delay=1.0, max_delay=10.0, backoff_multiplier=2.0)

        with pytest.raises(ConnectionResetError) as exc_info:
            await retry_with_backoff(operation, policy, sleep=sleep)

        assert exc_info.value is error
        assert operation.await_count == 7
        assert sleep.delays == [1, 2, 4, 8, 10, 10]

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self) -> None:
        operation = AsyncMock(side_effect=[TimeoutError("timed out"), TimeoutError("timed out"), "done"])
        sleep = RecordingSleep()

        result = await retry_with_backoff(operation, RetryPolicy(max_attempts=3), sleep=sleep)

        assert result == "done"
        assert operation.await_count == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_single_attempt_policy_never_sleeps(self) -> None:
        operation = AsyncMock(side_effect=ConnectionResetError("reset"))
        sleep = RecordingSleep()

        with pytest.raises(ConnectionResetError):
            await retry_with_backoff(operation, RetryPolicy(max_attempts=1), sleep=sleep)

        assert operation.await_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retry_query_wrapper(self) -> None:
        operation = AsyncMock(return_value=[1, 2, 3])

        result = await retry_query(operation, "row counts")

        assert result == [1, 2, 3]
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retry_connection_recovers(self, caplog: pytest.LogCaptureFixture) -> None:
        operation = AsyncMock(side_effect=[ConnectionRefusedError("refused"), "connected"])
        policy = RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0)

        with caplog.at_level(logging.WARNING, logger="dqscan.scheduler.retry"):
            result = await retry_connection(operation, policy)

        assert result == "connected"
        assert operation.await_count == 2
        assert "Connection failed on attempt 1/3" in caplog.text

    @pytest.mark.asyncio
    async def test_retry_connection_gives_up(self) -> None:
        operation = AsyncMock(side_effect=ConnectionRefusedError("refused"))
        policy = RetryPolicy(max_attempts=2, initial_delay=0.0, max_delay=0.0)

        with pytest.raises(ConnectionRefusedError):
            await retry_connection(operation, policy)

        assert operation.await_count == 2
