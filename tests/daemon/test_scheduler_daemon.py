"""Tests for the scheduler daemon and its PID file."""

import asyncio
import os
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from dqscan.daemon.service import PIDFile, SchedulerDaemon, TICK_JOB_ID, run_daemon
from dqscan.database.connection import get_db_session
from dqscan.database.repositories import RepositoryFactory
from dqscan.scans.base import ScanResult
from dqscan.timeutil import utcnow


@pytest.fixture
def dispatcher() -> AsyncMock:
    mock = AsyncMock()
    mock.run.return_value = ScanResult(success=True, run_id="run-1")
    return mock


class TestPIDFile:
    """Tests for PIDFile."""

    def test_write_creates_parent_directories(self, tmp_path) -> None:
        pid_file = PIDFile(tmp_path / "run" / "scheduler.pid")
        pid_file.write()

        assert pid_file.path.exists()
        assert pid_file.path.read_text() == str(os.getpid())

    def test_running_pid_for_live_process(self, tmp_path) -> None:
        pid_file = PIDFile(tmp_path / "scheduler.pid")
        pid_file.write()

        assert pid_file.running_pid() == os.getpid()

    def test_running_pid_without_file(self, tmp_path) -> None:
        assert PIDFile(tmp_path / "missing.pid").running_pid() is None

    def test_running_pid_invalid_content(self, tmp_path) -> None:
        pid_file = PIDFile(tmp_path / "scheduler.pid")
        pid_file.path.write_text("not-a-pid")

        assert pid_file.running_pid() is None

    def test_stale_file_removed(self, tmp_path) -> None:
        pid_file = PIDFile(tmp_path / "scheduler.pid")
        pid_file.path.write_text("999999")

        with patch("dqscan.daemon.service.os.kill", side_effect=ProcessLookupError):
            assert pid_file.running_pid() is None

        assert not pid_file.path.exists()

    def test_remove(self, tmp_path) -> None:
        pid_file = PIDFile(tmp_path / "scheduler.pid")
        pid_file.write()
        pid_file.remove()
        pid_file.remove()

        assert not pid_file.path.exists()


class TestSchedulerDaemon:
    """Tests for SchedulerDaemon."""

    def test_interval_defaults_to_config(self, db_config, dispatcher: AsyncMock) -> None:
        daemon = SchedulerDaemon(db_config, dispatcher=dispatcher)

        assert daemon.get_status()["interval"] == db_config.scheduler.check_interval
        assert daemon.is_running is False

    @pytest.mark.asyncio
    async def test_tick_before_start_is_noop(self, db_config, dispatcher: AsyncMock) -> None:
        daemon = SchedulerDaemon(db_config, dispatcher=dispatcher)
        assert await daemon.tick() is None

    @pytest.mark.asyncio
    async def test_start_and_stop(self, db_config, dispatcher: AsyncMock) -> None:
        daemon = SchedulerDaemon(db_config, dispatcher=dispatcher, interval=3600)

        await daemon.start()
        try:
            assert daemon.is_running is True
            assert daemon._scheduler.get_job(TICK_JOB_ID) is not None
        finally:
            await daemon.stop()

        assert daemon.is_running is False
        dispatcher.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_tick_runs_due_schedules(self, db_config, dispatcher: AsyncMock) -> None:
        daemon = SchedulerDaemon(db_config, dispatcher=dispatcher, interval=3600)
        await daemon.start()
        try:
            # Let the immediate first tick run while nothing is due
            await asyncio.sleep(0.1)

            with get_db_session() as session:
                schedule = RepositoryFactory(session).schedules.create(
                    database_name="analytics",
                    schema_name="public",
                    table_name="orders",
                    scan_type="profiling",
                    is_recurring=True,
                    recurrence_type="hourly",
                    next_run_at=utcnow() - timedelta(minutes=1),
                )

            report = await daemon.tick()

            assert report.executed == 1
            assert report.runs[0].schedule_id == schedule.schedule_id
            status = daemon.get_status()
            assert status["last_tick"]["executed"] == 1
            assert status["use_queue"] is False
        finally:
            await daemon.stop()

    @pytest.mark.asyncio
    async def test_queue_mode(self, db_config, dispatcher: AsyncMock) -> None:
        db_config.scheduler.use_queue = True
        db_config.scheduler.poll_interval = 0.01
        daemon = SchedulerDaemon(db_config, dispatcher=dispatcher, interval=3600)

        await daemon.start()
        try:
            status = daemon.get_status()
            assert status["use_queue"] is True
            assert status["queue"]["total"] == 0
        finally:
            await daemon.stop()

    @pytest.mark.asyncio
    async def test_tick_errors_are_swallowed(self, db_config, dispatcher: AsyncMock) -> None:
        daemon = SchedulerDaemon(db_config, dispatcher=dispatcher, interval=3600)
        await daemon.start()
        try:
            with patch.object(daemon._driver, "tick", AsyncMock(side_effect=RuntimeError("boom"))):
                assert await daemon.tick() is None
        finally:
            await daemon.stop()

    @pytest.mark.asyncio
    async def test_request_shutdown(self, db_config, dispatcher: AsyncMock) -> None:
        daemon = SchedulerDaemon(db_config, dispatcher=dispatcher)
        daemon.request_shutdown()

        await asyncio.wait_for(daemon.run_until_shutdown(), timeout=1)


class TestRunDaemon:
    """Tests for run_daemon."""

    @pytest.mark.asyncio
    async def test_pid_file_lifecycle(self, db_config, tmp_path) -> None:
        pid_path = tmp_path / "scheduler.pid"

        async def wait_for_shutdown() -> None:
            assert pid_path.exists()

        with patch("dqscan.daemon.service.SchedulerDaemon") as daemon_cls:
            daemon = daemon_cls.return_value
            daemon.start = AsyncMock()
            daemon.stop = AsyncMock()
            daemon.run_until_shutdown = AsyncMock(side_effect=wait_for_shutdown)

            await run_daemon(db_config, {"interval": 5, "pid_file": pid_path})

        daemon_cls.assert_called_once_with(db_config, interval=5)
        daemon.start.assert_awaited_once()
        daemon.stop.assert_awaited_once()
        assert not pid_path.exists()
