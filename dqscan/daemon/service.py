"""Scheduler daemon.

The daemon is the trigger for the scheduler driver: an APScheduler
interval job calls :meth:`SchedulerDriver.tick` every
``scheduler.check_interval`` seconds until SIGINT or SIGTERM arrives.
"""

import asyncio
import logging
import os
import signal
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from dqscan.config import DQScanConfig
from dqscan.database.connection import create_tables
from dqscan.scans.dispatch import create_http_dispatcher
from dqscan.scheduler.driver import SchedulerDriver, TickReport
from dqscan.scheduler.job_queue import JobQueue

logger = logging.getLogger(__name__)

TICK_JOB_ID = "scheduler-tick"


class PIDFile:
    """PID file marking a running daemon.

    Example:
        pid_file = PIDFile(config.pid_file)
        if pid_file.running_pid() is None:
            pid_file.write()
    """

    def __init__(self, path: Path):
        self.path = path

    def write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(os.getpid()))

    def remove(self) -> None:
        if self.path.exists():
            self.path.unlink()

    def running_pid(self) -> Optional[int]:
        """PID of the live process named in the file, if any.

        A file naming a dead process is removed.
        """
        try:
            pid = int(self.path.read_text().strip())
        except (OSError, ValueError):
            return None

        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            self.remove()
            return None
        except PermissionError:
            # Process exists but belongs to another user
            pass
        return pid


class SchedulerDaemon:
    """Runs scheduler ticks on a fixed interval.

    Example:
        daemon = SchedulerDaemon(config)
        await daemon.start()
        await daemon.run_until_shutdown()
        await daemon.stop()

    Args:
        config: dqscan configuration
        dispatcher: Scan dispatcher (default: HTTP dispatcher from config)
        interval: Seconds between ticks (default: scheduler.check_interval)
    """

    def __init__(
        self,
        config: DQScanConfig,
        dispatcher: Optional[Any] = None,
        interval: Optional[int] = None,
    ):
        self._config = config
        self._dispatcher = dispatcher
        self._interval = interval or config.scheduler.check_interval
        self._driver: Optional[SchedulerDriver] = None
        self._job_queue: Optional[JobQueue] = None
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._last_report: Optional[TickReport] = None
        self._ticks = 0

    async def start(self) -> None:
        """Create the driver and start the interval job.

        The first tick runs immediately.
        """
        logger.info("Starting scheduler daemon...")
        scheduler_config = self._config.scheduler

        create_tables(self._config)

        if self._dispatcher is None:
            self._dispatcher = create_http_dispatcher(self._config)

        if scheduler_config.use_queue:
            self._job_queue = JobQueue(
                self._dispatcher,
                max_concurrent=scheduler_config.max_concurrent_jobs,
                poll_interval=scheduler_config.poll_interval,
                retry_base_delay=scheduler_config.retry_base_delay,
            )

        self._driver = SchedulerDriver(
            self._dispatcher,
            job_queue=self._job_queue,
            batch_size=scheduler_config.batch_size,
        )

        self._scheduler = AsyncIOScheduler(
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": self._interval,
            },
            timezone="UTC",
        )
        self._scheduler.add_listener(self._on_job_event, EVENT_JOB_ERROR | EVENT_JOB_MISSED)
        self._scheduler.add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=self._interval, timezone="UTC"),
            id=TICK_JOB_ID,
            name="Scheduler tick",
            next_run_time=datetime.now(timezone.utc),
        )
        self._scheduler.start()

        self._running = True
        logger.info(f"Scheduler daemon started, ticking every {self._interval}s")

    async def tick(self) -> Optional[TickReport]:
        """Run one driver pass; errors are logged, never raised."""
        if self._driver is None:
            return None
        try:
            report = await self._driver.tick()
        except Exception as e:
            logger.exception(f"Scheduler tick failed: {e}")
            return None
        self._ticks += 1
        self._last_report = report
        return report

    def _on_job_event(self, event: Any) -> None:
        if getattr(event, "exception", None):
            logger.error(f"Job {event.job_id} failed: {event.exception}")
        else:
            logger.warning(f"Job {event.job_id} missed scheduled run")

    async def stop(self) -> None:
        """Stop ticking, drain queued scans and close the dispatcher."""
        logger.info("Stopping scheduler daemon...")
        self._running = False

        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        if self._job_queue is not None:
            await self._job_queue.join()

        if self._dispatcher is not None and hasattr(self._dispatcher, "close"):
            try:
                await self._dispatcher.close()
            except Exception as e:
                logger.warning(f"Error closing scan dispatcher: {e}")

        logger.info("Scheduler daemon stopped")

    async def run_until_shutdown(self) -> None:
        """Block until :meth:`request_shutdown` is called."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> Dict[str, Any]:
        status: Dict[str, Any] = {
            "running": self._running,
            "interval": self._interval,
            "ticks": self._ticks,
            "use_queue": self._job_queue is not None,
        }
        if self._job_queue is not None:
            status["queue"] = self._job_queue.get_stats()
        if self._last_report is not None:
            status["last_tick"] = self._last_report.to_dict()
        return status


async def run_daemon(config: DQScanConfig, options: Dict[str, Any]) -> None:
    """Run the scheduler daemon until SIGINT or SIGTERM.

    Args:
        config: dqscan configuration
        options: Daemon options:
            - interval: Seconds between ticks
            - pid_file: PID file path (default: config.pid_file)
    """
    daemon = SchedulerDaemon(config, interval=options.get("interval"))
    pid_file = PIDFile(Path(options.get("pid_file") or config.pid_file))

    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        daemon.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            signal.signal(sig, lambda signum, frame: handle_signal(signal.Signals(signum)))

    pid_file.write()
    try:
        await daemon.start()
        await daemon.run_until_shutdown()
    finally:
        await daemon.stop()
        pid_file.remove()
