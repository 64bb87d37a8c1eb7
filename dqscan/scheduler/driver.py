"""One pass of the scheduler: find due schedules, run them, record outcomes.

The driver is invoked by an external trigger (the daemon's interval job
or ``dqscan scheduler tick``). Each tick:

1. Loads up to ``batch_size`` active schedules whose ``next_run_at`` has
   passed, earliest first.
2. Runs the scan for each one, inline and one after another, or through
   a :class:`JobQueue` when one is supplied.
3. On success stores the run time and the next run computed by the
   resolver; on failure bumps the failure count and leaves the schedule
   due, pausing it when its failure policy says so.
4. Records every attempt in the execution history.

A failing schedule never makes :meth:`SchedulerDriver.tick` raise.
"""

import asyncio
import logging
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from dqscan.database.connection import get_db_session
from dqscan.database.models import FailureAction, ScanSchedule, ScheduleStatus
from dqscan.database.repositories import RepositoryFactory
from dqscan.exceptions import DQScanError
from dqscan.scans.base import ScanResult, ScanTarget
from dqscan.scheduler.errors import classify
from dqscan.scheduler.job_queue import JobPriority, JobQueue, JobStatus
from dqscan.scheduler.resolver import ScheduleResolver
from dqscan.timeutil import utcnow

logger = logging.getLogger(__name__)

SessionScope = Callable[[], AbstractContextManager]


@dataclass
class ScheduleRun:
    """Outcome of running one due schedule."""

    schedule_id: str
    scan_type: str
    table: str
    status: str
    run_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    next_run_at: Optional[datetime] = None
    paused: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "schedule_id": self.schedule_id,
            "scan_type": self.scan_type,
            "table": self.table,
            "status": self.status,
        }
        if self.run_id:
            data["run_id"] = self.run_id
        if self.error:
            data["error"] = self.error
        if self.next_run_at:
            data["next_run_at"] = self.next_run_at.isoformat()
        if self.paused:
            data["paused"] = True
        return data


@dataclass
class TickReport:
    """Summary of one driver pass."""

    started_at: datetime
    runs: List[ScheduleRun] = field(default_factory=list)

    @property
    def executed(self) -> int:
        return len(self.runs)

    @property
    def succeeded(self) -> int:
        return sum(1 for run in self.runs if run.succeeded)

    @property
    def failed(self) -> int:
        return self.executed - self.succeeded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "executed": self.executed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "runs": [run.to_dict() for run in self.runs],
        }


# (result, error) pair produced by running one schedule
Outcome = Tuple[Optional[ScanResult], Optional[BaseException]]


def schedule_target(schedule: ScanSchedule) -> ScanTarget:
    return ScanTarget(schedule.database_name, schedule.schema_name, schedule.table_name)


class SchedulerDriver:
    """Executes due schedules and writes their outcome back.

    Args:
        dispatcher: Object with ``async run(scan_type, target, options)``
        session_scope: Zero-argument context manager yielding a Session
        resolver: Computes next run instants
        job_queue: When given, scans run as queue jobs instead of inline
        batch_size: Maximum schedules handled per tick
        clock: Returns the current time as naive UTC
    """

    def __init__(
        self,
        dispatcher: Any,
        session_scope: SessionScope = get_db_session,
        resolver: Optional[ScheduleResolver] = None,
        job_queue: Optional[JobQueue] = None,
        batch_size: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._dispatcher = dispatcher
        self._session_scope = session_scope
        self._clock = clock
        self._resolver = resolver or ScheduleResolver(clock=clock)
        self._job_queue = job_queue
        self._batch_size = batch_size

    @property
    def job_queue(self) -> Optional[JobQueue]:
        return self._job_queue

    async def tick(self) -> TickReport:
        """Run every schedule that is due now.

        Returns:
            Report with one entry per schedule handled
        """
        now = self._clock()
        report = TickReport(started_at=now)

        try:
            with self._session_scope() as session:
                due = RepositoryFactory(session).schedules.list_due(now, limit=self._batch_size)
        except Exception as e:
            logger.error(f"Failed to load due schedules: {e}")
            return report

        if not due:
            logger.debug("No schedules due")
            return report

        logger.info(f"{len(due)} schedule(s) due")

        if self._job_queue is not None:
            outcomes = await self._run_queued(due)
        else:
            outcomes = [await self._run_inline(schedule) for schedule in due]

        for schedule, (started_at, (result, error)) in zip(due, outcomes):
            report.runs.append(self._record(schedule, now, started_at, result, error))

        logger.info(
            f"Scheduler tick finished: {report.executed} executed, "
            f"{report.succeeded} succeeded, {report.failed} failed"
        )
        return report

    async def _run_inline(self, schedule: ScanSchedule) -> Tuple[datetime, Outcome]:
        started_at = self._clock()
        target = schedule_target(schedule)
        logger.info(f"Executing scheduled {schedule.scan_type} scan for {target.qualified_name}")
        try:
            result = await self._dispatcher.run(schedule.scan_type, target, {})
            return started_at, (result, None)
        except Exception as e:
            return started_at, (None, e)

    async def _run_queued(self, due: List[ScanSchedule]) -> List[Tuple[datetime, Outcome]]:
        queue = self._job_queue
        started_at = self._clock()
        job_ids = [
            queue.enqueue(
                schedule.scan_type,
                schedule_target(schedule),
                schedule_id=schedule.schedule_id,
                priority=JobPriority.NORMAL,
                max_retries=0,
            )
            for schedule in due
        ]
        jobs = await asyncio.gather(*(queue.wait_for(job_id) for job_id in job_ids))

        outcomes = []
        for job in jobs:
            if job.status == JobStatus.COMPLETED:
                outcomes.append((started_at, (job.result, None)))
            else:
                error = job.exception or DQScanError(job.error or "Scan job failed")
                outcomes.append((started_at, (None, error)))
        return outcomes

    def _next_run(self, schedule: ScanSchedule, now: datetime) -> Optional[datetime]:
        if not schedule.is_recurring:
            return None
        try:
            next_run = self._resolver.next_run_for_schedule(schedule, now)
        except DQScanError as e:
            logger.error(f"Cannot compute next run for schedule {schedule.schedule_id}: {e}")
            return None
        if next_run is None:
            logger.info(f"Schedule {schedule.schedule_id} reached its end date")
        return next_run

    def _record(
        self,
        schedule: ScanSchedule,
        tick_time: datetime,
        started_at: datetime,
        result: Optional[ScanResult],
        error: Optional[BaseException],
    ) -> ScheduleRun:
        completed_at = self._clock()
        run = ScheduleRun(
            schedule_id=schedule.schedule_id,
            scan_type=schedule.scan_type,
            table=schedule.qualified_name,
            status="completed" if error is None else "failed",
            run_id=result.run_id if result is not None else getattr(error, "run_id", None),
        )

        if error is not None:
            classified = classify(error)
            run.error = classified.message
            run.error_code = classified.code.value
            logger.error(f"Error executing schedule {schedule.schedule_id}: {run.error}")

        try:
            with self._session_scope() as session:
                repos = RepositoryFactory(session)
                if error is None:
                    run.next_run_at = self._next_run(schedule, completed_at)
                    repos.schedules.mark_executed(
                        schedule.schedule_id,
                        next_run_at=run.next_run_at,
                        last_run_at=tick_time,
                    )
                else:
                    failures = repos.schedules.increment_failure(schedule.schedule_id, error=run.error)
                    if (
                        failures is not None
                        and failures >= schedule.max_failures
                        and schedule.on_failure_action == FailureAction.PAUSE.value
                    ):
                        repos.schedules.update(schedule.schedule_id, status=ScheduleStatus.PAUSED.value)
                        run.paused = True
                        logger.warning(
                            f"Schedule {schedule.schedule_id} paused after {failures} consecutive failures"
                        )

                repos.executions.create(
                    schedule_id=schedule.schedule_id,
                    scan_type=schedule.scan_type,
                    table_name=schedule.qualified_name,
                    started_at=started_at,
                    completed_at=completed_at,
                    success=error is None,
                    run_id=run.run_id,
                    error=run.error,
                    error_code=run.error_code,
                    scan_schedule_id=schedule.id,
                )
        except Exception as e:
            logger.error(f"Failed to record outcome of schedule {schedule.schedule_id}: {e}")

        return run
