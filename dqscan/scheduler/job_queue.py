"""Priority job queue with bounded concurrency.

Scan jobs wait in a single list ordered by priority (HIGH before NORMAL
before LOW, first-in first-out within a tier). One coordinator task
starts jobs from the front of the list until ``max_concurrent`` are
running, then sleeps for ``poll_interval`` and looks again. Each job runs
in its own task.

A failing job is retried up to ``max_retries`` times. Before each retry
it waits ``retry_base_delay * retry_count`` seconds and then goes back to
the front of its priority tier.

Job state lives in memory only; the schedule repository remains the
source of truth across restarts.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from dqscan.scans.base import ScanResult, ScanTarget
from dqscan.timeutil import utcnow

logger = logging.getLogger(__name__)


class JobPriority(str, Enum):
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        """Lower rank runs first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {JobPriority.HIGH: 0, JobPriority.NORMAL: 1, JobPriority.LOW: 2}


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    RETRYING = "retrying"
    FAILED = "failed"


@dataclass
class Job:
    """A unit of scan work tracked by the queue.

    Attributes:
        scan_type: Scan type handed to the dispatcher
        target: Table to scan
        id: Unique job id
        schedule_id: Schedule that produced the job, if any
        priority: Queue priority
        status: Current lifecycle state
        retry_count: Retries used so far
        max_retries: Retries allowed after the first attempt
        options: Extra options forwarded to the scan
        error: Last error message
        exception: Last exception raised by the dispatcher
        result: Scan result of the successful attempt
    """

    scan_type: str
    target: ScanTarget
    id: str = field(default_factory=lambda: str(uuid4()))
    schedule_id: Optional[str] = None
    priority: JobPriority = JobPriority.NORMAL
    status: JobStatus = JobStatus.PENDING
    retry_count: int = 0
    max_retries: int = 3
    options: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    exception: Optional[BaseException] = field(default=None, repr=False)
    result: Optional[ScanResult] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


class JobQueue:
    """Runs scan jobs through a dispatcher with bounded concurrency.

    Example:
        queue = JobQueue(dispatcher, max_concurrent=2)
        job_id = queue.enqueue("profiling", ScanTarget("DB", "PUBLIC", "ORDERS"))
        job = await queue.wait_for(job_id)

    Args:
        dispatcher: Object with ``async run(scan_type, target, options)``
        max_concurrent: Maximum jobs running at once
        poll_interval: Seconds the coordinator sleeps between passes
        retry_base_delay: Seconds per retry count before a job is requeued
        max_history: Terminal jobs remembered for :meth:`get_job`
    """

    def __init__(
        self,
        dispatcher: Any,
        max_concurrent: int = 5,
        poll_interval: float = 0.1,
        retry_base_delay: float = 1.0,
        max_history: int = 1000,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self._dispatcher = dispatcher
        self._max_concurrent = max_concurrent
        self._poll_interval = poll_interval
        self._retry_base_delay = retry_base_delay
        self._max_history = max_history

        self._queue: List[Job] = []
        self._running: Dict[str, Job] = {}
        self._delayed: Dict[str, Job] = {}
        self._history: "OrderedDict[str, Job]" = OrderedDict()

        self._processor: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._waiters: Dict[str, List[asyncio.Future]] = {}
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    def set_max_concurrent(self, value: int) -> None:
        """Change the concurrency limit; applies from the next coordinator pass."""
        if value < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._max_concurrent = value

    def enqueue(
        self,
        scan_type: str,
        target: ScanTarget,
        *,
        schedule_id: Optional[str] = None,
        priority: JobPriority = JobPriority.NORMAL,
        max_retries: int = 3,
        options: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Add a job to the queue.

        Args:
            scan_type: Scan type handed to the dispatcher
            target: Table to scan
            schedule_id: Originating schedule, if any
            priority: Queue priority
            max_retries: Retries allowed after the first attempt
            options: Extra options forwarded to the scan

        Returns:
            The new job's id
        """
        job = Job(
            scan_type=getattr(scan_type, "value", scan_type),
            target=target,
            schedule_id=schedule_id,
            priority=JobPriority(priority),
            max_retries=max_retries,
            options=dict(options or {}),
        )
        self._insert(job)
        self._idle.clear()
        logger.info(
            f"Job {job.id} added: {job.scan_type} scan of {target.qualified_name} "
            f"(priority {job.priority.value})"
        )
        self._ensure_processing()
        return job.id

    def _insert(self, job: Job, front_of_tier: bool = False) -> None:
        rank = job.priority.rank
        for index, waiting in enumerate(self._queue):
            other = waiting.priority.rank
            if other > rank or (front_of_tier and other == rank):
                self._queue.insert(index, job)
                return
        self._queue.append(job)

    def get_job(self, job_id: str) -> Optional[Job]:
        """Find a job that is waiting, running, awaiting retry or finished."""
        if job_id in self._running:
            return self._running[job_id]
        if job_id in self._delayed:
            return self._delayed[job_id]
        for job in self._queue:
            if job.id == job_id:
                return job
        return self._history.get(job_id)

    def pending_jobs(self) -> List[Job]:
        """Waiting jobs in the order they will be started."""
        return list(self._queue)

    def get_stats(self) -> Dict[str, int]:
        pending = len(self._queue)
        running = len(self._running)
        retrying = len(self._delayed)
        return {
            "pending": pending,
            "running": running,
            "retrying": retrying,
            "total": pending + running + retrying,
        }

    async def wait_for(self, job_id: str) -> Job:
        """Wait until the job is completed or failed."""
        job = self.get_job(job_id)
        if job is None:
            raise KeyError(job_id)
        if job.is_terminal:
            return job

        future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(job_id, []).append(future)
        return await future

    async def join(self) -> None:
        """Wait until nothing is waiting, running or awaiting retry."""
        self._ensure_processing()
        await self._idle.wait()

    def _ensure_processing(self) -> None:
        if self._processor is not None and not self._processor.done():
            return
        if not self._queue:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, queue processing deferred")
            return
        self._processor = loop.create_task(self._process_queue())

    async def _process_queue(self) -> None:
        while self._queue or self._running:
            while self._queue and len(self._running) < self._max_concurrent:
                self._start_job(self._queue.pop(0))
            await asyncio.sleep(self._poll_interval)
        self._check_idle()

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _start_job(self, job: Job) -> None:
        job.status = JobStatus.RUNNING
        job.started_at = utcnow()
        self._running[job.id] = job
        logger.info(f"Job {job.id} started (attempt {job.retry_count + 1})")
        self._spawn(self._execute_job(job))

    async def _execute_job(self, job: Job) -> None:
        try:
            result = await self._dispatcher.run(job.scan_type, job.target, job.options)
            job.result = result
            job.error = None
            job.exception = None
            job.status = JobStatus.COMPLETED
            job.completed_at = utcnow()
            logger.info(f"Job {job.id} completed")
            self._finish(job)
        except Exception as e:
            job.error = str(e) or type(e).__name__
            job.exception = e
            if job.retry_count < job.max_retries:
                job.retry_count += 1
                job.status = JobStatus.RETRYING
                delay = self._retry_base_delay * job.retry_count
                self._delayed[job.id] = job
                logger.warning(
                    f"Job {job.id} failed, retry {job.retry_count}/{job.max_retries} "
                    f"in {delay:.2f}s: {job.error}"
                )
                self._spawn(self._requeue_after(job, delay))
            else:
                job.status = JobStatus.FAILED
                job.completed_at = utcnow()
                logger.error(f"Job {job.id} failed after {job.retry_count + 1} attempts: {job.error}")
                self._finish(job)
        finally:
            self._running.pop(job.id, None)
            self._check_idle()

    async def _requeue_after(self, job: Job, delay: float) -> None:
        await asyncio.sleep(delay)
        self._delayed.pop(job.id, None)
        job.status = JobStatus.PENDING
        self._insert(job, front_of_tier=True)
        self._ensure_processing()

    def _finish(self, job: Job) -> None:
        self._history[job.id] = job
        while len(self._history) > self._max_history:
            self._history.popitem(last=False)

        for future in self._waiters.pop(job.id, []):
            if not future.done():
                future.set_result(job)

    def _check_idle(self) -> None:
        if not self._queue and not self._running and not self._delayed:
            self._idle.set()
