"""Schedule management: create, list, pause, resume, delete and run-now.

List reads for a table go through the result cache; every write to a
schedule invalidates the cached list of its table.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, List, Optional, Sequence, Tuple

from dqscan.database.connection import get_db_session
from dqscan.database.models import FailureAction, ScanSchedule, ScheduleExecution, ScheduleStatus
from dqscan.database.repositories import RepositoryFactory
from dqscan.exceptions import InvalidScheduleError, ScheduleNotFoundError
from dqscan.scans.base import ScanType
from dqscan.scheduler.cache import CacheTTL, ResultCache, generate_cache_key
from dqscan.scheduler.driver import SessionScope
from dqscan.scheduler.resolver import (
    RECURRENCE_TYPES,
    ScheduleResolver,
    get_zone,
    parse_time_of_day,
    past_end_date,
    start_reference,
)
from dqscan.timeutil import local_to_utc, utc_to_local, utcnow

logger = logging.getLogger(__name__)

SCHEDULES_CACHE_PREFIX = "schedules"


def table_cache_key(database: str, schema: str, table: str) -> str:
    return generate_cache_key(
        SCHEDULES_CACHE_PREFIX,
        {"database": database.upper(), "schema": schema.upper(), "table": table.upper()},
    )


class ScheduleService:
    """High-level operations on scan schedules.

    Args:
        session_scope: Zero-argument context manager yielding a Session
        resolver: Computes next run instants and summaries
        cache: Cache fronting list reads
        clock: Returns the current time as naive UTC
    """

    def __init__(
        self,
        session_scope: SessionScope = get_db_session,
        resolver: Optional[ScheduleResolver] = None,
        cache: Optional[ResultCache] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_scope = session_scope
        self._clock = clock
        self._resolver = resolver or ScheduleResolver(clock=clock)
        self._cache = cache if cache is not None else ResultCache()

    def create(
        self,
        database: str,
        schema: str,
        table: str,
        scan_type: str,
        is_recurring: bool = False,
        recurrence_type: Optional[str] = None,
        time_of_day: Optional[str] = None,
        days_of_week: Optional[Sequence[str]] = None,
        timezone: str = "UTC",
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        on_failure_action: str = FailureAction.CONTINUE.value,
        max_failures: int = 3,
        created_by: Optional[str] = None,
    ) -> Tuple[ScanSchedule, str]:
        """Validate and store a new schedule.

        Returns:
            The stored schedule and a one-line summary of its timing

        Raises:
            InvalidScheduleError: Missing or inconsistent fields
            InvalidExpression: Malformed time, day name or timezone
            UnsupportedScheduleType: Unknown recurrence type
        """
        if not (database and schema and table):
            raise InvalidScheduleError("Missing required fields: database, schema and table")
        if not scan_type:
            raise InvalidScheduleError("Missing required field: scan_type")
        try:
            ScanType(scan_type)
        except ValueError:
            raise InvalidScheduleError(f"Unknown scan type: {scan_type}")
        try:
            FailureAction(on_failure_action)
        except ValueError:
            raise InvalidScheduleError(f"Unknown failure action: {on_failure_action}")
        if max_failures < 1:
            raise InvalidScheduleError("max_failures must be at least 1")
        if start_date and end_date and end_date < start_date:
            raise InvalidScheduleError("end_date is before start_date")

        zone = get_zone(timezone)
        if time_of_day:
            parse_time_of_day(time_of_day)

        now = self._clock()
        if is_recurring:
            if not recurrence_type:
                raise InvalidScheduleError("Recurring schedules need a recurrence type")
            recurrence_type = recurrence_type.lower()
            if recurrence_type not in RECURRENCE_TYPES:
                raise InvalidScheduleError(f"Unknown recurrence type: {recurrence_type}")
            expression = self._resolver.to_interval_expression(
                recurrence_type, time_of_day, days_of_week
            )
            next_run_at = self._resolver.next_run_time(
                expression, timezone, start_reference(now, start_date, zone)
            )
            if past_end_date(next_run_at, end_date, zone):
                raise InvalidScheduleError("Schedule has no runs before its end_date")
        else:
            recurrence_type = None
            next_run_at = self._one_time_run(now, zone, time_of_day, start_date)

        with self._session_scope() as session:
            schedule = RepositoryFactory(session).schedules.create(
                database_name=database,
                schema_name=schema,
                table_name=table,
                scan_type=scan_type,
                is_recurring=is_recurring,
                recurrence_type=recurrence_type,
                time_of_day=time_of_day,
                days_of_week=list(days_of_week) if days_of_week else None,
                timezone=timezone,
                start_date=start_date,
                end_date=end_date,
                next_run_at=next_run_at,
                on_failure_action=on_failure_action,
                max_failures=max_failures,
                created_by=created_by,
            )

        self._invalidate(schedule)
        summary = self._resolver.summarize(schedule)
        logger.info(
            f"Created schedule {schedule.schedule_id} for {schedule.qualified_name}: {summary}"
        )
        return schedule, summary

    def _one_time_run(
        self,
        now: datetime,
        zone,
        time_of_day: Optional[str],
        start_date: Optional[date],
    ) -> datetime:
        """First run of a one-time schedule.

        With no time the schedule runs at the start date, or immediately.
        Without a start date, a time that already passed today means
        tomorrow.
        """
        if not time_of_day:
            if start_date:
                return max(now, local_to_utc(datetime.combine(start_date, time.min), zone))
            return now

        hours, minutes = parse_time_of_day(time_of_day)
        run_date = start_date or utc_to_local(now, zone).date()
        candidate = local_to_utc(datetime.combine(run_date, time(hours, minutes)), zone)
        if start_date is None and candidate <= now:
            candidate = local_to_utc(
                datetime.combine(run_date + timedelta(days=1), time(hours, minutes)), zone
            )
        return candidate

    async def list_for_table(self, database: str, schema: str, table: str) -> List[ScanSchedule]:
        """Schedules of one table, newest first; deleted schedules excluded."""

        def load() -> List[ScanSchedule]:
            with self._session_scope() as session:
                return RepositoryFactory(session).schedules.list_for_table(database, schema, table)

        return await self._cache.get_or_set(
            table_cache_key(database, schema, table),
            load,
            CacheTTL.REFERENCE_DATA,
        )

    def list_all(self, status: Optional[str] = None) -> List[ScanSchedule]:
        with self._session_scope() as session:
            return RepositoryFactory(session).schedules.get_all(status=status)

    def get(self, schedule_id: str) -> ScanSchedule:
        """Get a schedule by id.

        Raises:
            ScheduleNotFoundError: If no schedule has this id
        """
        with self._session_scope() as session:
            schedule = RepositoryFactory(session).schedules.get_by_id(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(f"Schedule not found: {schedule_id}")
        return schedule

    def pause(self, schedule_id: str) -> ScanSchedule:
        schedule = self._update(schedule_id, status=ScheduleStatus.PAUSED.value)
        logger.info(f"Paused schedule {schedule_id}")
        return schedule

    def resume(self, schedule_id: str) -> ScanSchedule:
        """Reactivate a paused schedule.

        Recurring schedules get a fresh next run within their start and
        end dates; one-time schedules that never ran keep theirs. The
        failure count starts over.
        """
        current = self.get(schedule_id)
        if current.status == ScheduleStatus.DELETED.value:
            raise InvalidScheduleError(f"Schedule {schedule_id} has been deleted")

        next_run_at = current.next_run_at
        if current.is_recurring:
            next_run_at = self._resolver.next_run_for_schedule(current, self._clock())

        schedule = self._update(
            schedule_id,
            status=ScheduleStatus.ACTIVE.value,
            next_run_at=next_run_at,
            failure_count=0,
        )
        logger.info(f"Resumed schedule {schedule_id}")
        return schedule

    def delete(self, schedule_id: str) -> None:
        """Soft-delete a schedule; its history is kept."""
        schedule = self.get(schedule_id)
        with self._session_scope() as session:
            RepositoryFactory(session).schedules.soft_delete(schedule_id)
        self._invalidate(schedule)
        logger.info(f"Deleted schedule {schedule_id}")

    def run_now(self, schedule_id: str) -> ScanSchedule:
        """Make a schedule due immediately so the next tick runs it."""
        current = self.get(schedule_id)
        if current.status != ScheduleStatus.ACTIVE.value:
            raise InvalidScheduleError(
                f"Schedule {schedule_id} is {current.status}; only active schedules can run"
            )
        now = self._clock()
        with self._session_scope() as session:
            RepositoryFactory(session).schedules.force_run_now(schedule_id, now)
        schedule = self.get(schedule_id)
        self._invalidate(schedule)
        logger.info(f"Schedule {schedule_id} will run on the next tick")
        return schedule

    def history(self, schedule_id: Optional[str] = None, limit: int = 10) -> List[ScheduleExecution]:
        with self._session_scope() as session:
            return RepositoryFactory(session).executions.get_history(schedule_id, limit=limit)

    def _update(self, schedule_id: str, **fields) -> ScanSchedule:
        with self._session_scope() as session:
            schedule = RepositoryFactory(session).schedules.update(schedule_id, **fields)
        if schedule is None:
            raise ScheduleNotFoundError(f"Schedule not found: {schedule_id}")
        self._invalidate(schedule)
        return schedule

    def _invalidate(self, schedule: ScanSchedule) -> None:
        self._cache.delete(
            table_cache_key(schedule.database_name, schedule.schema_name, schedule.table_name)
        )
