"""Database repositories for dqscan.

Provides data access for scan schedules and their execution history.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import asc, desc
from sqlalchemy.orm import Session

from dqscan.database.models import ScanSchedule, ScheduleExecution, ScheduleStatus


class ScheduleRepository:
    """
    Repository for scan schedule operations.

    Write methods commit immediately and return the refreshed row, or
    None when no schedule matches the given id.
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def create(
        self,
        database_name: str,
        schema_name: str,
        table_name: str,
        scan_type: str,
        is_recurring: bool = False,
        recurrence_type: Optional[str] = None,
        time_of_day: Optional[str] = None,
        days_of_week: Optional[List[str]] = None,
        timezone: str = "UTC",
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        next_run_at: Optional[datetime] = None,
        on_failure_action: str = "continue",
        max_failures: int = 3,
        created_by: Optional[str] = None,
        schedule_id: Optional[str] = None,
    ) -> ScanSchedule:
        """
        Create a new schedule.

        Target names are stored upper-cased, as the warehouse does.

        Returns:
            Created ScanSchedule instance
        """
        schedule = ScanSchedule(
            schedule_id=schedule_id or str(uuid4()),
            database_name=database_name.upper(),
            schema_name=schema_name.upper(),
            table_name=table_name.upper(),
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
            status=ScheduleStatus.ACTIVE.value,
            failure_count=0,
        )
        self.session.add(schedule)
        self.session.commit()
        self.session.refresh(schedule)
        return schedule

    def get_by_id(self, schedule_id: str) -> Optional[ScanSchedule]:
        """
        Get a schedule by its schedule id.

        Args:
            schedule_id: Schedule UUID string

        Returns:
            ScanSchedule if found, None otherwise
        """
        return self.session.query(ScanSchedule).filter(
            ScanSchedule.schedule_id == schedule_id
        ).first()

    def get_all(self, status: Optional[str] = None) -> List[ScanSchedule]:
        """
        Get all schedules, optionally filtered by status.

        Deleted schedules are only returned when asked for explicitly.
        """
        query = self.session.query(ScanSchedule)
        if status:
            query = query.filter(ScanSchedule.status == status)
        else:
            query = query.filter(ScanSchedule.status != ScheduleStatus.DELETED.value)
        return query.order_by(asc(ScanSchedule.next_run_at)).all()

    def list_for_table(
        self,
        database_name: str,
        schema_name: str,
        table_name: str,
        include_deleted: bool = False,
    ) -> List[ScanSchedule]:
        """
        Get the schedules of one table, newest first.

        Args:
            database_name: Database name (case-insensitive)
            schema_name: Schema name (case-insensitive)
            table_name: Table name (case-insensitive)
            include_deleted: Whether to include soft-deleted schedules

        Returns:
            List of schedules ordered by created_at descending
        """
        query = self.session.query(ScanSchedule).filter(
            ScanSchedule.database_name == database_name.upper(),
            ScanSchedule.schema_name == schema_name.upper(),
            ScanSchedule.table_name == table_name.upper(),
        )
        if not include_deleted:
            query = query.filter(ScanSchedule.status != ScheduleStatus.DELETED.value)
        return query.order_by(desc(ScanSchedule.created_at), desc(ScanSchedule.id)).all()

    def list_due(self, now: datetime, limit: int = 5) -> List[ScanSchedule]:
        """
        Get active schedules whose next run is at or before ``now``.

        Args:
            now: Reference instant (naive UTC)
            limit: Maximum number of schedules

        Returns:
            Due schedules, earliest next run first
        """
        return self.session.query(ScanSchedule).filter(
            ScanSchedule.status == ScheduleStatus.ACTIVE.value,
            ScanSchedule.next_run_at.isnot(None),
            ScanSchedule.next_run_at <= now,
        ).order_by(asc(ScanSchedule.next_run_at)).limit(limit).all()

    def count_due(self, now: datetime) -> int:
        return self.session.query(ScanSchedule).filter(
            ScanSchedule.status == ScheduleStatus.ACTIVE.value,
            ScanSchedule.next_run_at.isnot(None),
            ScanSchedule.next_run_at <= now,
        ).count()

    def update(self, schedule_id: str, **kwargs) -> Optional[ScanSchedule]:
        """
        Update schedule fields.

        Args:
            schedule_id: Schedule UUID string
            **kwargs: Fields to update

        Returns:
            Updated ScanSchedule if found, None otherwise
        """
        schedule = self.get_by_id(schedule_id)
        if schedule is None:
            return None

        for key, value in kwargs.items():
            if hasattr(schedule, key):
                setattr(schedule, key, value)

        self.session.commit()
        self.session.refresh(schedule)
        return schedule

    def mark_executed(
        self,
        schedule_id: str,
        next_run_at: Optional[datetime],
        last_run_at: datetime,
    ) -> Optional[ScanSchedule]:
        """
        Record a successful run.

        Resets the failure count and clears the last error.
        """
        return self.update(
            schedule_id,
            next_run_at=next_run_at,
            last_run_at=last_run_at,
            failure_count=0,
            last_error=None,
        )

    def increment_failure(self, schedule_id: str, error: Optional[str] = None) -> Optional[int]:
        """
        Record a failed run.

        ``next_run_at`` is left unchanged so the schedule stays due.

        Returns:
            The new failure count, or None if the schedule does not exist
        """
        schedule = self.get_by_id(schedule_id)
        if schedule is None:
            return None

        schedule.failure_count = (schedule.failure_count or 0) + 1
        schedule.last_error = error
        self.session.commit()
        return schedule.failure_count

    def soft_delete(self, schedule_id: str) -> bool:
        """
        Mark a schedule as deleted without removing its row.

        Returns:
            True if the schedule existed
        """
        return self.update(
            schedule_id,
            status=ScheduleStatus.DELETED.value,
            next_run_at=None,
        ) is not None

    def force_run_now(self, schedule_id: str, now: datetime) -> bool:
        """
        Make a schedule due immediately.

        Returns:
            True if the schedule existed
        """
        return self.update(schedule_id, next_run_at=now) is not None


class ExecutionRepository:
    """
    Repository for schedule execution history.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        schedule_id: str,
        scan_type: str,
        table_name: str,
        started_at: datetime,
        completed_at: Optional[datetime] = None,
        success: bool = False,
        run_id: Optional[str] = None,
        error: Optional[str] = None,
        error_code: Optional[str] = None,
        scan_schedule_id: Optional[int] = None,
    ) -> ScheduleExecution:
        """
        Record a schedule execution.

        Args:
            schedule_id: Schedule UUID string
            scan_type: Scan type that was run
            table_name: Qualified table name
            started_at: When execution started
            completed_at: When execution completed
            success: Whether execution succeeded
            run_id: Scan run id reported by the scan service
            error: Error message if failed
            error_code: Classified error code if failed
            scan_schedule_id: Foreign key to the schedule row (optional)

        Returns:
            Created ScheduleExecution instance
        """
        execution = ScheduleExecution(
            schedule_id=schedule_id,
            scan_type=scan_type,
            table_name=table_name,
            started_at=started_at,
            completed_at=completed_at,
            success=success,
            run_id=run_id,
            error=error,
            error_code=error_code,
            scan_schedule_id=scan_schedule_id,
        )
        self.session.add(execution)
        self.session.commit()
        self.session.refresh(execution)
        return execution

    def get_history(
        self,
        schedule_id: Optional[str] = None,
        limit: int = 10,
        offset: int = 0,
    ) -> List[ScheduleExecution]:
        """
        Get execution history.

        Args:
            schedule_id: Filter by schedule id (optional)
            limit: Maximum number of results
            offset: Number of results to skip

        Returns:
            Executions ordered by started_at descending
        """
        query = self.session.query(ScheduleExecution).order_by(
            desc(ScheduleExecution.started_at), desc(ScheduleExecution.id)
        )

        if schedule_id:
            query = query.filter(ScheduleExecution.schedule_id == schedule_id)

        return query.offset(offset).limit(limit).all()

    def delete_old_executions(self, before: datetime) -> int:
        """
        Delete executions started before a given time.

        Returns:
            Number of executions deleted
        """
        result = self.session.query(ScheduleExecution).filter(
            ScheduleExecution.started_at < before
        ).delete()
        self.session.commit()
        return result


class RepositoryFactory:
    """
    Factory for creating repository instances.

    Usage:
        with get_db_session() as session:
            repos = RepositoryFactory(session)
            due = repos.schedules.list_due(utcnow())
    """

    def __init__(self, session: Session):
        self.session = session
        self._schedules: Optional[ScheduleRepository] = None
        self._executions: Optional[ExecutionRepository] = None

    @property
    def schedules(self) -> ScheduleRepository:
        if self._schedules is None:
            self._schedules = ScheduleRepository(self.session)
        return self._schedules

    @property
    def executions(self) -> ExecutionRepository:
        if self._executions is None:
            self._executions = ExecutionRepository(self.session)
        return self._executions
