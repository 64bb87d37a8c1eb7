"""
SQLAlchemy models for dqscan.

Schedules describe when a table should be scanned; executions record
every run the scheduler attempted. All datetimes are naive UTC.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional, List, Any, Dict

from sqlalchemy import (
    Integer,
    String,
    Boolean,
    Date,
    ForeignKey,
    DateTime,
    Text,
    JSON,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, declarative_base

from dqscan.timeutil import utcnow

Base = declarative_base()


class ScheduleStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    DELETED = "deleted"


class FailureAction(str, Enum):
    CONTINUE = "continue"
    PAUSE = "pause"


def _iso(value: Optional[Any]) -> Optional[str]:
    return value.isoformat() if value else None


class ScanSchedule(Base):
    """
    Scan schedule model.

    A schedule targets one table and one scan type. Recurring schedules
    carry a recurrence type (hourly, daily, weekly, monthly) with a
    wall-clock time and weekdays interpreted in ``timezone``; one-time
    schedules run once at ``next_run_at`` and are then left without a
    next run.
    """

    __tablename__ = "scan_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    schedule_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        unique=True,
        index=True
    )

    # Target
    database_name: Mapped[str] = mapped_column(String, nullable=False)
    schema_name: Mapped[str] = mapped_column(String, nullable=False)
    table_name: Mapped[str] = mapped_column(String, nullable=False, index=True)
    scan_type: Mapped[str] = mapped_column(String, nullable=False)

    # Recurrence
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurrence_type: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    time_of_day: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    days_of_week: Mapped[Optional[List[str]]] = mapped_column(JSON, nullable=True)
    timezone: Mapped[str] = mapped_column(String, default="UTC", nullable=False)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # State
    status: Mapped[str] = mapped_column(
        String, default=ScheduleStatus.ACTIVE.value, nullable=False, index=True
    )
    next_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Failure handling
    failure_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_failures: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    on_failure_action: Mapped[str] = mapped_column(
        String, default=FailureAction.CONTINUE.value, nullable=False
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    @property
    def qualified_name(self) -> str:
        return f"{self.database_name}.{self.schema_name}.{self.table_name}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert schedule to dictionary representation."""
        return {
            "schedule_id": self.schedule_id,
            "database_name": self.database_name,
            "schema_name": self.schema_name,
            "table_name": self.table_name,
            "scan_type": self.scan_type,
            "is_recurring": self.is_recurring,
            "recurrence_type": self.recurrence_type,
            "time_of_day": self.time_of_day,
            "days_of_week": self.days_of_week,
            "timezone": self.timezone,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "status": self.status,
            "next_run_at": _iso(self.next_run_at),
            "last_run_at": _iso(self.last_run_at),
            "failure_count": self.failure_count,
            "max_failures": self.max_failures,
            "on_failure_action": self.on_failure_action,
            "last_error": self.last_error,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class ScheduleExecution(Base):
    """
    Schedule execution history model.

    One row per scan the scheduler attempted for a schedule.
    """

    __tablename__ = "schedule_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    schedule_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    scan_type: Mapped[str] = mapped_column(String, nullable=False)
    table_name: Mapped[str] = mapped_column(String, nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    run_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # Nullable so history survives schedule removal
    scan_schedule_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("scan_schedules.id"),
        nullable=True,
        index=True
    )

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        """Convert execution to dictionary representation."""
        return {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "scan_type": self.scan_type,
            "table_name": self.table_name,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "success": self.success,
            "run_id": self.run_id,
            "error": self.error,
            "error_code": self.error_code,
        }


Index("ix_scan_schedules_due", ScanSchedule.status, ScanSchedule.next_run_at)
Index("ix_schedule_executions_started_at", ScheduleExecution.started_at.desc())
