"""Recurrence rules, cron expressions and next-run computation.

Schedules describe their recurrence with a type (hourly, daily, weekly,
monthly), a wall-clock time and, for weekly schedules, day names. The
resolver turns that into a standard 5-field cron expression and uses
croniter to find the next firing instant in the schedule's timezone.

All instants returned are naive UTC datetimes.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from dqscan.exceptions import InvalidExpression, UnsupportedScheduleType
from dqscan.timeutil import local_to_utc, to_utc_naive, utc_to_local, utcnow

logger = logging.getLogger(__name__)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]
DAY_NUMBERS: Dict[str, int] = {name.lower(): index for index, name in enumerate(DAY_NAMES)}

RECURRENCE_TYPES = ("hourly", "daily", "weekly", "monthly")


class CronPresets:
    """Common cron expressions."""

    EVERY_MINUTE = "* * * * *"
    EVERY_5_MINUTES = "*/5 * * * *"
    EVERY_15_MINUTES = "*/15 * * * *"
    EVERY_30_MINUTES = "*/30 * * * *"
    EVERY_HOUR = "0 * * * *"
    EVERY_2_HOURS = "0 */2 * * *"
    EVERY_6_HOURS = "0 */6 * * *"
    DAILY_MIDNIGHT = "0 0 * * *"
    DAILY_9AM = "0 9 * * *"
    DAILY_6PM = "0 18 * * *"
    WEEKDAYS_9AM = "0 9 * * 1-5"
    WEEKENDS_10AM = "0 10 * * 0,6"
    WEEKLY_MONDAY_9AM = "0 9 * * 1"
    MONTHLY_FIRST_DAY = "0 0 1 * *"


def parse_time_of_day(value: str) -> Tuple[int, int]:
    """Parse ``HH:MM`` into ``(hours, minutes)``.

    Raises:
        InvalidExpression: If the value is not a valid 24h time
    """
    parts = value.strip().split(":") if value else []
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise InvalidExpression(f"Invalid time of day: {value!r}", {"expected": "HH:MM"})

    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise InvalidExpression(f"Invalid time of day: {value!r}", {"expected": "HH:MM"})
    return hours, minutes


def day_numbers(days: Sequence[str]) -> List[int]:
    """Map day names to cron day-of-week numbers (Sunday=0)."""
    numbers = []
    for day in days:
        number = DAY_NUMBERS.get(day.strip().lower())
        if number is None:
            raise InvalidExpression(f"Unknown day of week: {day!r}")
        numbers.append(number)
    return numbers


def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidExpression(f"Unknown timezone: {name!r}") from e


def start_reference(now: datetime, start_date: Optional[date], zone: ZoneInfo) -> datetime:
    """Instant to search the next run from, honouring a start date.

    Backs off a second from local midnight of ``start_date`` so a run
    exactly at the start is included.
    """
    if start_date is None:
        return now
    start = local_to_utc(datetime.combine(start_date, time.min), zone) - timedelta(seconds=1)
    return max(now, start)


def past_end_date(run_at: datetime, end_date: Optional[date], zone: ZoneInfo) -> bool:
    """Whether a naive UTC run instant falls after ``end_date`` in ``zone``."""
    return end_date is not None and utc_to_local(run_at, zone).date() > end_date


def to_interval_expression(
    recurrence_type: str,
    time_of_day: Optional[str] = None,
    days_of_week: Optional[Sequence[str]] = None,
) -> str:
    """Convert a recurrence description to a 5-field cron expression.

    Args:
        recurrence_type: hourly, daily, weekly or monthly
        time_of_day: ``HH:MM`` wall-clock time (not used for hourly)
        days_of_week: Day names, required for weekly schedules

    Returns:
        Cron expression string

    Raises:
        UnsupportedScheduleType: Unknown type or missing time/days
        InvalidExpression: Malformed time or unknown day name
    """
    kind = (recurrence_type or "").strip().lower()

    if kind == "hourly":
        return "0 * * * *"

    if kind not in RECURRENCE_TYPES:
        raise UnsupportedScheduleType(f"Unsupported schedule type: {recurrence_type}")
    if not time_of_day:
        raise UnsupportedScheduleType(
            f"Unsupported schedule type: {kind} schedules need a time of day"
        )

    hours, minutes = parse_time_of_day(time_of_day)

    if kind == "daily":
        return f"{minutes} {hours} * * *"

    if kind == "weekly":
        if not days_of_week:
            raise UnsupportedScheduleType(
                "Unsupported schedule type: weekly schedules need at least one day"
            )
        days = ",".join(str(n) for n in day_numbers(days_of_week))
        return f"{minutes} {hours} * * {days}"

    return f"{minutes} {hours} 1 * *"


def validate_expression(expression: str) -> bool:
    """Check that an expression is a parsable 5-field cron expression."""
    if not expression or len(expression.split()) != 5:
        return False
    try:
        croniter(expression)
    except (ValueError, KeyError):
        return False
    return True


def _clock_time(hour: str, minute: str) -> str:
    return f"{hour.zfill(2)}:{minute.zfill(2)}"


def describe_expression(expression: str) -> str:
    """Human-readable description of common cron shapes.

    Anything that is not recognized is returned unchanged.
    """
    parts = expression.split()
    if len(parts) != 5:
        return expression

    minute, hour, day_of_month, month, day_of_week = parts
    calendar_wildcard = day_of_month == "*" and month == "*"
    every_day = calendar_wildcard and day_of_week == "*"

    if every_day and minute.startswith("*/") and hour == "*":
        return f"Every {minute[2:]} minutes"

    if every_day and hour.startswith("*/") and minute.isdigit():
        return f"Every {hour[2:]} hours at minute {minute}"

    if not minute.isdigit():
        return expression

    if hour == "*" and every_day:
        return f"Every hour at minute {minute}"

    if not hour.isdigit() or not calendar_wildcard:
        return expression

    if day_of_week == "*":
        return f"Daily at {_clock_time(hour, minute)}"

    days = ", ".join(
        DAY_NAMES[int(d) % 7] if d.isdigit() else d for d in day_of_week.split(",")
    )
    return f"Weekly on {days} at {_clock_time(hour, minute)}"


def summarize(schedule: Any) -> str:
    """One-line summary of a schedule's timing for display."""
    tz = schedule.timezone or "UTC"
    time_of_day = schedule.time_of_day or ""

    if not schedule.is_recurring:
        start = schedule.start_date.isoformat() if schedule.start_date else "next occurrence"
        if time_of_day:
            return f"One-time on {start} at {time_of_day} {tz}"
        return f"One-time on {start}"

    kind = (schedule.recurrence_type or "").lower()
    if kind == "hourly":
        return "Every hour"
    if kind == "daily":
        return f"Daily at {time_of_day} {tz}"
    if kind == "weekly":
        days = ", ".join(schedule.days_of_week or [])
        return f"Weekly on {days} at {time_of_day} {tz}"
    if kind == "monthly":
        return f"Monthly on day 1 at {time_of_day} {tz}"
    return f"{schedule.recurrence_type} schedule"


class ScheduleResolver:
    """Computes when schedules should next run.

    Args:
        clock: Returns the current time as a naive UTC datetime
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock

    to_interval_expression = staticmethod(to_interval_expression)
    describe = staticmethod(describe_expression)
    validate = staticmethod(validate_expression)
    summarize = staticmethod(summarize)

    def now(self) -> datetime:
        return self._clock()

    def _iterator(self, expression: str, timezone: str, now: Optional[datetime]) -> croniter:
        if not expression or len(expression.split()) != 5:
            raise InvalidExpression(f"Invalid cron expression: {expression!r}", {"fields": 5})

        zone = get_zone(timezone or "UTC")
        reference = to_utc_naive(now) if now is not None else self._clock()
        try:
            return croniter(expression, utc_to_local(reference, zone))
        except (ValueError, KeyError) as e:
            raise InvalidExpression(f"Invalid cron expression: {expression!r}") from e

    def next_run_time(
        self,
        expression: str,
        timezone: str = "UTC",
        now: Optional[datetime] = None,
    ) -> datetime:
        """Next instant strictly after ``now`` matching ``expression``.

        The expression is evaluated against wall-clock time in ``timezone``.

        Args:
            expression: 5-field cron expression
            timezone: IANA timezone name
            now: Reference instant (default: the resolver's clock)

        Returns:
            Naive UTC datetime

        Raises:
            InvalidExpression: Unparsable expression or unknown timezone
        """
        iterator = self._iterator(expression, timezone, now)
        return to_utc_naive(iterator.get_next(datetime))

    def next_run_times(
        self,
        expression: str,
        count: int = 5,
        timezone: str = "UTC",
        now: Optional[datetime] = None,
    ) -> List[datetime]:
        """The next ``count`` firing instants, in order."""
        iterator = self._iterator(expression, timezone, now)
        return [to_utc_naive(iterator.get_next(datetime)) for _ in range(count)]

    def is_due(self, next_run_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
        """Whether a schedule with the given next run instant should run now."""
        if next_run_at is None:
            return False
        now = now if now is not None else self._clock()
        return to_utc_naive(now) >= to_utc_naive(next_run_at)

    def expression_for(self, schedule: Any) -> str:
        """Cron expression for a schedule's recurrence fields."""
        return to_interval_expression(
            schedule.recurrence_type,
            schedule.time_of_day,
            schedule.days_of_week,
        )

    def next_run_for_schedule(self, schedule: Any, now: Optional[datetime] = None) -> Optional[datetime]:
        """Next run for a recurring schedule within its date range.

        None for one-time schedules and once the next run would fall
        after the schedule's end date.
        """
        if not schedule.is_recurring:
            return None
        timezone = schedule.timezone or "UTC"
        zone = get_zone(timezone)
        now = to_utc_naive(now) if now is not None else self._clock()
        reference = start_reference(now, getattr(schedule, "start_date", None), zone)
        next_run = self.next_run_time(self.expression_for(schedule), timezone, reference)
        if past_end_date(next_run, getattr(schedule, "end_date", None), zone):
            return None
        return next_run
