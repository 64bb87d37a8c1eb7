"""Tests for recurrence rules and next-run computation."""

from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest

from dqscan.exceptions import InvalidExpression, UnsupportedScheduleType
from dqscan.scheduler.resolver import (
    CronPresets,
    ScheduleResolver,
    describe_expression,
    get_zone,
    parse_time_of_day,
    past_end_date,
    start_reference,
    summarize,
    to_interval_expression,
    validate_expression,
)


@pytest.fixture
def resolver() -> ScheduleResolver:
    return ScheduleResolver(clock=lambda: datetime(2024, 1, 1, 10, 0))


def _schedule(**overrides):
    fields = dict(
        is_recurring=True,
        recurrence_type="daily",
        time_of_day="09:00",
        days_of_week=None,
        timezone="UTC",
        start_date=None,
        end_date=None,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestToIntervalExpression:
    """Recurrence descriptions to cron expressions."""

    def test_hourly(self) -> None:
        assert to_interval_expression("hourly") == "0 * * * *"

    def test_hourly_ignores_time(self) -> None:
        assert to_interval_expression("hourly", "09:30") == "0 * * * *"

    def test_daily(self) -> None:
        assert to_interval_expression("daily", "09:00") == "0 9 * * *"

    def test_weekly_day_field(self) -> None:
        expression = to_interval_expression("weekly", "08:30", ["Monday", "Friday"])
        assert expression == "30 8 * * 1,5"
        assert expression.split()[4] == "1,5"

    def test_weekly_day_names_case_insensitive(self) -> None:
        assert to_interval_expression("weekly", "08:30", ["sunday", "SATURDAY"]) == "30 8 * * 0,6"

    def test_monthly(self) -> None:
        assert to_interval_expression("monthly", "06:15") == "15 6 1 * *"

    def test_type_is_case_insensitive(self) -> None:
        assert to_interval_expression("Daily", "09:00") == "0 9 * * *"

    def test_unknown_type(self) -> None:
        with pytest.raises(UnsupportedScheduleType):
            to_interval_expression("yearly", "09:00")

    def test_daily_without_time(self) -> None:
        with pytest.raises(UnsupportedScheduleType):
            to_interval_expression("daily")

    def test_weekly_without_days(self) -> None:
        with pytest.raises(UnsupportedScheduleType):
            to_interval_expression("weekly", "09:00", [])

    def test_unknown_day(self) -> None:
        with pytest.raises(InvalidExpression):
            to_interval_expression("weekly", "09:00", ["Funday"])

    def test_bad_time(self) -> None:
        with pytest.raises(InvalidExpression):
            to_interval_expression("daily", "25:00")


class TestParseTimeOfDay:
    """Tests for parse_time_of_day."""

    def test_valid(self) -> None:
        assert parse_time_of_day("07:05") == (7, 5)

    @pytest.mark.parametrize("value", ["", "9", "9:5:1", "ab:cd", "12:60"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(InvalidExpression):
            parse_time_of_day(value)


class TestValidateAndDescribe:
    """Tests for validate_expression and describe_expression."""

    def test_validate(self) -> None:
        assert validate_expression("0 9 * * 1-5") is True
        assert validate_expression("0 9 * *") is False
        assert validate_expression("61 9 * * *") is False
        assert validate_expression("") is False

    def test_describe_every_n_minutes(self) -> None:
        assert describe_expression(CronPresets.EVERY_5_MINUTES) == "Every 5 minutes"

    def test_describe_every_n_hours(self) -> None:
        assert describe_expression(CronPresets.EVERY_2_HOURS) == "Every 2 hours at minute 0"

    def test_describe_hourly(self) -> None:
        assert describe_expression("15 * * * *") == "Every hour at minute 15"

    def test_describe_daily(self) -> None:
        assert describe_expression("0 9 * * *") == "Daily at 09:00"

    def test_describe_weekly(self) -> None:
        assert describe_expression("30 8 * * 1,5") == "Weekly on Monday, Friday at 08:30"

    def test_describe_unrecognized_is_echoed(self) -> None:
        assert describe_expression("0 0 1 * *") == "0 0 1 * *"
        assert describe_expression("not a cron") == "not a cron"

    @pytest.mark.parametrize("expression", ["0 */2 1 * *", "*/5 * * 1 *", "*/15 * * * 1-5"])
    def test_describe_steps_need_every_day(self, expression: str) -> None:
        assert describe_expression(expression) == expression


class TestNextRunTime:
    """Tests for ScheduleResolver.next_run_time."""

    def test_daily_after_todays_slot(self, resolver: ScheduleResolver) -> None:
        next_run = resolver.next_run_time("0 9 * * *", "UTC", datetime(2024, 1, 1, 10, 0))
        assert next_run == datetime(2024, 1, 2, 9, 0)

    def test_defaults_to_clock(self, resolver: ScheduleResolver) -> None:
        assert resolver.next_run_time("0 9 * * *") == datetime(2024, 1, 2, 9, 0)

    def test_strictly_after_now(self, resolver: ScheduleResolver) -> None:
        next_run = resolver.next_run_time("0 * * * *", "UTC", datetime(2024, 1, 1, 10, 0))
        assert next_run == datetime(2024, 1, 1, 11, 0)

    def test_timezone_is_applied(self, resolver: ScheduleResolver) -> None:
        # 09:00 in New York is 14:00 UTC in January
        next_run = resolver.next_run_time("0 9 * * *", "America/New_York", datetime(2024, 1, 1, 10, 0))
        assert next_run == datetime(2024, 1, 1, 14, 0)

    def test_aware_now_is_normalized(self, resolver: ScheduleResolver) -> None:
        now = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
        assert resolver.next_run_time("0 9 * * *", "UTC", now) == datetime(2024, 1, 2, 9, 0)

    def test_returns_naive(self, resolver: ScheduleResolver) -> None:
        assert resolver.next_run_time("*/5 * * * *").tzinfo is None

    def test_next_run_times(self, resolver: ScheduleResolver) -> None:
        runs = resolver.next_run_times("0 9 * * *", count=3)
        assert runs == [
            datetime(2024, 1, 2, 9, 0),
            datetime(2024, 1, 3, 9, 0),
            datetime(2024, 1, 4, 9, 0),
        ]

    def test_invalid_expression(self, resolver: ScheduleResolver) -> None:
        with pytest.raises(InvalidExpression):
            resolver.next_run_time("0 9 * *")
        with pytest.raises(InvalidExpression):
            resolver.next_run_time("99 9 * * *")

    def test_unknown_timezone(self, resolver: ScheduleResolver) -> None:
        with pytest.raises(InvalidExpression):
            resolver.next_run_time("0 9 * * *", "Mars/Olympus_Mons")


class TestIsDue:
    """Tests for ScheduleResolver.is_due."""

    def test_none_is_never_due(self, resolver: ScheduleResolver) -> None:
        assert resolver.is_due(None) is False

    def test_past_and_present_are_due(self, resolver: ScheduleResolver) -> None:
        assert resolver.is_due(datetime(2024, 1, 1, 9, 0)) is True
        assert resolver.is_due(datetime(2024, 1, 1, 10, 0)) is True

    def test_future_is_not_due(self, resolver: ScheduleResolver) -> None:
        assert resolver.is_due(datetime(2024, 1, 1, 10, 1)) is False


class TestScheduleHelpers:
    """Schedule-level helpers."""

    def test_next_run_for_recurring_schedule(self, resolver: ScheduleResolver) -> None:
        schedule = _schedule()
        assert resolver.next_run_for_schedule(schedule) == datetime(2024, 1, 2, 9, 0)

    def test_next_run_for_one_time_schedule(self, resolver: ScheduleResolver) -> None:
        assert resolver.next_run_for_schedule(_schedule(is_recurring=False)) is None

    def test_next_run_waits_for_start_date(self, resolver: ScheduleResolver) -> None:
        schedule = _schedule(start_date=date(2024, 3, 1))
        assert resolver.next_run_for_schedule(schedule) == datetime(2024, 3, 1, 9, 0)

    def test_next_run_past_end_date(self, resolver: ScheduleResolver) -> None:
        schedule = _schedule(end_date=date(2024, 1, 1))
        assert resolver.next_run_for_schedule(schedule) is None

    def test_end_date_uses_schedule_timezone(self, resolver: ScheduleResolver) -> None:
        schedule = _schedule(time_of_day="20:00", timezone="America/Los_Angeles", end_date=date(2024, 1, 1))
        assert resolver.next_run_for_schedule(schedule) == datetime(2024, 1, 2, 4, 0)

    def test_start_reference(self) -> None:
        zone = get_zone("UTC")
        now = datetime(2024, 1, 1, 10, 0)
        assert start_reference(now, None, zone) == now
        assert start_reference(now, date(2024, 3, 1), zone) == datetime(2024, 2, 29, 23, 59, 59)
        assert start_reference(now, date(2023, 12, 1), zone) == now

    def test_past_end_date(self) -> None:
        zone = get_zone("Asia/Tokyo")
        # 2024-01-01 16:00 UTC is already 2 January in Tokyo
        assert past_end_date(datetime(2024, 1, 1, 16, 0), date(2024, 1, 1), zone) is True
        assert past_end_date(datetime(2024, 1, 1, 14, 0), date(2024, 1, 1), zone) is False
        assert past_end_date(datetime(2030, 1, 1), None, zone) is False

    def test_summarize_daily(self) -> None:
        assert summarize(_schedule()) == "Daily at 09:00 UTC"

    def test_summarize_weekly(self) -> None:
        schedule = _schedule(recurrence_type="weekly", days_of_week=["Monday", "Friday"], time_of_day="08:30")
        assert summarize(schedule) == "Weekly on Monday, Friday at 08:30 UTC"

    def test_summarize_hourly(self) -> None:
        assert summarize(_schedule(recurrence_type="hourly", time_of_day=None)) == "Every hour"

    def test_summarize_one_time(self) -> None:
        schedule = _schedule(is_recurring=False, recurrence_type=None, start_date=date(2024, 3, 1))
        assert summarize(schedule) == "One-time on 2024-03-01 at 09:00 UTC"
