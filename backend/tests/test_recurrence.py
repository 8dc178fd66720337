import pytest
from datetime import datetime, timedelta
from types import SimpleNamespace

from tfd_reports.core.errors import ScheduleValidationError
from tfd_reports.services.scheduler.recurrence import calculate_next_run, clamp_day, parse_time_of_day


def schedule(**fields):
    values = {"recurrence": "daily", "time_of_day": "08:00", "weekday": None, "day_of_month": None}
    values.update(fields)
    return SimpleNamespace(**values)


def sunday_based_weekday(value: datetime) -> int:
    return (value.weekday() + 1) % 7


def test_daily_before_time_runs_today():
    result = calculate_next_run(schedule(), datetime(2024, 3, 1, 7, 0, 0))
    assert result == datetime(2024, 3, 1, 8, 0, 0)


def test_daily_after_time_runs_tomorrow():
    result = calculate_next_run(schedule(), datetime(2024, 3, 1, 9, 0, 0))
    assert result == datetime(2024, 3, 2, 8, 0, 0)


def test_daily_exactly_at_time_runs_tomorrow():
    result = calculate_next_run(schedule(), datetime(2024, 3, 1, 8, 0, 0))
    assert result == datetime(2024, 3, 2, 8, 0, 0)


def test_seconds_are_zeroed():
    result = calculate_next_run(schedule(time_of_day="23:59"), datetime(2024, 3, 1, 10, 15, 42, 123))
    assert result == datetime(2024, 3, 1, 23, 59, 0, 0)


def test_weekly_later_in_same_week():
    # Monday -> Wednesday
    result = calculate_next_run(
        schedule(recurrence="weekly", weekday=3, time_of_day="10:00"),
        datetime(2024, 3, 4, 9, 0, 0),
    )
    assert result == datetime(2024, 3, 6, 10, 0, 0)


def test_weekly_same_weekday_waits_a_full_week():
    # Wednesday 09:00, slot at 10:00 the same Wednesday is not used
    result = calculate_next_run(
        schedule(recurrence="weekly", weekday=3, time_of_day="10:00"),
        datetime(2024, 3, 6, 9, 0, 0),
    )
    assert result == datetime(2024, 3, 13, 10, 0, 0)


def test_weekly_sunday_is_zero():
    # Friday -> Sunday
    result = calculate_next_run(
        schedule(recurrence="weekly", weekday=0, time_of_day="06:30"),
        datetime(2024, 3, 1, 12, 0, 0),
    )
    assert result == datetime(2024, 3, 3, 6, 30, 0)


@pytest.mark.parametrize("weekday", range(7))
@pytest.mark.parametrize("hour", [0, 9, 10, 23])
def test_weekly_lands_on_weekday_within_eight_days(weekday, hour):
    for offset in range(7):
        now = datetime(2024, 3, 4, hour, 0, 0) + timedelta(days=offset)
        result = calculate_next_run(schedule(recurrence="weekly", weekday=weekday, time_of_day="10:00"), now)
        assert sunday_based_weekday(result) == weekday
        assert result > now
        assert result - now <= timedelta(days=8)


def test_monthly_clamps_to_leap_february():
    result = calculate_next_run(
        schedule(recurrence="monthly", day_of_month=31, time_of_day="00:00"),
        datetime(2024, 2, 1, 0, 0, 0),
    )
    assert result == datetime(2024, 2, 29, 0, 0, 0)


def test_monthly_clamps_to_thirty_day_month():
    result = calculate_next_run(
        schedule(recurrence="monthly", day_of_month=31, time_of_day="08:00"),
        datetime(2024, 4, 10, 12, 0, 0),
    )
    assert result == datetime(2024, 4, 30, 8, 0, 0)


def test_monthly_passed_day_moves_to_next_month():
    result = calculate_next_run(
        schedule(recurrence="monthly", day_of_month=5, time_of_day="08:00"),
        datetime(2024, 3, 10, 12, 0, 0),
    )
    assert result == datetime(2024, 4, 5, 8, 0, 0)


def test_monthly_rollover_into_shorter_month_is_clamped():
    result = calculate_next_run(
        schedule(recurrence="monthly", day_of_month=31, time_of_day="08:00"),
        datetime(2024, 1, 31, 9, 0, 0),
    )
    assert result == datetime(2024, 2, 29, 8, 0, 0)


def test_monthly_december_rolls_into_next_year():
    result = calculate_next_run(
        schedule(recurrence="monthly", day_of_month=15, time_of_day="08:00"),
        datetime(2024, 12, 20, 8, 0, 0),
    )
    assert result == datetime(2025, 1, 15, 8, 0, 0)


def test_on_demand_has_no_next_run():
    assert calculate_next_run(schedule(recurrence="on_demand", time_of_day=None), datetime(2024, 3, 1)) is None


def test_calculation_is_pure():
    item = schedule(recurrence="monthly", day_of_month=30, time_of_day="18:45")
    now = datetime(2024, 2, 10, 19, 0, 0)
    assert calculate_next_run(item, now) == calculate_next_run(item, now)


def test_malformed_time_of_day_is_rejected():
    with pytest.raises(ScheduleValidationError) as exc_info:
        calculate_next_run(schedule(time_of_day="24:00"), datetime(2024, 3, 1))
    assert exc_info.value.errors[0]["field"] == "time_of_day"


def test_parse_time_of_day():
    assert parse_time_of_day("07:05") == (7, 5)
    with pytest.raises(ScheduleValidationError):
        parse_time_of_day("7:05")


def test_clamp_day():
    assert clamp_day(2023, 2, 31) == 28
    assert clamp_day(2024, 2, 31) == 29
    assert clamp_day(2024, 3, 31) == 31
