"""
Next-run calculation for report schedules.

All times are naive local wall-clock datetimes. The calculation is pure: the
same schedule and `now` always give the same answer.
"""
import calendar
import re
from datetime import datetime, timedelta
from typing import Optional
from tfd_reports.core.errors import ScheduleValidationError
from tfd_reports.models.report_schedule import Recurrence

TIME_OF_DAY_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def parse_time_of_day(value: Optional[str]) -> tuple[int, int]:
    """Parse an 'HH:MM' 24-hour string into (hour, minute)."""
    match = TIME_OF_DAY_PATTERN.match(value or "")
    if not match:
        raise ScheduleValidationError(
            [{"field": "time_of_day", "message": "Invalid time format (HH:MM)"}]
        )
    return int(match.group(1)), int(match.group(2))


def clamp_day(year: int, month: int, day: int) -> int:
    """Clamp a day of month to the last day of the given month."""
    return min(day, calendar.monthrange(year, month)[1])


def _next_month(value: datetime) -> tuple[int, int]:
    if value.month == 12:
        return value.year + 1, 1
    return value.year, value.month + 1


def _js_weekday(value: datetime) -> int:
    """Weekday with Sunday=0 ... Saturday=6."""
    return (value.weekday() + 1) % 7


def calculate_next_run(schedule, now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Calculate the next run time for a schedule.

    Starts from today at `time_of_day` (rolled to tomorrow if that moment is not
    after `now`), then applies the recurrence rule. Returns None for on-demand
    schedules.
    """
    if now is None:
        now = datetime.now()

    recurrence = schedule.recurrence
    if recurrence == Recurrence.ON_DEMAND.value:
        return None

    hour, minute = parse_time_of_day(schedule.time_of_day)
    next_run = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if next_run <= now:
        next_run += timedelta(days=1)

    if recurrence == Recurrence.DAILY.value:
        return next_run

    if recurrence == Recurrence.WEEKLY.value:
        days_ahead = schedule.weekday - _js_weekday(next_run)
        if days_ahead <= 0:
            days_ahead += 7
        return next_run + timedelta(days=days_ahead)

    if recurrence == Recurrence.MONTHLY.value:
        target_day = schedule.day_of_month
        next_run = next_run.replace(day=clamp_day(next_run.year, next_run.month, target_day))
        if next_run <= now:
            year, month = _next_month(next_run)
            next_run = next_run.replace(year=year, month=month, day=clamp_day(year, month, target_day))
        return next_run

    raise ScheduleValidationError(
        [{"field": "recurrence", "message": f"Invalid recurrence: {recurrence}"}]
    )
