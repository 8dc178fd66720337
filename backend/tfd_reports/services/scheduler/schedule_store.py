"""
Persistence operations for report schedules.

Every write validates the complete resulting schedule before touching the
database row, so a rejected write leaves no partial mutation behind.
"""
import enum
import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional
from sqlalchemy.orm import Session
from tfd_reports.core.errors import ScheduleNotFoundError, ScheduleValidationError
from tfd_reports.models.report_schedule import (
    ReportSchedule,
    ReportType,
    Recurrence,
    OutputFormat,
    RunStatus,
)
from tfd_reports.services.scheduler.recurrence import TIME_OF_DAY_PATTERN, calculate_next_run

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[\w\-.]+@([\w-]+\.)+[\w-]{2,4}$")

UPDATABLE_FIELDS = (
    "name",
    "description",
    "report_type",
    "parameters",
    "recurrence",
    "weekday",
    "day_of_month",
    "time_of_day",
    "output_format",
    "recipients",
    "is_active",
)

# Changing any of these recomputes next_run_at
RECURRENCE_FIELDS = ("recurrence", "time_of_day", "weekday", "day_of_month", "is_active")

DEFAULTS = {
    "description": None,
    "parameters": {},
    "weekday": None,
    "day_of_month": None,
    "time_of_day": None,
    "output_format": OutputFormat.PDF.value,
    "recipients": [],
    "is_active": True,
}


@dataclass
class SchedulePage:
    """One page of schedules plus pagination metadata."""
    items: list
    total: int
    page: int
    limit: int
    total_pages: int = field(init=False)

    def __post_init__(self):
        self.total_pages = math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class RunRecord:
    """What the execution runner writes back after a run."""
    status: RunStatus
    ran_at: datetime
    error: Optional[str] = None


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, enum.Enum) else value


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_schedule_fields(fields: dict) -> dict:
    """
    Validate a complete schedule definition.

    Returns the normalized fields (enum values as plain strings, name and
    description stripped). Raises ScheduleValidationError listing every
    offending field.
    """
    errors = []
    data = {key: _enum_value(value) for key, value in fields.items()}

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        errors.append({"field": "name", "message": "Schedule name is required"})
    else:
        data["name"] = name.strip()
        if len(data["name"]) > 100:
            errors.append({"field": "name", "message": "Name cannot exceed 100 characters"})

    description = data.get("description")
    if description is not None:
        if not isinstance(description, str):
            errors.append({"field": "description", "message": "Description must be a string"})
        else:
            data["description"] = description.strip()
            if len(data["description"]) > 500:
                errors.append({"field": "description", "message": "Description cannot exceed 500 characters"})

    if data.get("report_type") not in {t.value for t in ReportType}:
        errors.append({"field": "report_type", "message": f"Invalid report type: {data.get('report_type')}"})

    if data.get("parameters") is None:
        data["parameters"] = {}
    elif not isinstance(data["parameters"], dict):
        errors.append({"field": "parameters", "message": "Parameters must be an object"})

    recurrence = data.get("recurrence")
    if recurrence not in {r.value for r in Recurrence}:
        errors.append({"field": "recurrence", "message": f"Invalid recurrence: {recurrence}"})

    weekday = data.get("weekday")
    if weekday is not None and (not _is_int(weekday) or not 0 <= weekday <= 6):
        errors.append({"field": "weekday", "message": "Weekday must be between 0 (Sunday) and 6 (Saturday)"})
    elif weekday is None and recurrence == Recurrence.WEEKLY.value:
        errors.append({"field": "weekday", "message": "Weekday is required for weekly schedules"})

    day_of_month = data.get("day_of_month")
    if day_of_month is not None and (not _is_int(day_of_month) or not 1 <= day_of_month <= 31):
        errors.append({"field": "day_of_month", "message": "Day of month must be between 1 and 31"})
    elif day_of_month is None and recurrence == Recurrence.MONTHLY.value:
        errors.append({"field": "day_of_month", "message": "Day of month is required for monthly schedules"})

    time_of_day = data.get("time_of_day")
    if time_of_day is not None:
        if not isinstance(time_of_day, str) or not TIME_OF_DAY_PATTERN.match(time_of_day):
            errors.append({"field": "time_of_day", "message": "Invalid time format (HH:MM)"})
    elif recurrence != Recurrence.ON_DEMAND.value:
        errors.append({"field": "time_of_day", "message": "Time of day is required for recurring schedules"})

    if data.get("output_format") not in {f.value for f in OutputFormat}:
        errors.append({"field": "output_format", "message": f"Invalid output format: {data.get('output_format')}"})

    recipients = data.get("recipients")
    if recipients is None:
        data["recipients"] = []
    elif not isinstance(recipients, list):
        errors.append({"field": "recipients", "message": "Recipients must be a list of email addresses"})
    else:
        invalid = [r for r in recipients if not isinstance(r, str) or not EMAIL_PATTERN.match(r)]
        if invalid:
            errors.append({"field": "recipients", "message": f"Invalid email addresses: {', '.join(map(str, invalid))}"})

    if not isinstance(data.get("is_active"), bool):
        errors.append({"field": "is_active", "message": "is_active must be a boolean"})

    if errors:
        raise ScheduleValidationError(errors)
    return data


def _schedule_fields(schedule: ReportSchedule) -> dict:
    return {name: getattr(schedule, name) for name in UPDATABLE_FIELDS}


def _resolve_next_run(schedule: ReportSchedule, now: Optional[datetime]) -> Optional[datetime]:
    if not schedule.is_active or not schedule.is_recurring:
        return None
    return calculate_next_run(schedule, now)


def list_schedules(
    db: Session,
    report_type: Optional[str] = None,
    is_active: Optional[bool] = None,
    created_by: Optional[int] = None,
    page: int = 1,
    limit: int = 10,
) -> SchedulePage:
    """List schedules, newest first, with optional filters."""
    page = max(page, 1)
    limit = max(limit, 1)
    query = db.query(ReportSchedule)
    if report_type:
        query = query.filter(ReportSchedule.report_type == _enum_value(report_type))
    if is_active is not None:
        query = query.filter(ReportSchedule.is_active == is_active)
    if created_by is not None:
        query = query.filter(ReportSchedule.created_by == created_by)

    total = query.count()
    items = (
        query.order_by(ReportSchedule.created_at.desc(), ReportSchedule.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return SchedulePage(items=items, total=total, page=page, limit=limit)


def get_schedule(db: Session, schedule_id: int) -> ReportSchedule:
    schedule = db.query(ReportSchedule).filter(ReportSchedule.id == schedule_id).first()
    if not schedule:
        raise ScheduleNotFoundError(schedule_id)
    return schedule


def create_schedule(
    db: Session,
    data: dict,
    owner_id: Optional[int],
    now: Optional[datetime] = None,
) -> ReportSchedule:
    """Validate and persist a new schedule with its initial next_run_at."""
    fields = dict(DEFAULTS)
    fields.update({key: value for key, value in data.items() if key in UPDATABLE_FIELDS})
    fields = validate_schedule_fields(fields)

    schedule = ReportSchedule(created_by=owner_id, **fields)
    schedule.next_run_at = _resolve_next_run(schedule, now)

    try:
        db.add(schedule)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(schedule)

    logger.info(
        f"Created report schedule {schedule.id} ({schedule.recurrence}), next run: {schedule.next_run_at}"
    )
    return schedule


def update_schedule(
    db: Session,
    schedule_id: int,
    changes: dict,
    now: Optional[datetime] = None,
) -> ReportSchedule:
    """
    Apply a partial update.

    Fields outside UPDATABLE_FIELDS are ignored. next_run_at is recomputed when
    any recurrence-affecting field is part of the update.
    """
    schedule = get_schedule(db, schedule_id)
    changes = {key: value for key, value in changes.items() if key in UPDATABLE_FIELDS}

    merged = _schedule_fields(schedule)
    merged.update(changes)
    merged = validate_schedule_fields(merged)

    for name in changes:
        setattr(schedule, name, merged[name])

    if any(name in changes for name in RECURRENCE_FIELDS):
        schedule.next_run_at = _resolve_next_run(schedule, now)

    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(schedule)

    logger.info(f"Updated report schedule {schedule.id}, next run: {schedule.next_run_at}")
    return schedule


def set_schedule_active(
    db: Session,
    schedule_id: int,
    is_active: bool,
    now: Optional[datetime] = None,
) -> ReportSchedule:
    return update_schedule(db, schedule_id, {"is_active": is_active}, now=now)


def delete_schedule(db: Session, schedule_id: int) -> None:
    schedule = get_schedule(db, schedule_id)
    try:
        db.delete(schedule)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Deleted report schedule {schedule_id}")


def mark_schedule_pending(db: Session, schedule_id: int) -> ReportSchedule:
    """Flag that an execution is underway so other observers can see it."""
    schedule = get_schedule(db, schedule_id)
    schedule.last_run_status = RunStatus.PENDING.value
    schedule.last_run_error = None
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(schedule)
    return schedule


def record_run_outcome(db: Session, schedule_id: int, record: RunRecord) -> ReportSchedule:
    """
    Store the result of an execution.

    next_run_at is recomputed from the row as it is now, measured from the
    completion time, so edits made while the run was in flight are honoured.
    A schedule that was deactivated or made on-demand meanwhile gets None.
    """
    schedule = get_schedule(db, schedule_id)
    status = _enum_value(record.status)
    error = record.error

    next_run_at = None
    if schedule.is_active and schedule.is_recurring:
        try:
            next_run_at = calculate_next_run(schedule, record.ran_at)
        except ScheduleValidationError as e:
            logger.error(f"Could not calculate next run for report schedule {schedule_id}: {e}")
            status = RunStatus.ERROR.value
            error = error or str(e)

    schedule.last_run_status = status
    schedule.last_run_error = error if status == RunStatus.ERROR.value else None
    schedule.last_run_at = record.ran_at
    schedule.next_run_at = next_run_at
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(schedule)
    return schedule


def _recurring_active_query(db: Session):
    return db.query(ReportSchedule).filter(
        ReportSchedule.is_active == True,  # noqa: E712
        ReportSchedule.recurrence != Recurrence.ON_DEMAND.value,
        ReportSchedule.next_run_at.isnot(None),
    )


def find_due_schedules(db: Session, now: datetime) -> list[ReportSchedule]:
    """Active, recurring schedules whose next run is at or before `now`."""
    return (
        _recurring_active_query(db)
        .filter(ReportSchedule.next_run_at <= now)
        .order_by(ReportSchedule.next_run_at.asc())
        .all()
    )


def find_schedules_due_before(db: Session, until: datetime) -> list[ReportSchedule]:
    """Active, recurring schedules due at or before `until` (scheduler lookahead)."""
    return find_due_schedules(db, until)
