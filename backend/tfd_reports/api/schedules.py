"""
Report schedules API endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
import logging
from tfd_reports.core.database import get_db
from tfd_reports.core.auth import get_current_user_dependency, get_current_admin_user_dependency
from tfd_reports.core.errors import ScheduleNotFoundError, ScheduleValidationError
from tfd_reports.models.report_schedule import ReportSchedule
from tfd_reports.models.user import User
from tfd_reports.services.scheduler import schedule_store
from tfd_reports.services.scheduler.scheduler_service import ReportScheduler

logger = logging.getLogger(__name__)

router = APIRouter()


class ScheduleCreate(BaseModel):
    """Request model for creating a report schedule."""
    name: str
    description: Optional[str] = None
    report_type: str  # 'users', 'municipalities', 'tfd_requests', 'access_logs'
    parameters: dict = {}
    recurrence: str  # 'daily', 'weekly', 'monthly', 'on_demand'
    weekday: Optional[int] = None  # 0-6 (Sunday-Saturday) for weekly
    day_of_month: Optional[int] = None  # 1-31 for monthly
    time_of_day: Optional[str] = None  # HH:MM
    output_format: str = "pdf"
    recipients: List[str] = []
    is_active: bool = True


class ScheduleUpdate(BaseModel):
    """Request model for updating a report schedule. Only sent fields are applied."""
    name: Optional[str] = None
    description: Optional[str] = None
    report_type: Optional[str] = None
    parameters: Optional[dict] = None
    recurrence: Optional[str] = None
    weekday: Optional[int] = None
    day_of_month: Optional[int] = None
    time_of_day: Optional[str] = None
    output_format: Optional[str] = None
    recipients: Optional[List[str]] = None
    is_active: Optional[bool] = None


class StatusUpdate(BaseModel):
    is_active: bool


class ScheduleResponse(BaseModel):
    """Response model for a report schedule."""
    id: int
    name: str
    description: Optional[str]
    report_type: str
    parameters: dict
    recurrence: str
    weekday: Optional[int]
    day_of_month: Optional[int]
    time_of_day: Optional[str]
    output_format: str
    recipients: List[str]
    is_active: bool
    created_by: Optional[int]
    created_by_name: Optional[str] = None
    created_by_email: Optional[str] = None
    last_run_at: Optional[datetime]
    next_run_at: Optional[datetime]
    last_run_status: Optional[str]
    last_run_error: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


class ScheduleListResponse(BaseModel):
    items: List[ScheduleResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class RunOutcomeResponse(BaseModel):
    """Result of one execution attempt."""
    id: int
    name: Optional[str]
    status: str  # 'success', 'error' or 'skipped'
    error: Optional[str] = None
    ran_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None


class PendingSweepResponse(BaseModel):
    processed: int
    failed: int
    results: List[RunOutcomeResponse]


def get_report_scheduler(request: Request) -> Optional[ReportScheduler]:
    """Dependency returning the scheduler created at startup (None if disabled)."""
    return getattr(request.app.state, "report_scheduler", None)


def _require_scheduler(scheduler: Optional[ReportScheduler]) -> ReportScheduler:
    if scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Report scheduler is not available"
        )
    return scheduler


def _to_response(schedule: ReportSchedule) -> ScheduleResponse:
    response = ScheduleResponse.model_validate(schedule)
    if schedule.creator is not None:
        response.created_by_name = schedule.creator.display_name
        response.created_by_email = schedule.creator.email
    return response


def _validation_error(e: ScheduleValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"message": e.message, "errors": e.errors}
    )


def _not_found(e: ScheduleNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=e.message
    )


@router.get("", response_model=ScheduleListResponse)
async def list_schedules(
    report_type: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    created_by: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dependency)
):
    """List report schedules, newest first."""
    result = schedule_store.list_schedules(
        db,
        report_type=report_type,
        is_active=is_active,
        created_by=created_by,
        page=page,
        limit=limit,
    )
    return ScheduleListResponse(
        items=[_to_response(schedule) for schedule in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.post("", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    request: ScheduleCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dependency),
    scheduler: Optional[ReportScheduler] = Depends(get_report_scheduler)
):
    """Create a new report schedule owned by the current user."""
    try:
        schedule = schedule_store.create_schedule(db, request.model_dump(), owner_id=current_user.id)
    except ScheduleValidationError as e:
        raise _validation_error(e)

    if scheduler is not None:
        scheduler.schedule_changed(schedule)

    return _to_response(schedule)


@router.get("/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(
    schedule_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dependency)
):
    """Get a report schedule by ID."""
    try:
        schedule = schedule_store.get_schedule(db, schedule_id)
    except ScheduleNotFoundError as e:
        raise _not_found(e)
    return _to_response(schedule)


@router.put("/{schedule_id}", response_model=ScheduleResponse)
async def update_schedule(
    schedule_id: int,
    request: ScheduleUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dependency),
    scheduler: Optional[ReportScheduler] = Depends(get_report_scheduler)
):
    """Update a report schedule."""
    try:
        schedule = schedule_store.update_schedule(db, schedule_id, request.model_dump(exclude_unset=True))
    except ScheduleNotFoundError as e:
        raise _not_found(e)
    except ScheduleValidationError as e:
        raise _validation_error(e)

    if scheduler is not None:
        scheduler.schedule_changed(schedule)

    return _to_response(schedule)


@router.patch("/{schedule_id}/status", response_model=ScheduleResponse)
async def set_schedule_status(
    schedule_id: int,
    request: StatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dependency),
    scheduler: Optional[ReportScheduler] = Depends(get_report_scheduler)
):
    """Activate or deactivate a report schedule."""
    try:
        schedule = schedule_store.set_schedule_active(db, schedule_id, request.is_active)
    except ScheduleNotFoundError as e:
        raise _not_found(e)

    if scheduler is not None:
        scheduler.schedule_changed(schedule)

    return _to_response(schedule)


@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_schedule(
    schedule_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dependency),
    scheduler: Optional[ReportScheduler] = Depends(get_report_scheduler)
):
    """Delete a report schedule."""
    try:
        schedule_store.delete_schedule(db, schedule_id)
    except ScheduleNotFoundError as e:
        raise _not_found(e)

    if scheduler is not None:
        scheduler.schedule_deleted(schedule_id)

    return None


# Plain def: report generation and SMTP block, so FastAPI runs these in its threadpool
@router.post("/process-pending", response_model=PendingSweepResponse)
def process_pending(
    current_user: User = Depends(get_current_admin_user_dependency),
    scheduler: Optional[ReportScheduler] = Depends(get_report_scheduler)
):
    """Execute every due report schedule now (admin only)."""
    scheduler = _require_scheduler(scheduler)
    logger.info(f"Pending sweep requested by user {current_user.id}")
    outcomes = scheduler.sweep_now()
    failed = sum(1 for outcome in outcomes if outcome.status == "error")
    return PendingSweepResponse(
        processed=len(outcomes),
        failed=failed,
        results=[RunOutcomeResponse(**outcome.to_dict()) for outcome in outcomes],
    )


@router.post("/{schedule_id}/run", response_model=RunOutcomeResponse)
def run_schedule(
    schedule_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user_dependency),
    scheduler: Optional[ReportScheduler] = Depends(get_report_scheduler)
):
    """Execute a report schedule immediately."""
    try:
        schedule_store.get_schedule(db, schedule_id)
    except ScheduleNotFoundError as e:
        raise _not_found(e)

    scheduler = _require_scheduler(scheduler)
    logger.info(f"Manual run of report schedule {schedule_id} requested by user {current_user.id}")
    outcome = scheduler.run_now(schedule_id)
    return RunOutcomeResponse(**outcome.to_dict())
