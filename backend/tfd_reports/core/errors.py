"""
Domain errors for report scheduling.

Validation and not-found errors surface to the caller (HTTP 400/404).
Generation, delivery and scheduler errors are contained: they are recorded on
the schedule or logged, never allowed to stop the scheduler or a sweep.
"""
from typing import Optional


class ReportScheduleError(Exception):
    """Base class for report scheduling errors."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class ScheduleValidationError(ReportScheduleError):
    """Malformed schedule definition. Carries one entry per offending field."""

    def __init__(self, errors: list[dict], message: str = "Invalid report schedule"):
        super().__init__(message)
        self.errors = errors

    def __str__(self) -> str:
        details = "; ".join(f"{e['field']}: {e['message']}" for e in self.errors)
        return f"{self.message}: {details}" if details else self.message


class ScheduleNotFoundError(ReportScheduleError):
    def __init__(self, schedule_id: int):
        super().__init__(f"Report schedule {schedule_id} not found")
        self.schedule_id = schedule_id


class ReportGenerationError(ReportScheduleError):
    """Report renderer failed."""


class ReportDeliveryError(ReportScheduleError):
    """Mail sender failed while recipients were configured."""


class SchedulerInternalError(ReportScheduleError):
    """Arming or disarming an in-process timer failed."""
