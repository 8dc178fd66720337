"""
Database models.
"""
from tfd_reports.models.user import User
from tfd_reports.models.report_schedule import (
    ReportSchedule,
    ReportType,
    Recurrence,
    OutputFormat,
    RunStatus,
)

__all__ = [
    "User",
    "ReportSchedule",
    "ReportType",
    "Recurrence",
    "OutputFormat",
    "RunStatus",
]
