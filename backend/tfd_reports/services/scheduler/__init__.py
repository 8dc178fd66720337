"""
Scheduler service for report schedules: recurrence, storage, execution and timers.
"""
from tfd_reports.services.scheduler.recurrence import calculate_next_run, parse_time_of_day
from tfd_reports.services.scheduler import schedule_store
from tfd_reports.services.scheduler.runner import ReportExecutionRunner, RunOutcome, SKIPPED
from tfd_reports.services.scheduler.sweep import sweep_pending
from tfd_reports.services.scheduler.scheduler_service import ReportScheduler, schedule_job_id

__all__ = [
    "calculate_next_run",
    "parse_time_of_day",
    "schedule_store",
    "ReportExecutionRunner",
    "RunOutcome",
    "SKIPPED",
    "sweep_pending",
    "ReportScheduler",
    "schedule_job_id",
]
