"""
In-process scheduler for report schedules using APScheduler.

Keeps single-shot timers for schedules due within a lookahead window, reloads
them periodically from the database and runs the pending sweep as a backstop.
The timer map is a cache derived from next_run_at and can be rebuilt at any
time with reload().
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from tfd_reports.core.errors import ScheduleNotFoundError, SchedulerInternalError
from tfd_reports.models.report_schedule import ReportSchedule
from tfd_reports.services.scheduler import schedule_store
from tfd_reports.services.scheduler.runner import SKIPPED, ReportExecutionRunner, RunOutcome
from tfd_reports.services.scheduler.sweep import sweep_pending

logger = logging.getLogger(__name__)

RELOAD_JOB_ID = "report_schedules_reload"
SWEEP_JOB_ID = "report_schedules_sweep"


def schedule_job_id(schedule_id: int) -> str:
    return f"report_schedule_{schedule_id}"


class ReportScheduler:
    """Owns the APScheduler instance and the map of armed report schedules."""

    def __init__(
        self,
        session_factory: Callable,
        runner: ReportExecutionRunner,
        scheduler: Optional[BackgroundScheduler] = None,
        lookahead_minutes: int = 60,
        reload_interval_minutes: int = 5,
        sweep_interval_minutes: int = 5,
        sweep_max_workers: int = 1,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._session_factory = session_factory
        self._runner = runner
        self._scheduler = scheduler or BackgroundScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60 * 5,
            }
        )
        self._lookahead = timedelta(minutes=lookahead_minutes)
        self._reload_interval_minutes = reload_interval_minutes
        self._sweep_interval_minutes = sweep_interval_minutes
        self._sweep_max_workers = sweep_max_workers
        self._clock = clock

        self._armed: dict[int, datetime] = {}
        self._firing: set[int] = set()
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def runner(self) -> ReportExecutionRunner:
        return self._runner

    def start(self):
        """Start the scheduler, register periodic jobs and arm due schedules."""
        if self._scheduler.running:
            logger.debug("Report scheduler already running")
            return

        self._scheduler.add_job(
            self._reload_job,
            trigger=IntervalTrigger(minutes=self._reload_interval_minutes),
            id=RELOAD_JOB_ID,
            name="Reload report schedules",
            replace_existing=True,
        )
        self._scheduler.add_job(
            self._sweep_job,
            trigger=IntervalTrigger(minutes=self._sweep_interval_minutes),
            id=SWEEP_JOB_ID,
            name="Process pending report schedules",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            f"✅ Report scheduler started (lookahead={self._lookahead}, "
            f"reload every {self._reload_interval_minutes}min, sweep every {self._sweep_interval_minutes}min)"
        )
        self.reload()

    def shutdown(self, wait: bool = False):
        """Stop the scheduler. Armed timers are lost; the next start rebuilds them."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Report scheduler stopped")
        with self._lock:
            self._armed.clear()

    def is_armed(self, schedule_id: int) -> bool:
        with self._lock:
            return schedule_id in self._armed

    def armed_schedule_ids(self) -> List[int]:
        with self._lock:
            return sorted(self._armed)

    def armed_run_time(self, schedule_id: int) -> Optional[datetime]:
        with self._lock:
            return self._armed.get(schedule_id)

    def reload(self, now: Optional[datetime] = None) -> int:
        """
        Reconcile timers with the database.

        Arms schedules due within the lookahead window whose timer is missing
        or points at a different time, and cancels timers of schedules that
        left the window. Returns how many timers were (re)armed.
        """
        if now is None:
            now = self._clock()

        db = self._session_factory()
        try:
            schedules = schedule_store.find_schedules_due_before(db, now + self._lookahead)
            due_ids = set()
            armed = 0
            for schedule in schedules:
                due_ids.add(schedule.id)
                with self._lock:
                    if schedule.id in self._firing:
                        continue
                    armed_at = self._armed.get(schedule.id)
                if armed_at == schedule.next_run_at and self._has_job(schedule.id):
                    continue
                if self.arm(schedule, now=now):
                    armed += 1
        except Exception as e:
            logger.error(f"Error loading report schedules: {e}", exc_info=True)
            return 0
        finally:
            db.close()

        with self._lock:
            stale = [schedule_id for schedule_id in self._armed if schedule_id not in due_ids]
        for schedule_id in stale:
            logger.info(f"Report schedule {schedule_id} is no longer due soon, cancelling its timer")
            self.disarm(schedule_id)

        logger.info(f"Loaded {len(schedules)} report schedules due soon, armed {armed}")
        return armed

    def _has_job(self, schedule_id: int) -> bool:
        return self._scheduler.get_job(schedule_job_id(schedule_id)) is not None

    def arm(self, schedule: ReportSchedule, now: Optional[datetime] = None) -> bool:
        """
        Register a single-shot timer for a schedule.

        Any existing timer is cancelled first. Returns False when the schedule
        stays unscheduled (scheduler not running, inactive, on-demand, no next
        run, outside the lookahead window, or the timer could not be registered).
        """
        self.disarm(schedule.id)

        # Workers without timers only run manual executions and sweeps
        if not self.running:
            return False

        if not schedule.is_active or not schedule.is_recurring or schedule.next_run_at is None:
            return False

        if now is None:
            now = self._clock()
        run_date = schedule.next_run_at
        if run_date > now + self._lookahead:
            return False

        # Recorded before add_job: an immediate job may fire before add_job returns
        with self._lock:
            self._armed[schedule.id] = run_date

        job_id = schedule_job_id(schedule.id)
        try:
            if run_date <= now:
                logger.info(f"Report schedule {schedule.id} is overdue ({run_date}), executing immediately")
                # No trigger: APScheduler runs the job as soon as possible
                self._scheduler.add_job(
                    self.fire,
                    args=[schedule.id],
                    id=job_id,
                    name=f"Report schedule {schedule.id}",
                    replace_existing=True,
                )
            else:
                self._scheduler.add_job(
                    self.fire,
                    trigger=DateTrigger(run_date=run_date),
                    args=[schedule.id],
                    id=job_id,
                    name=f"Report schedule {schedule.id}",
                    replace_existing=True,
                )
                minutes = int((run_date - now).total_seconds() // 60)
                logger.info(f"Armed report schedule {schedule.id} to run in {minutes} minutes ({run_date})")
        except Exception as e:
            with self._lock:
                if self._armed.get(schedule.id) == run_date:
                    del self._armed[schedule.id]
            error = SchedulerInternalError(f"Could not arm report schedule {schedule.id}", cause=e)
            logger.error(f"{error}: {e}; relying on pending sweep", exc_info=True)
            return False

        return True

    def disarm(self, schedule_id: int) -> bool:
        """Cancel the timer of a schedule. Returns True if one was armed."""
        with self._lock:
            was_armed = self._armed.pop(schedule_id, None) is not None
        try:
            self._scheduler.remove_job(schedule_job_id(schedule_id))
        except JobLookupError:
            pass
        except Exception as e:
            error = SchedulerInternalError(f"Could not disarm report schedule {schedule_id}", cause=e)
            logger.error(f"{error}: {e}", exc_info=True)
        return was_armed

    def fire(self, schedule_id: int) -> RunOutcome:
        """
        Timer callback: run the schedule, then re-arm from the stored next run.

        The stored row wins over the timer. A schedule that was deleted,
        deactivated, made on-demand or moved later (possibly by another
        process) is skipped and re-armed from what is stored.
        """
        with self._lock:
            self._armed.pop(schedule_id, None)
            self._firing.add(schedule_id)
        try:
            reason = self._not_due_reason(schedule_id, self._clock())
            if reason is None:
                outcome = self._runner.run(schedule_id)
        finally:
            with self._lock:
                self._firing.discard(schedule_id)

        if reason is not None:
            logger.info(f"Report schedule {schedule_id} timer fired but was skipped: {reason}")
            self._rearm(schedule_id)
            return RunOutcome(schedule_id=schedule_id, name=None, status=SKIPPED, error=reason)

        # A skipped run belongs to someone else; re-arming here could loop on a stale next run
        if outcome.status != SKIPPED:
            self._rearm(schedule_id)
        return outcome

    def _not_due_reason(self, schedule_id: int, now: datetime) -> Optional[str]:
        db = self._session_factory()
        try:
            schedule = schedule_store.get_schedule(db, schedule_id)
            if not schedule.is_active:
                return "Schedule is inactive"
            if not schedule.is_recurring:
                return "Schedule runs on demand only"
            if schedule.next_run_at is None or schedule.next_run_at > now:
                return f"Schedule is not due (next run {schedule.next_run_at})"
            return None
        except ScheduleNotFoundError as e:
            return str(e)
        except Exception as e:
            logger.error(f"Could not load report schedule {schedule_id} before running it: {e}", exc_info=True)
            return f"Could not load schedule: {e}"
        finally:
            db.close()

    def _rearm(self, schedule_id: int) -> bool:
        db = self._session_factory()
        try:
            schedule = schedule_store.get_schedule(db, schedule_id)
            return self.arm(schedule)
        except ScheduleNotFoundError:
            self.disarm(schedule_id)
            return False
        except Exception as e:
            logger.error(f"Could not re-arm report schedule {schedule_id}: {e}", exc_info=True)
            return False
        finally:
            db.close()

    def schedule_changed(self, schedule: ReportSchedule) -> bool:
        """Call after create/update/activate/deactivate to refresh the timer."""
        return self.arm(schedule)

    def schedule_deleted(self, schedule_id: int) -> None:
        self.disarm(schedule_id)

    def run_now(self, schedule_id: int) -> RunOutcome:
        """Execute a schedule immediately, outside its normal slot."""
        outcome = self._runner.run(schedule_id)
        if outcome.status != SKIPPED:
            self._rearm(schedule_id)
        return outcome

    def sweep_now(self, now: Optional[datetime] = None) -> List[RunOutcome]:
        """Run the pending sweep and refresh timers of every executed schedule."""
        if now is None:
            now = self._clock()
        outcomes = sweep_pending(
            self._session_factory,
            self._runner,
            now=now,
            max_workers=self._sweep_max_workers,
        )
        for outcome in outcomes:
            if outcome.status != SKIPPED:
                self._rearm(outcome.schedule_id)
        return outcomes

    def _reload_job(self):
        try:
            self.reload()
        except Exception as e:
            logger.error(f"Error in report schedule reload job: {e}", exc_info=True)

    def _sweep_job(self):
        try:
            self.sweep_now()
        except Exception as e:
            logger.error(f"Error in pending report sweep job: {e}", exc_info=True)
