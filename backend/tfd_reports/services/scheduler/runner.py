"""
Execution runner: generates a scheduled report, delivers it and records the outcome.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional
from tfd_reports.core.errors import (
    ReportDeliveryError,
    ReportGenerationError,
    ReportScheduleError,
    ScheduleNotFoundError,
)
from tfd_reports.models.report_schedule import ReportSchedule, RunStatus
from tfd_reports.services.reports.base import (
    ReportAttachment,
    ReportMailer,
    ReportRenderer,
    file_extension_for,
)
from tfd_reports.services.scheduler import schedule_store

logger = logging.getLogger(__name__)

SKIPPED = "skipped"


@dataclass
class RunOutcome:
    """Result of one execution attempt."""
    schedule_id: int
    name: Optional[str]
    status: str  # 'success', 'error' or 'skipped'
    error: Optional[str] = None
    ran_at: Optional[datetime] = None
    next_run_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCESS.value

    def to_dict(self) -> dict:
        return {
            "id": self.schedule_id,
            "name": self.name,
            "status": self.status,
            "error": self.error,
            "ran_at": self.ran_at,
            "next_run_at": self.next_run_at,
        }


@dataclass
class _ScheduleSnapshot:
    """Detached copy of the fields a run needs, taken after marking pending."""
    id: int
    name: str
    description: Optional[str]
    report_type: str
    parameters: dict
    output_format: str
    recipients: list

    @classmethod
    def from_schedule(cls, schedule: ReportSchedule) -> "_ScheduleSnapshot":
        return cls(
            id=schedule.id,
            name=schedule.name,
            description=schedule.description,
            report_type=schedule.report_type,
            parameters=dict(schedule.parameters or {}),
            output_format=schedule.output_format,
            recipients=list(schedule.recipients or []),
        )


class ReportExecutionRunner:
    """
    Runs one schedule end to end.

    `run()` never raises: generation, delivery and bookkeeping failures all end
    up in the returned RunOutcome (and, where possible, on the schedule row).
    Only one run per schedule id is allowed at a time; a concurrent request for
    the same id is skipped.
    """

    def __init__(
        self,
        session_factory: Callable,
        renderer: ReportRenderer,
        mailer: ReportMailer,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._session_factory = session_factory
        self._renderer = renderer
        self._mailer = mailer
        self._clock = clock
        self._in_flight: set[int] = set()
        self._in_flight_lock = threading.Lock()

    def is_running(self, schedule_id: int) -> bool:
        with self._in_flight_lock:
            return schedule_id in self._in_flight

    def _acquire(self, schedule_id: int) -> bool:
        with self._in_flight_lock:
            if schedule_id in self._in_flight:
                return False
            self._in_flight.add(schedule_id)
            return True

    def _release(self, schedule_id: int) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(schedule_id)

    def run(self, schedule_id: int) -> RunOutcome:
        if not self._acquire(schedule_id):
            logger.warning(f"Report schedule {schedule_id} is already running, skipping")
            return RunOutcome(schedule_id=schedule_id, name=None, status=SKIPPED, error="Already running")

        try:
            return self._run(schedule_id)
        finally:
            self._release(schedule_id)

    def _run(self, schedule_id: int) -> RunOutcome:
        # Short session: no connection or stale snapshot is held while the report renders
        db = self._session_factory()
        try:
            schedule = schedule_store.mark_schedule_pending(db, schedule_id)
            snapshot = _ScheduleSnapshot.from_schedule(schedule)
        except ScheduleNotFoundError as e:
            logger.warning(f"Report schedule {schedule_id} disappeared before execution")
            return RunOutcome(schedule_id=schedule_id, name=None, status=SKIPPED, error=str(e))
        except Exception as e:
            logger.error(f"Could not mark report schedule {schedule_id} as pending: {e}", exc_info=True)
            return RunOutcome(schedule_id=schedule_id, name=None, status=RunStatus.ERROR.value, error=str(e))
        finally:
            db.close()

        logger.info(f"Executing report schedule {snapshot.id} ({snapshot.name})")

        error_message = None
        try:
            self._execute(snapshot)
        except ReportScheduleError as e:
            error_message = e.message
        except Exception as e:
            # Anything unexpected is still contained to this schedule
            error_message = str(e) or e.__class__.__name__

        # The store derives the next slot from the completion time and the current row
        now = self._clock()
        record = schedule_store.RunRecord(
            status=RunStatus.SUCCESS if error_message is None else RunStatus.ERROR,
            ran_at=now,
            error=error_message,
        )
        db = self._session_factory()
        try:
            stored = schedule_store.record_run_outcome(db, snapshot.id, record)
            status = stored.last_run_status
            error_message = stored.last_run_error
            next_run_at = stored.next_run_at
        except Exception as e:
            logger.error(f"Could not record outcome for report schedule {snapshot.id}: {e}", exc_info=True)
            return RunOutcome(
                schedule_id=snapshot.id,
                name=snapshot.name,
                status=RunStatus.ERROR.value,
                error=error_message or f"Could not record outcome: {e}",
                ran_at=now,
            )
        finally:
            db.close()

        if status == RunStatus.SUCCESS.value:
            logger.info(f"Report schedule {snapshot.id} executed successfully, next run: {next_run_at}")
        else:
            logger.error(f"Report schedule {snapshot.id} failed: {error_message}")

        return RunOutcome(
            schedule_id=snapshot.id,
            name=snapshot.name,
            status=status,
            error=error_message,
            ran_at=now,
            next_run_at=next_run_at,
        )

    def _execute(self, snapshot: _ScheduleSnapshot) -> None:
        try:
            report = self._renderer.generate(
                snapshot.report_type,
                snapshot.parameters,
                snapshot.output_format,
            )
        except ReportGenerationError:
            raise
        except Exception as e:
            raise ReportGenerationError(f"Report generation failed: {e}", cause=e)

        if not snapshot.recipients:
            return

        today = self._clock().strftime("%Y-%m-%d")
        attachment = ReportAttachment(
            filename=f"relatorio_{snapshot.report_type}_{today}.{file_extension_for(snapshot.output_format)}",
            content=report.content,
            content_type=report.content_type,
        )
        subject = f"Relatório: {snapshot.name}"
        body = (
            "Relatório gerado automaticamente pelo sistema TFD360.\n\n"
            f"Descrição: {snapshot.description or 'Sem descrição'}"
        )

        try:
            sent = self._mailer.send(snapshot.recipients, subject, body, attachment)
        except Exception as e:
            raise ReportDeliveryError(f"Report delivery failed: {e}", cause=e)
        if not sent:
            raise ReportDeliveryError(
                f"Report delivery failed for recipients: {', '.join(snapshot.recipients)}"
            )
