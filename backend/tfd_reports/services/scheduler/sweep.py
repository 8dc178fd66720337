"""
Pending sweep: runs every active recurring schedule whose next run has passed.

This job does not depend on in-process timer state. Any schedule a timer
missed (restart, clock skew, lost job) is picked up on the next pass.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, List, Optional
from tfd_reports.models.report_schedule import RunStatus
from tfd_reports.services.scheduler import schedule_store
from tfd_reports.services.scheduler.runner import ReportExecutionRunner, RunOutcome

logger = logging.getLogger(__name__)


def _run_one(runner: ReportExecutionRunner, schedule_id: int, name: str) -> RunOutcome:
    try:
        return runner.run(schedule_id)
    except Exception as e:
        logger.error(f"Unexpected error running report schedule {schedule_id}: {e}", exc_info=True)
        return RunOutcome(schedule_id=schedule_id, name=name, status=RunStatus.ERROR.value, error=str(e))


def sweep_pending(
    session_factory: Callable,
    runner: ReportExecutionRunner,
    now: Optional[datetime] = None,
    max_workers: int = 1,
) -> List[RunOutcome]:
    """
    Execute all due schedules once.

    Each due schedule runs at most once per pass, however many slots it missed.

    Args:
        session_factory: Callable returning a new database session
        runner: Execution runner used for every due schedule
        now: Reference time (defaults to the current local time)
        max_workers: Number of schedules executed concurrently (1 = sequential)

    Returns:
        One RunOutcome per due schedule
    """
    if now is None:
        now = datetime.now()

    db = session_factory()
    try:
        due = [(s.id, s.name) for s in schedule_store.find_due_schedules(db, now)]
    finally:
        db.close()

    logger.info(f"Processing {len(due)} pending report schedules")
    if not due:
        return []

    if max_workers <= 1:
        outcomes = [_run_one(runner, schedule_id, name) for schedule_id, name in due]
    else:
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="report-sweep") as pool:
            outcomes = list(pool.map(lambda item: _run_one(runner, *item), due))

    failed = sum(1 for outcome in outcomes if outcome.status == RunStatus.ERROR.value)
    logger.info(
        f"Pending sweep completed: {len(outcomes) - failed} processed, {failed} failed"
    )
    return outcomes
