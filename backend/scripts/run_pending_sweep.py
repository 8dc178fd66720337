"""
Script to execute every due report schedule once.

Meant for cron when the API runs with SCHEDULER_ENABLED = False, or as a
manual catch-up after downtime:

    */5 * * * * cd /srv/tfd-reports/backend && python scripts/run_pending_sweep.py
"""
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add backend directory to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from tfd_reports.core.config import PENDING_SWEEP_MAX_WORKERS
from tfd_reports.core.database import SessionLocal
from tfd_reports.main import report_renderer
from tfd_reports.services.email import SmtpReportMailer
from tfd_reports.services.scheduler import ReportExecutionRunner, sweep_pending


def main(now: datetime = None, max_workers: int = PENDING_SWEEP_MAX_WORKERS) -> int:
    runner = ReportExecutionRunner(
        session_factory=SessionLocal,
        renderer=report_renderer,
        mailer=SmtpReportMailer(),
    )
    outcomes = sweep_pending(SessionLocal, runner, now=now, max_workers=max_workers)

    if not outcomes:
        print('✅ No pending report schedules')
        return 0

    failed = 0
    for outcome in outcomes:
        if outcome.status == 'error':
            failed += 1
            print(f"❌ #{outcome.schedule_id} {outcome.name}: {outcome.error}")
        else:
            print(f"✅ #{outcome.schedule_id} {outcome.name}: {outcome.status}, next run {outcome.next_run_at}")

    print(f"📊 {len(outcomes)} processed, {failed} failed")
    return 1 if failed else 0


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description='Run due report schedules once')
    parser.add_argument('--now', help='Reference time (YYYY-MM-DDTHH:MM), defaults to current local time')
    parser.add_argument('--workers', type=int, default=PENDING_SWEEP_MAX_WORKERS, help='Concurrent executions')
    parser.add_argument('--verbose', action='store_true', help='Show scheduler logs')

    args = parser.parse_args()
    logging.getLogger().setLevel(logging.INFO if args.verbose else logging.WARNING)
    reference = datetime.fromisoformat(args.now) if args.now else None
    sys.exit(main(now=reference, max_workers=args.workers))
