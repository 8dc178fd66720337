"""
FastAPI application entry point.
"""
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from tfd_reports.api import health, auth, schedules
from tfd_reports.core.config import get_settings
from tfd_reports.core.database import SessionLocal
from tfd_reports.services.email import SmtpReportMailer
from tfd_reports.services.reports import RegistryReportRenderer, load_report_generators
from tfd_reports.services.scheduler import ReportExecutionRunner, ReportScheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app_settings = get_settings()

app = FastAPI(
    title="TFD Reports API",
    description="Scheduled report generation and delivery for TFD management",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(schedules.router, prefix="/api/report-schedules", tags=["report-schedules"])

# Generators come from the module named by REPORT_GENERATORS_MODULE in config_local.py
report_renderer = RegistryReportRenderer()
if app_settings.report_generators_module:
    load_report_generators(report_renderer, app_settings.report_generators_module)


def _acquire_scheduler_lock(lock_file_path: str):
    """
    Acquire an exclusive, non-blocking lock so a single worker process runs timers.

    Returns (success, lock_file). The lock file must stay open to keep the lock.
    """
    try:
        import fcntl
    except ImportError:
        # fcntl not available (Windows)
        logger.warning("fcntl not available, report scheduler may run in several workers")
        return True, None

    lock_file = open(lock_file_path, "w")
    try:
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        lock_file.close()
        return False, None
    except OSError as e:
        lock_file.close()
        logger.error(f"Error acquiring scheduler lock {lock_file_path}: {e}")
        return False, None
    return True, lock_file


def _release_scheduler_lock(lock_file):
    if lock_file is None:
        return
    try:
        import fcntl
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
    except (ImportError, OSError) as e:
        logger.warning(f"Error releasing scheduler lock: {e}")
    finally:
        lock_file.close()


@app.on_event("startup")
async def startup_event():
    """Create the report scheduler and start it in the worker holding the lock."""
    runner = ReportExecutionRunner(
        session_factory=SessionLocal,
        renderer=report_renderer,
        mailer=SmtpReportMailer(),
    )
    scheduler = ReportScheduler(
        session_factory=SessionLocal,
        runner=runner,
        lookahead_minutes=app_settings.scheduler_lookahead_minutes,
        reload_interval_minutes=app_settings.scheduler_reload_interval_minutes,
        sweep_interval_minutes=app_settings.pending_sweep_interval_minutes,
        sweep_max_workers=app_settings.pending_sweep_max_workers,
    )
    app.state.report_scheduler = scheduler
    app.state.scheduler_lock_file = None

    if not report_renderer.registered_types():
        logger.warning("No report generators registered (set REPORT_GENERATORS_MODULE); scheduled runs will fail")

    if not app_settings.scheduler_enabled:
        logger.info("Report scheduler disabled by configuration")
        return

    if app_settings.scheduler_lock_file:
        lock_acquired, lock_file = _acquire_scheduler_lock(app_settings.scheduler_lock_file)
        if not lock_acquired:
            logger.info("Report scheduler already active in another process, skipping")
            return
        app.state.scheduler_lock_file = lock_file

    try:
        scheduler.start()
    except Exception as e:
        # Manual runs and the cron sweep script still work without timers
        logger.error(f"Could not start report scheduler: {e}", exc_info=True)
        _release_scheduler_lock(app.state.scheduler_lock_file)
        app.state.scheduler_lock_file = None


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    scheduler = getattr(app.state, "report_scheduler", None)
    if scheduler is not None:
        scheduler.shutdown()
    _release_scheduler_lock(getattr(app.state, "scheduler_lock_file", None))
    app.state.scheduler_lock_file = None
