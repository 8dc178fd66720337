"""
Configuration management.
Loads from config_local.py (gitignored) for secrets, with defaults.
"""
from typing import Optional

# Try to import local config (gitignored)
try:
    from tfd_reports.config_local import (
        DATABASE_DSN,
        SESSION_COOKIE_NAME,
        SESSION_SECRET,
        SMTP_HOST,
        SMTP_PORT,
        SMTP_USE_TLS,
        SMTP_USE_SSL,
        SMTP_USERNAME,
        SMTP_PASSWORD,
        SMTP_FROM_EMAIL,
        SMTP_FROM_NAME,
    )
    # Scheduler tuning is optional in config_local
    try:
        from tfd_reports.config_local import (
            SCHEDULER_ENABLED,
            SCHEDULER_LOOKAHEAD_MINUTES,
            SCHEDULER_RELOAD_INTERVAL_MINUTES,
            PENDING_SWEEP_INTERVAL_MINUTES,
            PENDING_SWEEP_MAX_WORKERS,
            CORS_ORIGINS,
            SCHEDULER_LOCK_FILE,
        )
    except ImportError:
        SCHEDULER_ENABLED = True
        SCHEDULER_LOOKAHEAD_MINUTES = 60  # Arm timers for schedules due within the next hour
        SCHEDULER_RELOAD_INTERVAL_MINUTES = 5
        PENDING_SWEEP_INTERVAL_MINUTES = 5
        PENDING_SWEEP_MAX_WORKERS = 1  # 1 = run due schedules sequentially
        CORS_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]
        SCHEDULER_LOCK_FILE = "/tmp/tfd-reports-scheduler.lock"  # Only one worker process runs timers
    try:
        from tfd_reports.config_local import REPORT_GENERATORS_MODULE
    except ImportError:
        REPORT_GENERATORS_MODULE = None  # Module exposing register_report_generators(renderer)
except ImportError:
    # Fallback defaults (SMTP delivery will fail at runtime if not set)
    DATABASE_DSN: str = "sqlite:///./tfd_reports.db"
    SESSION_COOKIE_NAME: str = "tfd_session"
    SESSION_SECRET: Optional[str] = None
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 465
    SMTP_USE_TLS: bool = False
    SMTP_USE_SSL: bool = True
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM_EMAIL: Optional[str] = None
    SMTP_FROM_NAME: str = "TFD360"
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_LOOKAHEAD_MINUTES: int = 60
    SCHEDULER_RELOAD_INTERVAL_MINUTES: int = 5
    PENDING_SWEEP_INTERVAL_MINUTES: int = 5
    PENDING_SWEEP_MAX_WORKERS: int = 1
    CORS_ORIGINS: list = ["http://localhost:3000", "http://127.0.0.1:3000"]
    SCHEDULER_LOCK_FILE: Optional[str] = "/tmp/tfd-reports-scheduler.lock"
    REPORT_GENERATORS_MODULE: Optional[str] = None


def get_settings():
    """Return settings object (for FastAPI dependency injection if needed)."""
    return type("Settings", (), {
        "database_dsn": DATABASE_DSN,
        "session_cookie_name": SESSION_COOKIE_NAME,
        "session_secret": SESSION_SECRET,
        "smtp_host": SMTP_HOST,
        "smtp_port": SMTP_PORT,
        "smtp_use_tls": SMTP_USE_TLS,
        "smtp_use_ssl": SMTP_USE_SSL,
        "smtp_username": SMTP_USERNAME,
        "smtp_password": SMTP_PASSWORD,
        "smtp_from_email": SMTP_FROM_EMAIL,
        "smtp_from_name": SMTP_FROM_NAME,
        "scheduler_enabled": SCHEDULER_ENABLED,
        "scheduler_lookahead_minutes": SCHEDULER_LOOKAHEAD_MINUTES,
        "scheduler_reload_interval_minutes": SCHEDULER_RELOAD_INTERVAL_MINUTES,
        "pending_sweep_interval_minutes": PENDING_SWEEP_INTERVAL_MINUTES,
        "pending_sweep_max_workers": PENDING_SWEEP_MAX_WORKERS,
        "cors_origins": CORS_ORIGINS,
        "scheduler_lock_file": SCHEDULER_LOCK_FILE,
        "report_generators_module": REPORT_GENERATORS_MODULE,
    })()
