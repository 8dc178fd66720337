import pytest
from datetime import datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tfd_reports.core.database import Base
from tfd_reports.models import User
from tfd_reports.services.reports import ReportMailer, ReportRenderer, RenderedReport, content_type_for
from tfd_reports.services.scheduler import ReportExecutionRunner, ReportScheduler, schedule_store


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime):
        self.now = now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeRenderer(ReportRenderer):
    """Records every generate() call; raises for report types listed in `failing`."""

    def __init__(self):
        self.calls = []
        self.failing = set()
        self.on_generate = None

    def generate(self, report_type, parameters, output_format):
        self.calls.append((report_type, parameters, output_format))
        if self.on_generate is not None:
            self.on_generate(report_type, parameters, output_format)
        if report_type in self.failing:
            raise RuntimeError(f"database unavailable while building {report_type}")
        return RenderedReport(content=b"report-bytes", content_type=content_type_for(output_format))


class FakeMailer(ReportMailer):
    """Records deliveries; `result` controls what send() returns."""

    def __init__(self):
        self.sent = []
        self.result = True

    def send(self, recipients, subject, body, attachment):
        self.sent.append({
            "recipients": list(recipients),
            "subject": subject,
            "body": body,
            "attachment": attachment,
        })
        return self.result


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    # Friday
    return FixedClock(datetime(2024, 3, 1, 7, 0, 0))


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def runner(session_factory, renderer, mailer, clock):
    return ReportExecutionRunner(
        session_factory=session_factory,
        renderer=renderer,
        mailer=mailer,
        clock=clock,
    )


@pytest.fixture
def background_scheduler():
    """Started paused: jobs are stored and can be inspected but never fire."""
    scheduler = BackgroundScheduler()
    scheduler.start(paused=True)
    yield scheduler
    if scheduler.running:
        scheduler.shutdown(wait=False)


@pytest.fixture
def report_scheduler(session_factory, runner, background_scheduler, clock):
    return ReportScheduler(
        session_factory=session_factory,
        runner=runner,
        scheduler=background_scheduler,
        lookahead_minutes=60,
        clock=clock,
    )


@pytest.fixture
def user(db):
    user = User(
        email="gestor@saude.example.gov.br",
        hashed_password="not-used",
        full_name="Gestora TFD",
        is_active=True,
        role="user",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin_user(db):
    admin = User(
        email="admin@saude.example.gov.br",
        hashed_password="not-used",
        full_name="Admin",
        is_active=True,
        role="admin",
    )
    db.add(admin)
    db.commit()
    db.refresh(admin)
    return admin


@pytest.fixture
def make_schedule(db, user, clock):
    """Create a schedule through the store with sensible defaults."""
    def _make(**overrides):
        data = {
            "name": "Solicitações do dia",
            "report_type": "tfd_requests",
            "recurrence": "daily",
            "time_of_day": "08:00",
        }
        data.update(overrides)
        now = data.pop("now", clock())
        return schedule_store.create_schedule(db, data, owner_id=user.id, now=now)
    return _make
