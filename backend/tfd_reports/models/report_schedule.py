"""
Report schedule model for automated report generation and delivery.
"""
from sqlalchemy import Column, Integer, String, JSON, DateTime, Boolean, ForeignKey, Text, Index, func
from sqlalchemy.orm import relationship
import enum
from tfd_reports.core.database import Base


class ReportType(str, enum.Enum):
    USERS = "users"
    MUNICIPALITIES = "municipalities"
    TFD_REQUESTS = "tfd_requests"
    ACCESS_LOGS = "access_logs"


class Recurrence(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ON_DEMAND = "on_demand"


class OutputFormat(str, enum.Enum):
    PDF = "pdf"
    EXCEL = "excel"
    CSV = "csv"


class RunStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class ReportSchedule(Base):
    """Represents a recurring (or on-demand) report generation job."""

    __tablename__ = "report_schedules"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    report_type = Column(String(30), nullable=False, index=True)
    # Passed through untouched to the report renderer
    parameters = Column(JSON, nullable=False, default=dict)

    # Recurrence: 'daily', 'weekly', 'monthly', 'on_demand'
    recurrence = Column(String(20), nullable=False, index=True)
    weekday = Column(Integer, nullable=True)  # 0-6, Sunday=0 (weekly only)
    day_of_month = Column(Integer, nullable=True)  # 1-31 (monthly only)
    time_of_day = Column(String(5), nullable=True)  # HH:MM local time

    output_format = Column(String(10), nullable=False, default=OutputFormat.PDF.value)
    recipients = Column(JSON, nullable=False, default=list)

    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Ownership only; deleting the user keeps the schedule
    created_by = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True)

    # Execution tracking (naive local wall-clock time)
    last_run_at = Column(DateTime, nullable=True)
    next_run_at = Column(DateTime, nullable=True)
    last_run_status = Column(String(20), nullable=True)
    last_run_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    creator = relationship("User", foreign_keys=[created_by])

    __table_args__ = (
        Index("ix_report_schedules_due", "is_active", "next_run_at"),
    )

    @property
    def is_recurring(self) -> bool:
        return self.recurrence != Recurrence.ON_DEMAND.value

    def __repr__(self) -> str:
        return f"<ReportSchedule id={self.id} name={self.name!r} recurrence={self.recurrence}>"
