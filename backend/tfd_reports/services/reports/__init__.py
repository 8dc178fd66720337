"""
Report rendering and delivery contracts.
"""
from tfd_reports.services.reports.base import (
    ReportRenderer,
    ReportMailer,
    RegistryReportRenderer,
    RenderedReport,
    load_report_generators,
    ReportAttachment,
    content_type_for,
    file_extension_for,
)

__all__ = [
    "ReportRenderer",
    "ReportMailer",
    "RegistryReportRenderer",
    "load_report_generators",
    "RenderedReport",
    "ReportAttachment",
    "content_type_for",
    "file_extension_for",
]
