"""
Collaborator contracts for report execution: rendering and mail delivery.
"""
import importlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List
from tfd_reports.core.errors import ReportGenerationError
from tfd_reports.models.report_schedule import OutputFormat

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    OutputFormat.PDF.value: "application/pdf",
    OutputFormat.EXCEL.value: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    OutputFormat.CSV.value: "text/csv",
}

FILE_EXTENSIONS = {
    OutputFormat.PDF.value: "pdf",
    OutputFormat.EXCEL.value: "xlsx",
    OutputFormat.CSV.value: "csv",
}


def content_type_for(output_format: str) -> str:
    return CONTENT_TYPES.get(output_format, CONTENT_TYPES[OutputFormat.PDF.value])


def file_extension_for(output_format: str) -> str:
    return FILE_EXTENSIONS.get(output_format, FILE_EXTENSIONS[OutputFormat.PDF.value])


@dataclass
class RenderedReport:
    """Output of a report renderer."""
    content: bytes
    content_type: str


@dataclass
class ReportAttachment:
    """A rendered report ready to be attached to an email."""
    filename: str
    content: bytes
    content_type: str


class ReportRenderer(ABC):
    """Abstract base class for report renderers."""

    @abstractmethod
    def generate(
        self,
        report_type: str,
        parameters: Dict[str, Any],
        output_format: str
    ) -> RenderedReport:
        """
        Generate a report.

        Args:
            report_type: Report kind (e.g. "users", "tfd_requests")
            parameters: Opaque parameters stored on the schedule
            output_format: "pdf", "excel" or "csv"

        Returns:
            RenderedReport with the payload bytes and its content type

        Raises:
            Exception: If the report cannot be generated
        """
        pass


class ReportMailer(ABC):
    """Abstract base class for report delivery."""

    @abstractmethod
    def send(
        self,
        recipients: List[str],
        subject: str,
        body: str,
        attachment: ReportAttachment
    ) -> bool:
        """
        Deliver a report to every recipient.

        Returns:
            True if the message was accepted for delivery, False otherwise
        """
        pass


ReportGenerator = Callable[[Dict[str, Any], str], RenderedReport]


class RegistryReportRenderer(ReportRenderer):
    """Dispatches to a generator function registered per report type."""

    def __init__(self):
        self._generators: Dict[str, ReportGenerator] = {}

    def register(self, report_type: str, generator: ReportGenerator) -> None:
        self._generators[getattr(report_type, "value", report_type)] = generator

    def registered_types(self) -> List[str]:
        return sorted(self._generators)

    def generate(self, report_type, parameters, output_format) -> RenderedReport:
        generator = self._generators.get(report_type)
        if generator is None:
            raise ReportGenerationError(f"No generator registered for report type: {report_type}")
        return generator(parameters or {}, output_format)


def load_report_generators(renderer: RegistryReportRenderer, module_path: str) -> List[str]:
    """
    Import a deployment's generator module and let it register its generators.

    The module must define `register_report_generators(renderer)`. Returns the
    report types registered afterwards.
    """
    module = importlib.import_module(module_path)
    register = getattr(module, "register_report_generators", None)
    if not callable(register):
        raise ImportError(f"{module_path} does not define register_report_generators(renderer)")
    register(renderer)
    registered = renderer.registered_types()
    logger.info(f"Loaded report generators from {module_path}: {', '.join(registered) or 'none'}")
    return registered
