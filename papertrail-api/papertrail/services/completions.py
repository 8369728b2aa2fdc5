"""Artifacts produced when a flow completes.

Rendering to PDF/Excel/CSV and writing to the tenant's sheet happen in
external workers; these handlers produce the summary the user receives.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from papertrail.schemas.session import FlowKind, SessionState
from papertrail.services.flows.document import summary as document_summary
from papertrail.services.flows.report import resolve_date_range


@dataclass(frozen=True)
class GeneratedArtifact:
    filename: str
    content: bytes
    caption: str
    mime_type: str = "text/plain"


class CompletionHandler(ABC):
    def __init__(self, tz: str = "UTC", clock: Optional[Callable[[], datetime]] = None):
        self._tz = ZoneInfo(tz)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def today(self):
        return self._clock().astimezone(self._tz).date()

    @abstractmethod
    def complete(self, session: SessionState) -> GeneratedArtifact:
        """Raise on failure; the session is then cancelled."""


class DocumentSummaryHandler(CompletionHandler):
    def complete(self, session: SessionState) -> GeneratedArtifact:
        fields = session.fields
        issued = self.today().isoformat()
        body = f"{document_summary(fields)}\nIssue date: {issued}\n"
        return GeneratedArtifact(
            filename=f"{fields.get('doc_type', 'document')}_{issued}.txt",
            content=body.encode("utf-8"),
            caption=f"Document for {fields.get('customer_name')} is ready.",
        )


class ReportSummaryHandler(CompletionHandler):
    def complete(self, session: SessionState) -> GeneratedArtifact:
        fields = session.fields
        start, end = resolve_date_range(fields, self.today())
        report_type = fields.get("report_type", "report")
        lines = [
            f"Report: {report_type}",
            f"Period: {start.isoformat()} - {end.isoformat()}",
            f"Format: {fields.get('format')}",
        ]
        return GeneratedArtifact(
            filename=f"{report_type}_{start.isoformat()}_{end.isoformat()}.txt",
            content=("\n".join(lines) + "\n").encode("utf-8"),
            caption=f"{report_type.capitalize()} report {start.isoformat()} - {end.isoformat()}",
        )


class OnboardingSummaryHandler(CompletionHandler):
    PROFILE_FIELDS = (
        "business_name",
        "owner_name",
        "owner_tax_id",
        "owner_phone",
        "owner_email",
        "address",
        "tax_status",
        "sheet_id",
        "counter_start",
        "language",
    )

    def complete(self, session: SessionState) -> GeneratedArtifact:
        fields = session.fields
        lines = [f"{name}: {fields.get(name)}" for name in self.PROFILE_FIELDS]
        lines.append(f"logo: {'yes' if fields.get('logo_file_id') else 'no'}")
        return GeneratedArtifact(
            filename="business_profile.txt",
            content=("\n".join(lines) + "\n").encode("utf-8"),
            caption=f"Welcome aboard, {fields.get('business_name')}!",
        )


def default_completion_handlers(tz: str = "UTC", clock=None) -> dict[FlowKind, CompletionHandler]:
    return {
        FlowKind.DOCUMENT: DocumentSummaryHandler(tz, clock),
        FlowKind.REPORT: ReportSummaryHandler(tz, clock),
        FlowKind.ONBOARDING: OnboardingSummaryHandler(tz, clock),
    }
