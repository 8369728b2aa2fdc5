"""Process-wide wiring: one repository, deduplicator and rate gate shared by
the per-flow orchestrators, built once at startup."""

from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.orm import Session

from papertrail.config import Settings
from papertrail.logging_config import get_logger
from papertrail.schemas.session import FlowKind
from papertrail.services.completions import CompletionHandler, default_completion_handlers
from papertrail.services.deduplicator import Deduplicator, SqlDeduplicator
from papertrail.services.dispatcher import FlowDispatcher
from papertrail.services.flow_orchestrator import FlowOrchestrator
from papertrail.services.flows import FLOWS
from papertrail.services.outbound import OutboundPort
from papertrail.services.rate_gate import RateGate, SqlRateGate
from papertrail.services.session_repository import SessionRepository, SqlSessionRepository

logger = get_logger("engine")


@dataclass
class Engine:
    repository: SessionRepository
    deduplicator: Deduplicator
    rate_gate: RateGate
    dispatcher: FlowDispatcher

    def purge_expired(self, limit: int) -> dict[str, int]:
        """Physically drop expired sessions and dedup markers, up to limit each."""
        sessions = self.repository.purge_expired(limit)
        events = self.deduplicator.purge_expired(limit)
        if sessions or events:
            logger.info(
                "Purged expired records",
                extra={"context": {"sessions": sessions, "events": events}},
            )
        return {"sessions": sessions, "events": events}


def assemble(
    repository: SessionRepository,
    deduplicator: Deduplicator,
    rate_gate: RateGate,
    outbound: OutboundPort,
    completions: Optional[dict[FlowKind, CompletionHandler]] = None,
) -> Engine:
    completions = completions or default_completion_handlers()
    orchestrators = {
        kind: FlowOrchestrator(
            flow,
            repository=repository,
            deduplicator=deduplicator,
            outbound=outbound,
            completion=completions[kind],
            rate_gate=rate_gate if flow.quota_gated else None,
        )
        for kind, flow in FLOWS.items()
    }
    return Engine(
        repository=repository,
        deduplicator=deduplicator,
        rate_gate=rate_gate,
        dispatcher=FlowDispatcher(orchestrators, repository),
    )


def build_engine(settings: Settings, session_factory: Callable[[], Session], outbound: OutboundPort) -> Engine:
    return assemble(
        repository=SqlSessionRepository(session_factory, ttl=timedelta(minutes=settings.session_ttl_minutes)),
        deduplicator=SqlDeduplicator(session_factory, ttl=timedelta(hours=settings.dedup_ttl_hours)),
        rate_gate=SqlRateGate(
            session_factory,
            scope=FlowKind.REPORT.value,
            max_per_day=settings.report_max_per_day,
            tz=settings.rate_timezone,
        ),
        outbound=outbound,
        completions=default_completion_handlers(settings.rate_timezone),
    )
