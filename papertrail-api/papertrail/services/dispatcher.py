from typing import Optional

from papertrail.logging_config import get_logger
from papertrail.schemas.events import CallbackEvent, MessageEvent, StartEvent
from papertrail.schemas.session import FINALIZING_STEP, FlowKind, SessionState
from papertrail.services.flow_orchestrator import FlowOrchestrator, Outcome
from papertrail.services.session_repository import SessionRepository
from papertrail.services.step_machine import is_cancel

logger = get_logger("dispatcher")


class FlowDispatcher:
    """Routes inbound events to the orchestrator of the flow they belong to."""

    def __init__(self, orchestrators: dict[FlowKind, FlowOrchestrator], repository: SessionRepository):
        self.orchestrators = orchestrators
        self.repository = repository

    def dispatch(self, event) -> Optional[Outcome]:
        """Outcome of the handling orchestrator, or None when nothing wants the event."""
        if isinstance(event, (StartEvent, CallbackEvent)):
            return self.orchestrators[event.flow_kind].handle(event)
        if isinstance(event, MessageEvent):
            return self._dispatch_message(event)
        raise TypeError(f"Unsupported event type: {type(event).__name__}")

    def _dispatch_message(self, event: MessageEvent) -> Optional[Outcome]:
        if event.flow_kind is not None:
            return self.orchestrators[event.flow_kind].handle(event)

        session = self._route(event)
        if session is None:
            logger.debug(
                "Message without a live session ignored",
                extra={"context": {"chat_id": event.chat_id, "user_id": event.user_id}},
            )
            return None
        routed = event.model_copy(update={"flow_kind": session.flow_kind})
        return self.orchestrators[session.flow_kind].handle(routed)

    def _route(self, event: MessageEvent) -> Optional[SessionState]:
        # list_active is ordered most recently updated first
        for session in self.repository.list_active(event.chat_id, event.user_id):
            if session.current_step == FINALIZING_STEP or session.flow_kind not in self.orchestrators:
                continue
            if is_cancel(event):
                return session
            flow = self.orchestrators[session.flow_kind].flow
            if flow.has_step(session.current_step) and flow.step(session.current_step).accepts_messages:
                return session
        return None
