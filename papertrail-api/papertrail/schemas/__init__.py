from papertrail.schemas.events import CallbackEvent, MessageEvent, StartEvent
from papertrail.schemas.session import FlowKind, SessionState, SessionStatus

__all__ = ["StartEvent", "MessageEvent", "CallbackEvent", "FlowKind", "SessionState", "SessionStatus"]
