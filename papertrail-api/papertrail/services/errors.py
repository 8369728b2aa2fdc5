from datetime import datetime
from typing import Optional


class FlowError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AlreadyActive(FlowError):
    """An active session already exists for (chat, user, flow)."""

    def __init__(self, chat_id: int, user_id: int, flow_kind: str):
        self.chat_id = chat_id
        self.user_id = user_id
        self.flow_kind = flow_kind
        super().__init__(f"Active {flow_kind} session already exists for chat={chat_id} user={user_id}")


class StepMismatch(FlowError):
    """Conditional update lost: the session moved on, ended or expired."""

    def __init__(self, session_id: str, expected_step: str):
        self.session_id = session_id
        self.expected_step = expected_step
        super().__init__(f"Session {session_id} is no longer at step '{expected_step}'")


class ValidationError(FlowError):
    """Payload rejected by a step; the user gets a re-prompt."""

    def __init__(self, message: str, code: str = "validation_error"):
        self.code = code
        super().__init__(message)


class RateLimited(FlowError):
    def __init__(self, chat_id: int, reset_at: Optional[datetime]):
        self.chat_id = chat_id
        self.reset_at = reset_at
        super().__init__(f"Daily quota exhausted for chat={chat_id}, resets at {reset_at}")


class StorageUnavailable(FlowError):
    """Backing store failed. Retryable by the transport."""


class GenerationFailure(FlowError):
    """Downstream artifact creation failed."""


class InvalidTransitionError(FlowError):
    """A flow definition tried to take an edge or write a field it does not own."""

    def __init__(self, from_step: str, to_step: str | None, reason: str = ""):
        self.from_step = from_step
        self.to_step = to_step
        detail = f": {reason}" if reason else ""
        super().__init__(f"Invalid transition {from_step} -> {to_step}{detail}")
