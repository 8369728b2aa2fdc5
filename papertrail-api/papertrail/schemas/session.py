from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from papertrail.database import ensure_utc

# Reserved step a session sits on between winning its terminal transition
# and being completed or cancelled.
FINALIZING_STEP = "finalizing"


class FlowKind(str, Enum):
    DOCUMENT = "document"
    REPORT = "report"
    ONBOARDING = "onboarding"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SessionState(BaseModel):
    """Detached snapshot of a stored session."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    chat_id: int
    user_id: int
    flow_kind: FlowKind
    status: SessionStatus
    current_step: str
    fields: dict[str, Any] = {}
    version: int = 0
    created_at: datetime
    updated_at: datetime
    expires_at: datetime

    @classmethod
    def from_row(cls, row) -> "SessionState":
        return cls(
            session_id=row.id,
            chat_id=row.chat_id,
            user_id=row.user_id,
            flow_kind=FlowKind(row.flow_kind),
            status=SessionStatus(row.status),
            current_step=row.current_step,
            fields=dict(row.fields or {}),
            version=row.version or 0,
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
            expires_at=ensure_utc(row.expires_at),
        )

    def is_live(self, now: datetime) -> bool:
        return self.status == SessionStatus.ACTIVE and self.expires_at > now


@dataclass
class SessionMutation:
    fields: dict[str, Any] = field(default_factory=dict)
    step: Optional[str] = None
