from sqlalchemy import JSON, BigInteger, Column, Index, Integer, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import TIMESTAMP

from papertrail.database import Base


class FlowSession(Base):
    __tablename__ = "flow_sessions"

    id = Column(Text, primary_key=True)
    chat_id = Column(BigInteger, nullable=False)
    user_id = Column(BigInteger, nullable=False)
    flow_kind = Column(Text, nullable=False)  # document, report, onboarding
    status = Column(Text, nullable=False, default="active")  # active, completed, cancelled
    current_step = Column(Text, nullable=False)
    fields = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)
    expires_at = Column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        # at most one active session per (chat, user, flow)
        Index(
            "uq_flow_sessions_active_key",
            "chat_id",
            "user_id",
            "flow_kind",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("idx_flow_sessions_expires_at", "expires_at"),
    )
