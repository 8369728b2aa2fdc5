from sqlalchemy import Column, Index, Text
from sqlalchemy.types import TIMESTAMP

from papertrail.database import Base


class ProcessedEvent(Base):
    __tablename__ = "processed_events"

    event_id = Column(Text, primary_key=True)  # telegram update_id
    processed_at = Column(TIMESTAMP(timezone=True), nullable=False)
    expires_at = Column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (Index("idx_processed_events_expires_at", "expires_at"),)
