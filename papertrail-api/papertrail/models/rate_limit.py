from sqlalchemy import BigInteger, Column, Integer, PrimaryKeyConstraint, Text
from sqlalchemy.types import TIMESTAMP

from papertrail.database import Base


class RateLimit(Base):
    __tablename__ = "rate_limits"

    scope = Column(Text, nullable=False)  # gated flow, e.g. "report"
    chat_id = Column(BigInteger, nullable=False)
    date = Column(Text, nullable=False)  # YYYY-MM-DD in the gate's timezone
    count = Column(Integer, nullable=False, default=0)
    reset_at = Column(TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (PrimaryKeyConstraint("scope", "chat_id"),)
