from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from papertrail.database import dialect_insert, store_transaction
from papertrail.logging_config import get_logger
from papertrail.models import ProcessedEvent
from papertrail.services.errors import StorageUnavailable

logger = get_logger("deduplicator")


class ClaimResult(str, Enum):
    ACCEPTED = "accepted"
    ALREADY_PROCESSED = "already_processed"


class Deduplicator(ABC):
    """At-most-once processing for inbound event ids.

    The marker is written before the event is handled. When the store is down
    the claim fails open and the event is processed.
    """

    def __init__(self, ttl: timedelta, clock: Optional[Callable[[], datetime]] = None):
        self.ttl = ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def claim(self, event_id: str) -> ClaimResult:
        now = self._clock()
        try:
            inserted = self._insert_if_absent(event_id, now, now + self.ttl)
        except StorageUnavailable as e:
            logger.warning(
                "Dedup store unavailable, accepting event",
                extra={"context": {"event_id": event_id, "error": e.message}},
            )
            return ClaimResult.ACCEPTED
        if not inserted:
            logger.info("Duplicate event dropped", extra={"context": {"event_id": event_id}})
            return ClaimResult.ALREADY_PROCESSED
        return ClaimResult.ACCEPTED

    @abstractmethod
    def _insert_if_absent(self, event_id: str, now: datetime, expires_at: datetime) -> bool:
        """True if this call created (or reclaimed an expired) marker."""

    @abstractmethod
    def purge_expired(self, limit: int) -> int:
        pass


class SqlDeduplicator(Deduplicator):
    def __init__(self, session_factory: Callable[[], Session], ttl: timedelta, clock=None):
        super().__init__(ttl, clock)
        self._session_factory = session_factory

    def _insert_if_absent(self, event_id, now, expires_at) -> bool:
        with store_transaction(self._session_factory, "dedup") as db:
            stmt = dialect_insert(db, ProcessedEvent).values(
                event_id=event_id, processed_at=now, expires_at=expires_at
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["event_id"],
                set_={"processed_at": now, "expires_at": expires_at},
                where=ProcessedEvent.expires_at <= now,
            )
            result = db.execute(stmt)
            return result.rowcount > 0

    def purge_expired(self, limit) -> int:
        now = self._clock()
        with store_transaction(self._session_factory, "dedup") as db:
            ids = (
                db.execute(
                    select(ProcessedEvent.event_id).where(ProcessedEvent.expires_at <= now).limit(limit)
                )
                .scalars()
                .all()
            )
            if not ids:
                return 0
            result = db.execute(
                delete(ProcessedEvent)
                .where(ProcessedEvent.event_id.in_(ids))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount


class InMemoryDeduplicator(Deduplicator):
    def __init__(self, ttl: timedelta, clock=None):
        super().__init__(ttl, clock)
        self._markers: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def _insert_if_absent(self, event_id, now, expires_at) -> bool:
        with self._lock:
            current = self._markers.get(event_id)
            if current is not None and current > now:
                return False
            self._markers[event_id] = expires_at
            return True

    def purge_expired(self, limit) -> int:
        now = self._clock()
        with self._lock:
            expired = [eid for eid, exp in self._markers.items() if exp <= now][:limit]
            for eid in expired:
                del self._markers[eid]
        return len(expired)
