from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import case, select
from sqlalchemy.orm import Session

from papertrail.database import dialect_insert, ensure_utc, store_transaction
from papertrail.logging_config import get_logger
from papertrail.models import RateLimit

logger = get_logger("rate_gate")


@dataclass(frozen=True)
class RateCheck:
    allowed: bool
    remaining: int
    reset_at: datetime


@dataclass(frozen=True)
class RateRecord:
    date: str
    count: int


class RateGate(ABC):
    """Daily quota per chat for one scope, reset at local midnight.

    check() and record() are separate calls: the caller checks before the
    expensive action and records only after it succeeded.
    """

    def __init__(
        self,
        scope: str,
        max_per_day: int,
        tz: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.scope = scope
        self.max_per_day = max_per_day
        self._tz = ZoneInfo(tz)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def local_date(self, now: datetime) -> str:
        return now.astimezone(self._tz).date().isoformat()

    def next_reset(self, now: datetime) -> datetime:
        tomorrow = now.astimezone(self._tz).date() + timedelta(days=1)
        return datetime.combine(tomorrow, time.min, tzinfo=self._tz)

    def check(self, chat_id: int) -> RateCheck:
        now = self._clock()
        reset_at = self.next_reset(now)
        record = self._load(chat_id)
        if record is None or record.date != self.local_date(now):
            return RateCheck(allowed=True, remaining=self.max_per_day - 1, reset_at=reset_at)

        allowed = record.count < self.max_per_day
        remaining = self.max_per_day - record.count - 1 if allowed else 0
        return RateCheck(allowed=allowed, remaining=remaining, reset_at=reset_at)

    def record(self, chat_id: int) -> None:
        now = self._clock()
        self._upsert(chat_id, self.local_date(now), self.next_reset(now))
        logger.info(
            "Quota use recorded",
            extra={"context": {"scope": self.scope, "chat_id": chat_id}},
        )

    @abstractmethod
    def _load(self, chat_id: int) -> Optional[RateRecord]:
        pass

    @abstractmethod
    def _upsert(self, chat_id: int, today: str, reset_at: datetime) -> None:
        """count=1 on a new or stale-dated record, else count+1 capped at max."""


class SqlRateGate(RateGate):
    def __init__(self, session_factory: Callable[[], Session], scope, max_per_day, tz="UTC", clock=None):
        super().__init__(scope, max_per_day, tz, clock)
        self._session_factory = session_factory

    def _load(self, chat_id) -> Optional[RateRecord]:
        with store_transaction(self._session_factory, "rate") as db:
            row = db.execute(
                select(RateLimit.date, RateLimit.count).where(
                    RateLimit.scope == self.scope, RateLimit.chat_id == chat_id
                )
            ).one_or_none()
        if row is None:
            return None
        return RateRecord(date=row.date, count=row.count)

    def _upsert(self, chat_id, today, reset_at) -> None:
        reset_utc = ensure_utc(reset_at).astimezone(timezone.utc)
        with store_transaction(self._session_factory, "rate") as db:
            stmt = dialect_insert(db, RateLimit).values(
                scope=self.scope, chat_id=chat_id, date=today, count=1, reset_at=reset_utc
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["scope", "chat_id"],
                set_={
                    "date": today,
                    "count": case(
                        (RateLimit.date != today, 1),
                        (RateLimit.count >= self.max_per_day, self.max_per_day),
                        else_=RateLimit.count + 1,
                    ),
                    "reset_at": reset_utc,
                },
            )
            db.execute(stmt)


class InMemoryRateGate(RateGate):
    def __init__(self, scope, max_per_day, tz="UTC", clock=None):
        super().__init__(scope, max_per_day, tz, clock)
        self._records: dict[int, RateRecord] = {}
        self._lock = threading.Lock()

    def _load(self, chat_id) -> Optional[RateRecord]:
        with self._lock:
            return self._records.get(chat_id)

    def _upsert(self, chat_id, today, reset_at) -> None:
        with self._lock:
            current = self._records.get(chat_id)
            if current is None or current.date != today:
                count = 1
            else:
                count = min(current.count + 1, self.max_per_day)
            self._records[chat_id] = RateRecord(date=today, count=count)
