"""Persistence of flow sessions.

Every mutating call is a single conditional statement; a caller that read a
session and wants to move it on passes the step it read, and the store refuses
the write when the row no longer matches.
"""

from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from papertrail.database import store_transaction
from papertrail.logging_config import get_logger
from papertrail.models import FlowSession
from papertrail.schemas.session import FlowKind, SessionMutation, SessionState, SessionStatus
from papertrail.services.errors import AlreadyActive, StepMismatch

logger = get_logger("session_repository")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionRepository(ABC):
    def __init__(self, ttl: timedelta, clock: Optional[Clock] = None):
        self.ttl = ttl
        self._clock = clock or utc_now

    def now(self) -> datetime:
        return self._clock()

    @abstractmethod
    def create(
        self,
        chat_id: int,
        user_id: int,
        flow_kind: FlowKind,
        initial_step: str,
        fields: Optional[dict[str, Any]] = None,
    ) -> SessionState:
        """Insert a new active session. Raises AlreadyActive on a live duplicate."""

    @abstractmethod
    def get_active(self, chat_id: int, user_id: int, flow_kind: FlowKind) -> Optional[SessionState]:
        pass

    @abstractmethod
    def get(self, session_id: str) -> Optional[SessionState]:
        pass

    @abstractmethod
    def list_active(self, chat_id: int, user_id: int) -> list[SessionState]:
        """Live sessions of every flow for (chat, user), most recently updated first."""

    @abstractmethod
    def update(
        self,
        session_id: str,
        expected_step: str,
        mutation: SessionMutation,
        expected_version: Optional[int] = None,
    ) -> SessionState:
        """Apply mutation iff the row is live and still at expected_step. Raises StepMismatch."""

    @abstractmethod
    def complete(self, session_id: str) -> None:
        pass

    @abstractmethod
    def cancel(self, session_id: str) -> None:
        pass

    @abstractmethod
    def purge_expired(self, limit: int) -> int:
        pass


class SqlSessionRepository(SessionRepository):
    def __init__(self, session_factory: Callable[[], Session], ttl: timedelta, clock: Optional[Clock] = None):
        super().__init__(ttl, clock)
        self._session_factory = session_factory

    def _transaction(self):
        return store_transaction(self._session_factory, "session")

    def create(self, chat_id, user_id, flow_kind, initial_step, fields=None) -> SessionState:
        kind = FlowKind(flow_kind)
        now = self.now()
        row = FlowSession(
            id=uuid.uuid4().hex,
            chat_id=chat_id,
            user_id=user_id,
            flow_kind=kind.value,
            status=SessionStatus.ACTIVE.value,
            current_step=initial_step,
            fields=dict(fields or {}),
            version=0,
            created_at=now,
            updated_at=now,
            expires_at=now + self.ttl,
        )
        try:
            with self._transaction() as db:
                # an idle active row still holds the unique slot; retire it first
                db.execute(
                    update(FlowSession)
                    .where(
                        FlowSession.chat_id == chat_id,
                        FlowSession.user_id == user_id,
                        FlowSession.flow_kind == kind.value,
                        FlowSession.status == SessionStatus.ACTIVE.value,
                        FlowSession.expires_at <= now,
                    )
                    .values(status=SessionStatus.CANCELLED.value, updated_at=now, expires_at=now)
                )
                db.add(row)
                db.flush()
        except IntegrityError as e:
            raise AlreadyActive(chat_id, user_id, kind.value) from e
        return SessionState.from_row(row)

    def get_active(self, chat_id, user_id, flow_kind) -> Optional[SessionState]:
        now = self.now()
        with self._transaction() as db:
            row = db.execute(
                select(FlowSession).where(
                    FlowSession.chat_id == chat_id,
                    FlowSession.user_id == user_id,
                    FlowSession.flow_kind == FlowKind(flow_kind).value,
                    FlowSession.status == SessionStatus.ACTIVE.value,
                    FlowSession.expires_at > now,
                )
            ).scalar_one_or_none()
            return SessionState.from_row(row) if row else None

    def get(self, session_id) -> Optional[SessionState]:
        now = self.now()
        with self._transaction() as db:
            row = db.execute(
                select(FlowSession).where(FlowSession.id == session_id, FlowSession.expires_at > now)
            ).scalar_one_or_none()
            return SessionState.from_row(row) if row else None

    def list_active(self, chat_id, user_id) -> list[SessionState]:
        now = self.now()
        with self._transaction() as db:
            rows = (
                db.execute(
                    select(FlowSession)
                    .where(
                        FlowSession.chat_id == chat_id,
                        FlowSession.user_id == user_id,
                        FlowSession.status == SessionStatus.ACTIVE.value,
                        FlowSession.expires_at > now,
                    )
                    .order_by(FlowSession.updated_at.desc())
                )
                .scalars()
                .all()
            )
            return [SessionState.from_row(row) for row in rows]

    def update(self, session_id, expected_step, mutation, expected_version=None) -> SessionState:
        now = self.now()
        with self._transaction() as db:
            current = db.execute(
                select(FlowSession.fields, FlowSession.version).where(FlowSession.id == session_id)
            ).one_or_none()
            if current is None:
                raise StepMismatch(session_id, expected_step)
            read_fields, read_version = current
            if expected_version is not None and expected_version != read_version:
                raise StepMismatch(session_id, expected_step)

            values: dict[str, Any] = {
                "fields": {**(read_fields or {}), **mutation.fields},
                "version": read_version + 1,
                "updated_at": now,
                "expires_at": now + self.ttl,
            }
            if mutation.step is not None:
                values["current_step"] = mutation.step

            # fields were merged from the read above; the version guard pins them
            result = db.execute(
                update(FlowSession)
                .where(
                    FlowSession.id == session_id,
                    FlowSession.status == SessionStatus.ACTIVE.value,
                    FlowSession.current_step == expected_step,
                    FlowSession.version == read_version,
                    FlowSession.expires_at > now,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StepMismatch(session_id, expected_step)

            row = db.get(FlowSession, session_id, populate_existing=True)
            return SessionState.from_row(row)

    def complete(self, session_id) -> None:
        self._finish(session_id, SessionStatus.COMPLETED)

    def cancel(self, session_id) -> None:
        self._finish(session_id, SessionStatus.CANCELLED)

    def _finish(self, session_id: str, status: SessionStatus) -> None:
        now = self.now()
        with self._transaction() as db:
            result = db.execute(
                update(FlowSession)
                .where(FlowSession.id == session_id, FlowSession.status == SessionStatus.ACTIVE.value)
                .values(status=status.value, updated_at=now, expires_at=now)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.info(
                "Session finished",
                extra={"context": {"session_id": session_id, "status": status.value}},
            )

    def purge_expired(self, limit) -> int:
        now = self.now()
        with self._transaction() as db:
            ids = (
                db.execute(
                    select(FlowSession.id)
                    .where(FlowSession.expires_at <= now)
                    .order_by(FlowSession.expires_at)
                    .limit(limit)
                )
                .scalars()
                .all()
            )
            if not ids:
                return 0
            result = db.execute(
                delete(FlowSession)
                .where(FlowSession.id.in_(ids), FlowSession.expires_at <= now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount


class InMemorySessionRepository(SessionRepository):
    """Thread-safe process-local store with the same semantics as the SQL one."""

    def __init__(self, ttl: timedelta, clock: Optional[Clock] = None):
        super().__init__(ttl, clock)
        self._rows: dict[str, SessionState] = {}
        self._lock = threading.Lock()

    def _live(self, state: SessionState, now: datetime) -> bool:
        return state.is_live(now)

    def create(self, chat_id, user_id, flow_kind, initial_step, fields=None) -> SessionState:
        kind = FlowKind(flow_kind)
        now = self.now()
        with self._lock:
            for sid, state in list(self._rows.items()):
                if (state.chat_id, state.user_id, state.flow_kind) != (chat_id, user_id, kind):
                    continue
                if state.status != SessionStatus.ACTIVE:
                    continue
                if state.expires_at > now:
                    raise AlreadyActive(chat_id, user_id, kind.value)
                self._rows[sid] = state.model_copy(
                    update={"status": SessionStatus.CANCELLED, "updated_at": now, "expires_at": now}
                )
            state = SessionState(
                session_id=uuid.uuid4().hex,
                chat_id=chat_id,
                user_id=user_id,
                flow_kind=kind,
                status=SessionStatus.ACTIVE,
                current_step=initial_step,
                fields=dict(fields or {}),
                version=0,
                created_at=now,
                updated_at=now,
                expires_at=now + self.ttl,
            )
            self._rows[state.session_id] = state
            return state

    def get_active(self, chat_id, user_id, flow_kind) -> Optional[SessionState]:
        kind = FlowKind(flow_kind)
        now = self.now()
        with self._lock:
            for state in self._rows.values():
                if (state.chat_id, state.user_id, state.flow_kind) == (chat_id, user_id, kind) and self._live(
                    state, now
                ):
                    return state
        return None

    def get(self, session_id) -> Optional[SessionState]:
        now = self.now()
        with self._lock:
            state = self._rows.get(session_id)
        if state is None or state.expires_at <= now:
            return None
        return state

    def list_active(self, chat_id, user_id) -> list[SessionState]:
        now = self.now()
        with self._lock:
            live = [
                s
                for s in self._rows.values()
                if s.chat_id == chat_id and s.user_id == user_id and self._live(s, now)
            ]
        return sorted(live, key=lambda s: s.updated_at, reverse=True)

    def update(self, session_id, expected_step, mutation, expected_version=None) -> SessionState:
        now = self.now()
        with self._lock:
            state = self._rows.get(session_id)
            if (
                state is None
                or not self._live(state, now)
                or state.current_step != expected_step
                or (expected_version is not None and state.version != expected_version)
            ):
                raise StepMismatch(session_id, expected_step)
            updated = state.model_copy(
                update={
                    "fields": {**state.fields, **mutation.fields},
                    "current_step": mutation.step if mutation.step is not None else state.current_step,
                    "version": state.version + 1,
                    "updated_at": now,
                    "expires_at": now + self.ttl,
                }
            )
            self._rows[session_id] = updated
            return updated

    def complete(self, session_id) -> None:
        self._finish(session_id, SessionStatus.COMPLETED)

    def cancel(self, session_id) -> None:
        self._finish(session_id, SessionStatus.CANCELLED)

    def _finish(self, session_id: str, status: SessionStatus) -> None:
        now = self.now()
        with self._lock:
            state = self._rows.get(session_id)
            if state is None or state.status != SessionStatus.ACTIVE:
                return
            self._rows[session_id] = state.model_copy(
                update={"status": status, "updated_at": now, "expires_at": now}
            )

    def purge_expired(self, limit) -> int:
        now = self.now()
        with self._lock:
            expired = sorted(
                (s for s in self._rows.values() if s.expires_at <= now), key=lambda s: s.expires_at
            )[:limit]
            for state in expired:
                del self._rows[state.session_id]
        return len(expired)
