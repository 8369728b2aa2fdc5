import os
import threading
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import papertrail.models  # noqa: E402,F401
from papertrail.database import Base  # noqa: E402
from papertrail.services.completions import default_completion_handlers  # noqa: E402
from papertrail.services.deduplicator import InMemoryDeduplicator  # noqa: E402
from papertrail.services.engine import assemble  # noqa: E402
from papertrail.services.outbound import OutboundPort  # noqa: E402
from papertrail.services.rate_gate import InMemoryRateGate  # noqa: E402
from papertrail.services.session_repository import InMemorySessionRepository  # noqa: E402

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingOutbound(OutboundPort):
    """Collects every outbound call as (method, kwargs)."""

    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def _record(self, method, **kwargs):
        with self._lock:
            self.calls.append((method, kwargs))

    def named(self, method):
        return [kwargs for name, kwargs in self.calls if name == method]

    def methods(self):
        return [name for name, _ in self.calls]

    def send_prompt(self, chat_id, flow_kind, step, fields):
        self._record("send_prompt", chat_id=chat_id, flow_kind=flow_kind, step=step, fields=dict(fields))

    def send_rejection(self, chat_id, flow_kind, reason):
        self._record("send_rejection", chat_id=chat_id, flow_kind=flow_kind, reason=reason)

    def send_expired(self, chat_id, flow_kind):
        self._record("send_expired", chat_id=chat_id, flow_kind=flow_kind)

    def send_completion_artifact(self, chat_id, flow_kind, artifact):
        self._record("send_completion_artifact", chat_id=chat_id, flow_kind=flow_kind, artifact=artifact)

    def send_failure(self, chat_id, flow_kind):
        self._record("send_failure", chat_id=chat_id, flow_kind=flow_kind)

    def send_cancelled(self, chat_id, flow_kind):
        self._record("send_cancelled", chat_id=chat_id, flow_kind=flow_kind)

    def send_rate_limited(self, chat_id, flow_kind, reset_at):
        self._record("send_rate_limited", chat_id=chat_id, flow_kind=flow_kind, reset_at=reset_at)

    def acknowledge_callback(self, event):
        self._record("acknowledge_callback", event_id=event.event_id)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sql_session_factory():
    """SQLite in-memory database shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def repository(clock):
    return InMemorySessionRepository(ttl=timedelta(minutes=30), clock=clock)


@pytest.fixture
def deduplicator(clock):
    return InMemoryDeduplicator(ttl=timedelta(hours=24), clock=clock)


@pytest.fixture
def rate_gate(clock):
    return InMemoryRateGate(scope="report", max_per_day=3, tz="UTC", clock=clock)


@pytest.fixture
def outbound():
    return RecordingOutbound()


@pytest.fixture
def engine(repository, deduplicator, rate_gate, outbound, clock):
    return assemble(
        repository=repository,
        deduplicator=deduplicator,
        rate_gate=rate_gate,
        outbound=outbound,
        completions=default_completion_handlers("UTC", clock),
    )
