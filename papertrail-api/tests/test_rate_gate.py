from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from papertrail.services.rate_gate import InMemoryRateGate, SqlRateGate

MAX = 3


@pytest.fixture(params=["sql", "memory"])
def gate(request, clock, sql_session_factory):
    if request.param == "sql":
        return SqlRateGate(sql_session_factory, scope="report", max_per_day=MAX, tz="UTC", clock=clock)
    return InMemoryRateGate(scope="report", max_per_day=MAX, tz="UTC", clock=clock)


class TestCheck:
    def test_no_record_allows(self, gate):
        check = gate.check(100)
        assert check.allowed is True
        assert check.remaining == MAX - 1
        assert check.reset_at == datetime(2026, 3, 11, tzinfo=ZoneInfo("UTC"))

    def test_remaining_counts_down(self, gate):
        gate.record(100)
        assert gate.check(100).remaining == 1
        gate.record(100)
        assert gate.check(100).remaining == 0
        assert gate.check(100).allowed is True

    def test_exhausted_after_max(self, gate):
        for _ in range(MAX):
            assert gate.check(100).allowed
            gate.record(100)
        check = gate.check(100)
        assert check.allowed is False
        assert check.remaining == 0
        assert check.reset_at == datetime(2026, 3, 11, tzinfo=ZoneInfo("UTC"))

    def test_chats_are_independent(self, gate):
        for _ in range(MAX):
            gate.record(100)
        assert gate.check(200).allowed is True

    def test_new_day_resets(self, gate, clock):
        for _ in range(MAX):
            gate.record(100)
        clock.advance(hours=12)  # 2026-03-11 00:00 UTC
        check = gate.check(100)
        assert check.allowed is True
        assert check.remaining == MAX - 1

        gate.record(100)
        assert gate.check(100).remaining == MAX - 2


class TestRecord:
    def test_count_is_capped(self, gate):
        for _ in range(MAX + 2):
            gate.record(100)
        gate.record(100)
        assert gate.check(100).allowed is False
        # still exhausted, not wrapped around
        assert gate.check(100).remaining == 0

    def test_record_never_follows_allowed_after_max(self, gate):
        allowed_then_recorded = 0
        for _ in range(MAX + 3):
            if gate.check(100).allowed:
                gate.record(100)
                allowed_then_recorded += 1
        assert allowed_then_recorded == MAX


class TestLocalMidnight:
    def test_reset_at_follows_configured_timezone(self, clock):
        gate = InMemoryRateGate(scope="report", max_per_day=MAX, tz="Asia/Jerusalem", clock=clock)
        clock.now = datetime(2026, 3, 10, 22, 30, tzinfo=timezone.utc)  # already the 11th in Israel

        check = gate.check(100)
        expected = datetime(2026, 3, 12, tzinfo=ZoneInfo("Asia/Jerusalem"))
        assert check.reset_at == expected
        assert gate.local_date(clock.now) == "2026-03-11"
