"""Shared test helpers for fasting session tests."""

from clock import MS_PER_HOUR, format_timestamp, parse_timestamp
from session_store import EndResult, RemoteSession, RemoteStoreError

START_MS = parse_timestamp("2026-01-15T12:00:00+00:00")


class FakeClock:
    """Fake wall clock in epoch milliseconds.

    Pass as ``FastSession(store, clock=clock)``.
    Advance with ``clock.advance(ms)`` or ``clock.advance_hours(h)``.
    """

    def __init__(self, start=START_MS):
        self._now = start

    def __call__(self):
        return self._now

    def advance(self, ms):
        self._now += ms

    def advance_hours(self, hours):
        self._now += hours * MS_PER_HOUR


def make_remote(clock, hours_ago=4.0, fast_id=123, **fields):
    """Factory for a RemoteSession that started `hours_ago` before clock time."""
    data = {
        "id": fast_id,
        "startTime": format_timestamp(clock() - hours_ago * MS_PER_HOUR),
        "targetHours": 16,
        "protocol": "16:8",
        "status": "active",
        "pausedAt": None,
        "pausedDuration": 0,
    }
    data.update(fields)
    return RemoteSession.model_validate(data)


class FakeSessionStore:
    """In-memory stand-in for HttpSessionStore.

    Records every call in ``calls``. Put a method name in ``fail`` to make it
    raise RemoteStoreError. Set ``gate`` to an asyncio.Event to hold
    fetch_active_session() until the event is set.
    """

    def __init__(self, clock, active=None, end_result=None):
        self.clock = clock
        self.active = active
        self.end_result = end_result or EndResult()
        self.next_id = 456
        self.calls = []
        self.fail = set()
        self.gate = None

    def _maybe_fail(self, name):
        if name in self.fail:
            raise RemoteStoreError(f"{name} failed", 500)

    def count(self, name):
        return sum(1 for c in self.calls if c[0] == name)

    async def fetch_active_session(self):
        self.calls.append(("fetch_active_session",))
        if self.gate is not None:
            await self.gate.wait()
        self._maybe_fail("fetch_active_session")
        return self.active

    async def create_session(self, protocol, target_hours, backdate_minutes=0):
        self.calls.append(("create_session", protocol, target_hours, backdate_minutes))
        self._maybe_fail("create_session")
        start = self.clock() - backdate_minutes * 60 * 1000
        return RemoteSession.model_validate(
            {
                "id": self.next_id,
                "startTime": format_timestamp(start),
                "targetHours": target_hours,
                "protocol": protocol,
                "status": "active",
            }
        )

    async def end_session(self, fast_id, notes=None, mood=None):
        self.calls.append(("end_session", fast_id, notes, mood))
        self._maybe_fail("end_session")
        return self.end_result

    async def pause_session(self, fast_id):
        self.calls.append(("pause_session", fast_id))
        self._maybe_fail("pause_session")

    async def resume_session(self, fast_id):
        self.calls.append(("resume_session", fast_id))
        self._maybe_fail("resume_session")

    async def close(self):
        self.calls.append(("close",))
