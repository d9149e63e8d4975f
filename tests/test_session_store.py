"""Tests for the HTTP session store against a mocked transport."""

import json

import httpx
import pytest

from session_store import EndResult, HttpSessionStore, RemoteSession, RemoteStoreError

BASE = "http://fasts.test/wp-json/fasttrack/v1"

ACTIVE = {
    "id": 123,
    "startTime": "2026-01-15T08:00:00Z",
    "targetHours": 16,
    "protocol": "16:8",
    "status": "paused",
    "pausedAt": "2026-01-15T10:00:00Z",
    "pausedDuration": 90,
    "extraField": "ignored",
}


def make_store(handler, nonce="abc123"):
    """Store whose requests are answered by `handler` and recorded in `.seen`."""
    seen = []

    def record(request):
        seen.append(request)
        return handler(request)

    store = HttpSessionStore(BASE, nonce=nonce, timeout=5, transport=httpx.MockTransport(record))
    store.seen = seen
    return store


def body(request):
    return json.loads(request.content) if request.content else None


class TestModels:
    def test_wire_aliases(self):
        s = RemoteSession.model_validate(ACTIVE)
        assert s.id == 123
        assert s.start_time == "2026-01-15T08:00:00Z"
        assert s.target_hours == 16
        assert s.paused_at == "2026-01-15T10:00:00Z"

    def test_paused_duration_seconds_to_ms(self):
        assert RemoteSession.model_validate(ACTIVE).paused_duration_ms == 90_000

    def test_missing_paused_duration(self):
        s = RemoteSession.model_validate({"id": 1, "pausedDuration": None})
        assert s.paused_duration == 0
        assert s.paused_duration_ms == 0

    def test_end_result_defaults(self):
        r = EndResult.model_validate({"freeze_earned": None, "streak": None})
        assert r.freeze_earned is False
        assert r.streak == 0


class TestFetchActive:
    @pytest.mark.asyncio
    async def test_returns_session(self):
        store = make_store(lambda r: httpx.Response(200, json=ACTIVE))
        s = await store.fetch_active_session()
        await store.close()
        assert s.id == 123
        assert s.status == "paused"
        req = store.seen[0]
        assert req.method == "GET"
        assert req.url.path.endswith("/fasts/active")
        assert req.headers["X-WP-Nonce"] == "abc123"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("resp", [httpx.Response(200, text=""), httpx.Response(200, json=None)])
    async def test_no_active_fast(self, resp):
        store = make_store(lambda r: resp)
        assert await store.fetch_active_session() is None
        await store.close()

    @pytest.mark.asyncio
    async def test_no_nonce_header_when_empty(self):
        store = make_store(lambda r: httpx.Response(200, json=None), nonce="")
        await store.fetch_active_session()
        await store.close()
        assert "X-WP-Nonce" not in store.seen[0].headers


class TestErrors:
    @pytest.mark.asyncio
    async def test_status_with_message(self):
        store = make_store(lambda r: httpx.Response(404, json={"message": "No such fast"}))
        with pytest.raises(RemoteStoreError, match="No such fast") as exc:
            await store.pause_session(9)
        await store.close()
        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_status_with_error_key(self):
        store = make_store(lambda r: httpx.Response(400, json={"error": "bad mood"}))
        with pytest.raises(RemoteStoreError, match="bad mood"):
            await store.end_session(9, mood="meh")
        await store.close()

    @pytest.mark.asyncio
    async def test_status_without_body(self):
        store = make_store(lambda r: httpx.Response(500))
        with pytest.raises(RemoteStoreError, match="HTTP error! status: 500"):
            await store.resume_session(9)
        await store.close()

    @pytest.mark.asyncio
    async def test_non_json_error_body(self):
        store = make_store(lambda r: httpx.Response(502, text="<html>gateway</html>"))
        with pytest.raises(RemoteStoreError, match="Invalid server response") as exc:
            await store.fetch_active_session()
        await store.close()
        assert exc.value.status_code == 502

    @pytest.mark.asyncio
    async def test_error_object_with_200(self):
        payload = {"code": "rest_forbidden", "message": "Sorry, you are not allowed"}
        store = make_store(lambda r: httpx.Response(200, json=payload))
        with pytest.raises(RemoteStoreError, match="not allowed"):
            await store.fetch_active_session()
        await store.close()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        store = make_store(boom)
        with pytest.raises(RemoteStoreError, match="Network error") as exc:
            await store.fetch_active_session()
        await store.close()
        assert exc.value.status_code is None

    @pytest.mark.asyncio
    async def test_malformed_session(self):
        store = make_store(lambda r: httpx.Response(200, json={"id": "not-a-number"}))
        with pytest.raises(RemoteStoreError, match="Invalid server response"):
            await store.fetch_active_session()
        await store.close()


class TestMutations:
    @pytest.mark.asyncio
    async def test_create(self):
        created = {"id": 456, "startTime": "2026-01-15T12:00:00Z", "targetHours": 18, "protocol": "18:6"}
        store = make_store(lambda r: httpx.Response(201, json=created))
        s = await store.create_session("18:6", 18, backdate_minutes=30)
        await store.close()
        assert s.id == 456
        req = store.seen[0]
        assert req.method == "POST"
        assert req.url.path.endswith("/fasts")
        assert body(req) == {"protocol": "18:6", "targetHours": 18, "backdateMinutes": 30}

    @pytest.mark.asyncio
    async def test_create_empty_response(self):
        store = make_store(lambda r: httpx.Response(200, text=""))
        with pytest.raises(RemoteStoreError, match="Failed to start fast"):
            await store.create_session("16:8", 16)
        await store.close()

    @pytest.mark.asyncio
    async def test_end_sends_only_given_fields(self):
        store = make_store(lambda r: httpx.Response(200, json={"freeze_earned": True, "streak": 7}))
        result = await store.end_session(123, notes="felt good")
        await store.close()
        assert result.freeze_earned is True
        assert result.streak == 7
        req = store.seen[0]
        assert req.url.path.endswith("/fasts/123/end")
        assert body(req) == {"notes": "felt good"}

    @pytest.mark.asyncio
    async def test_end_with_empty_body(self):
        store = make_store(lambda r: httpx.Response(200, text=""))
        result = await store.end_session(123)
        await store.close()
        assert result == EndResult()

    @pytest.mark.asyncio
    async def test_pause_and_resume_paths(self):
        store = make_store(lambda r: httpx.Response(200, json={"success": True}))
        await store.pause_session(5)
        await store.resume_session(5)
        await store.close()
        assert [r.url.path.rsplit("/", 2)[-2:] for r in store.seen] == [["5", "pause"], ["5", "resume"]]
