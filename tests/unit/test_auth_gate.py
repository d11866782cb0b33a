"""
认证网关单元测试
"""
import uuid
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
from starlette.datastructures import Headers

from src.middleware.auth_gate import (
    AUTH_INIT_PATH,
    AuthGate,
    GateAction,
    extract_session_id,
)
from src.middleware.session_store import SessionStore
from src.utils.exceptions import CacheError
from tests.conftest import NOW_MS, make_session


def _store(session=None, error=None):
    store = MagicMock(spec=SessionStore)
    store.get = AsyncMock(return_value=session, side_effect=error)
    return store


def _gate(store, required=True):
    return AuthGate(
        required=required,
        protected_paths=["/sse", "/message"],
        session_store=store,
        clock=lambda: NOW_MS,
    )


@pytest.mark.unit
class TestAuthGate:
    async def test_missing_session_redirects_with_fresh_id(self):
        decision = await _gate(_store()).evaluate("/sse", None)

        assert decision.action == GateAction.REDIRECT
        assert decision.reason == "missing_session_id"
        url = urlparse(decision.redirect_url)
        assert url.path == AUTH_INIT_PATH
        session_id = parse_qs(url.query)["sessionId"][0]
        assert uuid.UUID(session_id)

    async def test_fresh_ids_are_unique(self):
        gate = _gate(_store())
        first = await gate.evaluate("/sse", None)
        second = await gate.evaluate("/sse", None)
        assert first.session_id != second.session_id

    async def test_expired_session_redirects(self):
        gate = _gate(_store(make_session(expires_at=NOW_MS - 1)))

        decision = await gate.evaluate("/sse", "sess-1")

        assert decision.action == GateAction.REDIRECT
        assert decision.reason == "session_expired"
        assert decision.session_id == "sess-1"

    async def test_valid_session_passes(self):
        decision = await _gate(_store(make_session())).evaluate("/message/", "sess-1")
        assert decision.action == GateAction.PASS

    async def test_unknown_session_redirects(self):
        decision = await _gate(_store()).evaluate("/sse", "sess-1")
        assert decision.reason == "session_not_found"

    async def test_store_error_redirects(self):
        decision = await _gate(_store(error=CacheError("down"))).evaluate("/sse", "sess-1")
        assert decision.action == GateAction.REDIRECT
        assert decision.reason == "session_store_error"

    async def test_no_store_redirects(self):
        decision = await _gate(None).evaluate("/sse", "sess-1")
        assert decision.reason == "session_store_unavailable"

    @pytest.mark.parametrize("path", ["/health", "/auth/google", "/api/wallet"])
    async def test_unprotected_paths_pass(self, path):
        store = _store()
        decision = await _gate(store).evaluate(path, None)
        assert decision.action == GateAction.PASS
        store.get.assert_not_awaited()

    async def test_disabled_gate_passes_everything(self):
        decision = await _gate(_store(), required=False).evaluate("/sse", None)
        assert decision.action == GateAction.PASS


def test_extract_session_id_prefers_query():
    headers = Headers({"x-mcp-session-id": "from-header"})
    assert extract_session_id(b"sessionId=from-query", headers) == "from-query"
    assert extract_session_id(b"", headers) == "from-header"
    assert extract_session_id(b"sessionId=", Headers({})) is None


TRANSPORT_ID = "ab" * 16
ENDPOINT_EVENT = f"event: endpoint\r\ndata: /message/?session_id={TRANSPORT_ID}\r\n\r\n".encode()


@pytest.mark.unit
class TestStreamBinding:
    async def test_message_post_resolves_bound_session(self):
        gate = _gate(_store(make_session(expires_at=NOW_MS + 1)))
        assert gate.bind_stream(ENDPOINT_EVENT, "sess-1") == TRANSPORT_ID

        session_id = gate.resolve_session_id(f"session_id={TRANSPORT_ID}".encode(), Headers({}))
        decision = await gate.evaluate("/message/", session_id)

        assert session_id == "sess-1"
        assert decision.action == GateAction.PASS

    def test_unknown_stream_resolves_nothing(self):
        gate = _gate(_store())
        assert gate.resolve_session_id(f"session_id={TRANSPORT_ID}".encode(), Headers({})) is None

    def test_released_stream_forgotten(self):
        gate = _gate(_store())
        gate.bind_stream(ENDPOINT_EVENT, "sess-1")
        gate.release_stream(TRANSPORT_ID)
        assert gate.resolve_session_id(f"session_id={TRANSPORT_ID}".encode(), Headers({})) is None

    def test_explicit_session_id_wins(self):
        gate = _gate(_store())
        gate.bind_stream(ENDPOINT_EVENT, "sess-1")
        query = f"session_id={TRANSPORT_ID}&sessionId=sess-2".encode()
        assert gate.resolve_session_id(query, Headers({})) == "sess-2"

    def test_non_endpoint_chunks_ignored(self):
        gate = _gate(_store())
        assert gate.bind_stream(b"event: message\r\ndata: {}\r\n\r\n", "sess-1") is None
        assert gate.bind_stream(ENDPOINT_EVENT, None) is None
