"""Unit tests for devsec/auth.py — BearerAuthMiddleware."""
import asyncio
import json

import pytest

from devsec.auth import BearerAuthMiddleware


def _run(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Helpers to simulate ASGI request/response
# ---------------------------------------------------------------------------

async def _make_request(app, headers=None, scope_type="http", path="/mcp"):
    """Simulate an ASGI request and return (status, response_body, messages)."""
    scope = {
        "type": scope_type,
        "method": "POST",
        "path": path,
        "headers": headers or [],
    }
    response_started = {}
    response_body = b""
    messages = []

    async def receive():
        return {"type": "http.request", "body": b""}

    async def send(message):
        nonlocal response_body
        messages.append(message)
        if message["type"] == "http.response.start":
            response_started["status"] = message["status"]
            response_started["headers"] = message.get("headers", [])
        elif message["type"] == "http.response.body":
            response_body = message.get("body", b"")

    await app(scope, receive, send)
    return response_started.get("status"), response_body, messages


async def _passthrough_app(scope, receive, send):
    """Dummy ASGI app that returns 200 OK."""
    if scope["type"] != "http":
        await send({"type": f"{scope['type']}.passthrough"})
        return
    await send({"type": "http.response.start", "status": 200, "headers": []})
    await send({"type": "http.response.body", "body": b"OK"})


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestBearerAuthMiddleware:
    def test_valid_token_passes_through(self):
        app = BearerAuthMiddleware(_passthrough_app, api_key="secret-token-123")
        status, body, _ = _run(_make_request(app, headers=[(b"authorization", b"Bearer secret-token-123")]))
        assert status == 200
        assert body == b"OK"

    def test_scheme_is_case_insensitive(self):
        app = BearerAuthMiddleware(_passthrough_app, api_key="secret-token-123")
        status, _, _ = _run(_make_request(app, headers=[(b"Authorization", b"bearer secret-token-123")]))
        assert status == 200

    def test_missing_auth_header_returns_401(self):
        app = BearerAuthMiddleware(_passthrough_app, api_key="secret-token-123")
        status, body, messages = _run(_make_request(app, headers=[]))
        assert status == 401
        assert json.loads(body)["error"] == "unauthorized"
        headers = dict(messages[0]["headers"])
        assert headers[b"www-authenticate"].startswith(b"Bearer")

    def test_wrong_token_returns_401(self):
        app = BearerAuthMiddleware(_passthrough_app, api_key="secret-token-123")
        status, _, _ = _run(_make_request(app, headers=[(b"authorization", b"Bearer wrong-token")]))
        assert status == 401

    def test_missing_bearer_prefix_returns_401(self):
        app = BearerAuthMiddleware(_passthrough_app, api_key="secret-token-123")
        status, _, _ = _run(_make_request(app, headers=[(b"authorization", b"secret-token-123")]))
        assert status == 401

    def test_empty_bearer_value_returns_401(self):
        app = BearerAuthMiddleware(_passthrough_app, api_key="secret-token-123")
        status, _, _ = _run(_make_request(app, headers=[(b"authorization", b"Bearer ")]))
        assert status == 401

    def test_lifespan_scope_passes_through(self):
        app = BearerAuthMiddleware(_passthrough_app, api_key="secret-token-123")
        _, _, messages = _run(_make_request(app, scope_type="lifespan"))
        assert messages == [{"type": "lifespan.passthrough"}]

    def test_unauthenticated_websocket_is_closed(self):
        app = BearerAuthMiddleware(_passthrough_app, api_key="secret-token-123")
        _, _, messages = _run(_make_request(app, scope_type="websocket"))
        assert messages == [{"type": "websocket.close", "code": 4401}]

    def test_authenticated_websocket_passes(self):
        app = BearerAuthMiddleware(_passthrough_app, api_key="k")
        _, _, messages = _run(_make_request(app, headers=[(b"authorization", b"Bearer k")],
                                            scope_type="websocket"))
        assert messages == [{"type": "websocket.passthrough"}]

    def test_public_paths_skip_auth(self):
        app = BearerAuthMiddleware(_passthrough_app, api_key="k", public_paths=["/health"])
        status, _, _ = _run(_make_request(app, path="/health"))
        assert status == 200
        status, _, _ = _run(_make_request(app, path="/mcp"))
        assert status == 401

    def test_empty_api_key_rejected(self):
        with pytest.raises(ValueError, match="non-empty"):
            BearerAuthMiddleware(_passthrough_app, api_key="")

    def test_uses_constant_time_comparison(self):
        import inspect
        source = inspect.getsource(BearerAuthMiddleware._authorized)
        assert "compare_digest" in source
