"""Bearer-token guard for the HTTP transports of the MCP server."""
import hmac
import json
import logging

from typing import Iterable, Optional

logger = logging.getLogger("DevSec")

_UNAUTHORIZED_BODY = json.dumps({
    "error": "unauthorized",
    "message": "Send 'Authorization: Bearer <api key>' with every request.",
}).encode("utf-8")


def _extract_bearer(headers) -> Optional[str]:
    for name, value in headers:
        if name.lower() == b"authorization":
            text = value.decode("latin-1", "ignore").strip()
            scheme, _, token = text.partition(" ")
            if scheme.lower() == "bearer" and token:
                return token.strip()
            return None
    return None


class BearerAuthMiddleware:
    """ASGI wrapper that rejects HTTP and WebSocket scopes without the right token.

    Lifespan events always pass. Paths listed in *public_paths* (for example
    a health probe) skip the check. Tokens are compared with
    ``hmac.compare_digest``.
    """

    def __init__(self, app, api_key: str, public_paths: Iterable[str] = ()):
        if not api_key:
            raise ValueError("BearerAuthMiddleware requires a non-empty api_key")
        self.app = app
        self._expected = api_key.encode("utf-8")
        self.public_paths = frozenset(public_paths)

    def _authorized(self, scope) -> bool:
        if scope.get("path") in self.public_paths:
            return True
        token = _extract_bearer(scope.get("headers") or [])
        if token is None:
            return False
        return hmac.compare_digest(token.encode("utf-8"), self._expected)

    async def __call__(self, scope, receive, send):
        kind = scope["type"]
        if kind not in ("http", "websocket") or self._authorized(scope):
            await self.app(scope, receive, send)
            return

        client = scope.get("client") or ("?", 0)
        logger.warning("Rejected unauthenticated %s request from %s to %s",
                       kind, client[0], scope.get("path"))
        if kind == "websocket":
            await send({"type": "websocket.close", "code": 4401})
            return
        await send({
            "type": "http.response.start",
            "status": 401,
            "headers": [
                (b"content-type", b"application/json"),
                (b"www-authenticate", b'Bearer realm="devsec"'),
            ],
        })
        await send({"type": "http.response.body", "body": _UNAUTHORIZED_BODY})
