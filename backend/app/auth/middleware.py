"""Identity attachment middleware and request dependencies.

The middleware runs before any route (HTTP or WebSocket). It looks for an
``Authorization: Bearer <token>`` header, verifies it, and attaches the
resolved identity to ``scope["state"]`` so handlers can read it from
``request.state`` / ``websocket.state``:

    - user_id: Verified user id
    - username: Login name from the token
    - principal: Full decoded claim set

A missing or invalid credential attaches nothing and the request proceeds
anonymously. Handlers for protected operations must re-check with
:func:`require_user`. Setting ``auth.reject_invalid_tokens`` rejects invalid
(but not missing) credentials instead.
"""
import logging
from typing import Optional

from fastapi import HTTPException
from fastapi.requests import HTTPConnection
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.websockets import WebSocketClose

from .service import Identity, TokenService

logger = logging.getLogger(__name__)


def extract_bearer_token(scope: Scope) -> Optional[str]:
    """Return the bearer token from the Authorization header, if any."""
    for name, value in scope.get("headers", []):
        if name.lower() != b"authorization":
            continue
        header = value.decode("latin-1")
        if header.startswith("Bearer"):
            token = header[len("Bearer"):].strip()
            return token or None
        return None
    return None


class IdentityMiddleware:
    """Pure ASGI middleware covering both HTTP and WebSocket scopes."""

    def __init__(
        self,
        app: ASGIApp,
        token_service: TokenService,
        reject_invalid_tokens: bool = False,
    ) -> None:
        self.app = app
        self.token_service = token_service
        self.reject_invalid_tokens = reject_invalid_tokens

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        token = extract_bearer_token(scope)
        if token is not None:
            identity = self.token_service.resolve(token)
            if identity is not None:
                state = scope.setdefault("state", {})
                state["user_id"] = identity.user_id
                state["username"] = identity.username
                state["principal"] = identity.claims
            else:
                logger.warning(f"[Auth] Invalid bearer token on {scope.get('path')}")
                if self.reject_invalid_tokens:
                    await self._reject(scope, receive, send)
                    return

        await self.app(scope, receive, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "websocket":
            await WebSocketClose(code=1008)(scope, receive, send)
            return
        response = JSONResponse({"detail": "Invalid bearer token"}, status_code=401)
        await response(scope, receive, send)


def get_identity(connection: HTTPConnection) -> Optional[Identity]:
    """Dependency returning the attached identity, or None when anonymous."""
    user_id = getattr(connection.state, "user_id", None)
    if not user_id:
        return None
    return Identity(
        user_id=user_id,
        username=getattr(connection.state, "username", None),
        claims=getattr(connection.state, "principal", None) or {},
    )


def require_user(connection: HTTPConnection) -> Identity:
    """Dependency for protected operations: 401 when anonymous."""
    identity = get_identity(connection)
    if identity is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return identity
