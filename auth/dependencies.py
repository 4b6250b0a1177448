"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

require_user_id() is mounted as a router-level dependency on every
protected router:

    router = APIRouter(dependencies=[Depends(require_user_id)])

It reads "Authorization: Bearer <token>", verifies the session token with
the app's TokenIssuer, and attaches the user id to request.state.user_id.
Handlers read it back with current_user_id(). Nothing is cached between
requests.

All token failures (malformed, expired, bad signature, missing claims)
produce the same 401 so clients never learn which check failed.

Layer rule: may import fastapi (part of the DI system). No imports from
api/, cache/, or crm/.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import AuthenticationError, TokenError

_BEARER_PREFIX = "Bearer "


def require_user_id(request: Request) -> int:
    """Authenticate the request. Raises AuthenticationError (401) on any failure."""
    header = request.headers.get("Authorization")
    if not header:
        raise AuthenticationError("Authorization header required.")
    if not header.startswith(_BEARER_PREFIX):
        raise AuthenticationError("Bearer token required.")

    token = header[len(_BEARER_PREFIX) :].strip()
    try:
        user_id = request.app.state.auth.issuer.verify(token)
    except TokenError:
        raise AuthenticationError("Invalid or expired token.") from None

    request.state.user_id = user_id
    return user_id


def current_user_id(request: Request) -> int:
    """Return the id attached by require_user_id().

    Use inside handlers on a router that carries require_user_id:
        async def route(user_id: int = Depends(current_user_id)): ...
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id is None:
        raise AuthenticationError("Authorization header required.")
    return user_id
