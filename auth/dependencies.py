"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The access credential is read from the Authorization: Bearer <token> header.
Only the refresh token travels in a cookie.

Verification is stateless: the signed access credential is checked by
TokenIssuer.verify_access() with no store lookup, so a deactivated account
keeps access until its (short) access credential expires. Its refresh tokens
are revoked at deactivation, so it cannot mint a new one.

try_get_identity() is the soft variant (returns None on failure).
get_current_identity() wraps it and raises HTTP 401 if unauthenticated. It
stores the identity on request.state.identity for downstream handlers.
require_role() builds a dependency that raises HTTP 403 for other roles.

The two 401 messages ("no credential" vs "invalid or expired") exist for
client UX only. Both share the same code and status and no branch depends on
which one fired.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import AccessClaims, Role
from auth.tokens import TokenIssuer

_MISSING_MESSAGE = "No access credential supplied."
_INVALID_MESSAGE = "Access credential is invalid or expired."


def _extract_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return None


def _unauthorized(message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "unauthorized", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def try_get_identity(request: Request) -> AccessClaims | None:
    """Return the caller's identity, or None if no valid access credential is present.

    Never raises -- callers that need a hard 401 should use get_current_identity().
    """
    token = _extract_token(request)
    if token is None:
        return None
    issuer: TokenIssuer = request.app.state.token_issuer
    return issuer.verify_access(token)


def get_current_identity(request: Request) -> AccessClaims:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: AccessClaims = Depends(get_current_identity)): ...
    """
    token = _extract_token(request)
    if token is None:
        raise _unauthorized(_MISSING_MESSAGE)
    issuer: TokenIssuer = request.app.state.token_issuer
    identity = issuer.verify_access(token)
    if identity is None:
        raise _unauthorized(_INVALID_MESSAGE)
    request.state.identity = identity
    return identity


def require_role(*roles: Role):
    """Build a dependency that admits only the given roles.

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        async def route(identity: AccessClaims = Depends(require_role(Role.ADMIN))): ...
    """
    allowed = frozenset(roles)

    def dependency(request: Request) -> AccessClaims:
        identity = get_current_identity(request)
        if identity.role not in allowed:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Insufficient permissions."},
            )
        return identity

    return dependency
