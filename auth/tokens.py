"""
auth/tokens.py -- Access credential signing and capability token utilities.

Security design decisions:
  Access credentials: python-jose with HS256. Tokens carry sub (user id), role,
       type="access", iat, exp, iss and aud. The type claim stops any other
       signed token from being replayed as an access credential. Verification
       returns None on any failure -- the dependency layer turns that into a
       401. The specific reason is logged at DEBUG and never returned.

       Expiry is checked against the injected clock rather than by jose, so
       expiry logic is deterministic under test. jose still validates the
       signature, issuer and audience.

  Capability tokens (refresh, reset, verify): secrets.token_urlsafe(32) gives
       256 bits of entropy in a URL-safe alphabet. Possession is proof of
       authorization, so the raw value is never logged and never stored. We
       store HMAC-SHA256(SECRET_KEY, raw) so lookup is O(1) by digest and a
       leaked database does not yield usable tokens. bcrypt/argon2 slowness is
       unnecessary for high-entropy secrets.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import AccessClaims, Role
from core.clock import Clock, utc_now

logger = logging.getLogger("pricecalc.auth")

_ALGORITHM = "HS256"
_ACCESS_TYPE = "access"


# ---------------------------------------------------------------------------
# Capability tokens
# ---------------------------------------------------------------------------


def generate_opaque_token() -> str:
    """Return a new unguessable URL-safe token (256 bits of entropy)."""
    return secrets.token_urlsafe(32)


def hash_token(secret_key: str, raw_token: str) -> str:
    """Return HMAC-SHA256(secret_key, raw_token) as a hex string.

    Deterministic, so the digest doubles as the lookup key. Using the server
    secret as the HMAC key means an attacker with a copy of the database still
    cannot forge a matching raw token.
    """
    return hmac.new(secret_key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()


# ---------------------------------------------------------------------------
# Access credentials
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Issues and verifies signed access credentials.

    Stateless apart from configuration: verify_access() needs no store lookup
    and no locking, so it is safe to call from any request thread.
    """

    def __init__(
        self,
        secret_key: str,
        *,
        access_ttl: timedelta = timedelta(minutes=15),
        issuer: str = "saas-pricing-calculator",
        audience: str = "api-users",
        clock: Clock = utc_now,
    ) -> None:
        if len(secret_key) < 32:
            raise ValueError("secret_key must be at least 32 characters.")
        if access_ttl <= timedelta(0):
            raise ValueError("access_ttl must be positive.")
        self._secret_key = secret_key
        self._access_ttl = access_ttl
        self._issuer = issuer
        self._audience = audience
        self._clock = clock

    def issue_access(self, user_id: int, role: Role) -> tuple[str, datetime]:
        """Encode a signed access credential. Returns (token, expires_at)."""
        now = self._clock()
        expires_at = now + self._access_ttl
        payload = {
            "sub": str(user_id),
            "role": role.value,
            "type": _ACCESS_TYPE,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
            "iss": self._issuer,
            "aud": self._audience,
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM), expires_at

    def verify_access(self, token: str) -> AccessClaims | None:
        """Verify an access credential. Returns the claims or None on any failure.

        Bad signature, wrong issuer/audience, wrong type, expired and malformed
        tokens all produce the same None.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                audience=self._audience,
                issuer=self._issuer,
                options={"verify_exp": False},
            )
        except JWTError as exc:
            logger.debug("access token rejected: %s", exc.__class__.__name__)
            return None

        if payload.get("type") != _ACCESS_TYPE:
            logger.debug("access token rejected: wrong type claim")
            return None
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)):
            logger.debug("access token rejected: missing exp")
            return None
        if datetime.fromtimestamp(exp, tz=timezone.utc) <= self._clock():
            logger.debug("access token rejected: expired")
            return None
        try:
            return AccessClaims(user_id=int(payload["sub"]), role=Role(payload["role"]))
        except (KeyError, TypeError, ValueError):
            logger.debug("access token rejected: malformed identity claims")
            return None
