"""
auth/refresh_store.py -- Persistence and rotation of refresh credentials.

Pattern: Repository (same shape as auth/store.py).

Rotation invariant:
  consume() is the only place a refresh token becomes "used", and it is a
  single conditional UPDATE:

      UPDATE refresh_tokens SET consumed_at = :now
      WHERE token_hash = :h AND consumed_at IS NULL AND expires_at > :now

  The database serializes writers, so when two requests present the same
  token only one UPDATE can match the unconsumed row. The other sees
  rowcount == 0 and gets INVALID. There is no read-then-write window in
  application code.

  A plain SELECT before the UPDATE fetches the owner and, when the UPDATE
  matches nothing, classifies the failure (expired vs unknown vs already
  consumed). That read only chooses which failure to report; success is
  decided by rowcount alone. A request that loses the race reports INVALID.
  Unknown and consumed both report INVALID so rotation state is not exposed
  to the caller.

Storage:
  token_hash is HMAC-SHA256(SECRET_KEY, raw token). The raw token is returned
  once from issue() and never persisted or logged.

  Consumed rows are kept until they expire so a replay of a rotated token can
  be logged as reuse. revoke() and revoke_all() delete rows outright.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy.engine import Engine

from auth.db import from_iso, refresh_tokens, to_iso
from auth.models import RefreshToken
from auth.tokens import generate_opaque_token, hash_token
from core.clock import Clock, utc_now

logger = logging.getLogger("pricecalc.auth")


class ConsumeStatus(str, Enum):
    OK = "ok"
    INVALID = "invalid"
    EXPIRED = "expired"


@dataclass(frozen=True)
class ConsumeResult:
    status: ConsumeStatus
    user_id: int | None = None


class RefreshTokenStore:
    """Repository for refresh credentials and the atomic rotation primitive."""

    def __init__(
        self,
        engine: Engine,
        secret_key: str,
        *,
        ttl: timedelta = timedelta(days=7),
        clock: Clock = utc_now,
    ) -> None:
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive.")
        self.engine = engine
        self._secret_key = secret_key
        self._ttl = ttl
        self._clock = clock

    def _digest(self, raw_token: str) -> str:
        return hash_token(self._secret_key, raw_token)

    def issue(self, user_id: int) -> tuple[str, datetime]:
        """Create and persist a new refresh token. Returns (raw token, expires_at)."""
        raw = generate_opaque_token()
        now = self._clock()
        expires_at = now + self._ttl
        with self.engine.connect() as conn:
            conn.execute(
                refresh_tokens.insert().values(
                    token_hash=self._digest(raw),
                    user_id=user_id,
                    created_at=to_iso(now),
                    expires_at=to_iso(expires_at),
                )
            )
            conn.commit()
        return raw, expires_at

    def consume(self, raw_token: str) -> ConsumeResult:
        """Atomically mark a refresh token as used.

        Exactly one caller can ever get OK for a given token. The read is
        committed before the UPDATE so the write starts a fresh transaction
        and waits on busy_timeout instead of failing on a stale WAL snapshot.
        """
        token_hash = self._digest(raw_token)
        now_iso = to_iso(self._clock())
        with self.engine.connect() as conn:
            row = conn.execute(
                refresh_tokens.select().where(refresh_tokens.c.token_hash == token_hash)
            ).fetchone()
            conn.commit()
            if row is None:
                return ConsumeResult(ConsumeStatus.INVALID)
            result = conn.execute(
                refresh_tokens.update()
                .where(
                    (refresh_tokens.c.token_hash == token_hash)
                    & (refresh_tokens.c.consumed_at.is_(None))
                    & (refresh_tokens.c.expires_at > now_iso)
                )
                .values(consumed_at=now_iso)
            )
            conn.commit()

        # user_id never changes after insert, so the earlier read is safe to use.
        if result.rowcount == 1:
            return ConsumeResult(ConsumeStatus.OK, user_id=row.user_id)
        if row.consumed_at is None and row.expires_at <= now_iso:
            return ConsumeResult(ConsumeStatus.EXPIRED)
        if row.consumed_at is not None:
            logger.warning("refresh token reuse detected (user_id=%s, token_id=%s)", row.user_id, row.id)
        return ConsumeResult(ConsumeStatus.INVALID)

    def get(self, raw_token: str) -> RefreshToken | None:
        """Return the stored record for a raw token (any state), or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                refresh_tokens.select().where(refresh_tokens.c.token_hash == self._digest(raw_token))
            ).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def revoke(self, raw_token: str) -> bool:
        """Delete a single token. Idempotent: unknown tokens return False."""
        with self.engine.connect() as conn:
            result = conn.execute(
                refresh_tokens.delete().where(refresh_tokens.c.token_hash == self._digest(raw_token))
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_all(self, user_id: int) -> int:
        """Delete every refresh token owned by user_id. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(refresh_tokens.delete().where(refresh_tokens.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def count_active(self, user_id: int) -> int:
        """Number of unconsumed, unexpired tokens for user_id."""
        now_iso = to_iso(self._clock())
        with self.engine.connect() as conn:
            rows = conn.execute(
                refresh_tokens.select().where(
                    (refresh_tokens.c.user_id == user_id)
                    & (refresh_tokens.c.consumed_at.is_(None))
                    & (refresh_tokens.c.expires_at > now_iso)
                )
            ).fetchall()
        return len(rows)

    def purge_expired(self) -> int:
        """Delete rows whose expiry has passed. Storage hygiene only."""
        now_iso = to_iso(self._clock())
        with self.engine.connect() as conn:
            result = conn.execute(refresh_tokens.delete().where(refresh_tokens.c.expires_at <= now_iso))
            conn.commit()
        if result.rowcount:
            logger.info("Purged %d expired refresh tokens", result.rowcount)
        return result.rowcount


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        token_hash=row.token_hash,
        user_id=row.user_id,
        created_at=from_iso(row.created_at),
        expires_at=from_iso(row.expires_at),
        consumed_at=from_iso(row.consumed_at),
    )
