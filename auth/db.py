"""
auth/db.py -- Shared SQLAlchemy Core schema and engine factory for auth tables.

UserStore and RefreshTokenStore are separate repositories over one database,
so they share one MetaData and one Engine. create_auth_engine() is the single
place that knows about SQLite specifics.

Timestamps are stored as ISO 8601 UTC strings with a fixed format
(microsecond precision, +00:00 offset). A fixed format keeps lexicographic
order equal to chronological order, which the refresh-token consume query
relies on for its "expires_at > now" condition.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Engine

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # case-folded
    Column("name", String(100)),
    Column("company", String(200)),
    Column("role", String(10), nullable=False, server_default="USER"),
    Column("password_hash", Text, nullable=False),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("email_verify_token", String(64)),  # HMAC-SHA256 hex of the raw token
    Column("reset_token", String(64)),  # HMAC-SHA256 hex of the raw token
    Column("reset_token_expiry", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Index("ix_users_email_verify_token", "email_verify_token"),
    Index("ix_users_reset_token", "reset_token"),
)

refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("user_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("consumed_at", String(32)),  # NULL = still usable
    Index("ix_refresh_tokens_user_id", "user_id"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and a busy timeout on every new connection.

    WAL lets readers proceed while a writer holds the lock. The busy timeout
    makes concurrent writers (two requests consuming the same refresh token)
    wait for each other instead of failing with "database is locked".
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA busy_timeout=5000")


def create_auth_engine(db_url: str) -> Engine:
    """Create an Engine for db_url and make sure the auth tables exist."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------


def to_iso(value: datetime) -> str:
    """Serialize an aware datetime as a fixed-width UTC ISO string."""
    if value.tzinfo is None:
        raise ValueError("naive datetime passed to to_iso(); use an aware UTC datetime")
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)
