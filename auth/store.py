"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. The session service never touches SQL directly. No business
rules live here: the store does not decide whether a token is expired or a
user may log in, it only reads and writes rows.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Single-use capability tokens (reset, verify) are cleared with conditional
  UPDATEs that name the expected digest in the WHERE clause. Two concurrent
  requests presenting the same token cannot both see rowcount == 1.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.engine import Engine

from auth.db import from_iso, to_iso, users
from auth.models import Role, User
from core.clock import Clock, utc_now


class UserStore:
    """Repository for User entities.

    Usage:
        engine = create_auth_engine("sqlite:///auth.db")
        store = UserStore(engine)
        user_id = store.create_user(User(email="a@example.com", password_hash=hasher.hash("...")))
        user = store.get_by_email("a@example.com")
    """

    def __init__(self, engine: Engine, clock: Clock = utc_now) -> None:
        self.engine = engine
        self._clock = clock

    def _now_iso(self) -> str:
        return to_iso(self._clock())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists. The
        session service treats that as a Conflict, which also covers two
        concurrent registrations racing past the existence check.
        """
        now = self._now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                users.insert().values(
                    email=user.email,
                    name=user.name,
                    company=user.company,
                    role=user.role.value,
                    password_hash=user.password_hash,
                    email_verified=1 if user.email_verified else 0,
                    email_verify_token=user.email_verify_token,
                    reset_token=user.reset_token,
                    reset_token_expiry=to_iso(user.reset_token_expiry) if user.reset_token_expiry else None,
                    is_active=1 if user.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by case-folded email. Callers normalize first."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_verify_token(self, token_hash: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.email_verify_token == token_hash)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_reset_token(self, token_hash: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.reset_token == token_hash)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: name, company, role, password_hash, is_active,
        email_verified. Booleans are converted to int for SQLite; Role to its
        string value.

        Returns True if a row was updated, False if user_id was not found.
        """
        for flag in ("is_active", "email_verified"):
            if flag in fields:
                fields[flag] = 1 if fields[flag] else 0
        if isinstance(fields.get("role"), Role):
            fields["role"] = fields["role"].value
        fields["updated_at"] = self._now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(users.update().where(users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current time as last_login for the given user."""
        now = self._now_iso()
        with self.engine.connect() as conn:
            conn.execute(users.update().where(users.c.id == user_id).values(last_login=now))
            conn.commit()

    def set_reset_token(self, user_id: int, token_hash: str, expires_at: datetime) -> None:
        """Store a new reset-token digest, replacing any earlier one."""
        with self.engine.connect() as conn:
            conn.execute(
                users.update()
                .where(users.c.id == user_id)
                .values(reset_token=token_hash, reset_token_expiry=to_iso(expires_at), updated_at=self._now_iso())
            )
            conn.commit()

    def complete_password_reset(self, user_id: int, token_hash: str, password_hash: str) -> bool:
        """Set the new password hash and clear the reset fields in one statement.

        The WHERE clause requires the reset token to still be the one the
        caller looked up. Returns False if another request consumed it first.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                users.update()
                .where((users.c.id == user_id) & (users.c.reset_token == token_hash))
                .values(
                    password_hash=password_hash,
                    reset_token=None,
                    reset_token_expiry=None,
                    updated_at=self._now_iso(),
                )
            )
            conn.commit()
        return result.rowcount == 1

    def mark_email_verified(self, user_id: int, token_hash: str) -> bool:
        """Set email_verified and clear the verify token in one conditional statement.

        Returns False if the token was already cleared (replay or race).
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                users.update()
                .where((users.c.id == user_id) & (users.c.email_verify_token == token_hash))
                .values(email_verified=1, email_verify_token=None, updated_at=self._now_iso())
            )
            conn.commit()
        return result.rowcount == 1


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        company=row.company,
        role=Role(row.role),
        password_hash=row.password_hash,
        email_verified=bool(row.email_verified),
        email_verify_token=row.email_verify_token,
        reset_token=row.reset_token,
        reset_token_expiry=from_iso(row.reset_token_expiry),
        is_active=bool(row.is_active),
        last_login=from_iso(row.last_login),
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )
