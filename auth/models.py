"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the session
service do the work; these only own the domain shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


@dataclass
class User:
    """A registered account.

    password_hash is the opaque hasher output (Argon2id, or legacy bcrypt).
    email_verify_token and reset_token hold HMAC digests of the capability
    tokens, never the raw values that were mailed to the user.
    """

    email: str  # stored case-folded
    password_hash: str
    role: Role = Role.USER
    id: int | None = None
    name: str | None = None
    company: str | None = None
    email_verified: bool = False
    email_verify_token: str | None = None
    reset_token: str | None = None
    reset_token_expiry: datetime | None = None
    is_active: bool = True
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class PublicUser:
    """The caller-facing view of a User. Carries no credential material."""

    id: int
    email: str
    name: str | None
    company: str | None
    role: Role
    email_verified: bool
    is_active: bool
    last_login: datetime | None
    created_at: datetime | None

    @classmethod
    def from_user(cls, user: User) -> PublicUser:
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            company=user.company,
            role=user.role,
            email_verified=user.email_verified,
            is_active=user.is_active,
            last_login=user.last_login,
            created_at=user.created_at,
        )


@dataclass
class RefreshToken:
    """A persisted refresh credential. token_hash is the HMAC digest of the raw token."""

    token_hash: str
    user_id: int
    expires_at: datetime
    id: int | None = None
    created_at: datetime | None = None
    consumed_at: datetime | None = None


@dataclass(frozen=True)
class AccessClaims:
    """Identity recovered from a verified access credential."""

    user_id: int
    role: Role


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    access_expires_at: datetime
    refresh_token: str
    refresh_expires_at: datetime


@dataclass(frozen=True)
class AuthSession:
    """Result of register and login: the public user plus a fresh token pair."""

    user: PublicUser
    tokens: TokenPair
