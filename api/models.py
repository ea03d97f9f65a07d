"""
API request and response models for the pricing calculator auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models only enforce transport-level bounds (types, max lengths). The
account rules (email format, password strength) live in auth/validation.py so
the session service applies them whichever boundary calls it.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AuthSession, PublicUser, TokenPair

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Passwords are taken verbatim. Email and name are normalized by the session service."""

    email: str = Field(max_length=254)
    password: str = Field(max_length=255)
    name: Optional[str] = Field(default=None, max_length=100)
    company: Optional[str] = Field(default=None, max_length=200)


class LoginRequest(BaseModel):
    email: str = Field(max_length=254)
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    """Body for POST /auth/refresh and /auth/logout. The cookie is used when absent."""

    refresh_token: Optional[str] = Field(default=None, max_length=512)


class ForgotPasswordRequest(BaseModel):
    email: str = Field(max_length=254)


class ResetPasswordRequest(BaseModel):
    password: str = Field(max_length=255)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public user view. There is deliberately no password hash field."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: Optional[str]
    company: Optional[str]
    role: str
    email_verified: bool
    is_active: bool
    last_login: Optional[datetime]
    created_at: Optional[datetime]

    @classmethod
    def from_public(cls, user: PublicUser) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            company=user.company,
            role=user.role.value,
            email_verified=user.email_verified,
            is_active=user.is_active,
            last_login=user.last_login,
            created_at=user.created_at,
        )


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    access_expires_at: datetime
    refresh_token: str
    refresh_expires_at: datetime

    @classmethod
    def from_pair(cls, pair: TokenPair, now: datetime) -> "TokenResponse":
        return cls(
            access_token=pair.access_token,
            expires_in=max(0, int((pair.access_expires_at - now).total_seconds())),
            access_expires_at=pair.access_expires_at,
            refresh_token=pair.refresh_token,
            refresh_expires_at=pair.refresh_expires_at,
        )


class AuthResponse(TokenResponse):
    user: UserResponse

    @classmethod
    def from_session(cls, session: AuthSession, now: datetime) -> "AuthResponse":
        tokens = TokenResponse.from_pair(session.tokens, now)
        return cls(user=UserResponse.from_public(session.user), **tokens.model_dump())


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
