"""
auth/errors.py -- Error taxonomy for the session service.

Business failures are returned as AuthFailure values, not raised. Callers
check ``isinstance(result, AuthFailure)`` and map the code to a response.
Exceptions stay reserved for programmer errors and misconfiguration.

The generic codes (invalid_credentials and the invalid_*_token family) carry
one fixed message each. Every path that produces them must use the shared
constant so no branch can be told apart by its wording.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCode(str, Enum):
    INVALID_INPUT = "invalid_input"
    CONFLICT = "conflict"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_DEACTIVATED = "account_deactivated"
    EMAIL_NOT_VERIFIED = "email_not_verified"
    INVALID_REFRESH_TOKEN = "invalid_refresh_token"
    REFRESH_TOKEN_EXPIRED = "refresh_token_expired"
    INVALID_RESET_TOKEN = "invalid_reset_token"
    RESET_TOKEN_EXPIRED = "reset_token_expired"
    INVALID_VERIFICATION_TOKEN = "invalid_verification_token"
    INTERNAL = "internal"


MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.INVALID_INPUT: "Request contains invalid input.",
    ErrorCode.CONFLICT: "An account with this email already exists.",
    ErrorCode.INVALID_CREDENTIALS: "Invalid email or password.",
    ErrorCode.ACCOUNT_DEACTIVATED: "This account has been deactivated.",
    ErrorCode.EMAIL_NOT_VERIFIED: "Please verify your email before logging in.",
    ErrorCode.INVALID_REFRESH_TOKEN: "Invalid refresh token.",
    ErrorCode.REFRESH_TOKEN_EXPIRED: "Refresh token has expired. Please log in again.",
    ErrorCode.INVALID_RESET_TOKEN: "Invalid reset token.",
    ErrorCode.RESET_TOKEN_EXPIRED: "Reset token has expired. Please request a new one.",
    ErrorCode.INVALID_VERIFICATION_TOKEN: "Invalid verification token.",
    ErrorCode.INTERNAL: "An unexpected error occurred.",
}


@dataclass(frozen=True)
class AuthFailure:
    """A business-rule failure returned by the session service.

    detail is only populated for invalid_input (which field was wrong and why).
    It is never populated for the generic security codes.
    """

    code: ErrorCode
    message: str
    detail: str | None = None


def failure(code: ErrorCode, detail: str | None = None) -> AuthFailure:
    """Build an AuthFailure with the canonical message for its code."""
    return AuthFailure(code=code, message=MESSAGES[code], detail=detail)
