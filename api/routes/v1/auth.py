"""
api/routes/v1/auth.py -- Credential and session REST endpoints.

Routes:
  POST /api/v1/auth/register                -- create account; returns user + token pair
  POST /api/v1/auth/login                   -- password login; returns user + token pair
  POST /api/v1/auth/refresh                 -- rotate refresh token (body or cookie)
  POST /api/v1/auth/logout                  -- revoke presented refresh token; always 200
  POST /api/v1/auth/logout-all              -- revoke every refresh token (requires auth)
  GET  /api/v1/auth/verify-email/{token}    -- consume email verification token
  POST /api/v1/auth/forgot-password         -- start password reset; always 200
  POST /api/v1/auth/reset-password/{token}  -- set new password with reset token
  POST /api/v1/auth/change-password         -- replace password (requires auth); revokes sessions
  GET  /api/v1/auth/me                      -- current user (requires auth)
  POST /api/v1/auth/users/{id}/deactivate   -- deactivate account (admin only)

Security:
  The session service returns AuthFailure values; _failure_response() is the
  only place they become HTTP responses, using one status per error code.
  Every response from these routes carries Cache-Control: no-store.
  The refresh token is also set as an httpOnly, SameSite=Strict cookie scoped
  to /api/v1/auth so the browser only sends it to these endpoints.

Handlers are plain `def` so FastAPI runs them on its threadpool. Argon2
hashing and SQLite I/O block, and must not stall the event loop.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    AuthResponse,
    ChangePasswordRequest,
    ErrorDetail,
    ErrorResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    UserResponse,
)
from auth.dependencies import get_current_identity, require_role
from auth.errors import AuthFailure, ErrorCode, failure
from auth.models import AccessClaims, AuthSession, Role
from auth.service import SessionService

# Auth policy:
# - register, login, refresh, logout, verify-email,
#   forgot-password, reset-password:           public
# - GET  /auth/me, POST /auth/logout-all,
#   POST /auth/change-password:                 requires auth (get_current_identity)
# - POST /auth/users/{id}/deactivate:           requires ADMIN (require_role)
router = APIRouter()

REFRESH_COOKIE = "refresh_token"
_REFRESH_COOKIE_PATH = "/api/v1/auth"

_STATUS_BY_CODE: dict[ErrorCode, int] = {
    ErrorCode.INVALID_INPUT: 422,
    ErrorCode.CONFLICT: 409,
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.ACCOUNT_DEACTIVATED: 403,
    ErrorCode.EMAIL_NOT_VERIFIED: 403,
    ErrorCode.INVALID_REFRESH_TOKEN: 401,
    ErrorCode.REFRESH_TOKEN_EXPIRED: 401,
    ErrorCode.INVALID_RESET_TOKEN: 400,
    ErrorCode.RESET_TOKEN_EXPIRED: 400,
    ErrorCode.INVALID_VERIFICATION_TOKEN: 400,
    ErrorCode.INTERNAL: 500,
}

_FORGOT_PASSWORD_MESSAGE = "If the email exists, reset instructions have been sent."


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _service(request: Request) -> SessionService:
    return request.app.state.session_service


def _now(request: Request) -> datetime:
    return request.app.state.clock()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _failure_response(result: AuthFailure) -> JSONResponse:
    resp = JSONResponse(
        status_code=_STATUS_BY_CODE[result.code],
        content=ErrorResponse(
            error=ErrorDetail(code=result.code.value, message=result.message, detail=result.detail)
        ).model_dump(),
    )
    return _no_store(resp)


def _message(message: str, status_code: int = 200) -> JSONResponse:
    return _no_store(JSONResponse(status_code=status_code, content=MessageResponse(message=message).model_dump()))


def _set_refresh_cookie(request: Request, resp: JSONResponse, token: str, expires_at: datetime) -> None:
    """Write the refresh token as an httpOnly cookie that expires with the token."""
    max_age = max(0, int((expires_at - _now(request)).total_seconds()))
    resp.set_cookie(
        REFRESH_COOKIE,
        value=token,
        httponly=True,
        samesite="strict",
        secure=request.app.state.settings.secure_cookies,
        max_age=max_age,
        path=_REFRESH_COOKIE_PATH,
    )


def _session_response(request: Request, session: AuthSession, status_code: int) -> JSONResponse:
    body = AuthResponse.from_session(session, _now(request))
    resp = JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
    _set_refresh_cookie(request, resp, session.tokens.refresh_token, session.tokens.refresh_expires_at)
    return _no_store(resp)


def _presented_refresh_token(request: Request, body: Optional[RefreshRequest]) -> Optional[str]:
    if body is not None and body.refresh_token:
        return body.refresh_token
    return request.cookies.get(REFRESH_COOKIE) or None


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account. The email must be verified before password login works."""
    result = _service(request).register(body.email, body.password, name=body.name, company=body.company)
    if isinstance(result, AuthFailure):
        return _failure_response(result)
    return _session_response(request, result, status_code=201)


@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same invalid_credentials
    response; the service equalizes timing between the two.
    """
    result = _service(request).login(body.email, body.password)
    if isinstance(result, AuthFailure):
        return _failure_response(result)
    return _session_response(request, result, status_code=200)


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is never valid again."""
    token = _presented_refresh_token(request, body)
    if token is None:
        return _failure_response(failure(ErrorCode.INVALID_REFRESH_TOKEN))
    result = _service(request).refresh(token)
    if isinstance(result, AuthFailure):
        resp = _failure_response(result)
        resp.delete_cookie(REFRESH_COOKIE, path=_REFRESH_COOKIE_PATH)
        return resp
    resp = JSONResponse(content=TokenResponse.from_pair(result, _now(request)).model_dump(mode="json"))
    _set_refresh_cookie(request, resp, result.refresh_token, result.refresh_expires_at)
    return _no_store(resp)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Revoke the presented refresh token and clear the cookie. Always 200."""
    result = _service(request).logout(_presented_refresh_token(request, body))
    if isinstance(result, AuthFailure):
        return _failure_response(result)
    resp = _message("Logged out.")
    resp.delete_cookie(REFRESH_COOKIE, path=_REFRESH_COOKIE_PATH)
    return resp


@router.get("/auth/verify-email/{token}", response_model=MessageResponse)
def verify_email(request: Request, token: str) -> JSONResponse:
    result = _service(request).verify_email(token)
    if isinstance(result, AuthFailure):
        return _failure_response(result)
    return _message("Email verified successfully.")


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> JSONResponse:
    """Always returns the same 200 response so account existence is not revealed."""
    _service(request).forgot_password(body.email)
    return _message(_FORGOT_PASSWORD_MESSAGE)


@router.post("/auth/reset-password/{token}", response_model=MessageResponse)
def reset_password(request: Request, token: str, body: ResetPasswordRequest) -> JSONResponse:
    """Set a new password. All existing sessions of the account are revoked."""
    result = _service(request).reset_password(token, body.password)
    if isinstance(result, AuthFailure):
        return _failure_response(result)
    return _message("Password reset successful.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(request: Request, identity: AccessClaims = Depends(get_current_identity)) -> JSONResponse:
    """Return the public profile of the authenticated user."""
    result = _service(request).get_user(identity.user_id)
    if isinstance(result, AuthFailure):
        return _failure_response(result)
    if result is None:
        return _no_store(
            JSONResponse(
                status_code=404,
                content=ErrorResponse(error=ErrorDetail(code="not_found", message="User not found.")).model_dump(),
            )
        )
    return _no_store(JSONResponse(content=UserResponse.from_public(result).model_dump(mode="json")))


@router.post("/auth/logout-all", response_model=MessageResponse)
def logout_all(request: Request, identity: AccessClaims = Depends(get_current_identity)) -> JSONResponse:
    """Revoke every refresh token of the authenticated user."""
    result = _service(request).logout_all(identity.user_id)
    if isinstance(result, AuthFailure):
        return _failure_response(result)
    resp = _message(f"Logged out of {result} session(s).")
    resp.delete_cookie(REFRESH_COOKIE, path=_REFRESH_COOKIE_PATH)
    return resp


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    identity: AccessClaims = Depends(get_current_identity),
) -> JSONResponse:
    """Replace the password after checking the current one. Every session is revoked."""
    result = _service(request).change_password(identity.user_id, body.current_password, body.new_password)
    if isinstance(result, AuthFailure):
        return _failure_response(result)
    resp = _message("Password changed successfully. Please login again.")
    resp.delete_cookie(REFRESH_COOKIE, path=_REFRESH_COOKIE_PATH)
    return resp


# ---------------------------------------------------------------------------
# Account lifecycle (admin only)
# ---------------------------------------------------------------------------


@router.post("/auth/users/{user_id}/deactivate", response_model=MessageResponse)
def deactivate_user(
    request: Request,
    user_id: int,
    identity: AccessClaims = Depends(require_role(Role.ADMIN)),
) -> JSONResponse:
    """Deactivate an account and revoke its refresh tokens. Admins cannot deactivate themselves."""
    if user_id == identity.user_id:
        return _no_store(
            JSONResponse(
                status_code=400,
                content=ErrorResponse(
                    error=ErrorDetail(code="self_deactivation", message="You cannot deactivate your own account.")
                ).model_dump(),
            )
        )
    result = _service(request).deactivate_user(user_id)
    if isinstance(result, AuthFailure):
        return _failure_response(result)
    if not result:
        return _no_store(
            JSONResponse(
                status_code=404,
                content=ErrorResponse(error=ErrorDetail(code="not_found", message="User not found.")).model_dump(),
            )
        )
    return _message("User deactivated.")
