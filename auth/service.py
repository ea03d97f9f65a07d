"""
auth/service.py -- Session service: register, login, refresh, logout, password
reset and email verification.

This is the only layer that owns business rules and failure semantics. It
orchestrates UserStore, RefreshTokenStore, PasswordHasher and TokenIssuer,
all passed in through the constructor. Nothing here reads global settings,
so tests build a service with their own secret, clock and mailer.

Result convention:
  Every public operation returns either its success value or an AuthFailure.
  Callers must check ``isinstance(result, AuthFailure)``. Storage, hashing and
  signing exceptions are caught at this boundary, logged with full detail,
  and returned as an opaque ``internal`` failure. Nothing below this layer
  leaks a raw database error to the HTTP boundary.

Enumeration resistance:
  login runs a full Argon2 verify against a dummy hash when the email is
  unknown, and returns the same InvalidCredentials failure for an unknown
  email and a wrong password. forgot_password returns None whether or not the
  email exists. Unknown and already-used refresh tokens are both
  InvalidRefreshToken.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import functools
import logging
from datetime import timedelta

from argon2.exceptions import HashingError
from jose import JWTError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.email import Mailer
from auth.errors import AuthFailure, ErrorCode, failure
from auth.models import AuthSession, PublicUser, TokenPair, User
from auth.passwords import PasswordHasher
from auth.refresh_store import ConsumeStatus, RefreshTokenStore
from auth.store import UserStore
from auth.tokens import TokenIssuer, generate_opaque_token, hash_token
from auth.validation import normalize_email, validate_email, validate_name, validate_password
from core.clock import Clock, utc_now

logger = logging.getLogger("pricecalc.auth")


def _internal_errors_as_failure(method):
    """Translate storage/crypto exceptions raised inside an operation into an internal failure."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except (SQLAlchemyError, HashingError, JWTError):
            logger.exception("%s failed with an internal error", method.__name__)
            return failure(ErrorCode.INTERNAL)

    return wrapper


class SessionService:
    """Credential and session lifecycle operations.

    Usage:
        service = SessionService(users, refresh_tokens, hasher, issuer, secret_key=key, mailer=mailer)
        result = service.login("alice@example.com", "Secure123!")
        if isinstance(result, AuthFailure):
            ...
    """

    def __init__(
        self,
        users: UserStore,
        refresh_tokens: RefreshTokenStore,
        hasher: PasswordHasher,
        issuer: TokenIssuer,
        *,
        secret_key: str,
        mailer: Mailer | None = None,
        reset_token_ttl: timedelta = timedelta(hours=1),
        clock: Clock = utc_now,
    ) -> None:
        self._users = users
        self._refresh_tokens = refresh_tokens
        self._hasher = hasher
        self._issuer = issuer
        self._secret_key = secret_key
        self._mailer = mailer
        self._reset_token_ttl = reset_token_ttl
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _digest(self, raw_token: str) -> str:
        return hash_token(self._secret_key, raw_token)

    def _issue_pair(self, user: User) -> TokenPair:
        access_token, access_expires_at = self._issuer.issue_access(user.id, user.role)
        refresh_token, refresh_expires_at = self._refresh_tokens.issue(user.id)
        return TokenPair(
            access_token=access_token,
            access_expires_at=access_expires_at,
            refresh_token=refresh_token,
            refresh_expires_at=refresh_expires_at,
        )

    def _notify(self, kind: str, to_email: str, token: str) -> None:
        """Hand a token to the mailer. Delivery failures are logged, never raised."""
        if self._mailer is None:
            return
        send = (
            self._mailer.send_verification_email if kind == "verification" else self._mailer.send_password_reset_email
        )
        try:
            send(to_email, token)
        except Exception:
            logger.exception("Failed to send %s email", kind)

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    @_internal_errors_as_failure
    def register(
        self,
        email: str,
        password: str,
        name: str | None = None,
        company: str | None = None,
    ) -> AuthSession | AuthFailure:
        """Create an unverified account and return it with a first token pair."""
        email = normalize_email(email)
        for reason in (validate_email(email), validate_password(password), validate_name(name)):
            if reason:
                return failure(ErrorCode.INVALID_INPUT, reason)

        if self._users.get_by_email(email) is not None:
            return failure(ErrorCode.CONFLICT)

        verify_token = generate_opaque_token()
        user = User(
            email=email,
            password_hash=self._hasher.hash(password),
            name=name.strip() if name else None,
            company=(company or "").strip() or None,
            email_verify_token=self._digest(verify_token),
        )
        try:
            user_id = self._users.create_user(user)
        except IntegrityError:
            # Lost a race with a concurrent registration for the same email.
            return failure(ErrorCode.CONFLICT)

        created = self._users.get_by_id(user_id)
        self._notify("verification", email, verify_token)
        tokens = self._issue_pair(created)
        logger.info("User registered (user_id=%s)", user_id)
        return AuthSession(user=PublicUser.from_user(created), tokens=tokens)

    @_internal_errors_as_failure
    def login(self, email: str, password: str) -> AuthSession | AuthFailure:
        """Authenticate with email and password.

        Credential checks come first and share one failure; the account state
        gates (deactivated, then unverified) only run once the caller has
        proven knowledge of the password.
        """
        user = self._users.get_by_email(normalize_email(email))
        if user is None:
            # Equalize timing -- do NOT return before running the hasher.
            self._hasher.verify_dummy(password)
            return failure(ErrorCode.INVALID_CREDENTIALS)
        if not self._hasher.verify(user.password_hash, password):
            logger.info("Login rejected: bad password (user_id=%s)", user.id)
            return failure(ErrorCode.INVALID_CREDENTIALS)
        if not user.is_active:
            return failure(ErrorCode.ACCOUNT_DEACTIVATED)
        if not user.email_verified:
            return failure(ErrorCode.EMAIL_NOT_VERIFIED)

        if self._hasher.needs_rehash(user.password_hash):
            self._users.update_user(user.id, password_hash=self._hasher.hash(password))
            logger.info("Upgraded password hash (user_id=%s)", user.id)
        self._users.update_last_login(user.id)
        user = self._users.get_by_id(user.id)
        tokens = self._issue_pair(user)
        logger.info("User logged in (user_id=%s)", user.id)
        return AuthSession(user=PublicUser.from_user(user), tokens=tokens)

    # ------------------------------------------------------------------
    # Refresh rotation and logout
    # ------------------------------------------------------------------

    @_internal_errors_as_failure
    def refresh(self, refresh_token: str) -> TokenPair | AuthFailure:
        """Rotate a refresh token into a brand-new access/refresh pair.

        The presented token is consumed before anything else happens. If a
        later step fails the old token stays consumed (fail-closed) and the
        client must log in again.
        """
        result = self._refresh_tokens.consume(refresh_token)
        if result.status is ConsumeStatus.EXPIRED:
            return failure(ErrorCode.REFRESH_TOKEN_EXPIRED)
        if result.status is not ConsumeStatus.OK:
            return failure(ErrorCode.INVALID_REFRESH_TOKEN)

        user = self._users.get_by_id(result.user_id)
        if user is None or not user.is_active:
            self._refresh_tokens.revoke_all(result.user_id)
            logger.warning("Refresh rejected for missing or inactive user (user_id=%s)", result.user_id)
            return failure(ErrorCode.INVALID_REFRESH_TOKEN)
        return self._issue_pair(user)

    @_internal_errors_as_failure
    def logout(self, refresh_token: str | None) -> None | AuthFailure:
        """Revoke the presented refresh token. Succeeds even if it was already invalid."""
        if refresh_token:
            self._refresh_tokens.revoke(refresh_token)
        return None

    @_internal_errors_as_failure
    def logout_all(self, user_id: int) -> int | AuthFailure:
        """Revoke every refresh token of user_id. Returns how many were removed."""
        revoked = self._refresh_tokens.revoke_all(user_id)
        logger.info("Revoked %d refresh tokens (user_id=%s)", revoked, user_id)
        return revoked

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> None:
        """Start a password reset. Always returns None, whether or not the email exists.

        Internal errors are logged but not reported: reporting them would only
        happen on the "user exists" branch and so would reveal the account.
        """
        try:
            user = self._users.get_by_email(normalize_email(email))
            if user is None:
                return None
            reset_token = generate_opaque_token()
            self._users.set_reset_token(user.id, self._digest(reset_token), self._clock() + self._reset_token_ttl)
        except SQLAlchemyError:
            logger.exception("forgot_password failed with an internal error")
            return None
        self._notify("password reset", user.email, reset_token)
        logger.info("Password reset requested (user_id=%s)", user.id)
        return None

    @_internal_errors_as_failure
    def reset_password(self, token: str, new_password: str) -> None | AuthFailure:
        """Set a new password using a reset token, then revoke every session."""
        token_hash = self._digest(token)
        user = self._users.get_by_reset_token(token_hash)
        if user is None or user.reset_token_expiry is None:
            return failure(ErrorCode.INVALID_RESET_TOKEN)
        if user.reset_token_expiry <= self._clock():
            return failure(ErrorCode.RESET_TOKEN_EXPIRED)
        reason = validate_password(new_password)
        if reason:
            return failure(ErrorCode.INVALID_INPUT, reason)

        if not self._users.complete_password_reset(user.id, token_hash, self._hasher.hash(new_password)):
            return failure(ErrorCode.INVALID_RESET_TOKEN)
        revoked = self._refresh_tokens.revoke_all(user.id)
        logger.info("Password reset completed (user_id=%s, revoked_sessions=%d)", user.id, revoked)
        return None

    @_internal_errors_as_failure
    def change_password(self, user_id: int, current_password: str, new_password: str) -> None | AuthFailure:
        """Replace the password of an authenticated user, then revoke every session.

        The caller must log in again with the new password.
        """
        user = self._users.get_by_id(user_id)
        if user is None:
            self._hasher.verify_dummy(current_password)
            return failure(ErrorCode.INVALID_CREDENTIALS)
        if not self._hasher.verify(user.password_hash, current_password):
            logger.info("Password change rejected: bad current password (user_id=%s)", user_id)
            return failure(ErrorCode.INVALID_CREDENTIALS)
        reason = validate_password(new_password)
        if reason:
            return failure(ErrorCode.INVALID_INPUT, reason)

        self._users.update_user(user_id, password_hash=self._hasher.hash(new_password))
        revoked = self._refresh_tokens.revoke_all(user_id)
        logger.info("Password changed (user_id=%s, revoked_sessions=%d)", user_id, revoked)
        return None

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    @_internal_errors_as_failure
    def verify_email(self, token: str) -> None | AuthFailure:
        token_hash = self._digest(token)
        user = self._users.get_by_verify_token(token_hash)
        if user is None or not self._users.mark_email_verified(user.id, token_hash):
            return failure(ErrorCode.INVALID_VERIFICATION_TOKEN)
        logger.info("Email verified (user_id=%s)", user.id)
        return None

    # ------------------------------------------------------------------
    # Account lifecycle hooks
    # ------------------------------------------------------------------

    @_internal_errors_as_failure
    def deactivate_user(self, user_id: int) -> bool | AuthFailure:
        """Deactivate an account and revoke its refresh tokens. False if the user does not exist."""
        if not self._users.update_user(user_id, is_active=False):
            return False
        revoked = self._refresh_tokens.revoke_all(user_id)
        logger.info("User deactivated (user_id=%s, revoked_sessions=%d)", user_id, revoked)
        return True

    @_internal_errors_as_failure
    def get_user(self, user_id: int) -> PublicUser | None | AuthFailure:
        user = self._users.get_by_id(user_id)
        return PublicUser.from_user(user) if user is not None else None
