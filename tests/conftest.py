"""
tests/conftest.py -- Shared test fixtures for the auth service and API tests.

This module provides:
  - FakeClock: a mutable clock injected into every component, so expiry tests
    move time forward instead of sleeping
  - RecordingMailer: captures the raw verification / reset tokens that would
    have been emailed
  - Unit fixtures: engine, stores, hasher, issuer and SessionService built on
    an isolated SQLite file under tmp_path
  - api_client: TestClient over the real FastAPI app with a patched lifespan
    that wires isolated components into app.state

Design: File-backed SQLite databases (not :memory:) are used because the
race tests and TestClient run work on several threads, and every thread must
see the same schema and data. A file in tmp_path also gives each test its own
database with no cleanup.

The DEBUG env var must be set before api.main is imported so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_auth_state
from auth.db import create_auth_engine
from auth.models import AuthSession
from auth.passwords import PasswordHasher
from auth.refresh_store import RefreshTokenStore
from auth.service import SessionService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.clock import utc_now
from core.config import Settings

TEST_SECRET = "test-secret-key-for-pricecalc-auth-0123456789"
PASSWORD = "Secure123!"

# Cheap Argon2 parameters: tests exercise behaviour, not hashing cost.
FAST_ARGON2 = {"time_cost": 1, "memory_cost": 1024, "parallelism": 1}


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock whose time only moves when a test advances it."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingMailer:
    """Mailer that records (email, raw token) pairs instead of sending."""

    def __init__(self) -> None:
        self.verifications: list[tuple[str, str]] = []
        self.resets: list[tuple[str, str]] = []
        self.fail = False

    def send_verification_email(self, to_email: str, token: str) -> None:
        if self.fail:
            raise ConnectionError("SMTP unavailable")
        self.verifications.append((to_email, token))

    def send_password_reset_email(self, to_email: str, token: str) -> None:
        if self.fail:
            raise ConnectionError("SMTP unavailable")
        self.resets.append((to_email, token))

    def verification_token_for(self, email: str) -> str:
        return [t for e, t in self.verifications if e == email][-1]

    def reset_token_for(self, email: str) -> str:
        return [t for e, t in self.resets if e == email][-1]


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine(tmp_path):
    eng = create_auth_engine(f"sqlite:///{tmp_path / 'auth.db'}")
    yield eng
    eng.dispose()


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(**FAST_ARGON2)


@pytest.fixture
def user_store(engine, clock) -> UserStore:
    return UserStore(engine, clock=clock)


@pytest.fixture
def refresh_store(engine, clock) -> RefreshTokenStore:
    return RefreshTokenStore(engine, TEST_SECRET, ttl=timedelta(days=7), clock=clock)


@pytest.fixture
def issuer(clock) -> TokenIssuer:
    return TokenIssuer(TEST_SECRET, access_ttl=timedelta(minutes=15), clock=clock)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def service(user_store, refresh_store, hasher, issuer, mailer, clock) -> SessionService:
    return SessionService(
        user_store,
        refresh_store,
        hasher,
        issuer,
        secret_key=TEST_SECRET,
        mailer=mailer,
        reset_token_ttl=timedelta(hours=1),
        clock=clock,
    )


def register_verified(
    service: SessionService, mailer: RecordingMailer, email: str = "alice@example.com", password: str = PASSWORD
) -> AuthSession:
    """Register an account and consume its verification token."""
    session = service.register(email, password, name="Alice")
    assert isinstance(session, AuthSession), session
    assert service.verify_email(mailer.verification_token_for(session.user.email)) is None
    return session


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, mailer: RecordingMailer):
    """Return an async context manager that replaces the real lifespan.

    Builds the same components as production from test settings, with the
    recording mailer, and skips the purge task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_auth_state(app, settings, clock=utc_now, mailer=mailer)
        yield
        app.state.engine.dispose()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, RecordingMailer], None, None]:
    """Yield (client, mailer) for API integration tests.

    One TestClient per test module for speed. Tests use distinct email
    addresses so they do not interfere with each other. base_url uses
    localhost so TrustedHostMiddleware accepts the requests.
    """
    db_path = tmp_path_factory.mktemp("api") / "auth.db"
    settings = Settings(
        debug=True,
        secret_key=TEST_SECRET,
        database_url=f"sqlite:///{db_path}",
        argon2_time_cost=FAST_ARGON2["time_cost"],
        argon2_memory_cost=FAST_ARGON2["memory_cost"],
        argon2_parallelism=FAST_ARGON2["parallelism"],
    )
    mailer = RecordingMailer()
    app.router.lifespan_context = _patch_lifespan(settings, mailer)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, mailer
