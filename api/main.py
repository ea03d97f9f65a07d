"""
api/main.py -- FastAPI application entry point for the pricing calculator auth API.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- one access-log line per request

Lifespan builds the auth components from Settings (engine, stores, hasher,
token issuer, mailer, session service), starts the refresh-token purge task,
and tears everything down symmetrically on shutdown.

Components are attached to app.state and reached by route handlers and
dependencies through request.app.state. Nothing in auth/ reads settings
itself, so tests build the same components with their own values via
init_auth_state().
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.db import create_auth_engine
from auth.email import BackgroundMailer, Mailer, SmtpMailer
from auth.passwords import PasswordHasher
from auth.refresh_store import RefreshTokenStore
from auth.service import SessionService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.clock import Clock, utc_now
from core.config import Settings, get_settings

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("pricecalc.api")

# ---------------------------------------------------------------------------
# Component assembly
# ---------------------------------------------------------------------------


def init_auth_state(
    app: FastAPI,
    settings: Settings,
    *,
    clock: Clock = utc_now,
    mailer: Mailer | None = None,
) -> None:
    """Build every auth component from settings and attach it to app.state.

    mailer defaults to an SmtpMailer wrapped in BackgroundMailer. Tests pass a
    recording mailer instead.
    """
    engine = create_auth_engine(settings.database_url)
    if mailer is None:
        mailer = BackgroundMailer(
            SmtpMailer(
                smtp_host=settings.smtp_host,
                smtp_port=settings.smtp_port,
                smtp_user=settings.smtp_user,
                smtp_password=settings.smtp_password,
                use_tls=settings.smtp_use_tls,
                from_email=settings.email_from,
                frontend_url=settings.frontend_url,
            )
        )
    users = UserStore(engine, clock=clock)
    refresh_store = RefreshTokenStore(
        engine,
        settings.secret_key,
        ttl=timedelta(days=settings.refresh_token_expire_days),
        clock=clock,
    )
    hasher = PasswordHasher(
        time_cost=settings.argon2_time_cost,
        memory_cost=settings.argon2_memory_cost,
        parallelism=settings.argon2_parallelism,
    )
    issuer = TokenIssuer(
        settings.secret_key,
        access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
        clock=clock,
    )

    app.state.settings = settings
    app.state.clock = clock
    app.state.engine = engine
    app.state.mailer = mailer
    app.state.user_store = users
    app.state.refresh_store = refresh_store
    app.state.token_issuer = issuer
    app.state.session_service = SessionService(
        users,
        refresh_store,
        hasher,
        issuer,
        secret_key=settings.secret_key,
        mailer=mailer,
        reset_token_ttl=timedelta(minutes=settings.reset_token_expire_minutes),
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired refresh tokens every refresh_purge_interval_seconds.

    Expiry is already enforced when a token is consumed, so a failed sweep is
    logged and retried on the next interval. CancelledError from task.cancel()
    during shutdown propagates out of asyncio.sleep and unwinds the coroutine.
    """
    interval = app.state.settings.refresh_purge_interval_seconds
    while True:
        await asyncio.sleep(interval)
        try:
            app.state.refresh_store.purge_expired()
        except SQLAlchemyError:
            logger.exception("Refresh token purge failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime."""
    logger.info("Pricing calculator auth API starting up")
    init_auth_state(app, get_settings())
    logger.info("Auth initialized")
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    if isinstance(app.state.mailer, BackgroundMailer):
        app.state.mailer.shutdown()
    app.state.engine.dispose()
    logger.info("Pricing calculator auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="SaaS Pricing Calculator Auth API",
    description="Registration, login, refresh rotation, password reset and email verification.",
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    # Log the route template, not the raw path: verify-email and
    # reset-password carry capability tokens in the URL.
    route = request.scope.get("route")
    path = getattr(route, "path", None) or request.url.path
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or params fail validation.

    Only field locations and messages are echoed. Input values are dropped
    because a rejected body may contain a password.
    """
    fields = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=fields,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Dependencies raise HTTPException with a dict detail ({"code", "message"}).
    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged server-side only, never written to the
    response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=API_VERSION)
