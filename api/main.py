"""
api/main.py -- FastAPI application entry point for micro-crm.

Run with:  uvicorn asgi:app --reload

Middleware, in registration order (Starlette wraps the last one outermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for the web UI origin
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- signed cookie, used only when OIDC_VERIFY_STATE is on

Lifespan builds every collaborator once (build_state), stores the
AuthService aggregate on app.state.auth, starts the token-store purge loop,
and tears everything down symmetrically on shutdown.

Errors: every AuthError subclass is rendered by one handler into the shared
{"error": {code, message, detail}} envelope with the status the class
carries.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.companies import router as companies_router
from api.routes.contacts import router as contacts_router
from api.routes.oidc import router as oidc_router
from api.routes.profile import router as profile_router
from auth.credentials import CredentialStore
from auth.errors import AuthError
from auth.oidc import build_oidc_bridge
from auth.ownership import OwnershipGuard
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenIssuer
from cache.token_store import IDTokenStore
from core.config import Settings, get_settings
from crm.store import CRMStore

__version__ = "0.1.0"

# Expired ID tokens are also evicted lazily on read; this only bounds disk use.
_PURGE_INTERVAL_SECONDS = 60 * 60

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("microcrm.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Purge expired ID tokens every hour until cancelled at shutdown."""
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        try:
            removed = app.state.auth.token_store.purge_expired()
        except sqlite3.Error as exc:
            logger.warning("Token store purge failed: %s", exc)
            continue
        if removed:
            logger.info("Purged %d expired ID tokens", removed)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


async def build_state(
    app: FastAPI,
    settings: Settings,
    oidc_transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Construct every collaborator and attach them to app.state.

    UserStore and CRMStore share DATABASE_URL; the ownership guard runs on
    the CRM engine because that is where the owned tables live.
    """
    app.state.settings = settings
    directory = UserStore(settings.database_url)
    crm = CRMStore(settings.database_url)
    app.state.crm = crm
    app.state.auth = AuthService(
        credentials=CredentialStore(settings.bcrypt_rounds),
        issuer=TokenIssuer(settings.secret_key),
        directory=directory,
        guard=OwnershipGuard(crm.engine),
        token_store=IDTokenStore(settings.token_store_path),
        oidc=await build_oidc_bridge(settings, transport=oidc_transport),
    )
    logger.info(
        "Auth initialized (users=%d, federated_login=%s)",
        directory.count_users(),
        app.state.auth.federated_enabled,
    )


def close_state(app: FastAPI) -> None:
    app.state.crm.close()
    app.state.auth.directory.close()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup before yield, shutdown after.

    A database that cannot be opened raises here and aborts startup. An
    unreachable identity provider does not: federated login is simply off.
    """
    logger.info("micro-crm API starting up")
    await build_state(app, get_settings())
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    with suppress(asyncio.CancelledError):
        await app.state.purge_task
    close_state(app)
    logger.info("micro-crm API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="micro-crm API",
    description="Multi-tenant CRM backend with JWT sessions and optional OIDC login.",
    version=__version__,
    lifespan=lifespan,
)

_settings = get_settings()

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# Holds the OIDC state value between /login/oidc and the callback when
# OIDC_VERIFY_STATE is on. Unused otherwise.
app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key, same_site="lax")

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
#
# Public: /register, /login, /login/oidc, /login/oidc/callback.
# Bearer-protected: /logout/oidc and everything under /api (router-level
# require_user_id dependency).
# ---------------------------------------------------------------------------

app.include_router(auth_router, tags=["Auth"])
app.include_router(oidc_router, tags=["OIDC"])
app.include_router(profile_router, prefix="/api", tags=["Profile"])
app.include_router(companies_router, prefix="/api", tags=["Companies"])
app.include_router(contacts_router, prefix="/api", tags=["Contacts"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any AuthError with its own status and code.

    Server-side classes (5xx) are logged. Client errors are not: a 401 is
    routine and its message never contains token material anyway.
    """
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    response = _error_response(exc.status_code, exc.code, exc.message, exc.detail)
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a login or register limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(400, "validation_error", "Invalid request payload.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors. The traceback goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Not rate limited and not authenticated: load balancers poll it.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus a database round-trip check."""
    database = "ok"
    try:
        with request.app.state.crm.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Health check database failure: %s", exc)
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=__version__,
        components={"app": "ok", "database": database},
    )
