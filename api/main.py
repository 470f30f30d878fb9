"""
api/main.py -- FastAPI application entry point for Gatekeeper.

Run with:      uvicorn asgi:app --reload

Middleware stack (registration order; Starlette wraps later registrations
around earlier ones):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for the configured client origin
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- carries the OAuth state between redirect and callback

Lifespan builds the stores and services once and hangs them on app.state;
route handlers read them from request.app.state. Shutdown closes the stores
symmetrically.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.permissions import router as permissions_router
from api.routes.v1.role_permissions import router as role_permissions_router
from api.routes.v1.roles import router as roles_router
from api.routes.v1.users import router as users_router
from auth.action_tokens import ActionTokenService
from auth.oauth import oauth as oauth_client
from auth.otp import OTPService
from auth.sessions import SessionTokenService
from auth.store import ActionTokenStore, UserStore
from auth.tokens import TokenCodec
from auth.users import UserService
from core.config import Settings, get_settings
from core.errors import AppError
from core.mailer import build_mailer
from rbac.service import SUPER_ADMIN_ROLE, RbacService
from rbac.store import RbacStore

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatekeeper.api")


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------


def wire_services(
    app: FastAPI,
    *,
    user_store: UserStore,
    action_store: ActionTokenStore,
    rbac_store: RbacStore,
    mailer,
    settings: Settings,
) -> None:
    """Build every service from its stores and attach them to app.state.

    Shared by the real lifespan and the test lifespan so both see the same
    object graph.
    """
    codec = TokenCodec.from_settings(settings)
    app.state.user_store = user_store
    app.state.action_store = action_store
    app.state.rbac_store = rbac_store
    app.state.mailer = mailer
    app.state.oauth = oauth_client
    app.state.user_service = UserService(user_store)
    app.state.session_service = SessionTokenService(user_store, codec)
    app.state.action_token_service = ActionTokenService(
        action_store, codec, window_seconds=settings.action_token_expire_seconds
    )
    app.state.otp_service = OTPService(
        user_store,
        mailer,
        settings.secret_key,
        length=settings.otp_length,
        expire_seconds=settings.otp_expire_seconds,
        max_attempts=settings.otp_max_attempts,
    )
    app.state.rbac_service = RbacService(rbac_store)


async def seed_defaults(app: FastAPI, settings: Settings) -> None:
    """Ensure the super-admin system role exists and, if configured, an admin user.

    The admin is created only when all three DEFAULT_ADMIN_* settings are set
    and no account with that email exists yet.
    """
    role = await app.state.rbac_service.ensure_system_role(SUPER_ADMIN_ROLE, "Holds every permission.")
    if not (settings.default_admin_email and settings.default_admin_username and settings.default_admin_password):
        return
    if app.state.user_store.get_by_email(settings.default_admin_email.strip().lower()) is not None:
        return
    user = await app.state.user_service.create_user(
        settings.default_admin_username,
        settings.default_admin_email,
        settings.default_admin_password,
        is_email_verified=True,
        role_id=role.id,
    )
    logger.info("Seeded default admin %s", user.id)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    settings = get_settings()
    logger.info("Gatekeeper API starting up")
    wire_services(
        app,
        user_store=UserStore(settings.database_url),
        action_store=ActionTokenStore(settings.database_url),
        rbac_store=RbacStore(settings.database_url),
        mailer=build_mailer(settings),
        settings=settings,
    )
    await seed_defaults(app, settings)
    logger.info("Services initialized (mailer=%s)", type(app.state.mailer).__name__)

    yield

    app.state.user_store.close()
    app.state.action_store.close()
    app.state.rbac_store.close()
    logger.info("Gatekeeper API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="Gatekeeper API",
    description="Accounts, sessions, single-use action tokens and role-based access control.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Registered innermost first: TrustedHost, CORS, SlowAPI, Session. The
# request logger below is registered last, so it also sees rejections.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[_settings.client_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    expose_headers=["Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# authlib stores the OAuth state in the session between the authorization
# redirect and the callback.
app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key, https_only=_settings.secure_cookies)

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
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(roles_router, prefix="/api/v1", tags=["Roles"])
app.include_router(permissions_router, prefix="/api/v1", tags=["Permissions"])
app.include_router(role_permissions_router, prefix="/api/v1", tags=["Role permissions"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Map a service-layer AppError to its status code and error code."""
    if exc.status_code >= 500:
        logger.error("AppError %s on %s %s", exc.code, request.method, request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.code, message=exc.message, detail=exc.detail),
        ).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_server_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    try:
        request.app.state.user_store.has_users()
        database = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components={"app": "ok", "database": database})
