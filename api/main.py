"""
api/main.py -- FastAPI application entry point for HostAuth.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds every process-scoped component exactly once and hands them
to the routes through app.state:

  settings -> SecretStore (ensure_dir) -> TokenCodec
           -> UserStore
           -> OAuthStateBroker + reaper task
           -> GoogleIdentityProvider (or None)
           -> IdentityService (facade over all of the above)

There are no module-level caches: the secret cache lives in the SecretStore
instance and the OAuth state map in the OAuthStateBroker instance, both owned
by this app for its lifetime.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.identity import IdentityService
from auth.oauth import GoogleIdentityProvider
from auth.secret_store import SecretStore
from auth.state import OAuthStateBroker
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings
from core.errors import AuthError

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("hostauth.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background reaper task
# ---------------------------------------------------------------------------


async def _reap_loop(app: FastAPI, interval_seconds: int) -> None:
    """Evict expired OAuth state entries every interval_seconds.

    Runs for the app's lifetime whether or not any callback ever arrives, so
    abandoned sign-ins cannot accumulate. A failed sweep is logged and the
    loop keeps going. CancelledError from task.cancel() during shutdown
    propagates out of asyncio.sleep and ends the loop.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            app.state.state_broker.purge_expired()
        except Exception:
            logger.exception("OAuth state sweep failed; retrying in %ss", interval_seconds)


async def _stop_task(task: asyncio.Task) -> None:
    """Cancel a background task and wait until it has actually finished."""
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task


# ---------------------------------------------------------------------------
# Lifespan -- explicit startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build and tear down application-level resources.

    Startup order matters:
      1. Secrets directory first -- a missing or unwritable JWT_SECRETS_DIR
         must stop the process before it accepts a single request.
      2. Stores and codec -- pure construction, no network.
      3. Reaper task last -- references app.state.state_broker.
    """
    settings = get_settings()
    logger.info("HostAuth starting up (debug=%s)", settings.debug)

    secret_store = SecretStore(settings.jwt_secrets_dir, allow_localhost=settings.debug)
    secret_store.ensure_dir()
    logger.info("Secrets directory ready: %s (%d domains)", settings.jwt_secrets_dir, len(secret_store.list()))

    app.state.settings = settings
    app.state.secret_store = secret_store
    app.state.user_store = UserStore(settings.database_url)
    app.state.state_broker = OAuthStateBroker()
    codec = TokenCodec(secret_store, expire_seconds=settings.token_expire_seconds)
    app.state.identity = IdentityService(
        app.state.user_store,
        codec,
        app.state.state_broker,
        identity_provider=GoogleIdentityProvider.from_settings(settings),
        password_min_length=settings.password_min_length,
    )
    app.state.reaper_task = asyncio.create_task(_reap_loop(app, settings.oauth_state_reap_seconds))

    yield

    # Shutdown
    await _stop_task(app.state.reaper_task)
    app.state.user_store.close()
    logger.info("HostAuth shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="HostAuth API",
    description="Single sign-on for many domains, one JWT signing secret per domain.",
    version=VERSION,
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
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

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
        "%s %s%s %d %.1fms %s",
        request.method,
        request.url.hostname or "-",
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


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the error taxonomy to fixed client messages.

    exc.detail (which file, which rule, which branch) is logged and never
    returned. InvalidDomain and SecretNotFound share one code and message, as
    do TokenInvalid and UserNotFound.
    """
    logger.warning(
        "%s on %s %s: %s",
        type(exc).__name__,
        request.method,
        request.url.path,
        exc.detail or "-",
    )
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )
    response.headers["Cache-Control"] = "no-store"
    return response


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
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a dict detail ({code, message});
    that dict is used directly as the error field.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
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

    The raw exception is written to the log only, never to the response body.
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
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and whether the secrets directory is readable."""
    secrets_ok = request.app.state.secret_store.secrets_dir.is_dir()
    return HealthResponse(
        version=VERSION,
        components={"app": "ok", "secrets": "ok" if secrets_ok else "error"},
    )
