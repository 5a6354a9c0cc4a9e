"""
api/main.py -- FastAPI application factory for docauth.

create_app(settings) builds one fully isolated application: its own store,
SessionManager, UserManager and mailer, all wired from the Settings object it
is given. Nothing here reads environment variables; asgi.py does that once.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- per-route rate limits from api.limiter

Lifespan opens the store on startup (unless one was injected), starts the
expired-session sweep task, and tears both down symmetrically.
"""

from __future__ import annotations

import asyncio
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

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.dependencies import AccessRedirect, access_redirect_handler
from auth.errors import AuthError
from auth.mailer import ResetMailer
from auth.sessions import SessionManager
from auth.store import DocumentStore
from auth.users import UserManager
from core.config import Settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("docauth.api")

# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: int) -> None:
    """Delete expired sessions every ``interval`` seconds.

    The sweep is blocking SQL, so it runs in a worker thread. A failed sweep
    is logged and retried on the next tick; fetch() still rejects expired
    sessions in the meantime, so nothing is exposed by a missed sweep.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(app.state.sessions.sweep_expired)
        except AuthError as exc:
            logger.error("session sweep failed: %s (cause: %r)", exc, exc.cause)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def _wire(app: FastAPI, settings: Settings, store: DocumentStore) -> None:
    sessions = SessionManager(store, settings)
    app.state.store = store
    app.state.sessions = sessions
    app.state.users = UserManager(store, sessions, settings)
    app.state.mailer = ResetMailer(settings)


def create_app(settings: Settings, store: DocumentStore | None = None) -> FastAPI:
    """Build the application.

    Args:
        settings: validated configuration. Required; there is no global default.
        store:    an already-open DocumentStore (tests pass an in-memory one).
                  When None, lifespan opens settings.database_url and closes it
                  on shutdown. An injected store is left open for its owner.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("docauth API starting up")
        owned = store is None
        active = store or DocumentStore(settings.database_url, unique_fields={settings.users_collection: "email"})
        _wire(app, settings, active)
        logger.info(
            "Auth initialized (users=%s, sessions=%s, session_life=%ds, mail=%s)",
            settings.users_collection,
            settings.sessions_collection,
            settings.session_life,
            "on" if app.state.mailer.configured else "off",
        )
        sweep_task = None
        if settings.sweep_interval_seconds > 0:
            sweep_task = asyncio.create_task(_sweep_loop(app, settings.sweep_interval_seconds))

        yield

        if sweep_task is not None:
            sweep_task.cancel()
        if owned:
            active.close()
        logger.info("docauth API shutdown complete")

    app = FastAPI(
        title="docauth API",
        description="Session and credential authentication over a document store.",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.limiter = limiter

    # Register in the order the request should meet them: TrustedHost -> CORS -> SlowAPI.
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH"],
        allow_headers=["Content-Type"],
        max_age=3600,
    )
    app.add_middleware(SlowAPIMiddleware)

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

    app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
    _register_exception_handlers(app)

    @app.get("/api/v1/health", tags=["Health"])
    def health(request: Request) -> HealthResponse:
        """Liveness plus a trivial store query. Never rate limited."""
        db_ok = request.app.state.store.ping()
        return HealthResponse(
            status="healthy" if db_ok else "degraded",
            version=VERSION,
            components={"app": "ok", "database": "ok" if db_ok else "error"},
        )

    return app


# ---------------------------------------------------------------------------
# Exception handlers
#
# All JSON errors share the ErrorResponse envelope. AccessRedirect is the one
# exception rendered as a redirect rather than JSON.
# ---------------------------------------------------------------------------


def _register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AccessRedirect, access_redirect_handler)

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        """Map a domain error to its status code.

        Client-side kinds (4xx) carry their message. Server-side kinds are
        logged with their cause and answered generically; integrity alarms are
        logged at CRITICAL.
        """
        status = exc.http_status
        if status < 500:
            error = ErrorDetail(code=exc.code, message=exc.message)
        else:
            log = logger.critical if exc.is_alarm else logger.error
            log("%s on %s %s: %s (cause: %r)", exc.code, request.method, request.url.path, exc, exc.cause)
            error = ErrorDetail(code="internal_error", message="An unexpected error occurred.")
        return JSONResponse(status_code=status, content=ErrorResponse(error=error).model_dump())

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
        """Return 429 with Retry-After when a rate limit is exceeded."""
        retry_after = int(getattr(exc, "retry_after", 60))
        response = JSONResponse(
            status_code=429,
            content=ErrorResponse(
                error=ErrorDetail(code="rate_limited", message="Too many requests.", detail=str(exc))
            ).model_dump(),
        )
        response.headers["Retry-After"] = str(retry_after)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Return 422 with a structured error when the body or query fails validation."""
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
        """Return a structured error for HTTPException.

        When detail is already a dict (our routes pass {"code", "message"}),
        use it as the error field directly rather than stringifying it.
        """
        if isinstance(exc.detail, dict):
            return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
            ).model_dump(),
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unexpected server errors.

        The traceback goes to the log only, never to the response body.
        """
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
            ).model_dump(),
        )
