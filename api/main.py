"""
api/main.py -- FastAPI application entry point for Gatehouse.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- access log line per request

Lifespan handles startup (database, SessionService, sweep task) and shutdown
(cancel sweep task, dispose engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.errors import AuthError
from auth.service import build_service
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatehouse.api")

# ---------------------------------------------------------------------------
# Background sweep task
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired refresh sessions every interval_seconds.

    The sweep only reclaims storage: validate() already rejects expired rows,
    so a late sweep never lets an expired token through. The DELETE runs in a
    worker thread so it does not block the event loop. CancelledError from
    task.cancel() during shutdown propagates out of asyncio.sleep and unwinds
    the coroutine cleanly. Anything else that escapes ends the loop and is
    reported by _log_sweep_exit.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(app.state.session_service.sweep_expired_sessions)
        except SQLAlchemyError:
            logger.exception("Refresh session sweep failed; retrying next interval")


def _log_sweep_exit(task: asyncio.Task) -> None:
    """Done-callback for the sweep task: an exit other than cancellation is an error."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Refresh session sweep stopped; expired sessions will no longer be purged", exc_info=exc)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. Settings are read once here: the signing key, TTLs and bcrypt
    cost stay fixed for the life of the process.
    """
    settings = get_settings()
    logger.info("Gatehouse API starting up")
    app.state.session_service = build_service(settings)
    logger.info(
        "Auth initialized (lockout_threshold=%d, require_email_verification=%s)",
        settings.lockout_threshold,
        settings.require_email_verification,
    )
    app.state.sweep_task = asyncio.create_task(_sweep_loop(app, settings.session_sweep_interval_seconds))
    app.state.sweep_task.add_done_callback(_log_sweep_exit)

    yield

    sweep_task = app.state.sweep_task
    # A sweep that already died was reported by _log_sweep_exit
    if not sweep_task.done():
        sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep_task
    app.state.session_service.db.close()
    logger.info("Gatehouse API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Gatehouse API",
    description="Password authentication, rotating refresh sessions and brute-force lockout.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost"],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor. Every request passes through this coroutine before
# reaching any route handler. Never logs bodies: they carry secrets and tokens.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    client = request.client.host if request.client else "-"
    logger.info(
        "%s %s -> %d in %.1fms (client %s)", request.method, request.url.path, response.status_code, elapsed_ms, client
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
# Every error body is {"error": {"code", "message", "detail"}}. Clients branch
# on code; status codes only group them.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any AuthError with its own status and stable error code.

    401 responses carry WWW-Authenticate so clients know a Bearer credential
    (or a refresh) is expected.
    """
    response = _error(exc.status_code, exc.error_code, exc.message)
    response.headers["Cache-Control"] = "no-store"
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 with one "location: message" entry per failing field.

    Input values are left out: a rejected body may still carry a secret.
    """
    problems = "; ".join(".".join(str(part) for part in err["loc"]) + ": " + err["msg"] for err in exc.errors())
    return _error(422, "validation_error", "Request validation failed.", problems)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing errors (404 unknown path, 405 wrong method) in the same envelope."""
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort, including an unreachable database. The traceback goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    try:
        database = "ok" if request.app.state.session_service.db.ping() else "error"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        database = "error"
    return HealthResponse(version=VERSION, components={"app": "ok", "database": database})
