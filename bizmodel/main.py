"""
main.py — BizModelAI FastAPI application entry point.

Start with: uvicorn bizmodel.main:app --reload --port 8000
(run from the project root; migrations run from bizmodel/ next to alembic.ini)
"""
import asyncio
import logging
import os
import subprocess
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bizmodel.config import settings
from bizmodel.errors import AppError

# ---------------------------------------------------------------------------
# Logging — configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Background tasks
# ---------------------------------------------------------------------------
async def _every(name: str, interval: float, job: Callable[[], Awaitable[Any]]) -> None:
    """Run job every interval seconds. A failing run is logged; the loop keeps going."""
    while True:
        await asyncio.sleep(interval)
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.error("Background task %s failed", name, exc_info=True)


async def _sweep_session_cache(app: FastAPI) -> None:
    app.state.session_cache.sweep()


async def _sweep_rate_limiter(app: FastAPI) -> None:
    app.state.rate_limiter.sweep()


async def _sweep_email_cooldown(app: FastAPI) -> None:
    app.state.email_cooldown.sweep()


async def _cleanup_and_reconcile(app: FastAPI) -> None:
    from bizmodel.cleanup import run_cleanup
    from bizmodel.database import session_scope
    from bizmodel.payments.orchestrator import RECONCILE_LOOKBACK, reconcile_stripe_payments

    async with session_scope() as session:
        await run_cleanup(session)

    gateway = app.state.stripe_gateway
    if gateway is not None:
        async with session_scope() as session:
            since = datetime.now(timezone.utc) - RECONCILE_LOOKBACK
            repaired = await reconcile_stripe_payments(session, gateway, since)
        if repaired:
            logger.warning("Reconciliation repaired %d payment(s)", repaired)


def _loop_exception_handler(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    """Orphaned task/callback failures are logged; the process keeps serving."""
    exc = context.get("exception")
    logger.error(
        "Unhandled asyncio error: %s", context.get("message", "no message"),
        exc_info=(type(exc), exc, exc.__traceback__) if exc is not None else None,
    )


# ---------------------------------------------------------------------------
# Lifespan — startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Run Alembic migrations (auto-applied — no manual step needed)
      2. Redis pool + cookie session backend
      3. In-process session cache + AI rate limiter
      4. Payment gateways (None when not configured)
      5. Mistral client + semaphore
      6. Resend client + email cooldown
      7. Background sweeps + loop exception handler
    Shutdown:
      cancel sweeps, close PayPal and Resend HTTP clients, close Redis pool
    """
    # --- 1. Database: run Alembic migrations ---
    package_dir = os.path.dirname(os.path.abspath(__file__))
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
        cwd=package_dir,
    )
    if result.returncode != 0:
        logger.error("Alembic migration failed:\n%s", result.stderr)
        raise RuntimeError(f"Alembic migration failed: {result.stderr}")
    msg = result.stdout.strip() or "No pending migrations"
    logger.info("Alembic: %s", msg)

    # --- 2. Redis + session backend ---
    from bizmodel.cache import create_redis_pool
    from bizmodel.identity.cookie_session import RedisSessionBackend

    app.state.redis = await create_redis_pool()
    app.state.session_backend = RedisSessionBackend(app.state.redis)

    # --- 3. Session cache + rate limiter (per process) ---
    from bizmodel.ai.rate_limiter import RATE_LIMIT_SWEEP_SECONDS, RateLimiter
    from bizmodel.identity.session_cache import SESSION_CACHE_SWEEP_SECONDS, SessionCache

    app.state.session_cache = SessionCache()
    app.state.rate_limiter = RateLimiter()

    # --- 4. Payment gateways ---
    from bizmodel.payments.paypal_gateway import PayPalGateway
    from bizmodel.payments.stripe_gateway import StripeGateway

    app.state.stripe_gateway = (
        StripeGateway(settings.stripe_secret_key, settings.stripe_webhook_secret)
        if settings.stripe_configured else None
    )
    app.state.paypal_gateway = (
        PayPalGateway(settings.paypal_client_id, settings.paypal_client_secret, settings.paypal_base_url)
        if settings.paypal_configured else None
    )
    logger.info(
        "Payment providers stripe=%s paypal=%s",
        settings.stripe_configured, settings.paypal_configured,
    )

    # --- 5. Mistral client + semaphore (MUST be created inside async context) ---
    if settings.mistral_api_key:
        from mistralai import Mistral
        app.state.mistral = Mistral(api_key=settings.mistral_api_key)
        logger.info("Mistral client initialized model=%s", settings.ai_model)
    else:
        app.state.mistral = None
        logger.warning("MISTRAL_API_KEY not set — AI endpoints will return 503")
    app.state.ai_semaphore = asyncio.Semaphore(2)

    # --- 6. Email ---
    from bizmodel.notifications.cooldown import EMAIL_COOLDOWN_SWEEP_SECONDS, EmailCooldown
    from bizmodel.notifications.resend_client import ResendClient

    app.state.email_client = (
        ResendClient(settings.resend_api_key, settings.email_from, settings.resend_base_url)
        if settings.email_configured else None
    )
    app.state.email_cooldown = EmailCooldown()
    logger.info("Email provider resend=%s", settings.email_configured)

    # --- 7. Background sweeps ---
    asyncio.get_running_loop().set_exception_handler(_loop_exception_handler)
    tasks = [
        asyncio.create_task(_every(
            "session-cache-sweep", SESSION_CACHE_SWEEP_SECONDS, lambda: _sweep_session_cache(app),
        )),
        asyncio.create_task(_every(
            "rate-limit-sweep", RATE_LIMIT_SWEEP_SECONDS, lambda: _sweep_rate_limiter(app),
        )),
        asyncio.create_task(_every(
            "email-cooldown-sweep", EMAIL_COOLDOWN_SWEEP_SECONDS, lambda: _sweep_email_cooldown(app),
        )),
        asyncio.create_task(_every(
            "cleanup", settings.cleanup_interval_seconds, lambda: _cleanup_and_reconcile(app),
        )),
    ]

    logger.info("BizModelAI v%s starting up", settings.app_version)
    yield

    # --- Shutdown ---
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    if app.state.paypal_gateway is not None:
        await app.state.paypal_gateway.aclose()
    if app.state.email_client is not None:
        await app.state.email_client.aclose()
    await app.state.redis.aclose()
    logger.info("Redis connection pool closed")
    logger.info("BizModelAI shutting down")


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="BizModelAI API",
    version=settings.app_version,
    description=(
        "Business-model quiz backend: identity and sessions, tiered quiz storage, "
        "paid report unlocks and cached AI content."
    ),
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# ---------------------------------------------------------------------------
# Middleware — cookie session inside CORS
# ---------------------------------------------------------------------------
from bizmodel.identity.cookie_session import cookie_session_middleware

app.middleware("http")(cookie_session_middleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: Any = None,
    status_code: int = 500,
    extra: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build a standard {error, code, details?, **extra} response."""
    body: dict[str, Any] = {"error": message, "code": code}
    if details is not None:
        body["details"] = details
    if extra:
        body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Global exception handlers — registered BEFORE routers
# ---------------------------------------------------------------------------
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message,
            exc_info=exc.__cause__ is not None,
        )
    show_details = settings.debug or exc.expose_details
    return _make_error_response(
        code=exc.code,
        message=exc.message,
        details=exc.details if show_details else None,
        status_code=exc.status_code,
        extra=exc.extra,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Converts pydantic validation errors to 400 VALIDATION_ERROR.
    Returns ALL field violations in one response.
    """
    details = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Invalid input",
        details=details,
        status_code=400,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """
    Converts FastAPI HTTPException to standard error format with semantic code.
    """
    code_map = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        402: "PAYMENT_REQUIRED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        429: "RATE_LIMITED",
        503: "SERVICE_UNAVAILABLE",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Catch-all for unexpected errors.
    DEBUG=true  → includes exception type & message in details (dev only).
    DEBUG=false → generic message; full traceback logged server-side only.
    """
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=True,
    )
    details = f"{type(exc).__name__}: {exc}" if settings.debug else None
    return _make_error_response(
        code="INTERNAL_ERROR",
        message="Internal server error",
        details=details,
        status_code=500,
    )


# ---------------------------------------------------------------------------
# Health endpoint (no auth required)
# ---------------------------------------------------------------------------
@app.get("/api/health", tags=["System"])
async def health_check() -> dict:
    """Returns service health status."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from bizmodel.ai.routes import router as ai_router
from bizmodel.identity.routes import router as auth_router
from bizmodel.notifications.routes import router as email_router
from bizmodel.payments.admin_routes import router as admin_router
from bizmodel.payments.routes import router as payments_router
from bizmodel.quiz.routes import router as quiz_router
from bizmodel.reports.routes import router as reports_router

app.include_router(auth_router)
app.include_router(quiz_router)
app.include_router(payments_router)
app.include_router(admin_router)
app.include_router(ai_router)
app.include_router(reports_router)
app.include_router(email_router)
