"""Subscription System backend: FastAPI application entry point."""

import signal
import uuid
from contextlib import asynccontextmanager

# configure_structlog must run before the other app imports: structlog caches
# the processor chain on first use.
from subscription_system.core.logging import configure_structlog
from subscription_system.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else "INFO",
    json_logs=not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from subscription_system.api.routes import api_router
from subscription_system.core.config import Settings, get_settings
from subscription_system.core.exceptions import SubscriptionSystemError
from subscription_system.db import close_db, get_session_factory, init_db
from subscription_system.middleware.correlation import (
    get_correlation_id,
    setup_correlation_middleware,
)
from subscription_system.store.base import SubscriptionStore
from subscription_system.store.memory import InMemorySubscriptionStore
from subscription_system.store.sql import SqlSubscriptionStore

logger = structlog.get_logger(__name__)


def validate_stripe_config(settings: Settings) -> None:
    """Fail fast if Stripe credentials are missing at startup."""
    if settings.debug:
        return  # Skip in dev/test mode
    required = {
        "stripe_secret_key": settings.stripe_secret_key,
        "stripe_webhook_secret": settings.stripe_webhook_secret,
    }
    missing = [k for k, v in required.items() if not v]
    if missing:
        raise RuntimeError(f"Missing Stripe configuration at startup: {missing}")


async def build_store(settings: Settings) -> SubscriptionStore:
    """SQL store when DATABASE_URL is set, otherwise the in-memory store."""
    if not settings.database_url:
        logger.warning("store_in_memory", reason="no_database_url")
        return InMemorySubscriptionStore()

    await init_db(settings.database_url, echo=settings.debug)
    logger.info("db_initialized")
    return SqlSubscriptionStore(get_session_factory())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Graceful shutdown flag: the SIGTERM handler flips it so the health check returns 503
    app.state.shutting_down = False

    def handle_sigterm(signum, frame):
        app.state.shutting_down = True
        logger.info("sigterm_received", action="health_check_503_draining_connections")

    signal.signal(signal.SIGTERM, handle_sigterm)

    settings = get_settings()
    logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

    validate_stripe_config(settings)
    logger.info("stripe_config_validated")

    app.state.store = await build_store(settings)

    yield

    logger.info("shutdown_begin")
    await close_db()
    logger.info("shutdown_complete")


def _error_response(request: Request, status_code: int, detail, event: str, **extra) -> JSONResponse:
    debug_id = str(uuid.uuid4())
    logger.error(
        event,
        detail=detail,
        status_code=status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        user_id=getattr(request.state, "user_id", None),
        **extra,
    )
    return JSONResponse(status_code=status_code, content={"detail": detail, "debug_id": debug_id})


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Log HTTPExceptions server-side and return them with a debug_id."""
    return _error_response(request, exc.status_code, exc.detail, "http_exception")


async def subscription_error_handler(request: Request, exc: SubscriptionSystemError) -> JSONResponse:
    """Render domain errors with their stable code and HTTP status."""
    return _error_response(
        request,
        exc.status_code,
        {"code": exc.code, "message": str(exc)},
        "subscription_error",
        error_code=exc.code,
        error=str(exc),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unhandled errors with traceback and return a generic 500."""
    return _error_response(
        request,
        500,
        "Internal server error",
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )


def install_exception_handlers(app: FastAPI) -> None:
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(SubscriptionSystemError)(subscription_error_handler)
    app.exception_handler(Exception)(generic_exception_handler)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Subscription billing backend over Stripe",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list({settings.frontend_url, *settings.cors_allowed_origins}),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    install_exception_handlers(app)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "subscription_system.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
