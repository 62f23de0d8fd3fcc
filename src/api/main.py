"""FastAPI application entry point for the report portal.

Report lifecycle routers, lifecycle error mapping, and the timeout sweeper
started in the app lifespan.
"""

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.api.reports import router as reports_router
from src.api.validations import router as validations_router
from src.config.settings import get_settings
from src.reporting.errors import (
    AccessDeniedError,
    InputValidationError,
    InvalidStateError,
    NotFoundError,
    ReportLifecycleError,
)
from src.reporting.sweeper import TimeoutSweeper

APP_NAME = "UKNF Report Portal"
APP_VERSION = "0.1.0"

settings = get_settings()

_LOG_NAME_TO_LEVEL: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# --- Structured logging ---
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer() if settings.ENVIRONMENT == "dev"
        else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        _LOG_NAME_TO_LEVEL[settings.LOG_LEVEL.value],
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)
logging.basicConfig(level=_LOG_NAME_TO_LEVEL[settings.LOG_LEVEL.value])

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


# --- Lifespan ---


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = TimeoutSweeper.from_settings(settings) if settings.TIMEOUT_SWEEP_ENABLED else None
    if sweeper is not None:
        sweeper.start()
    logger.info("startup", app=APP_NAME, version=APP_VERSION, sweeper=sweeper is not None)
    try:
        yield
    finally:
        if sweeper is not None:
            await sweeper.stop()
        logger.info("shutdown", app=APP_NAME)


# --- FastAPI app ---
app = FastAPI(
    title="UKNF Report Portal API",
    description="Report submission and validation lifecycle for supervised entities.",
    version=APP_VERSION,
    lifespan=lifespan,
)

# --- CORS middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.ENVIRONMENT == "dev" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Lifecycle error mapping ---

_ERROR_STATUS: dict[type[ReportLifecycleError], int] = {
    NotFoundError: 404,
    AccessDeniedError: 403,
    InvalidStateError: 409,
    InputValidationError: 422,
}


@app.exception_handler(ReportLifecycleError)
async def lifecycle_error_handler(request: Request, exc: ReportLifecycleError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 400,
    )
    body: dict = {"error": exc.code, "detail": exc.message}
    field = getattr(exc, "field", None)
    if field:
        body["field"] = field
    logger.info(
        "lifecycle_error", path=request.url.path, status=status_code, error=exc.code,
    )
    return JSONResponse(status_code=status_code, content=body)


# --- Routers ---
app.include_router(reports_router)
app.include_router(validations_router)


# --- Infrastructure Endpoints (global) ---


@app.get("/health")
async def health_check() -> dict:
    """Liveness endpoint with component health checks.

    Returns 200 always (degraded status if components are down).
    """
    checks: dict[str, bool] = {"api": True}

    try:
        from src.db.session import async_session_factory
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception:
        checks["database"] = False

    all_ok = all(checks.values())

    return {
        "status": "ok" if all_ok else "degraded",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
        "checks": checks,
    }


@app.get("/api/version")
async def get_version() -> dict[str, str]:
    """Return application name, version, and environment."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
    }
