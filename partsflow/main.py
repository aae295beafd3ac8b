"""
FastAPI application entry point.

Wires the versioned routers, request logging, rate limiting, CORS and the
exception handlers that turn domain errors into the shared error envelope.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from partsflow.api.deps import limiter
from partsflow.api.v1.admin import router as admin_router
from partsflow.api.v1.comments import router as comments_router
from partsflow.api.v1.notifications import router as notifications_router
from partsflow.api.v1.orders import router as orders_router
from partsflow.api.v1.upsells import router as upsells_router
from partsflow.api.v1.webhooks import router as webhooks_router
from partsflow.core.config import get_settings
from partsflow.core.errors import PartsFlowError, ValidationError
from partsflow.core.logging import (
    clear_context,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
    setup_logging,
)
from partsflow.database.connection import (
    check_database_health,
    close_database_connections,
)
from partsflow.schemas.common import ErrorResponse, field_errors_from_pydantic

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
    )

    with log_performance(logger, "application_startup"):
        database_ready = await check_database_health()
        if not database_ready:
            logger.error("Database unreachable at startup")

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        await close_database_connections()


settings = get_settings()
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Parts ordering and valuation backend API",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    debug=settings.debug,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """
    Assign a request id, log the request and time it.

    The id is echoed back in ``X-Request-ID`` and included in error bodies.
    """
    request_id = set_request_id(request.headers.get("X-Request-ID"))

    logger.info(
        "Request received",
        method=request.method,
        path=request.url.path,
        client_host=request.client.host if request.client else None,
    )

    try:
        with log_performance(
            logger,
            "request_processing",
            method=request.method,
            path=request.url.path,
        ):
            response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
        )
        return response
    except Exception as e:
        logger.error(
            "Request failed",
            method=request.method,
            path=request.url.path,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        clear_context()


def _error_response(status_code: int, code: str, message: str, details: dict) -> JSONResponse:
    body = ErrorResponse(
        error=code,
        message=message,
        details=details,
        request_id=get_request_id(),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(PartsFlowError)
async def domain_exception_handler(request: Request, exc: PartsFlowError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "Request rejected",
        method=request.method,
        path=request.url.path,
        error_code=exc.code,
        error=exc.message,
        **{k: v for k, v in exc.context.items() if isinstance(v, (str, int, bool))},
    )
    return _error_response(exc.status_code, exc.code, exc.message, exc.details())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = field_errors_from_pydantic(list(exc.errors()))
    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        fields=[e.field for e in errors],
    )
    error = ValidationError("Request validation failed", errors=errors)
    return _error_response(error.status_code, error.code, error.message, error.details())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        "An unexpected error occurred",
        {},
    )


@app.get("/health", tags=["Health"], summary="Health check")
async def health_check() -> dict[str, str]:
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@app.get("/health/ready", tags=["Health"], summary="Readiness check")
async def readiness_check():
    """Ready when the database answers ``SELECT 1``."""
    if not await check_database_health(max_retries=1):
        logger.warning("Readiness check failed")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "database": "unhealthy"},
        )
    return {"status": "ready", "database": "healthy"}


@app.get("/health/live", tags=["Health"], summary="Liveness check")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive", "service": settings.app_name}


for router in (
    orders_router,
    comments_router,
    admin_router,
    notifications_router,
    webhooks_router,
    upsells_router,
):
    app.include_router(router, prefix=settings.api_v1_prefix)
