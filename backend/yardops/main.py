"""
FastAPI application entry point with health endpoints and service routing.

Provides CORS, per-client rate limiting, request correlation, security
headers and a global exception handler. Shared clients (database engine,
Redis, Elasticsearch) are closed on shutdown.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Union

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from yardops.api.v1.emails import router as emails_router
from yardops.api.v1.leads import router as leads_router
from yardops.api.v1.orders import router as orders_router
from yardops.api.v1.reports import router as reports_router
from yardops.cache.redis_client import close_redis_client, get_redis_client
from yardops.core.config import get_settings
from yardops.core.logging import (
    clear_context,
    configure_logging,
    get_logger,
    get_request_id,
    log_performance,
    set_request_id,
)
from yardops.core.security import get_csp_headers
from yardops.database.connection import check_database_health, close_database_connections
from yardops.services.search.elasticsearch_client import (
    ElasticsearchError,
    close_elasticsearch_client,
    get_elasticsearch_client,
)

configure_logging()
logger = get_logger(__name__)

settings = get_settings()

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit_default])


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Log startup and release shared clients on shutdown.

    Redis and Elasticsearch connect lazily on first use, so startup does
    not fail when either is down.
    """
    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        version=settings.app_version,
        search_enabled=settings.elasticsearch_enabled,
    )

    yield

    logger.info("Application shutting down")
    with log_performance(logger, "application_shutdown"):
        await close_elasticsearch_client()
        await close_redis_client()
        await close_database_connections()
        logger.info("Resources cleaned up successfully")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Yard operations backend for auto-part orders",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    debug=settings.debug,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    for header, value in get_csp_headers().items():
        response.headers[header] = value
    return response


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    """
    Bind a request id for log correlation and time the request.

    The id is taken from ``X-Request-ID`` when the caller sends one and is
    echoed back on the response.
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


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return request validation failures as a 400 listing the offending fields."""
    errors = exc.errors()
    fields = [".".join(str(part) for part in error["loc"] if part != "body") for error in errors]
    logger.warning(
        "Request validation failed",
        method=request.method,
        path=request.url.path,
        fields=fields,
    )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "message": f"Invalid or missing fields: {', '.join(f for f in fields if f)}",
            "fields": fields,
            "details": [
                {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
                for error in errors
            ],
            "request_id": get_request_id(),
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected exceptions and return a generic 500 with the request id."""
    logger.error(
        "Unhandled exception",
        method=request.method,
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "message": "An unexpected error occurred",
            "request_id": get_request_id(),
        },
    )


@app.get(
    "/health",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Health check endpoint",
)
async def health_check() -> dict[str, str]:
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


async def _cache_status() -> str:
    try:
        client = await get_redis_client()
    except (RedisError, OSError) as e:
        logger.warning("Redis readiness check failed", error=str(e))
        return "unavailable"
    return "healthy" if await client.health_check() else "unavailable"


async def _search_status() -> str:
    if not settings.elasticsearch_enabled:
        return "disabled"
    try:
        client = await get_elasticsearch_client()
        health = await client.health_check()
    except ElasticsearchError as e:
        logger.warning("Elasticsearch readiness check failed", error=str(e))
        return "unavailable"
    return "healthy" if health.get("status") in ("green", "yellow") else "unavailable"


@app.get(
    "/ready",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Readiness check endpoint",
    response_model=None,
)
async def readiness_check() -> Union[dict[str, Union[str, bool]], JSONResponse]:
    """
    Ready when the database answers.

    Redis and Elasticsearch are reported but do not gate readiness: reports
    compute without the cache and search falls back to SQL.
    """
    db_ready = await check_database_health(max_retries=1)
    body = {
        "status": "ready" if db_ready else "not_ready",
        "service": settings.app_name,
        "version": settings.app_version,
        "dependencies_ready": db_ready,
        "database": "healthy" if db_ready else "unhealthy",
        "cache": await _cache_status(),
        "search": await _search_status(),
    }

    if not db_ready:
        logger.warning("Readiness check failed", dependencies_ready=False)
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body


@app.get(
    "/live",
    status_code=status.HTTP_200_OK,
    tags=["Health"],
    summary="Liveness check endpoint",
)
async def liveness_check() -> dict[str, str]:
    return {
        "status": "alive",
        "service": settings.app_name,
        "version": settings.app_version,
    }


app.include_router(orders_router, prefix=settings.api_v1_prefix)
app.include_router(emails_router, prefix=settings.api_v1_prefix)
app.include_router(reports_router, prefix=settings.api_v1_prefix)
app.include_router(leads_router, prefix=settings.api_v1_prefix)
