# =============================================================================
# Application Factory — FastAPI App, Lifespan, Error Handlers
# =============================================================================
#
# create_app(services=None) builds the ASGI app:
#   - routers: documents, query, health, metrics
#   - CORS for the frontend origin
#   - RequestMetricsMiddleware
#   - exception handlers turning ServiceError into ErrorResponse bodies
#
# LIFESPAN:
#   startup:  ensure the schema, build the Services container (document
#             store, extractor, Celery task queue, AI client, proxy, rate
#             limiter, health probes), start the rate-limiter sweep
#   shutdown: stop the sweep, close the AI client and the task queue,
#             close Redis, dispose the database engine
#
# When a Services container is passed in (tests), the lifespan only
# starts/stops the sweep and closes what the container holds.
#
# Run with:  uvicorn app.main:app
# =============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import documents, health, metrics, query
from app.api.deps import Services
from app.api.metrics import RequestMetricsMiddleware
from app.config import settings
from app.db.engine import async_engine, async_session_factory, create_tables, ping_database
from app.errors import RateLimitExceeded, ServiceError
from app.models.responses import ErrorResponse
from app.services.documents import DocumentService, SqlAlchemyDocumentStore
from app.services.extractor import DocumentTextExtractor
from app.services.llm import AIClient
from app.services.metrics import RequestMetrics
from app.services.rate_limiter import SlidingWindowRateLimiter
from app.services.streaming import StreamingQueryProxy
from app.workers.celery_app import celery_app
from app.workers.queue import CeleryTaskQueue

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def build_services(
    request_metrics: RequestMetrics,
    redis_client: aioredis.Redis,
) -> Services:
    """Wire the production collaborators from settings."""
    task_queue = CeleryTaskQueue(celery_app)
    ai_client = AIClient.from_settings()

    async def ping_redis() -> None:
        await redis_client.ping()

    document_service = DocumentService(
        store=SqlAlchemyDocumentStore(async_session_factory),
        extractor=DocumentTextExtractor(),
        task_queue=task_queue,
    )
    return Services(
        documents=document_service,
        proxy=StreamingQueryProxy(ai_client),
        rate_limiter=SlidingWindowRateLimiter(),
        metrics=request_metrics,
        health_probes={"database": ping_database, "redis": ping_redis},
        ready_probes={"database": ping_database},
        ai_client=ai_client,
        task_queue=task_queue,
    )


# ---------------------------------------------------------------------------
# Exception Handlers
# ---------------------------------------------------------------------------


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers,
    )


async def validation_error_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    )
    body = ErrorResponse(
        error="Invalid request",
        code="INVALID_REQUEST",
        details=problems or None,
    )
    return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = ErrorResponse(error="Internal server error", code="INTERNAL_ERROR")
    return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_app(services: Services | None = None) -> FastAPI:
    request_metrics = services.metrics if services is not None else RequestMetrics()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting %s v%s", settings.app_name, settings.app_version)
        owns_resources = app.state.services is None
        redis_client = None

        if owns_resources:
            if settings.db_create_tables:
                await create_tables()
            redis_client = aioredis.from_url(settings.redis_url)
            app.state.services = build_services(request_metrics, redis_client)

        container: Services = app.state.services
        container.rate_limiter.start()
        try:
            yield
        finally:
            logger.info("Shutting down %s", settings.app_name)
            await container.rate_limiter.stop()
            await container.aclose()
            if owns_resources:
                await redis_client.aclose()
                await async_engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Upload legal documents, get plain-language summaries, and ask "
            "questions with streamed answers."
        ),
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(RequestMetricsMiddleware, metrics=request_metrics)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(documents.router)
    app.include_router(query.router)
    app.include_router(health.router)
    app.include_router(metrics.router)
    return app


configure_logging(settings.log_level)
app = create_app()
