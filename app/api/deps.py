# =============================================================================
# API Dependencies — Services Container & Rate Limiting
# =============================================================================
#
# Route handlers never build their collaborators. Everything they need
# lives in one Services container on `app.state.services`, created by the
# application factory (or handed in by tests) and reached through FastAPI
# dependencies:
#
#   get_services()        — the container itself
#   get_document_service() — upload / status / readiness
#   get_query_proxy()      — streamed answers
#   enforce_rate_limit()   — per-client sliding window, raises 429
#
# DESIGN DECISION: FastAPI dependency (not middleware) for rate limiting.
# Each endpoint opts in via Depends(enforce_rate_limit), so health probes
# and metrics are never throttled.
# =============================================================================

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from fastapi import Depends, Request

from app.errors import RateLimitExceeded
from app.services.documents import DocumentService
from app.services.llm import AIClient
from app.services.metrics import RequestMetrics
from app.services.rate_limiter import SlidingWindowRateLimiter
from app.services.streaming import StreamingQueryProxy
from app.workers.queue import TaskQueue

logger = logging.getLogger(__name__)

# Raises when the dependency is unreachable
HealthProbe = Callable[[], Awaitable[None]]


@dataclass
class Services:
    """Everything the routes depend on, built once per application."""

    documents: DocumentService
    proxy: StreamingQueryProxy
    rate_limiter: SlidingWindowRateLimiter
    metrics: RequestMetrics = field(default_factory=RequestMetrics)
    health_probes: dict[str, HealthProbe] = field(default_factory=dict)
    ready_probes: dict[str, HealthProbe] = field(default_factory=dict)
    ai_client: AIClient | None = None
    task_queue: TaskQueue | None = None
    started_at: float = field(default_factory=time.monotonic)

    async def aclose(self) -> None:
        """Release the AI client and the task queue."""
        if self.ai_client is not None:
            await self.ai_client.aclose()
        if self.task_queue is not None:
            self.task_queue.close()


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_document_service(
    services: Services = Depends(get_services),
) -> DocumentService:
    return services.documents


def get_query_proxy(
    services: Services = Depends(get_services),
) -> StreamingQueryProxy:
    return services.proxy


def client_key(request: Request) -> str:
    """Identify the caller by its network address."""
    return request.client.host if request.client else "unknown"


def enforce_rate_limit(
    request: Request,
    services: Services = Depends(get_services),
) -> None:
    """
    FastAPI dependency that throttles the caller.

    Raises:
        RateLimitExceeded: the client used up its window (429 + Retry-After).
    """
    limiter = services.rate_limiter
    key = client_key(request)
    if not limiter.allow(key):
        logger.debug("Rejected request from %s (rate limit)", key)
        raise RateLimitExceeded(limiter.limit, limiter.window_seconds)
