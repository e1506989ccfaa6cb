# =============================================================================
# Request Metrics Middleware & Endpoint
# =============================================================================
#
# Records method, matched route, status and duration of every request into
# the RequestMetrics instance it was built with. GET /api/metrics exposes
# the counters.
#
# DESIGN DECISION: Starlette middleware (not a FastAPI dependency) because:
# 1. Middleware wraps the ENTIRE request lifecycle (captures status code)
# 2. Captures timing across the full request
# 3. Does not require every endpoint to explicitly opt-in
#
# Streaming responses are timed until their headers are sent, not until
# the last event.
# =============================================================================

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends
from starlette.middleware.base import (
    BaseHTTPMiddleware,
    RequestResponseEndpoint,
)
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from app.api.deps import Services, get_services
from app.models.responses import MetricsResponse
from app.services.metrics import RequestMetrics

logger = logging.getLogger(__name__)

# Endpoints not worth counting (docs)
_SKIP_PATHS = {"/docs", "/redoc", "/openapi.json"}

# Requests that matched no route share one key
UNMATCHED_ROUTE = "<unmatched>"

router = APIRouter(tags=["Metrics"])


class RequestMetricsMiddleware(BaseHTTPMiddleware):
    """Counts requests, errors and durations per route."""

    def __init__(self, app: ASGIApp, metrics: RequestMetrics) -> None:
        super().__init__(app)
        self.metrics = metrics

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        if request.url.path in _SKIP_PATHS:
            return await call_next(request)

        start_time = time.monotonic()
        try:
            response = await call_next(request)
        except Exception:
            self._record(request, 500, start_time)
            raise
        self._record(request, response.status_code, start_time)
        return response

    def _record(self, request: Request, status_code: int, start_time: float) -> None:
        elapsed_ms = (time.monotonic() - start_time) * 1000
        # The router stores the matched route in the shared scope
        route = request.scope.get("route")
        route_path = getattr(route, "path", None) or UNMATCHED_ROUTE
        self.metrics.record(request.method, route_path, status_code, elapsed_ms)


@router.get(
    "/api/metrics",
    response_model=MetricsResponse,
    summary="Request counters per route",
)
async def get_metrics(services: Services = Depends(get_services)) -> MetricsResponse:
    return MetricsResponse(**services.metrics.snapshot())
