# =============================================================================
# Request Metrics — In-Process Counters per Route
# =============================================================================
#
# Collects, per "METHOD /route/template":
#   - request count
#   - error count (status >= 400)
#   - duration of the most recent request
#
# Keys use the matched route template (e.g. /api/documents/{document_id})
# so per-document paths don't each get their own entry.
#
# One explicit instance lives on the Services container; the middleware
# in app/api/metrics.py records into it and GET /api/metrics reads it.
# =============================================================================

from __future__ import annotations

import threading
from dataclasses import dataclass


@dataclass
class RouteStats:
    requests: int = 0
    errors: int = 0
    last_duration_ms: float = 0.0


class RequestMetrics:
    """Thread-safe request counters keyed by method and route."""

    def __init__(self) -> None:
        self._routes: dict[str, RouteStats] = {}
        self._lock = threading.Lock()

    def record(
        self,
        method: str,
        route: str,
        status_code: int,
        duration_ms: float,
    ) -> None:
        key = f"{method} {route}"
        with self._lock:
            stats = self._routes.setdefault(key, RouteStats())
            stats.requests += 1
            stats.last_duration_ms = duration_ms
            if status_code >= 400:
                stats.errors += 1

    def snapshot(self) -> dict:
        with self._lock:
            routes = {
                key: {
                    "requests": stats.requests,
                    "errors": stats.errors,
                    "last_duration_ms": round(stats.last_duration_ms, 2),
                }
                for key, stats in self._routes.items()
            }
        return {
            "routes": routes,
            "total_requests": sum(r["requests"] for r in routes.values()),
            "total_errors": sum(r["errors"] for r in routes.values()),
        }

    def reset(self) -> None:
        with self._lock:
            self._routes.clear()
