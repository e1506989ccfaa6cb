# =============================================================================
# Health API — Liveness, Readiness and Dependency Probes
# =============================================================================
#
# ENDPOINTS:
#   GET /health, /api/health — probe every dependency; 503 if any fails
#   GET /ready               — probe only what requests need (database)
#   GET /live                — process is up; no dependency calls
#
# Probes are async callables held on the Services container (database
# SELECT 1, Redis PING). Each probe is bounded by a timeout so a hung
# dependency reports unhealthy instead of hanging the probe.
# =============================================================================

import asyncio
import logging
import time
from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.deps import HealthProbe, Services, get_services
from app.config import settings
from app.models.responses import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

HEALTH_PROBE_TIMEOUT_SECONDS = 5.0
READY_PROBE_TIMEOUT_SECONDS = 2.0


async def run_probes(
    probes: dict[str, HealthProbe],
    timeout: float,
) -> dict[str, str]:
    """Run probes concurrently; map each name to "healthy" or the failure."""

    async def _probe(name: str, probe: HealthProbe) -> tuple[str, str]:
        try:
            await asyncio.wait_for(probe(), timeout)
        except Exception as exc:
            logger.warning("Health probe %s failed: %s", name, exc)
            return name, f"unhealthy: {exc or type(exc).__name__}"
        return name, "healthy"

    results = await asyncio.gather(
        *(_probe(name, probe) for name, probe in probes.items())
    )
    return dict(results)


def _format_uptime(started_at: float) -> str:
    return str(timedelta(seconds=int(time.monotonic() - started_at)))


@router.get("/health", response_model=HealthResponse, summary="Dependency health")
@router.get("/api/health", response_model=HealthResponse, include_in_schema=False)
async def health_check(services: Services = Depends(get_services)) -> JSONResponse:
    checks = await run_probes(services.health_probes, HEALTH_PROBE_TIMEOUT_SECONDS)
    healthy = all(state == "healthy" for state in checks.values())

    body = HealthResponse(
        status="healthy" if healthy else "unhealthy",
        timestamp=datetime.now(UTC),
        version=settings.app_version,
        services=checks,
        uptime=_format_uptime(services.started_at),
    )
    return JSONResponse(
        status_code=200 if healthy else 503,
        content=body.model_dump(mode="json"),
    )


@router.get("/ready", summary="Readiness probe")
async def readiness_check(services: Services = Depends(get_services)) -> JSONResponse:
    checks = await run_probes(services.ready_probes, READY_PROBE_TIMEOUT_SECONDS)
    failed = [name for name, state in checks.items() if state != "healthy"]
    if failed:
        return JSONResponse(
            status_code=503,
            content={"status": "not ready", "reason": f"{', '.join(failed)} unavailable"},
        )
    return JSONResponse(content={"status": "ready"})


@router.get("/live", summary="Liveness probe")
async def liveness_check() -> dict:
    return {"status": "alive", "timestamp": datetime.now(UTC).isoformat()}
