# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for a specific feature:
#   - documents.py: Upload, status polling and document retrieval
#   - query.py: Streamed (SSE) and collected answers to questions
#   - health.py: Health, readiness and liveness probes
#   - metrics.py: Request metrics middleware and endpoint
#   - deps.py: Services container, dependencies and rate limiting
# =============================================================================
