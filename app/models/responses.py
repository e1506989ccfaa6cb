# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
# They serve as the contract between backend and frontend:
# 1. Ensure consistent response structure across all endpoints
# 2. Automatically serialized to JSON by FastAPI
# 3. Generate OpenAPI response schemas (visible at /docs)
#
# DESIGN DECISION: Separate response models from DB models
# The status endpoint must omit `summary` until the document is COMPLETED,
# and the upload echo never carries timestamps. Response models control
# exactly what is exposed per endpoint.
# =============================================================================

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Body of every error response."""

    error: str
    code: str
    details: str | None = None


class UploadResponse(BaseModel):
    """
    Response for POST /api/upload.

    The summary is generated in the background; poll the status endpoint
    until it reports COMPLETED.
    """

    document_id: str
    filename: str
    raw_text: str
    status: str = Field(
        default="PENDING",
        description="Lifecycle status right after upload",
    )


class StatusResponse(BaseModel):
    """Response for GET /api/documents/{id}/status."""

    status: str
    summary: str | None = Field(
        default=None,
        description="Present only when status is COMPLETED",
    )


class DocumentResponse(BaseModel):
    """Full document record."""

    id: str
    filename: str
    raw_text: str
    summary: str | None = None
    status: str
    content_type: str
    file_size: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class QueryResponse(BaseModel):
    """Response for the non-streaming query endpoint."""

    document_id: str
    question: str
    answer: str


class HealthResponse(BaseModel):
    """Response for GET /health."""

    status: str
    timestamp: datetime
    version: str
    services: dict[str, str]
    uptime: str


class RouteMetrics(BaseModel):
    requests: int
    errors: int
    last_duration_ms: float


class MetricsResponse(BaseModel):
    """Response for GET /api/metrics, keyed by "METHOD path"."""

    routes: dict[str, RouteMetrics]
    total_requests: int
    total_errors: int
