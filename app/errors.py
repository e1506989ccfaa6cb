# =============================================================================
# Service Errors — Stable, Machine-Readable Failure Categories
# =============================================================================
#
# Every caller-facing failure is a ServiceError subclass carrying:
#   - code:        stable category string clients can switch on
#   - message:     human-readable description
#   - status_code: HTTP status used by the API exception handlers
#   - details:     optional extra context (e.g. the underlying cause)
#
# Route handlers and services raise these; app/main.py turns them into
# ErrorResponse bodies. Underlying exceptions are chained with
# `raise ... from exc` so the cause survives into the logs.
#
# TAXONOMY:
#   ValidationError          400  bad or missing input
#   EmptyDocumentError       400  extraction produced no text
#   NotFoundError            404  unknown document id
#   DocumentNotReadyError    409  query against a non-COMPLETED document
#   InvalidTransitionError   409  lifecycle violation (terminal status left)
#   ExtractionError          422  text extraction failed
#   RateLimitExceeded        429  client throttled
#   AIServiceError           502  model backend failure
#   QueueEnqueueError        503  broker refused the task
#   SummaryGenerationError   500  worker-side summary failure
# =============================================================================

from __future__ import annotations


class ServiceError(Exception):
    """Base class for all errors the service reports to callers."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ServiceError):
    code = "VALIDATION_ERROR"
    status_code = 400


class EmptyDocumentError(ValidationError):
    code = "EMPTY_DOCUMENT"

    def __init__(self, message: str = "No text content found in the document") -> None:
        super().__init__(message)


class NotFoundError(ServiceError):
    code = "DOCUMENT_NOT_FOUND"
    status_code = 404

    def __init__(self, document_id: str) -> None:
        super().__init__("Document not found", details=f"Document id: {document_id}")
        self.document_id = document_id


class DocumentNotReadyError(ServiceError):
    """Raised when a document is queried before its summary is complete."""

    code = "DOCUMENT_NOT_READY"
    status_code = 409

    def __init__(self, document_id: str, status: str) -> None:
        super().__init__(
            "Document is not ready for queries",
            details=f"Document status: {status}",
        )
        self.document_id = document_id
        self.status = status


class InvalidTransitionError(ServiceError):
    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, document_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Cannot move document from {current} to {target}",
            details=f"Document id: {document_id}",
        )
        self.document_id = document_id
        self.current = current
        self.target = target


class ExtractionError(ServiceError):
    code = "EXTRACTION_ERROR"
    status_code = 422


class RateLimitExceeded(ServiceError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(self, limit: int, window_seconds: float) -> None:
        super().__init__(
            "Rate limit exceeded",
            details=f"Limit: {limit} requests per {window_seconds:g} seconds",
        )
        self.limit = limit
        self.retry_after = max(1, int(window_seconds))


class AIServiceError(ServiceError):
    code = "AI_SERVICE_ERROR"
    status_code = 502


class QueueEnqueueError(ServiceError):
    code = "QUEUE_ENQUEUE_ERROR"
    status_code = 503


class SummaryGenerationError(ServiceError):
    """Summary generation failed and the document was marked FAILED."""

    code = "SUMMARY_GENERATION_FAILED"
    status_code = 500
