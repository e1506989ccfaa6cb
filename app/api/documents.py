# =============================================================================
# Documents API — Upload, Status and Retrieval
# =============================================================================
#
# ENDPOINTS:
#   POST /api/upload                    — extract text, store, queue summary
#   GET  /api/documents/{id}/status     — lifecycle status (+ summary)
#   GET  /api/documents/{id}            — full document record
#
# DESIGN DECISION: Upload answers as soon as the extracted text is stored.
# Summary generation runs in the worker pool; clients poll the status
# endpoint until it reports COMPLETED (summary included) or FAILED.
#
# Every route here is rate limited per client, status polling included.
#
# All failures are ServiceError subclasses rendered by the handlers in
# app/main.py; this module only maps requests to DocumentService calls.
# =============================================================================

import logging
import mimetypes

from fastapi import APIRouter, Depends, File, UploadFile

from app.api.deps import enforce_rate_limit, get_document_service
from app.models.responses import DocumentResponse, StatusResponse, UploadResponse
from app.services.documents import DocumentService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["Documents"],
    dependencies=[Depends(enforce_rate_limit)],
)

_GENERIC_CONTENT_TYPES = {"", "application/octet-stream"}


def resolve_content_type(filename: str, declared: str | None) -> str:
    """Use the declared media type, or guess from the extension if generic."""
    declared = (declared or "").split(";")[0].strip().lower()
    if declared not in _GENERIC_CONTENT_TYPES:
        return declared
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or declared or "application/octet-stream"


# ---------------------------------------------------------------------------
# POST /api/upload — Upload a document
# ---------------------------------------------------------------------------


@router.post(
    "/upload",
    response_model=UploadResponse,
    summary="Upload a document for summarisation",
    description=(
        "Upload a .txt or .pdf file. The extracted text is returned "
        "immediately; the summary is generated in the background."
    ),
)
async def upload_document(
    file: UploadFile = File(..., description="Plain-text or PDF document"),
    documents: DocumentService = Depends(get_document_service),
) -> UploadResponse:
    filename = file.filename or "upload"
    data = await file.read()
    content_type = resolve_content_type(filename, file.content_type)

    logger.info(
        "Upload received: filename=%s, content_type=%s, size=%d",
        filename, content_type, len(data),
    )

    document = await documents.upload(filename, data, content_type)
    return UploadResponse(
        document_id=document.id,
        filename=document.filename,
        raw_text=document.raw_text,
        status=document.status.value,
    )


# ---------------------------------------------------------------------------
# GET /api/documents/{id}/status — Poll summary status
# ---------------------------------------------------------------------------


@router.get(
    "/documents/{document_id}/status",
    response_model=StatusResponse,
    response_model_exclude_none=True,
    summary="Get document status",
)
async def get_document_status(
    document_id: str,
    documents: DocumentService = Depends(get_document_service),
) -> StatusResponse:
    return StatusResponse(**await documents.get_status(document_id))


# ---------------------------------------------------------------------------
# GET /api/documents/{id} — Full record
# ---------------------------------------------------------------------------


@router.get(
    "/documents/{document_id}",
    response_model=DocumentResponse,
    summary="Get a document",
)
async def get_document(
    document_id: str,
    documents: DocumentService = Depends(get_document_service),
) -> DocumentResponse:
    document = await documents.get(document_id)
    return DocumentResponse(
        id=document.id,
        filename=document.filename,
        raw_text=document.raw_text,
        summary=document.summary,
        status=document.status.value,
        content_type=document.content_type,
        file_size=document.file_size,
        created_at=document.created_at,
        updated_at=document.updated_at,
    )
