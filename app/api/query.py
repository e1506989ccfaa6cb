# =============================================================================
# Query API — Questions About a Summarised Document
# =============================================================================
#
# ENDPOINTS:
#   POST /api/documents/{id}/query/stream   — JSON body, server-sent events
#   GET  /api/documents/{id}/query/stream   — ?question=..., server-sent events
#   POST /api/documents/{id}/query          — collected answer as JSON
#
# Only COMPLETED documents can be queried. Readiness is checked BEFORE
# the stream starts, so "not found" / "not ready" arrive as ordinary JSON
# errors rather than as events inside a 200 stream.
#
# Event stream:
#   event: message   data: <answer chunk>     (zero or more)
#   event: message   data: Error: <cause>     (upstream failure, last)
#   event: error     data: Request timeout    (at most one, always last)
#
# The collected endpoint reports either failure as AI_SERVICE_ERROR (502).
# =============================================================================

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from app.api.deps import enforce_rate_limit, get_document_service, get_query_proxy
from app.models.requests import QueryRequest
from app.models.responses import QueryResponse
from app.services.documents import DocumentService
from app.services.streaming import StreamEvent, StreamingQueryProxy

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/documents",
    tags=["Query"],
    dependencies=[Depends(enforce_rate_limit)],
)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def _sse_body(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    # aclosing: closing this body closes the proxy generator, which stops
    # the producer task
    async with aclosing(events):
        async for event in events:
            yield event.encode()


async def _stream_answer(
    document_id: str,
    question: str,
    documents: DocumentService,
    proxy: StreamingQueryProxy,
) -> StreamingResponse:
    document = await documents.get_ready(document_id)
    logger.info(
        "Streaming answer: document_id=%s, question='%s'",
        document_id, question[:80],
    )
    return StreamingResponse(
        _sse_body(proxy.events(question, document.raw_text)),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


# ---------------------------------------------------------------------------
# Streaming endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/{document_id}/query/stream",
    response_class=StreamingResponse,
    summary="Stream an answer to a question",
)
async def stream_query(
    document_id: str,
    request: QueryRequest,
    documents: DocumentService = Depends(get_document_service),
    proxy: StreamingQueryProxy = Depends(get_query_proxy),
) -> StreamingResponse:
    return await _stream_answer(document_id, request.question, documents, proxy)


@router.get(
    "/{document_id}/query/stream",
    response_class=StreamingResponse,
    summary="Stream an answer to a question (EventSource-friendly)",
)
async def stream_query_get(
    document_id: str,
    params: QueryRequest = Query(),
    documents: DocumentService = Depends(get_document_service),
    proxy: StreamingQueryProxy = Depends(get_query_proxy),
) -> StreamingResponse:
    return await _stream_answer(document_id, params.question, documents, proxy)


# ---------------------------------------------------------------------------
# Collected answer
# ---------------------------------------------------------------------------


@router.post(
    "/{document_id}/query",
    response_model=QueryResponse,
    summary="Answer a question in one response",
)
async def query_document(
    document_id: str,
    request: QueryRequest,
    documents: DocumentService = Depends(get_document_service),
    proxy: StreamingQueryProxy = Depends(get_query_proxy),
) -> QueryResponse:
    document = await documents.get_ready(document_id)
    answer = await proxy.answer(request.question, document.raw_text)
    return QueryResponse(
        document_id=document_id,
        question=request.question,
        answer=answer,
    )
