# =============================================================================
# Celery Task Definitions — Summary Generation Pipeline
# =============================================================================
#
# One task type, "summary:generate", body {"document_id": ...}.
#
# PIPELINE (handle_summary_generation):
#   1. Load the document; COMPLETED or FAILED → nothing to do (redelivery)
#   2. Mark PROCESSING (PENDING|PROCESSING → PROCESSING)
#   3. Generate the summary (AI client retries internally, k² backoff)
#   4. Mark COMPLETED with the summary in one write
#      — or FAILED if the AI client gave up or the run deadline passed
#
# IMPORTANT: Celery workers are SYNCHRONOUS, the store and AI client are
# async. Each task run drives the handler with asyncio.run() on a fresh
# event loop, with its own NullPool engine and AI client, and disposes
# both before returning. Nothing loop-bound survives between runs.
#
# RETRY STRATEGY:
# - SummaryGenerationError (document already FAILED): not retried. The
#   AI client already spent its own retries; a redelivery would only
#   short-circuit on the FAILED status.
# - NotFoundError / bad payload: not retried, nothing to work on.
# - Anything else (database unreachable, broker hiccup) happened before
#   a terminal write: retried with exponential countdown
#   (retry_delay × 2^retries), up to summary_task_max_redeliveries.
#   The last delivery marks the document FAILED before giving up, so no
#   document is left in PROCESSING once its task has ended.
# =============================================================================

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from app.config import settings
from app.db.engine import create_session_factory, create_worker_engine
from app.db.models import DocumentStatus
from app.errors import (
    AIServiceError,
    InvalidTransitionError,
    NotFoundError,
    SummaryGenerationError,
)
from app.services.documents import DocumentStore, SqlAlchemyDocumentStore
from app.services.llm import AIClient
from app.workers.celery_app import celery_app
from app.workers.queue import SUMMARY_GENERATION_TASK, SummaryTaskPayload

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Handler
# ---------------------------------------------------------------------------


async def handle_summary_generation(
    payload: SummaryTaskPayload,
    store: DocumentStore,
    ai_client: AIClient,
    deadline_seconds: float | None = None,
) -> DocumentStatus:
    """
    Generate and store the summary for one document.

    Safe to run any number of times for the same document: a terminal
    document is left untouched and no AI call is made.

    Args:
        payload: Task body naming the document.
        store: Document store to read and transition through.
        ai_client: Client used for the summary call.
        deadline_seconds: Upper bound for the whole summary call,
            backoff sleeps included. None disables the bound.

    Returns:
        The document's status after this run.

    Raises:
        NotFoundError: the document does not exist.
        SummaryGenerationError: the summary could not be produced; the
            document has been marked FAILED.
    """
    document_id = payload.document_id
    document = await store.get(document_id)

    if document.status.is_terminal:
        logger.info(
            "Document %s already %s; skipping summary generation",
            document_id, document.status.value,
        )
        return document.status

    try:
        await store.set_processing(document_id)
    except InvalidTransitionError as exc:
        # Another delivery finished the document between our read and write
        logger.info("Document %s left PENDING concurrently: %s", document_id, exc)
        return (await store.get(document_id)).status

    logger.info(
        "Generating summary for document %s (%d chars)",
        document_id, len(document.raw_text),
    )

    try:
        async with asyncio.timeout(deadline_seconds):
            summary = await ai_client.summarize(document.raw_text)
    except (AIServiceError, TimeoutError) as exc:
        if isinstance(exc, AIServiceError):
            reason = exc.details or exc.message
        else:
            reason = f"deadline of {deadline_seconds}s exceeded"
        logger.error("Summary generation failed for document %s: %s", document_id, reason)
        await _mark_failed(store, document_id)
        raise SummaryGenerationError(
            "Failed to generate summary", details=str(reason),
        ) from exc

    await store.set_completed(document_id, summary)
    logger.info(
        "Stored summary for document %s (%d chars)", document_id, len(summary),
    )
    return DocumentStatus.COMPLETED


async def _mark_failed(store: DocumentStore, document_id: str) -> None:
    try:
        await store.set_failed(document_id)
    except InvalidTransitionError as exc:
        logger.warning(
            "Document %s reached a terminal status first: %s", document_id, exc,
        )


# ---------------------------------------------------------------------------
# Celery Task
# ---------------------------------------------------------------------------


def retry_countdown(retries: int) -> int:
    """Seconds before redelivery number `retries + 1`."""
    return settings.summary_task_retry_delay_seconds * 2 ** retries


@asynccontextmanager
async def _worker_store() -> AsyncIterator[DocumentStore]:
    """Document store on an engine that lives only as long as this loop."""
    engine = create_worker_engine()
    try:
        yield SqlAlchemyDocumentStore(create_session_factory(engine))
    finally:
        await engine.dispose()


async def _run_summary_generation(payload: SummaryTaskPayload) -> DocumentStatus:
    """Run the handler with resources scoped to this event loop."""
    ai_client = AIClient.from_settings()
    try:
        async with _worker_store() as store:
            return await handle_summary_generation(
                payload,
                store,
                ai_client,
                deadline_seconds=settings.summary_deadline_seconds,
            )
    finally:
        await ai_client.aclose()


async def _fail_summary_generation(payload: SummaryTaskPayload) -> None:
    async with _worker_store() as store:
        await _mark_failed(store, payload.document_id)


@celery_app.task(
    bind=True,
    name=SUMMARY_GENERATION_TASK,
    max_retries=settings.summary_task_max_redeliveries,
    default_retry_delay=settings.summary_task_retry_delay_seconds,
)
def generate_summary(self, document_id: str) -> dict:
    """
    Celery entry point for "summary:generate".

    Args:
        self: Celery task instance (bound task, provides self.request).
        document_id: Id of the document to summarise.

    Returns:
        dict with the document id and its status after this run.
    """
    task_id = self.request.id
    retries = self.request.retries or 0
    payload = SummaryTaskPayload.from_dict({"document_id": document_id})

    logger.info(
        "[%s] Starting summary generation: document_id=%s, redelivery=%d",
        task_id, document_id, retries,
    )

    try:
        status = asyncio.run(_run_summary_generation(payload))
    except SummaryGenerationError as exc:
        logger.error(
            "[%s] Document %s marked FAILED: %s", task_id, document_id, exc.details,
        )
        raise
    except NotFoundError:
        logger.error("[%s] Document %s does not exist", task_id, document_id)
        raise
    except Exception as exc:
        if self.max_retries is not None and retries >= self.max_retries:
            logger.exception(
                "[%s] Summary run for document %s failed on its last delivery: %s",
                task_id, document_id, exc,
            )
            try:
                asyncio.run(_fail_summary_generation(payload))
            except Exception as mark_exc:
                logger.error(
                    "[%s] Could not mark document %s FAILED: %s",
                    task_id, document_id, mark_exc,
                )
            raise

        countdown = retry_countdown(retries)
        logger.exception(
            "[%s] Summary run for document %s failed before completion; "
            "retrying in %ds: %s",
            task_id, document_id, countdown, exc,
        )
        raise self.retry(exc=exc, countdown=countdown)

    logger.info(
        "[%s] Summary generation done: document_id=%s, status=%s",
        task_id, document_id, status.value,
    )
    return {"document_id": document_id, "status": status.value}
