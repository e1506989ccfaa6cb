# =============================================================================
# Document Store & Document Service — Lifecycle State Machine
# =============================================================================
#
# The Document Store is the only place document rows are written. It
# exposes exactly one constructor (create → PENDING) and three mutators
# (set_processing, set_failed, set_completed). Every mutator is a single
# conditional UPDATE:
#
#     UPDATE documents SET status = :target, ...
#      WHERE id = :id AND status IN (:allowed_sources)
#
# so the check and the write are one atomic statement per document. When
# no row matches, a follow-up read tells "unknown id" (NotFoundError) apart
# from "illegal move" (InvalidTransitionError). Re-applying the same
# transition matches its own source set and is harmless under at-least-once
# task delivery.
#
# ARCHITECTURE:
#   DocumentStore (Protocol)
#   ├── SqlAlchemyDocumentStore — Postgres via async SQLAlchemy
#   └── InMemoryDocumentStore   — dict + asyncio.Lock (tests, local runs)
#   DocumentService             — upload / status / readiness glue on top
# =============================================================================

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.models import ALLOWED_SOURCES, Document, DocumentStatus
from app.errors import (
    DocumentNotReadyError,
    EmptyDocumentError,
    InvalidTransitionError,
    NotFoundError,
    QueueEnqueueError,
)
from app.services.extractor import TextExtractor
from app.workers.queue import TaskPriority, TaskQueue

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class DocumentRecord:
    """
    Snapshot of a document row.

    Stores hand out snapshots rather than live ORM objects so callers in
    other tasks or event loops never touch session-bound state.
    """

    id: str
    filename: str
    raw_text: str
    status: DocumentStatus
    content_type: str
    file_size: int
    created_at: datetime
    updated_at: datetime
    summary: str | None = None

    @classmethod
    def from_orm(cls, doc: Document) -> DocumentRecord:
        return cls(
            id=doc.id,
            filename=doc.filename,
            raw_text=doc.raw_text,
            status=DocumentStatus(doc.status),
            content_type=doc.content_type,
            file_size=doc.file_size,
            created_at=doc.created_at,
            updated_at=doc.updated_at,
            summary=doc.summary,
        )


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class DocumentStore(Protocol):
    """Persistence boundary for documents and their lifecycle."""

    async def create(
        self,
        filename: str,
        raw_text: str,
        content_type: str,
        file_size: int,
    ) -> DocumentRecord:
        """Persist a new document. Always starts PENDING with no summary."""
        ...

    async def get(self, document_id: str) -> DocumentRecord:
        """Fetch a document. Raises NotFoundError for unknown ids."""
        ...

    async def set_processing(self, document_id: str) -> None:
        """PENDING|PROCESSING → PROCESSING."""
        ...

    async def set_failed(self, document_id: str) -> None:
        """PENDING|PROCESSING|FAILED → FAILED, summary cleared."""
        ...

    async def set_completed(self, document_id: str, summary: str) -> None:
        """PROCESSING|COMPLETED → COMPLETED with the summary, atomically."""
        ...


# ---------------------------------------------------------------------------
# Implementation 1: SQLAlchemy (PostgreSQL)
# ---------------------------------------------------------------------------


class SqlAlchemyDocumentStore:
    """Document store backed by the `documents` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(
        self,
        filename: str,
        raw_text: str,
        content_type: str,
        file_size: int,
    ) -> DocumentRecord:
        async with self._session_factory() as session:
            doc = Document(
                filename=filename,
                raw_text=raw_text,
                content_type=content_type,
                file_size=file_size,
                status=DocumentStatus.PENDING,
                summary=None,
            )
            session.add(doc)
            await session.commit()
            # Pull server-side defaults (created_at / updated_at)
            await session.refresh(doc)
            return DocumentRecord.from_orm(doc)

    async def get(self, document_id: str) -> DocumentRecord:
        async with self._session_factory() as session:
            doc = await session.get(Document, document_id)
            if doc is None:
                raise NotFoundError(document_id)
            return DocumentRecord.from_orm(doc)

    async def set_processing(self, document_id: str) -> None:
        await self._transition(document_id, DocumentStatus.PROCESSING)

    async def set_failed(self, document_id: str) -> None:
        await self._transition(document_id, DocumentStatus.FAILED, summary=None)

    async def set_completed(self, document_id: str, summary: str) -> None:
        await self._transition(
            document_id, DocumentStatus.COMPLETED, summary=summary,
        )

    async def _transition(
        self,
        document_id: str,
        target: DocumentStatus,
        **values,
    ) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                update(Document)
                .where(
                    Document.id == document_id,
                    Document.status.in_(ALLOWED_SOURCES[target]),
                )
                .values(status=target, **values)
            )
            if result.rowcount == 0:
                current = await session.scalar(
                    select(Document.status).where(Document.id == document_id)
                )
                await session.rollback()
                if current is None:
                    raise NotFoundError(document_id)
                raise InvalidTransitionError(
                    document_id, DocumentStatus(current).value, target.value,
                )
            await session.commit()


# ---------------------------------------------------------------------------
# Implementation 2: In-Memory
# ---------------------------------------------------------------------------


class InMemoryDocumentStore:
    """
    Dict-backed document store.

    Applies the same transition rules as the SQL store under one
    asyncio.Lock. Records are copied in and out so callers can't mutate
    stored state.
    """

    def __init__(self) -> None:
        self._documents: dict[str, DocumentRecord] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        filename: str,
        raw_text: str,
        content_type: str,
        file_size: int,
    ) -> DocumentRecord:
        now = datetime.now(UTC)
        record = DocumentRecord(
            id=str(uuid.uuid4()),
            filename=filename,
            raw_text=raw_text,
            status=DocumentStatus.PENDING,
            content_type=content_type,
            file_size=file_size,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            self._documents[record.id] = record
        return copy.copy(record)

    async def get(self, document_id: str) -> DocumentRecord:
        async with self._lock:
            record = self._documents.get(document_id)
            if record is None:
                raise NotFoundError(document_id)
            return copy.copy(record)

    async def set_processing(self, document_id: str) -> None:
        await self._transition(document_id, DocumentStatus.PROCESSING, None)

    async def set_failed(self, document_id: str) -> None:
        await self._transition(document_id, DocumentStatus.FAILED, None)

    async def set_completed(self, document_id: str, summary: str) -> None:
        await self._transition(document_id, DocumentStatus.COMPLETED, summary)

    async def _transition(
        self,
        document_id: str,
        target: DocumentStatus,
        summary: str | None,
    ) -> None:
        async with self._lock:
            record = self._documents.get(document_id)
            if record is None:
                raise NotFoundError(document_id)
            if record.status not in ALLOWED_SOURCES[target]:
                raise InvalidTransitionError(
                    document_id, record.status.value, target.value,
                )
            record.status = target
            record.summary = summary
            record.updated_at = datetime.now(UTC)


# ---------------------------------------------------------------------------
# Document Service — upload, status, readiness
# ---------------------------------------------------------------------------


class DocumentService:
    """
    Request-path glue between the extractor, the store and the task queue.

    Upload returns as soon as the extracted text is persisted. Summary
    generation is queued best-effort: a broker failure is logged and the
    upload still succeeds with the document left PENDING.
    """

    def __init__(
        self,
        store: DocumentStore,
        extractor: TextExtractor,
        task_queue: TaskQueue,
        summary_priority: TaskPriority = TaskPriority.DEFAULT,
    ) -> None:
        self.store = store
        self._extractor = extractor
        self._task_queue = task_queue
        self._summary_priority = summary_priority

    async def upload(
        self,
        filename: str,
        data: bytes,
        content_type: str,
    ) -> DocumentRecord:
        """
        Validate, extract, persist and queue a new document.

        Raises:
            ValidationError: bad size or extension.
            ExtractionError: the extractor could not read the file.
            EmptyDocumentError: the file contains no text.
        """
        self._extractor.validate(filename, len(data))

        # Extraction is CPU-bound (Docling) — keep it off the event loop
        text = await asyncio.to_thread(self._extractor.extract, data, content_type)
        if not text or not text.strip():
            raise EmptyDocumentError()

        document = await self.store.create(
            filename=filename,
            raw_text=text,
            content_type=content_type,
            file_size=len(data),
        )
        logger.info(
            "Stored document %s (%s, %d bytes, %d chars)",
            document.id, filename, len(data), len(text),
        )

        await self._enqueue_summary(document.id)
        return document

    async def _enqueue_summary(self, document_id: str) -> None:
        try:
            task_id = await self._task_queue.enqueue_summary_generation(
                document_id, priority=self._summary_priority,
            )
        except QueueEnqueueError as exc:
            logger.error(
                "Failed to enqueue summary task for document %s: %s",
                document_id, exc.details or exc,
            )
            return
        logger.info(
            "Enqueued summary generation for document %s (task_id=%s)",
            document_id, task_id,
        )

    async def get(self, document_id: str) -> DocumentRecord:
        return await self.store.get(document_id)

    async def get_status(self, document_id: str) -> dict:
        """Return `{status, summary?}`; summary only when COMPLETED."""
        document = await self.store.get(document_id)
        result: dict = {"status": document.status.value}
        if document.status is DocumentStatus.COMPLETED and document.summary is not None:
            result["summary"] = document.summary
        return result

    async def get_ready(self, document_id: str) -> DocumentRecord:
        """
        Fetch a document for querying.

        Raises:
            NotFoundError: unknown id.
            DocumentNotReadyError: status is not COMPLETED (names the status).
        """
        document = await self.store.get(document_id)
        if document.status is not DocumentStatus.COMPLETED:
            raise DocumentNotReadyError(document_id, document.status.value)
        return document
