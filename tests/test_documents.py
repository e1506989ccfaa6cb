# =============================================================================
# Unit Tests — Document Lifecycle, Store & Service
# =============================================================================
#
# Runs against the in-memory store, the static extractor and the in-memory
# task queue; no database or broker required.
#
# Test groups:
#   1. Lifecycle rules (can_transition, is_terminal)
#   2. InMemoryDocumentStore transitions
#   3. DocumentService upload / enqueue failure
#   4. DocumentService status & readiness
# =============================================================================

from __future__ import annotations

import asyncio

import pytest

from app.db.models import DocumentStatus, can_transition
from app.errors import (
    DocumentNotReadyError,
    EmptyDocumentError,
    ExtractionError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from app.services.documents import DocumentService, InMemoryDocumentStore
from app.services.extractor import StaticTextExtractor
from app.workers.queue import InMemoryTaskQueue, TaskPriority


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


async def _new_document(store: InMemoryDocumentStore, text: str = "Lease text"):
    return await store.create(
        filename="lease.txt",
        raw_text=text,
        content_type="text/plain",
        file_size=len(text),
    )


# ---------------------------------------------------------------------------
# 1. Lifecycle Rules
# ---------------------------------------------------------------------------


class TestLifecycleRules:
    """Tests for the allowed status transitions."""

    @pytest.mark.parametrize(
        "current, target",
        [
            (DocumentStatus.PENDING, DocumentStatus.PROCESSING),
            (DocumentStatus.PROCESSING, DocumentStatus.PROCESSING),
            (DocumentStatus.PROCESSING, DocumentStatus.COMPLETED),
            (DocumentStatus.PROCESSING, DocumentStatus.FAILED),
            (DocumentStatus.PENDING, DocumentStatus.FAILED),
            (DocumentStatus.COMPLETED, DocumentStatus.COMPLETED),
            (DocumentStatus.FAILED, DocumentStatus.FAILED),
        ],
    )
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        "current, target",
        [
            (DocumentStatus.PENDING, DocumentStatus.COMPLETED),
            (DocumentStatus.COMPLETED, DocumentStatus.PROCESSING),
            (DocumentStatus.COMPLETED, DocumentStatus.FAILED),
            (DocumentStatus.FAILED, DocumentStatus.PROCESSING),
            (DocumentStatus.FAILED, DocumentStatus.COMPLETED),
            (DocumentStatus.PROCESSING, DocumentStatus.PENDING),
        ],
    )
    def test_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_terminal_statuses(self):
        assert DocumentStatus.COMPLETED.is_terminal
        assert DocumentStatus.FAILED.is_terminal
        assert not DocumentStatus.PENDING.is_terminal
        assert not DocumentStatus.PROCESSING.is_terminal


# ---------------------------------------------------------------------------
# 2. In-Memory Store
# ---------------------------------------------------------------------------


class TestInMemoryDocumentStore:
    """Tests for store transitions and snapshots."""

    def test_create_starts_pending_without_summary(self):
        store = InMemoryDocumentStore()
        doc = _run(_new_document(store))
        assert doc.status is DocumentStatus.PENDING
        assert doc.summary is None
        assert doc.id

    def test_ids_are_unique(self):
        store = InMemoryDocumentStore()

        async def scenario():
            first = await _new_document(store)
            second = await _new_document(store)
            return first.id, second.id

        first_id, second_id = _run(scenario())
        assert first_id != second_id

    def test_full_success_path(self):
        store = InMemoryDocumentStore()

        async def scenario():
            doc = await _new_document(store)
            await store.set_processing(doc.id)
            await store.set_completed(doc.id, "Plain summary")
            return await store.get(doc.id)

        doc = _run(scenario())
        assert doc.status is DocumentStatus.COMPLETED
        assert doc.summary == "Plain summary"

    def test_failure_clears_summary(self):
        store = InMemoryDocumentStore()

        async def scenario():
            doc = await _new_document(store)
            await store.set_processing(doc.id)
            await store.set_failed(doc.id)
            return await store.get(doc.id)

        doc = _run(scenario())
        assert doc.status is DocumentStatus.FAILED
        assert doc.summary is None

    def test_repeated_transitions_are_accepted(self):
        store = InMemoryDocumentStore()

        async def scenario():
            doc = await _new_document(store)
            await store.set_processing(doc.id)
            await store.set_processing(doc.id)
            await store.set_completed(doc.id, "s")
            await store.set_completed(doc.id, "s")
            return await store.get(doc.id)

        assert _run(scenario()).status is DocumentStatus.COMPLETED

    def test_completed_cannot_be_reopened(self):
        store = InMemoryDocumentStore()

        async def scenario():
            doc = await _new_document(store)
            await store.set_processing(doc.id)
            await store.set_completed(doc.id, "s")
            await store.set_processing(doc.id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            _run(scenario())
        assert exc_info.value.current == "COMPLETED"
        assert exc_info.value.target == "PROCESSING"

    def test_completed_requires_processing(self):
        store = InMemoryDocumentStore()

        async def scenario():
            doc = await _new_document(store)
            await store.set_completed(doc.id, "s")

        with pytest.raises(InvalidTransitionError):
            _run(scenario())

    def test_unknown_id(self):
        store = InMemoryDocumentStore()
        with pytest.raises(NotFoundError):
            _run(store.get("missing"))
        with pytest.raises(NotFoundError):
            _run(store.set_processing("missing"))

    def test_snapshots_are_detached(self):
        store = InMemoryDocumentStore()

        async def scenario():
            doc = await _new_document(store)
            doc.status = DocumentStatus.COMPLETED
            return await store.get(doc.id)

        assert _run(scenario()).status is DocumentStatus.PENDING


# ---------------------------------------------------------------------------
# 3. Upload
# ---------------------------------------------------------------------------


def _service(text="Tenancy agreement between A and B.", queue=None, error=None):
    store = InMemoryDocumentStore()
    extractor = StaticTextExtractor(text=text, error=error)
    queue = queue or InMemoryTaskQueue()
    return DocumentService(store, extractor, queue), store, extractor, queue


class TestUpload:
    """Tests for DocumentService.upload."""

    def test_upload_stores_pending_document_and_enqueues(self):
        service, store, extractor, queue = _service()
        doc = _run(service.upload("lease.txt", b"raw bytes", "text/plain"))

        assert doc.status is DocumentStatus.PENDING
        assert doc.raw_text == "Tenancy agreement between A and B."
        assert doc.file_size == len(b"raw bytes")
        assert extractor.calls == [(9, "text/plain")]

        assert len(queue.enqueued) == 1
        priority, payload, task_id = queue.enqueued[0]
        assert priority is TaskPriority.DEFAULT
        assert payload.document_id == doc.id
        assert task_id

    def test_enqueue_failure_does_not_fail_upload(self):
        queue = InMemoryTaskQueue(fail_with=ConnectionError("redis down"))
        service, store, _, _ = _service(queue=queue)

        doc = _run(service.upload("lease.txt", b"data", "text/plain"))

        assert doc.status is DocumentStatus.PENDING
        assert _run(store.get(doc.id)).status is DocumentStatus.PENDING
        assert queue.enqueued == []

    def test_empty_file_rejected(self):
        service, _, extractor, queue = _service()
        with pytest.raises(ValidationError):
            _run(service.upload("lease.txt", b"", "text/plain"))
        assert extractor.calls == []
        assert queue.enqueued == []

    def test_blank_text_rejected(self):
        service, _, _, queue = _service(text="   \n  ")
        with pytest.raises(EmptyDocumentError):
            _run(service.upload("blank.txt", b"   ", "text/plain"))
        assert queue.enqueued == []

    def test_extraction_error_propagates(self):
        service, _, _, queue = _service(error=ExtractionError("corrupt PDF"))
        with pytest.raises(ExtractionError):
            _run(service.upload("bad.pdf", b"%PDF", "application/pdf"))
        assert queue.enqueued == []


# ---------------------------------------------------------------------------
# 4. Status & Readiness
# ---------------------------------------------------------------------------


class TestStatusAndReadiness:
    """Tests for get_status and get_ready."""

    def test_status_pending_has_no_summary(self):
        service, _, _, _ = _service()
        doc = _run(service.upload("lease.txt", b"data", "text/plain"))
        assert _run(service.get_status(doc.id)) == {"status": "PENDING"}

    def test_status_completed_includes_summary(self):
        service, store, _, _ = _service()

        async def scenario():
            doc = await service.upload("lease.txt", b"data", "text/plain")
            await store.set_processing(doc.id)
            await store.set_completed(doc.id, "Short summary")
            return await service.get_status(doc.id)

        assert _run(scenario()) == {"status": "COMPLETED", "summary": "Short summary"}

    def test_status_failed_has_no_summary(self):
        service, store, _, _ = _service()

        async def scenario():
            doc = await service.upload("lease.txt", b"data", "text/plain")
            await store.set_failed(doc.id)
            return await service.get_status(doc.id)

        assert _run(scenario()) == {"status": "FAILED"}

    def test_not_ready_names_status(self):
        service, _, _, _ = _service()
        doc = _run(service.upload("lease.txt", b"data", "text/plain"))

        with pytest.raises(DocumentNotReadyError) as exc_info:
            _run(service.get_ready(doc.id))
        assert exc_info.value.status == "PENDING"
        assert exc_info.value.details == "Document status: PENDING"

    def test_ready_when_completed(self):
        service, store, _, _ = _service()

        async def scenario():
            doc = await service.upload("lease.txt", b"data", "text/plain")
            await store.set_processing(doc.id)
            await store.set_completed(doc.id, "s")
            return await service.get_ready(doc.id)

        assert _run(scenario()).status is DocumentStatus.COMPLETED

    def test_unknown_document(self):
        service, _, _, _ = _service()
        with pytest.raises(NotFoundError):
            _run(service.get_status("nope"))
        with pytest.raises(NotFoundError):
            _run(service.get_ready("nope"))
