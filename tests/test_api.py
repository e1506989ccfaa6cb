# =============================================================================
# API Tests — HTTP Surface via FastAPI TestClient
# =============================================================================
#
# The app is built with create_app(services=...) around in-memory
# collaborators: InMemoryDocumentStore, StaticTextExtractor,
# InMemoryTaskQueue, and a real AIClient over a mocked SDK client. No
# database, broker or model server is needed.
#
# Test groups:
#   1. Upload
#   2. Status & document retrieval
#   3. Streaming and collected queries
#   4. Rate limiting
#   5. Health, readiness, liveness
#   6. Metrics & lifespan
# =============================================================================

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from fastapi.testclient import TestClient

from app.api.deps import Services
from app.main import create_app
from app.services.documents import DocumentService, InMemoryDocumentStore
from app.services.extractor import StaticTextExtractor
from app.services.llm import AIClient
from app.services.rate_limiter import SlidingWindowRateLimiter
from app.services.streaming import StreamingQueryProxy
from app.workers.queue import InMemoryTaskQueue


def _frame(content):
    return SimpleNamespace(
        choices=[SimpleNamespace(delta=SimpleNamespace(content=content))]
    )


class FakeStream:
    def __init__(self, chunks, error=None):
        self.chunks = chunks
        self.error = error
        self.closed = False

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for chunk in self.chunks:
            yield _frame(chunk)
        if self.error is not None:
            raise self.error

    async def close(self):
        self.closed = True


class Harness:
    """Services container plus handles on its in-memory parts."""

    def __init__(self, rate_limit: int = 1000, queue: InMemoryTaskQueue | None = None):
        self.store = InMemoryDocumentStore()
        self.extractor = StaticTextExtractor(text="The tenant pays rent of 900 monthly.")
        self.queue = queue or InMemoryTaskQueue()
        self.answer_chunks = ["The tenant ", "pays ", "900."]
        self.answer_error: Exception | None = None

        self.sdk = MagicMock()
        self.sdk.chat.completions.create = AsyncMock(
            side_effect=lambda **kwargs: FakeStream(
                list(self.answer_chunks), error=self.answer_error,
            )
        )
        self.sdk.close = AsyncMock()
        ai_client = AIClient(self.sdk, model="test-model", max_retries=0)

        self.probe_calls: list[str] = []
        self.services = Services(
            documents=DocumentService(self.store, self.extractor, self.queue),
            proxy=StreamingQueryProxy(ai_client, timeout_seconds=5),
            rate_limiter=SlidingWindowRateLimiter(limit=rate_limit, window_seconds=60),
            health_probes={"database": self._ok_probe, "redis": self._ok_probe},
            ready_probes={"database": self._ok_probe},
            ai_client=ai_client,
            task_queue=self.queue,
        )
        self.app = create_app(services=self.services)
        self.client = TestClient(self.app)

    async def _ok_probe(self) -> None:
        self.probe_calls.append("ok")

    def completed_document(self, summary: str = "Rent is 900 a month.") -> str:
        async def scenario():
            doc = await self.store.create(
                filename="lease.txt",
                raw_text="The tenant pays rent of 900 monthly.",
                content_type="text/plain",
                file_size=36,
            )
            await self.store.set_processing(doc.id)
            await self.store.set_completed(doc.id, summary)
            return doc.id

        return asyncio.run(scenario())

    def pending_document(self) -> str:
        async def scenario():
            doc = await self.store.create(
                filename="lease.txt",
                raw_text="text",
                content_type="text/plain",
                file_size=4,
            )
            return doc.id

        return asyncio.run(scenario())


def _connection_error() -> openai.APIConnectionError:
    request = httpx.Request("POST", "http://ai.test/v1/chat/completions")
    return openai.APIConnectionError(request=request)


def _parse_sse(body: str) -> list[tuple[str, str]]:
    events = []
    for frame in body.strip().split("\n\n"):
        lines = frame.split("\n")
        event = lines[0].removeprefix("event: ")
        data = "\n".join(line.removeprefix("data: ") for line in lines[1:])
        events.append((event, data))
    return events


@pytest.fixture
def harness() -> Harness:
    return Harness()


# ---------------------------------------------------------------------------
# 1. Upload
# ---------------------------------------------------------------------------


class TestUploadEndpoint:
    """Tests for POST /api/upload."""

    def test_upload_text_file(self, harness):
        response = harness.client.post(
            "/api/upload",
            files={"file": ("lease.txt", b"raw lease bytes", "text/plain")},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["filename"] == "lease.txt"
        assert body["raw_text"] == "The tenant pays rent of 900 monthly."
        assert body["status"] == "PENDING"
        assert body["document_id"]

        assert len(harness.queue.enqueued) == 1
        assert harness.queue.enqueued[0][1].document_id == body["document_id"]

    def test_generic_content_type_guessed_from_extension(self, harness):
        harness.client.post(
            "/api/upload",
            files={"file": ("lease.txt", b"abc", "application/octet-stream")},
        )
        assert harness.extractor.calls == [(3, "text/plain")]

    def test_missing_file(self, harness):
        response = harness.client.post("/api/upload")
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    def test_empty_file(self, harness):
        response = harness.client.post(
            "/api/upload", files={"file": ("lease.txt", b"", "text/plain")},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_enqueue_failure_still_succeeds(self):
        harness = Harness(queue=InMemoryTaskQueue(fail_with=ConnectionError("down")))
        response = harness.client.post(
            "/api/upload", files={"file": ("lease.txt", b"abc", "text/plain")},
        )
        assert response.status_code == 200
        assert response.json()["status"] == "PENDING"


# ---------------------------------------------------------------------------
# 2. Status & retrieval
# ---------------------------------------------------------------------------


class TestStatusEndpoint:
    """Tests for GET /api/documents/{id}/status and /api/documents/{id}."""

    def test_pending_status_omits_summary(self, harness):
        doc_id = harness.pending_document()
        response = harness.client.get(f"/api/documents/{doc_id}/status")
        assert response.status_code == 200
        assert response.json() == {"status": "PENDING"}

    def test_completed_status_has_summary(self, harness):
        doc_id = harness.completed_document("Short summary")
        response = harness.client.get(f"/api/documents/{doc_id}/status")
        assert response.json() == {"status": "COMPLETED", "summary": "Short summary"}

    def test_unknown_document(self, harness):
        response = harness.client.get("/api/documents/nope/status")
        assert response.status_code == 404
        body = response.json()
        assert body["code"] == "DOCUMENT_NOT_FOUND"
        assert body["error"] == "Document not found"

    def test_get_document(self, harness):
        doc_id = harness.completed_document("Sum")
        body = harness.client.get(f"/api/documents/{doc_id}").json()
        assert body["id"] == doc_id
        assert body["status"] == "COMPLETED"
        assert body["summary"] == "Sum"
        assert body["content_type"] == "text/plain"


# ---------------------------------------------------------------------------
# 3. Queries
# ---------------------------------------------------------------------------


class TestQueryEndpoints:
    """Tests for the streaming and collected query endpoints."""

    def test_stream_post(self, harness):
        doc_id = harness.completed_document()
        response = harness.client.post(
            f"/api/documents/{doc_id}/query/stream",
            json={"question": "How much is rent?"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert _parse_sse(response.text) == [
            ("message", "The tenant "),
            ("message", "pays "),
            ("message", "900."),
        ]

        kwargs = harness.sdk.chat.completions.create.await_args.kwargs
        assert "How much is rent?" in kwargs["messages"][1]["content"]
        assert "900 monthly" in kwargs["messages"][1]["content"]

    def test_stream_get(self, harness):
        doc_id = harness.completed_document()
        response = harness.client.get(
            f"/api/documents/{doc_id}/query/stream",
            params={"question": "How much is rent?"},
        )
        assert response.status_code == 200
        assert [event for event, _ in _parse_sse(response.text)] == ["message"] * 3

    def test_stream_not_ready_is_json_error(self, harness):
        doc_id = harness.pending_document()
        response = harness.client.post(
            f"/api/documents/{doc_id}/query/stream", json={"question": "q"},
        )
        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "DOCUMENT_NOT_READY"
        assert body["details"] == "Document status: PENDING"
        harness.sdk.chat.completions.create.assert_not_awaited()

    def test_stream_unknown_document(self, harness):
        response = harness.client.post(
            "/api/documents/missing/query/stream", json={"question": "q"},
        )
        assert response.status_code == 404

    def test_empty_question_rejected(self, harness):
        doc_id = harness.completed_document()
        response = harness.client.post(
            f"/api/documents/{doc_id}/query/stream", json={"question": "   "},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    def test_collected_answer(self, harness):
        doc_id = harness.completed_document()
        response = harness.client.post(
            f"/api/documents/{doc_id}/query", json={"question": "How much is rent?"},
        )
        assert response.status_code == 200
        assert response.json() == {
            "document_id": doc_id,
            "question": "How much is rent?",
            "answer": "The tenant pays 900.",
        }

    def test_stream_get_whitespace_question_rejected(self, harness):
        doc_id = harness.completed_document()
        response = harness.client.get(
            f"/api/documents/{doc_id}/query/stream", params={"question": "   "},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"
        harness.sdk.chat.completions.create.assert_not_awaited()

    def test_stream_get_question_is_stripped(self, harness):
        doc_id = harness.completed_document()
        harness.client.get(
            f"/api/documents/{doc_id}/query/stream",
            params={"question": "  How much is rent?  "},
        )
        kwargs = harness.sdk.chat.completions.create.await_args.kwargs
        assert "Question: How much is rent?\n" in kwargs["messages"][1]["content"]

    def test_stream_forwards_upstream_error_chunk(self, harness):
        harness.answer_error = _connection_error()
        doc_id = harness.completed_document()
        response = harness.client.post(
            f"/api/documents/{doc_id}/query/stream", json={"question": "q"},
        )

        assert response.status_code == 200
        events = _parse_sse(response.text)
        assert [event for event, _ in events] == ["message"] * 4
        assert events[-1][1].startswith("Error: ")

    def test_collected_answer_upstream_failure(self, harness):
        harness.answer_error = _connection_error()
        doc_id = harness.completed_document()
        response = harness.client.post(
            f"/api/documents/{doc_id}/query", json={"question": "q"},
        )

        assert response.status_code == 502
        body = response.json()
        assert body["code"] == "AI_SERVICE_ERROR"
        assert body["details"].startswith("Error: ")
        assert "The tenant" not in body["details"]


# ---------------------------------------------------------------------------
# 4. Rate limiting
# ---------------------------------------------------------------------------


class TestRateLimiting:
    def test_third_request_throttled(self):
        harness = Harness(rate_limit=2)
        doc_id = harness.completed_document()
        url = f"/api/documents/{doc_id}/query"

        codes = [
            harness.client.post(url, json={"question": "q"}).status_code
            for _ in range(3)
        ]
        assert codes == [200, 200, 429]

        response = harness.client.post(url, json={"question": "q"})
        assert response.json()["code"] == "RATE_LIMIT_EXCEEDED"
        assert response.headers["Retry-After"] == "60"

    def test_status_polling_throttled(self):
        harness = Harness(rate_limit=2)
        doc_id = harness.pending_document()
        codes = [
            harness.client.get(f"/api/documents/{doc_id}/status").status_code
            for _ in range(3)
        ]
        assert codes == [200, 200, 429]
        assert harness.client.get(f"/api/documents/{doc_id}").status_code == 429

    def test_health_and_metrics_not_throttled(self):
        harness = Harness(rate_limit=1)
        for _ in range(3):
            assert harness.client.get("/live").status_code == 200
            assert harness.client.get("/health").status_code == 200
            assert harness.client.get("/api/metrics").status_code == 200


# ---------------------------------------------------------------------------
# 5. Health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_healthy(self, harness):
        response = harness.client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"] == {"database": "healthy", "redis": "healthy"}
        assert body["version"]
        assert body["uptime"]

    def test_api_alias(self, harness):
        assert harness.client.get("/api/health").status_code == 200

    def test_unhealthy_dependency(self, harness):
        async def broken():
            raise ConnectionError("connection refused")

        harness.services.health_probes["redis"] = broken
        response = harness.client.get("/health")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "unhealthy"
        assert body["services"]["database"] == "healthy"
        assert body["services"]["redis"].startswith("unhealthy: ")

    def test_ready(self, harness):
        assert harness.client.get("/ready").json() == {"status": "ready"}

    def test_not_ready(self, harness):
        async def broken():
            raise ConnectionError("down")

        harness.services.ready_probes["database"] = broken
        response = harness.client.get("/ready")
        assert response.status_code == 503
        assert response.json()["status"] == "not ready"

    def test_live(self, harness):
        body = harness.client.get("/live").json()
        assert body["status"] == "alive"


# ---------------------------------------------------------------------------
# 6. Metrics & lifespan
# ---------------------------------------------------------------------------


class TestMetricsAndLifespan:
    def test_metrics_grouped_by_route(self, harness):
        doc_id = harness.pending_document()
        harness.client.get(f"/api/documents/{doc_id}/status")
        harness.client.get("/api/documents/other/status")

        body = harness.client.get("/api/metrics").json()
        route = body["routes"]["GET /api/documents/{document_id}/status"]
        assert route["requests"] == 2
        assert route["errors"] == 1
        assert body["total_requests"] >= 2

    def test_unmatched_paths_share_one_key(self, harness):
        for i in range(50):
            assert harness.client.get(f"/scan/{i}").status_code == 404

        routes = harness.client.get("/api/metrics").json()["routes"]
        assert routes["GET <unmatched>"]["requests"] == 50
        assert not any("/scan/" in key for key in routes)

    def test_lifespan_starts_and_stops_sweep(self, harness):
        with TestClient(harness.app) as client:
            assert harness.services.rate_limiter.running
            assert client.get("/live").status_code == 200

        assert not harness.services.rate_limiter.running
        harness.sdk.close.assert_awaited_once()
        assert harness.queue.closed
