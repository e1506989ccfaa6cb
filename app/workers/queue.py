# =============================================================================
# Task Queue — Producer Side of the Summary Pipeline
# =============================================================================
#
# The request path only ever needs one operation: "queue summary generation
# for document X". This module defines that boundary and the message shape.
#
# MESSAGE:
#   task name:  "summary:generate"
#   body:       {"document_id": "<uuid>"}
#   queue:      one of "critical" | "default" | "low"
#
# The delivery/redelivery count lives in the broker envelope (Celery's
# request.retries / delivery_info), never in the payload.
#
# ARCHITECTURE:
#   TaskQueue (Protocol)
#   ├── CeleryTaskQueue   — Redis broker via Celery send_task()
#   └── InMemoryTaskQueue — records payloads (tests, local runs)
# =============================================================================

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass
from typing import Protocol

from celery import Celery

from app.errors import QueueEnqueueError

logger = logging.getLogger(__name__)

SUMMARY_GENERATION_TASK = "summary:generate"


class TaskPriority(str, enum.Enum):
    """Priority classes; each maps to one broker queue of the same name."""

    CRITICAL = "critical"
    DEFAULT = "default"
    LOW = "low"


# Relative dequeue weights. Workers poll `critical` six times as often as
# `low` under contention, but every queue keeps a chance on every poll.
QUEUE_WEIGHTS: dict[str, int] = {
    TaskPriority.CRITICAL.value: 6,
    TaskPriority.DEFAULT.value: 3,
    TaskPriority.LOW.value: 1,
}


@dataclass(frozen=True)
class SummaryTaskPayload:
    """Body of a summary generation task."""

    document_id: str

    def to_dict(self) -> dict[str, str]:
        return {"document_id": self.document_id}

    @classmethod
    def from_dict(cls, data: dict) -> SummaryTaskPayload:
        document_id = data.get("document_id") if isinstance(data, dict) else None
        if not document_id or not isinstance(document_id, str):
            raise ValueError(f"Invalid summary task payload: {data!r}")
        return cls(document_id=document_id)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class TaskQueue(Protocol):
    """Producer interface used by the upload path."""

    async def enqueue_summary_generation(
        self,
        document_id: str,
        priority: TaskPriority = TaskPriority.DEFAULT,
    ) -> str:
        """
        Queue summary generation for a document.

        Returns:
            The broker task id.

        Raises:
            QueueEnqueueError: the broker did not accept the task.
        """
        ...

    def close(self) -> None:
        """Release broker connections."""
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Celery (Redis broker)
# ---------------------------------------------------------------------------


class CeleryTaskQueue:
    """
    Sends tasks by name so the API process never imports worker code.

    send_task() talks to Redis synchronously, so it runs in a worker
    thread to keep the event loop free.
    """

    def __init__(self, app: Celery) -> None:
        self._app = app

    async def enqueue_summary_generation(
        self,
        document_id: str,
        priority: TaskPriority = TaskPriority.DEFAULT,
    ) -> str:
        payload = SummaryTaskPayload(document_id=document_id)
        try:
            result = await asyncio.to_thread(
                self._app.send_task,
                SUMMARY_GENERATION_TASK,
                kwargs=payload.to_dict(),
                queue=priority.value,
            )
        except Exception as exc:
            raise QueueEnqueueError(
                "Failed to enqueue summary generation task",
                details=str(exc),
            ) from exc
        return result.id

    def close(self) -> None:
        self._app.close()


# ---------------------------------------------------------------------------
# Implementation 2: In-Memory
# ---------------------------------------------------------------------------


class InMemoryTaskQueue:
    """Records enqueued payloads per priority; optionally refuses them."""

    def __init__(self, fail_with: Exception | None = None) -> None:
        self.fail_with = fail_with
        self.enqueued: list[tuple[TaskPriority, SummaryTaskPayload, str]] = []
        self.closed = False

    async def enqueue_summary_generation(
        self,
        document_id: str,
        priority: TaskPriority = TaskPriority.DEFAULT,
    ) -> str:
        if self.fail_with is not None:
            raise QueueEnqueueError(
                "Failed to enqueue summary generation task",
                details=str(self.fail_with),
            ) from self.fail_with
        task_id = str(uuid.uuid4())
        self.enqueued.append(
            (priority, SummaryTaskPayload(document_id=document_id), task_id)
        )
        return task_id

    def close(self) -> None:
        self.closed = True
