# =============================================================================
# Celery Application Configuration
# =============================================================================
#
# Celery is the durable task queue and worker pool for summary generation:
#   Upload → enqueue "summary:generate" → worker → AI summary → COMPLETED
#
# ARCHITECTURE:
# ┌──────────┐     ┌────────────────────┐     ┌──────────────────────┐
# │ FastAPI  │────▶│ Redis (db 0)       │────▶│ Celery worker        │
# │ producer │     │ critical/default/  │     │ 10 executors,        │
# └──────────┘     │ low queues         │     │ weighted 6:3:1 polls │
#                  └────────────────────┘     └──────────────────────┘
#
# DELIVERY: at-least-once. Tasks are acknowledged only after the handler
# returns, and re-queued if the executing process dies. Handlers must be
# idempotent per document id (see tasks.py).
# =============================================================================

from celery import Celery
from kombu import Queue

from app.config import settings
from app.workers.queue import SUMMARY_GENERATION_TASK, TaskPriority
from app.workers.scheduling import WeightedQueueCycle

celery_app = Celery(
    "app.workers",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # --- Serialization ---
    # JSON only: the payload is {"document_id": ...}; pickle is never
    # accepted from the broker.
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # --- Reliability (at-least-once) ---
    # task_acks_late: acknowledge after the handler finishes, so a crash
    # mid-task re-queues it.
    # task_reject_on_worker_lost: re-queue when the executor is killed
    # (OOM, SIGKILL) instead of dropping the message.
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    # --- Worker pool ---
    # Fixed pool of executors; each holds one task at a time.
    worker_concurrency=settings.worker_concurrency,
    worker_prefetch_multiplier=1,

    # --- Queues ---
    task_queues=[Queue(priority.value) for priority in TaskPriority],
    task_default_queue=TaskPriority.DEFAULT.value,
    task_routes={
        SUMMARY_GENERATION_TASK: {"queue": TaskPriority.DEFAULT.value},
    },
    broker_transport_options={
        # Weighted 6:3:1 poll order instead of plain round robin
        "queue_order_strategy": WeightedQueueCycle,
    },

    # --- Timeouts ---
    # Above the handler's own deadline (summary_deadline_seconds) so the
    # handler marks the document FAILED before Celery steps in.
    task_soft_time_limit=settings.summary_task_soft_time_limit,
    task_time_limit=settings.summary_task_time_limit,

    # --- Results ---
    result_expires=3600,

    # --- Task Discovery ---
    include=["app.workers.tasks"],
)
