# =============================================================================
# Worker Entry Point
# =============================================================================
#
# Starts a Celery worker that consumes all three priority queues. The
# weighted 6:3:1 poll order comes from the broker transport options in
# celery_app.py, not from the order of -Q.
#
# Usage:
#   docbrief-worker                 # console script (pyproject.toml)
#   python -m app.workers.worker
#   celery -A app.workers.celery_app worker -Q critical,default,low
# =============================================================================

from __future__ import annotations

import logging

from app.config import settings
from app.workers.celery_app import celery_app
from app.workers.queue import TaskPriority

logger = logging.getLogger(__name__)


def worker_argv() -> list[str]:
    queues = ",".join(priority.value for priority in TaskPriority)
    return [
        "worker",
        f"--queues={queues}",
        f"--concurrency={settings.worker_concurrency}",
        f"--loglevel={settings.log_level}",
    ]


def main() -> None:
    argv = worker_argv()
    logger.info("Starting summary worker: %s", " ".join(argv))
    celery_app.worker_main(argv=argv)


if __name__ == "__main__":
    main()
