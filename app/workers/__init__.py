# =============================================================================
# Workers Package — Celery Background Tasks
# =============================================================================
# Handles summary generation outside the request path:
#   - queue.py: Task name, payload, priorities and the producer interface
#   - scheduling.py: Weighted 6:3:1 queue poll order for the Redis transport
#   - celery_app.py: Celery application configuration
#   - tasks.py: Summary handler and the Celery task wrapping it
#   - worker.py: Worker entry point
#
# WHY CELERY?
# A summary is one slow model call (seconds to minutes, with retries).
# Running it inline would hold the upload request open; the worker pool
# runs it in the background while clients poll for status.
# =============================================================================
