# =============================================================================
# docbrief — Legal Document Summaries & Streaming Q&A
# =============================================================================
# Upload a contract or notice, get a plain-language summary generated in the
# background, then ask questions about it with answers streamed back as
# server-sent events.
#
# Package structure:
#   app/
#   ├── api/          → FastAPI route handlers (upload, status, query,
#   │                    health, metrics) and the Services container
#   ├── db/           → Database engine, sessions, ORM model, lifecycle
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Document store & service, text extraction, AI
#   │                    client, streaming proxy, rate limiter, metrics
#   └── workers/      → Celery app, task queue, weighted scheduling, tasks
# =============================================================================
