# =============================================================================
# Database Package
# =============================================================================
# Provides async SQLAlchemy engines, session factories, and the ORM model.
#
# Key exports:
#   - async_session_factory: sessions for the API process
#   - create_worker_engine: per-run NullPool engine for Celery tasks
#   - Document, DocumentStatus: the document row and its lifecycle
# =============================================================================
