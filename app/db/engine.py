# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Two engines, one schema:
#
# 1. API engine (module-level, pooled): lives for the whole FastAPI process
#    on its single event loop. Route handlers reach it through the
#    SqlAlchemyDocumentStore built at startup.
#
# 2. Worker engine (per task run, NullPool): Celery runs each summary task
#    in a fresh event loop via asyncio.run(). asyncpg connections are bound
#    to the loop that opened them, so a pooled engine shared across task
#    runs would hand a later loop a connection owned by a dead one. NullPool
#    opens and closes connections within the run.
#
# COMMIT POLICY:
# The document store opens one session per operation and commits it
# explicitly. No request-scoped session dependency is used.
# =============================================================================

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from app.config import settings
from app.db.models import Base

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# API Engine
# ---------------------------------------------------------------------------
# - echo=settings.debug: log SQL statements during development.
# - pool_size / max_overflow: bounded by the number of concurrent requests
#   that touch the store at once.
# - pool_pre_ping: drop connections Postgres closed while idle.
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

# expire_on_commit=False: loaded attributes stay readable after commit,
# which is required outside of a session in async code.
async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Worker Engine
# ---------------------------------------------------------------------------


def create_worker_engine() -> AsyncEngine:
    """Create a loop-local engine for one Celery task run."""
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        poolclass=NullPool,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ---------------------------------------------------------------------------
# Schema & Probes
# ---------------------------------------------------------------------------


async def create_tables(engine: AsyncEngine = async_engine) -> None:
    """Create missing tables (idempotent)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured")


async def ping_database(engine: AsyncEngine = async_engine) -> None:
    """Run `SELECT 1`; raises if the database is unreachable."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
