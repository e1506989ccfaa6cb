# =============================================================================
# Database Models — SQLAlchemy ORM
# =============================================================================
#
# SCHEMA OVERVIEW:
#
# ┌──────────────────────────────┐
# │  documents                   │
# ├──────────────────────────────┤
# │ id (PK, uuid string)         │
# │ filename                     │
# │ raw_text (text)              │
# │ summary (text, nullable)     │
# │ status (document_status)     │
# │ content_type                 │
# │ file_size                    │
# │ created_at                   │
# │ updated_at                   │
# └──────────────────────────────┘
#
# LIFECYCLE:
#
#   PENDING ──▶ PROCESSING ──▶ COMPLETED   (summary set)
#                         └──▶ FAILED      (no summary)
#
# A document is created PENDING by the upload path and is only mutated
# afterwards by the summary worker. COMPLETED and FAILED are terminal.
# `summary` is non-null exactly when status is COMPLETED.
# =============================================================================

import enum
import uuid
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Enum, Index, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""

    pass


class DocumentStatus(str, enum.Enum):
    """
    Summary pipeline state for a document.

    The values double as the wire representation in status responses.
    """

    PENDING = "PENDING"          # Uploaded, waiting for a worker
    PROCESSING = "PROCESSING"    # A worker claimed the summary task
    COMPLETED = "COMPLETED"      # Summary stored, document queryable
    FAILED = "FAILED"            # Summary generation gave up

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.COMPLETED, DocumentStatus.FAILED)


# ---------------------------------------------------------------------------
# Allowed transitions: target status → statuses it may be entered from.
# ---------------------------------------------------------------------------
# Each target lists itself so that re-applying a transition (at-least-once
# redelivery) is accepted. Nothing leaves a terminal status.
# ---------------------------------------------------------------------------
ALLOWED_SOURCES: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.PROCESSING: frozenset(
        {DocumentStatus.PENDING, DocumentStatus.PROCESSING}
    ),
    DocumentStatus.COMPLETED: frozenset(
        {DocumentStatus.PROCESSING, DocumentStatus.COMPLETED}
    ),
    DocumentStatus.FAILED: frozenset(
        {DocumentStatus.PENDING, DocumentStatus.PROCESSING, DocumentStatus.FAILED}
    ),
}


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    """Return True if `current → target` is a legal lifecycle move."""
    return current in ALLOWED_SOURCES.get(target, frozenset())


def _new_document_id() -> str:
    return str(uuid.uuid4())


class Document(Base):
    """An uploaded document with its extracted text and AI summary."""

    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=_new_document_id,
    )

    # Original filename as uploaded by the user
    filename: Mapped[str] = mapped_column(String(500), nullable=False)

    # Plain text produced by the extractor; the context for every query
    raw_text: Mapped[str] = mapped_column(Text, nullable=False)

    # Plain-language summary (null unless status is COMPLETED)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus, name="document_status"),
        nullable=False,
        default=DocumentStatus.PENDING,
    )

    # Declared media type of the upload (text/plain, application/pdf)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False)

    # File size in bytes
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_documents_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Document(id={self.id}, filename='{self.filename}', status={self.status})>"
