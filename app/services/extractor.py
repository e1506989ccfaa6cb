# =============================================================================
# Text Extractor — Uploaded Bytes → Plain Text
# =============================================================================
#
# Contract: given the uploaded bytes and their declared media type, return
# the extracted plain text or raise.
#
#   text/plain       → decoded as UTF-8 (undecodable bytes replaced)
#   application/pdf  → converted with Docling from an in-memory stream
#   anything else    → ExtractionError
#
# DESIGN DECISION: Docling over PyPDF/pdfplumber. It keeps reading order,
# understands tables, and OCRs scanned pages, which matters for contracts
# and notices that arrive as photocopies.
#
# The page and size limits are handed to Docling, which refuses an
# oversized PDF before running layout analysis or OCR on it. We iterate
# document items (not export_to_markdown()) so headings and tables can be
# emitted in a form the model reads well.
# =============================================================================

from __future__ import annotations

import logging
from io import BytesIO
from pathlib import PurePath
from typing import Protocol

from docling.datamodel.base_models import DocumentStream, InputFormat
from docling.datamodel.pipeline_options import PdfPipelineOptions
from docling.document_converter import DocumentConverter, PdfFormatOption
from docling_core.types.doc.labels import DocItemLabel

from app.config import settings
from app.errors import EmptyDocumentError, ExtractionError, ValidationError

logger = logging.getLogger(__name__)

_TEXT_LABELS = (
    DocItemLabel.TEXT,
    DocItemLabel.LIST_ITEM,
    DocItemLabel.CAPTION,
    DocItemLabel.FOOTNOTE,
)
_HEADING_LABELS = (DocItemLabel.SECTION_HEADER, DocItemLabel.TITLE)


# ---------------------------------------------------------------------------
# Protocol Definition
# ---------------------------------------------------------------------------


class TextExtractor(Protocol):
    """Extraction boundary used by the upload path."""

    def validate(self, filename: str, size: int) -> None:
        """Reject uploads by size or extension. Raises ValidationError."""
        ...

    def extract(self, data: bytes, content_type: str) -> str:
        """Return plain text. Raises ExtractionError on failure."""
        ...


# ---------------------------------------------------------------------------
# Docling Converter — Lazy Singleton
# ---------------------------------------------------------------------------
# Initialization loads layout/OCR models (~2-5 seconds on first use), so
# one converter is shared by all uploads in the process.
# ---------------------------------------------------------------------------

_converter: DocumentConverter | None = None


def _get_converter() -> DocumentConverter:
    """Lazily initialize and cache the Docling DocumentConverter."""
    global _converter
    if _converter is None:
        logger.info(
            "Initializing Docling DocumentConverter "
            "(first use, may take a few seconds)..."
        )
        pipeline_options = PdfPipelineOptions()
        pipeline_options.do_table_structure = True
        pipeline_options.do_ocr = True

        _converter = DocumentConverter(
            format_options={
                InputFormat.PDF: PdfFormatOption(
                    pipeline_options=pipeline_options,
                ),
            }
        )
        logger.info("Docling DocumentConverter initialized")
    return _converter


# ---------------------------------------------------------------------------
# Implementation
# ---------------------------------------------------------------------------


class DocumentTextExtractor:
    """Extractor for plain-text and PDF uploads."""

    def __init__(
        self,
        max_file_size: int | None = None,
        max_pages: int | None = None,
        allowed_extensions: list[str] | None = None,
    ) -> None:
        self.max_file_size = max_file_size or settings.max_upload_bytes
        self.max_pages = max_pages or settings.max_pdf_pages
        self.allowed_extensions = [
            ext.lower()
            for ext in (allowed_extensions or settings.allowed_upload_extensions)
        ]

    def validate(self, filename: str, size: int) -> None:
        if size == 0:
            raise ValidationError("Uploaded file is empty.")
        if size > self.max_file_size:
            raise ValidationError(
                f"File size {size} bytes exceeds maximum allowed size "
                f"{self.max_file_size} bytes"
            )
        suffix = PurePath(filename).suffix.lower()
        if suffix not in self.allowed_extensions:
            raise ValidationError(
                "Unsupported file type. Allowed: "
                + ", ".join(self.allowed_extensions)
            )

    def extract(self, data: bytes, content_type: str) -> str:
        media_type = (content_type or "").split(";")[0].strip().lower()
        if media_type == "text/plain":
            return data.decode("utf-8", errors="replace").strip()
        if media_type == "application/pdf":
            return self._extract_pdf(data)
        raise ExtractionError(f"Unsupported content type: {content_type or 'unknown'}")

    def _extract_pdf(self, data: bytes) -> str:
        converter = _get_converter()
        try:
            result = converter.convert(
                DocumentStream(name="upload.pdf", stream=BytesIO(data)),
                max_num_pages=self.max_pages,
                max_file_size=self.max_file_size,
            )
        except Exception as exc:
            raise ExtractionError(
                "Failed to extract text from document",
                details=str(exc),
            ) from exc

        page_count = result.document.num_pages()
        if page_count > self.max_pages:
            raise ExtractionError(
                f"PDF has {page_count} pages, maximum allowed is {self.max_pages}"
            )

        blocks: list[str] = []
        for item, _level in result.document.iterate_items():
            label = getattr(item, "label", None)
            if label in _HEADING_LABELS or label in _TEXT_LABELS:
                text = getattr(item, "text", "").strip()
                if text:
                    blocks.append(text)
            elif label == DocItemLabel.TABLE:
                table_md = _table_to_markdown(item, result.document)
                if table_md:
                    blocks.append(table_md)

        text = "\n\n".join(blocks).strip()
        if not text:
            raise EmptyDocumentError("No text content found in PDF")

        logger.info(
            "Extracted PDF: %d pages, %d blocks, %d chars",
            page_count, len(blocks), len(text),
        )
        return text


def _table_to_markdown(table_item: object, document: object) -> str:
    """Render a Docling TableItem as a markdown table, or its plain text."""
    try:
        if hasattr(table_item, "export_to_markdown"):
            return table_item.export_to_markdown(doc=document).strip()
    except Exception as exc:
        logger.warning("Table export to markdown failed: %s", exc)

    text = getattr(table_item, "text", "")
    return text.strip() if text else ""


# ---------------------------------------------------------------------------
# Test Double
# ---------------------------------------------------------------------------


class StaticTextExtractor:
    """Extractor that returns fixed text (or raises) regardless of input."""

    def __init__(self, text: str = "", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls: list[tuple[int, str]] = []

    def validate(self, filename: str, size: int) -> None:
        if size == 0:
            raise ValidationError("Uploaded file is empty.")

    def extract(self, data: bytes, content_type: str) -> str:
        self.calls.append((len(data), content_type))
        if self.error is not None:
            raise self.error
        return self.text
