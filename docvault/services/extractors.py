"""
File Text Extraction

Turns uploaded file bytes into plain text for the file normalizer.

Supported formats:
    - PDF (application/pdf): text extraction via PyMuPDF (fitz)
    - DOCX (wordprocessingml): paragraph text via python-docx
    - Plain text / Markdown (text/plain, text/markdown): UTF-8 decoding

The declared MIME type decides the extractor. Browsers and curl often
send ``application/octet-stream`` (or nothing) for Markdown, so in that
case only the file extension is used instead.
"""

from __future__ import annotations

import asyncio
import io
import logging
from pathlib import PurePosixPath
from typing import Final, NamedTuple

import fitz  # PyMuPDF
from docx import Document as DocxDocument

from docvault.core.errors import TextExtractionError, UnsupportedFileTypeError

logger = logging.getLogger(__name__)

DOCX_MIME: Final[str] = (
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
)

MIME_FILE_TYPES: Final[dict[str, str]] = {
    "application/pdf": "pdf",
    DOCX_MIME: "docx",
    "text/plain": "txt",
    "text/markdown": "md",
}

EXTENSION_FILE_TYPES: Final[dict[str, str]] = {
    ".pdf": "pdf",
    ".docx": "docx",
    ".txt": "txt",
    ".md": "md",
    ".markdown": "md",
}

_GENERIC_MIME_TYPES: Final[frozenset[str]] = frozenset(
    {"", "application/octet-stream"}
)


class ExtractedText(NamedTuple):
    """Plain text pulled out of a file."""

    text: str
    page_count: int | None


def resolve_file_type(mime_type: str | None, file_name: str) -> str:
    """
    Map a declared MIME type (or, for generic types, the extension) to a
    file type identifier: ``pdf``, ``docx``, ``txt`` or ``md``.

    Raises:
        UnsupportedFileTypeError: If neither identifies a supported format.
    """
    mime = (mime_type or "").split(";", 1)[0].strip().lower()

    if mime in MIME_FILE_TYPES:
        return MIME_FILE_TYPES[mime]

    if mime in _GENERIC_MIME_TYPES:
        suffix = PurePosixPath(file_name).suffix.lower()
        if suffix in EXTENSION_FILE_TYPES:
            return EXTENSION_FILE_TYPES[suffix]

    raise UnsupportedFileTypeError(
        f"Unsupported file type '{mime or 'unknown'}' for '{file_name}'. "
        "Supported: PDF, DOCX, TXT, MD"
    )


class FileExtractor:
    """
    Async text extractor for uploaded files.

    Blocking work (PDF and DOCX parsing) is offloaded to a thread pool
    via asyncio.to_thread so the event loop stays free.

    Usage::

        extractor = FileExtractor()
        file_type = resolve_file_type("application/pdf", "report.pdf")
        result = await extractor.extract(raw, file_type)
        print(result.page_count)
    """

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def extract(self, raw: bytes, file_type: str) -> ExtractedText:
        """
        Extract text from raw file bytes.

        Args:
            raw: File content.
            file_type: Identifier from :func:`resolve_file_type`.

        Returns:
            ExtractedText with the page count for PDFs, None otherwise.

        Raises:
            TextExtractionError: If the file is corrupt or undecodable.
            UnsupportedFileTypeError: If file_type is unknown.
        """
        if file_type == "pdf":
            result = await asyncio.to_thread(self._extract_pdf, raw)
        elif file_type == "docx":
            result = await asyncio.to_thread(self._extract_docx, raw)
        elif file_type in ("txt", "md"):
            result = self._decode_text(raw)
        else:
            raise UnsupportedFileTypeError(f"Unsupported file type: '{file_type}'")

        logger.info(
            "Extracted %s: %d chars from %d bytes",
            file_type,
            len(result.text),
            len(raw),
        )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_pdf(raw: bytes) -> ExtractedText:
        """
        Extract text and page count from PDF bytes.

        This is a *synchronous* helper; always call via
        ``asyncio.to_thread`` to keep the event loop free.
        """
        try:
            doc = fitz.open(stream=raw, filetype="pdf")
        except Exception as exc:
            raise TextExtractionError(f"Could not open PDF: {exc}") from exc
        try:
            pages: list[str] = [page.get_text() for page in doc]
            return ExtractedText("\n".join(pages), len(pages))
        finally:
            doc.close()

    @staticmethod
    def _extract_docx(raw: bytes) -> ExtractedText:
        """Join the non-empty paragraphs of a DOCX file (synchronous)."""
        try:
            doc = DocxDocument(io.BytesIO(raw))
        except Exception as exc:
            raise TextExtractionError(f"Could not open DOCX: {exc}") from exc
        paragraphs = [p.text.strip() for p in doc.paragraphs if p.text.strip()]
        return ExtractedText("\n\n".join(paragraphs), None)

    @staticmethod
    def _decode_text(raw: bytes) -> ExtractedText:
        """Decode UTF-8 text, tolerating a byte-order mark."""
        try:
            return ExtractedText(raw.decode("utf-8-sig"), None)
        except UnicodeDecodeError as exc:
            raise TextExtractionError(f"File is not valid UTF-8: {exc}") from exc
