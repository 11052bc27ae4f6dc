"""
DocVault Error Taxonomy

Every error raised by the pipeline carries a short machine-checkable
``code`` and the HTTP status it maps to at the API boundary.

Families:
    Input validation (400): bad MIME type, empty content, malformed URL/UUID.
    Extraction (422): nothing usable could be extracted.
    Not found (404): document absent for this owner.
    External services (502): embedding, generation or vector store failure.
"""

from __future__ import annotations

from typing import ClassVar


class DocVaultError(Exception):
    """Base class for all pipeline errors."""

    code: ClassVar[str] = "internal_error"
    status_code: ClassVar[int] = 500
    title: ClassVar[str] = "Internal server error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(DocVaultError):
    code = "invalid_input"
    status_code = 400
    title = "Invalid request"


class EmptyInputError(InputValidationError):
    code = "empty_input"
    title = "Content cannot be empty"


class UnsupportedFileTypeError(InputValidationError):
    code = "unsupported_file_type"
    title = "Unsupported file type. Please upload PDF, TXT, MD, or DOCX files."


class InvalidURLError(InputValidationError):
    code = "invalid_url"
    title = "Invalid URL format provided"


class InvalidDocumentIdError(InputValidationError):
    code = "invalid_document_id"
    title = "Invalid document ID format"


class MissingCredentialsError(InputValidationError):
    code = "missing_credentials"
    title = "OpenAI API key is required"


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


class NoContentExtractedError(DocVaultError):
    code = "no_content_extracted"
    status_code = 422
    title = "No content could be extracted"


class TextExtractionError(DocVaultError):
    code = "extraction_failed"
    status_code = 422
    title = "Failed to extract text"


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


class DocumentNotFoundError(DocVaultError):
    code = "not_found"
    status_code = 404
    title = "Document not found"


# ---------------------------------------------------------------------------
# External services
# ---------------------------------------------------------------------------


class ExternalServiceError(DocVaultError):
    """A call to an external collaborator failed at a named stage."""

    code = "external_service_error"
    status_code = 502
    title = "Upstream service failure"
    stage: ClassVar[str] = "external"

    def __init__(self, message: str) -> None:
        super().__init__(f"{self.stage} failed: {message}")


class EmbeddingError(ExternalServiceError):
    code = "embedding_failed"
    stage = "embedding"


class GenerationError(ExternalServiceError):
    code = "generation_failed"
    stage = "generation"


class VectorStoreError(ExternalServiceError):
    code = "vector_store_failed"
    stage = "vector_store"


class RAGQueryFailedError(DocVaultError):
    """Wraps any failure of the retrieve/generate sequence."""

    code = "rag_query_failed"
    status_code = 502
    title = "RAG query failed"

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"RAG query failed: {cause}")
        self.cause = cause
