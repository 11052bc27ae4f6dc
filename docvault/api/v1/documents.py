"""
Documents API Router

HTTP endpoints for ingesting and managing a user's documents.

Endpoints:
    POST   /documents/upload       Upload a PDF, DOCX, TXT or Markdown file.
    POST   /documents/note         Store a free-text note.
    POST   /documents/url          Crawl a website into one document.
    GET    /documents              List documents (newest first, paginated).
    GET    /documents/{id}         One document with its chunks.
    PATCH  /documents/{id}/tags    Replace a document's tags.
    DELETE /documents/{id}         Delete one document.
    DELETE /documents              Delete every document of the caller.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, File, Form, Query, UploadFile

from docvault.api.deps import DocumentId, OwnerId, Pipeline
from docvault.models.schemas import ContentType
from docvault.schemas.api import (
    DeleteAllResponse,
    DeleteDocumentResponse,
    DocumentListResponse,
    DocumentResponse,
    ErrorResponse,
    IngestResponse,
    NoteRequest,
    TagsRequest,
    TagsResponse,
    UrlRequest,
)
from docvault.services.ingestion import IngestResult

logger = logging.getLogger(__name__)

router = APIRouter()

_ERRORS = {
    400: {"model": ErrorResponse, "description": "Invalid input"},
    401: {"model": ErrorResponse, "description": "Missing identity header"},
}


def _ingest_response(result: IngestResult, url: str | None = None) -> IngestResponse:
    return IngestResponse(
        document_id=result.document_id,
        title=result.title,
        content_type=result.content_type,
        chunks_count=result.chunk_count,
        metadata=result.metadata,
        url=url,
    )


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@router.post(
    "/documents/upload",
    response_model=IngestResponse,
    summary="Upload a file",
    responses={
        **_ERRORS,
        422: {"model": ErrorResponse, "description": "No text could be extracted"},
        502: {"model": ErrorResponse, "description": "Embedding or storage failed"},
    },
)
async def upload_document(
    owner_id: OwnerId,
    pipeline: Pipeline,
    file: Annotated[UploadFile, File(description="PDF, DOCX, TXT or MD file")],
    title: Annotated[str | None, Form()] = None,
    tags: Annotated[str | None, Form(description="Comma-separated tags")] = None,
    api_key: Annotated[str | None, Form(alias="apiKey")] = None,
) -> IngestResponse:
    """
    Upload a file, extract its text, chunk, embed and store it.

    The extractor is chosen from the declared content type; a generic
    ``application/octet-stream`` falls back to the file extension.
    """
    pipeline.use_api_key(api_key)
    raw = await file.read()
    file_name = file.filename or "upload"
    logger.info(
        "Upload from %s: '%s' (%s, %d bytes)",
        owner_id,
        file_name,
        file.content_type,
        len(raw),
    )

    result = await pipeline.ingest_file(
        owner_id,
        raw,
        file.content_type,
        file_name,
        title=title,
        tags=(tags or "").split(","),
    )
    return _ingest_response(result)


@router.post(
    "/documents/note",
    response_model=IngestResponse,
    summary="Store a note",
    responses={
        **_ERRORS,
        502: {"model": ErrorResponse, "description": "Embedding or storage failed"},
    },
)
async def create_note(
    body: NoteRequest,
    owner_id: OwnerId,
    pipeline: Pipeline,
) -> IngestResponse:
    """Store free text as a ``note`` document; the title defaults to its first line."""
    pipeline.use_api_key(body.api_key)
    result = await pipeline.ingest_note(
        owner_id, body.content, title=body.title, tags=body.tags
    )
    return _ingest_response(result)


@router.post(
    "/documents/url",
    response_model=IngestResponse,
    summary="Crawl a website",
    responses={
        **_ERRORS,
        422: {"model": ErrorResponse, "description": "No page yielded text"},
        502: {"model": ErrorResponse, "description": "Embedding or storage failed"},
    },
)
async def create_from_url(
    body: UrlRequest,
    owner_id: OwnerId,
    pipeline: Pipeline,
) -> IngestResponse:
    """
    Crawl a website breadth-first and store all pages as one ``url`` document.

    Crawl bounds come from ``crawlOptions`` (depth, page budget, excluded
    directories, per-page timeout, concurrency). ``maxDepth: 0`` fetches
    the seed page only.
    """
    pipeline.use_api_key(body.api_key)
    result = await pipeline.ingest_url(
        owner_id,
        body.url,
        title=body.title,
        tags=body.tags,
        crawl_options=body.crawl_options,
    )
    return _ingest_response(result, url=result.metadata.url)


# ---------------------------------------------------------------------------
# Management
# ---------------------------------------------------------------------------


@router.get(
    "/documents",
    response_model=DocumentListResponse,
    summary="List documents",
)
async def list_documents(
    owner_id: OwnerId,
    pipeline: Pipeline,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    content_type: Annotated[ContentType | None, Query(alias="contentType")] = None,
) -> DocumentListResponse:
    """The caller's documents, newest first."""
    documents, total = await pipeline.list_documents(
        owner_id, content_type=content_type, limit=limit, offset=offset
    )
    return DocumentListResponse(documents=documents, total_count=total)


@router.get(
    "/documents/{document_id}",
    response_model=DocumentResponse,
    summary="Get one document",
    responses={404: {"model": ErrorResponse, "description": "Document not found"}},
)
async def get_document(
    doc_id: DocumentId,
    owner_id: OwnerId,
    pipeline: Pipeline,
) -> DocumentResponse:
    document = await pipeline.get_document(owner_id, doc_id)
    return DocumentResponse(document=document)


@router.patch(
    "/documents/{document_id}/tags",
    response_model=TagsResponse,
    summary="Replace document tags",
    responses={404: {"model": ErrorResponse, "description": "Document not found"}},
)
async def update_tags(
    body: TagsRequest,
    doc_id: DocumentId,
    owner_id: OwnerId,
    pipeline: Pipeline,
) -> TagsResponse:
    tags, updated = await pipeline.update_tags(owner_id, doc_id, body.tags)
    return TagsResponse(document_id=doc_id, tags=tags, updated_chunks=updated)


@router.delete(
    "/documents/{document_id}",
    response_model=DeleteDocumentResponse,
    summary="Delete one document",
)
async def delete_document(
    doc_id: DocumentId,
    owner_id: OwnerId,
    pipeline: Pipeline,
) -> DeleteDocumentResponse:
    """Delete a document. Deleting an unknown document still succeeds."""
    deleted = await pipeline.delete_document(owner_id, doc_id)
    return DeleteDocumentResponse(
        deleted_document_id=doc_id,
        message=f"Document deleted ({deleted} chunks removed)",
    )


@router.delete(
    "/documents",
    response_model=DeleteAllResponse,
    summary="Delete all documents",
)
async def delete_all_documents(
    owner_id: OwnerId,
    pipeline: Pipeline,
) -> DeleteAllResponse:
    deleted = await pipeline.delete_all_documents(owner_id)
    return DeleteAllResponse(
        deleted_chunks=deleted,
        message=f"Deleted {deleted} chunks",
    )
