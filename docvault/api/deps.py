"""
API Dependencies

FastAPI dependencies shared by the v1 routers: caller identity, request
credentials, document id validation and the per-request RAGPipeline.
"""

from __future__ import annotations

import re
from typing import Annotated, Final
from uuid import UUID

from fastapi import Depends, Header, Request

from docvault.core.errors import InvalidDocumentIdError
from docvault.repositories.chunks import PgVectorChunkRepository
from docvault.services.rag_pipeline import RAGPipeline
from docvault.services.vector_store import VectorStoreGateway

UUID_V4_PATTERN: Final = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def get_owner_id(request: Request) -> str:
    """Caller identity, set by the identity middleware in ``main``."""
    return request.state.owner_id


def get_api_key(
    x_openai_key: Annotated[str | None, Header(alias="X-OpenAI-Key")] = None,
) -> str | None:
    """OpenAI key supplied by the caller, if any."""
    return x_openai_key.strip() if x_openai_key and x_openai_key.strip() else None


def valid_document_id(document_id: str) -> UUID:
    """
    Path document id, checked against the UUID-v4 pattern.

    Raises:
        InvalidDocumentIdError: Before any storage call is made.
    """
    if not UUID_V4_PATTERN.match(document_id):
        raise InvalidDocumentIdError(f"Invalid document ID: '{document_id}'")
    return UUID(document_id)


def get_pipeline(
    request: Request,
    api_key: Annotated[str | None, Depends(get_api_key)],
) -> RAGPipeline:
    """
    RAGPipeline for this request.

    Built from the resources the lifespan handler placed on
    ``app.state``; embedding and generation clients are resolved lazily
    from ``api_key`` by the pipeline itself.
    """
    state = request.app.state
    gateway = VectorStoreGateway(
        PgVectorChunkRepository(state.session_factory),
        indexed_fields_override=state.indexed_fields,
    )
    return RAGPipeline(gateway, api_key=api_key, crawler=state.crawler)


OwnerId = Annotated[str, Depends(get_owner_id)]
DocumentId = Annotated[UUID, Depends(valid_document_id)]
Pipeline = Annotated[RAGPipeline, Depends(get_pipeline)]
