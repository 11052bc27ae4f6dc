"""
Query API Router

Grounded question answering over the caller's documents.

Endpoints:
    POST /query         Answer with sources (JSON).
    POST /query/stream  Answer as a chunked ``text/plain`` stream.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from docvault.api.deps import OwnerId, Pipeline
from docvault.core.config import settings
from docvault.models.schemas import QueryOptions
from docvault.schemas.api import ErrorResponse, QueryRequest, QueryResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def _options(body: QueryRequest) -> QueryOptions:
    """Request knobs, with server defaults for anything omitted."""
    return QueryOptions(
        max_results=body.max_results or settings.RAG_MAX_RESULTS,
        score_threshold=(
            settings.RAG_SCORE_THRESHOLD
            if body.score_threshold is None
            else body.score_threshold
        ),
        include_metadata=body.include_metadata,
        filter=body.filter,
    )


@router.post(
    "/query",
    response_model=QueryResponse,
    summary="Ask a question about your documents",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input"},
        502: {"model": ErrorResponse, "description": "Retrieval or generation failed"},
    },
)
async def query(
    body: QueryRequest,
    owner_id: OwnerId,
    pipeline: Pipeline,
) -> QueryResponse:
    """
    Answer a question using only the caller's documents.

    Process:
        1. Embed the question.
        2. Retrieve the caller's most similar chunks above ``scoreThreshold``.
        3. Generate an answer constrained to that context.

    When nothing relevant is found, a fixed "no relevant information"
    answer is returned without calling the model.
    """
    logger.info("Query from %s: '%s'", owner_id, body.question[:50])
    pipeline.use_api_key(body.api_key)

    result = await pipeline.answer(owner_id, body.question, _options(body))
    return QueryResponse(
        answer=result.answer,
        sources=result.sources,
        query=result.query,
        timestamp=result.timestamp,
    )


@router.post(
    "/query/stream",
    response_class=StreamingResponse,
    summary="Ask a question, streaming the answer",
    responses={200: {"content": {"text/plain": {}}}},
)
async def query_stream(
    body: QueryRequest,
    owner_id: OwnerId,
    pipeline: Pipeline,
) -> StreamingResponse:
    """
    Stream the answer as plain text, in the order the model produces it.

    A failure mid-stream ends the stream with a single ``Error: ...`` line.
    """
    logger.info("Streaming query from %s: '%s'", owner_id, body.question[:50])
    pipeline.use_api_key(body.api_key)

    stream = pipeline.answer_stream(owner_id, body.question, _options(body))
    return StreamingResponse(stream, media_type="text/plain; charset=utf-8")
