"""
Retrieval-Augmented Query Engine

Answers a question from the asking user's own chunks only.

Steps:
    1. Search the owner's chunks with k = max_results * 2 (over-fetch).
    2. Drop hits below score_threshold, keep the best max_results.
    3. Nothing left: return the fixed "no relevant information" answer
       without calling the model.
    4. Join chunk contents into a context block.
    5. One generation call under a system prompt that forbids outside
       knowledge and demands an explicit insufficiency statement.
    6. If the answer states insufficiency, drop the sources.
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator
from typing import Final

from docvault.core.errors import RAGQueryFailedError
from docvault.models.schemas import QueryOptions, RAGAnswer, ScoredChunk, Source
from docvault.services.llm import Generator
from docvault.services.vector_store import VectorStoreGateway, normalize_filter

logger = logging.getLogger(__name__)

NO_RELEVANT_INFORMATION: Final[str] = (
    "I don't have any relevant information in your uploaded documents "
    "to answer this question."
)

CONTEXT_SEPARATOR: Final[str] = "\n\n---\n\n"
SOURCE_PREVIEW_LENGTH: Final[int] = 200

# System prompt enforcing context-grounded responses
SYSTEM_PROMPT: Final[str] = """You are a helpful assistant that answers questions using ONLY the context provided by the user's own documents.

Strict rules:
1. Base your answer ONLY on the provided context.
2. Never use outside knowledge and never invent information.
3. If the context does not contain the answer, say exactly that you don't have enough information in the context to answer.
4. Answer concisely and precisely.
"""  # noqa: E501

INSUFFICIENCY_PATTERN: Final = re.compile(
    r"don't have enough information"
    r"|do not have enough information"
    r"|don't know"
    r"|not enough information in the context"
    r"|cannot answer",
    re.IGNORECASE,
)


def build_user_prompt(question: str, context: str) -> str:
    """Prompt carrying the retrieved context and the question."""
    return f"Context:\n{context}\n\nQuestion: {question}\n\nAnswer:"


def states_insufficiency(answer: str) -> bool:
    """True when the model says the context does not answer the question."""
    # Curly apostrophes are common in model output
    return INSUFFICIENCY_PATTERN.search(answer.replace("’", "'")) is not None


class QueryEngine:
    """
    Grounded question answering over the vector store gateway.

    Usage::

        engine = QueryEngine(gateway, generator)
        result = await engine.answer("What colour is the sky?", "user_1")
        print(result.answer, len(result.sources))

        async for text in engine.answer_stream("...", "user_1", QueryOptions()):
            print(text, end="")
    """

    def __init__(self, gateway: VectorStoreGateway, generator: Generator) -> None:
        self._gateway = gateway
        self._generator = generator

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def answer(
        self,
        question: str,
        owner_id: str,
        options: QueryOptions | None = None,
    ) -> RAGAnswer:
        """
        Answer ``question`` from ``owner_id``'s documents.

        Raises:
            InputValidationError: The metadata filter is malformed.
            RAGQueryFailedError: Retrieval or generation failed; the
                original exception is chained and kept on ``.cause``.
        """
        options = options or QueryOptions()
        normalize_filter(options.filter)
        try:
            hits = await self._retrieve(question, owner_id, options)
            if not hits:
                logger.info("No chunk above %.2f for query", options.score_threshold)
                return RAGAnswer(
                    answer=NO_RELEVANT_INFORMATION, sources=[], query=question
                )

            context = CONTEXT_SEPARATOR.join(hit.chunk.content for hit in hits)
            answer = await self._generator.generate(
                SYSTEM_PROMPT, build_user_prompt(question, context)
            )
        except Exception as exc:
            logger.exception("RAG query failed for owner %s", owner_id)
            raise RAGQueryFailedError(exc) from exc

        sources = [] if states_insufficiency(answer) else self._sources(hits, options)
        logger.info(
            "Answered query with %d context chunks (%d chars, %d sources)",
            len(hits),
            len(answer),
            len(sources),
        )
        return RAGAnswer(answer=answer, sources=sources, query=question)

    async def answer_stream(
        self,
        question: str,
        owner_id: str,
        options: QueryOptions | None = None,
    ) -> AsyncIterator[str]:
        """
        Stream the answer as text increments, in the order received.

        Retrieval, threshold and context assembly match :meth:`answer`.
        When nothing is relevant the fixed insufficiency message is the
        only increment. A failure yields one ``"Error: ..."`` increment
        and ends the stream. Closing the generator closes the upstream
        model stream.
        """
        options = options or QueryOptions()
        try:
            hits = await self._retrieve(question, owner_id, options)
            if not hits:
                yield NO_RELEVANT_INFORMATION
                return

            context = CONTEXT_SEPARATOR.join(hit.chunk.content for hit in hits)
            stream = self._generator.stream(
                SYSTEM_PROMPT, build_user_prompt(question, context)
            )
            try:
                async for text in stream:
                    yield text
            finally:
                await stream.aclose()  # type: ignore[attr-defined]
        except Exception as exc:
            logger.exception("Streaming RAG query failed for owner %s", owner_id)
            yield f"Error: {exc}"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _retrieve(
        self,
        question: str,
        owner_id: str,
        options: QueryOptions,
    ) -> list[ScoredChunk]:
        hits = await self._gateway.search(
            question,
            owner_id,
            k=options.max_results * 2,
            extra_filter=options.filter,
        )
        relevant = [hit for hit in hits if hit.score >= options.score_threshold]
        logger.debug(
            "Retrieved %d hits, %d above threshold %.2f",
            len(hits),
            len(relevant),
            options.score_threshold,
        )
        return relevant[: options.max_results]

    @staticmethod
    def _sources(hits: list[ScoredChunk], options: QueryOptions) -> list[Source]:
        sources: list[Source] = []
        for hit in hits:
            content = hit.chunk.content
            if len(content) > SOURCE_PREVIEW_LENGTH:
                content = content[:SOURCE_PREVIEW_LENGTH] + "..."
            metadata = (
                hit.chunk.metadata.model_dump(mode="json", by_alias=True)
                if options.include_metadata
                else {}
            )
            sources.append(
                Source(content=content, metadata=metadata, score=round(hit.score, 3))
            )
        return sources
