"""
Pytest Configuration and Fixtures

Shared in-memory test doubles for the DocVault pipeline: a chunk
repository with configurable indexed fields, a deterministic hashing
embedder and a recording generator. Everything runs offline.
"""

import os

from dotenv import load_dotenv

# ---------------------------------------------------------------------------
# Test environment defaults: MUST be before any docvault imports.
#
# 1. Load .env first so that Docker-matching credentials are available.
# 2. setdefault fills in anything still missing (CI runners, fresh clones
#    without a .env file) so that pydantic Settings validation doesn't crash.
# ---------------------------------------------------------------------------
load_dotenv()  # .env → os.environ (no-op if file is missing)

_test_env = {
    "POSTGRES_USER": "docvault",
    "POSTGRES_PASSWORD": "docvault_password",
    "POSTGRES_HOST": "localhost",
    "POSTGRES_PORT": "5432",
    "POSTGRES_DB": "docvault_db",
}
for _key, _value in _test_env.items():
    os.environ.setdefault(_key, _value)

# ---------------------------------------------------------------------------
# Imports (safe now that env vars are set)
# ---------------------------------------------------------------------------
import hashlib  # noqa: E402
import math  # noqa: E402
import re  # noqa: E402
from collections.abc import AsyncIterator, Callable, Mapping, Sequence  # noqa: E402
from datetime import datetime  # noqa: E402
from typing import Any  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402

from docvault.core.errors import (  # noqa: E402
    EmbeddingError,
    GenerationError,
    VectorStoreError,
)
from docvault.models.schemas import Chunk, ScoredChunk  # noqa: E402
from docvault.repositories.chunks import FILTERABLE_COLUMNS  # noqa: E402
from docvault.services.crawler import WebCrawler  # noqa: E402
from docvault.services.rag_pipeline import RAGPipeline  # noqa: E402
from docvault.services.vector_store import VectorStoreGateway  # noqa: E402

EMBEDDING_DIM = 256
ALL_INDEXED = frozenset(FILTERABLE_COLUMNS)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeChunkRepository:
    """
    In-memory ChunkRepository.

    Args:
        indexed: Columns reported by ``indexed_fields()``. Pushing a
            filter on any other column fails the test, which is how the
            gateway's fallback path is verified.
    """

    def __init__(self, indexed: frozenset[str] = ALL_INDEXED) -> None:
        self.indexed = indexed
        self.rows: dict[Any, tuple[Chunk, list[float]]] = {}
        self.pushed: list[dict[str, Any]] = []
        self.schema_calls = 0
        self.fail_writes = False

    async def ensure_schema(self) -> None:
        self.schema_calls += 1

    async def indexed_fields(self) -> frozenset[str]:
        return self.indexed

    async def add(self, rows: Sequence[tuple[Chunk, list[float]]]) -> None:
        if self.fail_writes:
            raise VectorStoreError("write failed: connection reset")
        for chunk, embedding in rows:
            self.rows[chunk.id] = (chunk, embedding)

    async def search(
        self,
        embedding: list[float],
        filters: Mapping[str, Any],
        limit: int | None,
    ) -> list[ScoredChunk]:
        hits = [
            ScoredChunk(chunk=chunk, score=round(_dot(embedding, vector), 4))
            for chunk, vector in self._matching(filters)
        ]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits if limit is None else hits[:limit]

    async def scan(self, filters: Mapping[str, Any]) -> list[Chunk]:
        chunks = [chunk for chunk, _ in self._matching(filters)]
        return sorted(
            chunks,
            key=lambda c: (str(c.metadata.document_id), c.metadata.chunk_index),
        )

    async def delete(self, filters: Mapping[str, Any]) -> int:
        doomed = [chunk.id for chunk, _ in self._matching(filters)]
        for chunk_id in doomed:
            del self.rows[chunk_id]
        return len(doomed)

    async def update_tags(
        self,
        filters: Mapping[str, Any],
        tags: list[str],
        updated_at: datetime,
    ) -> int:
        matching = self._matching(filters)
        for chunk, vector in matching:
            meta = chunk.metadata.model_copy(
                update={"tags": list(tags), "updated_at": updated_at}
            )
            self.rows[chunk.id] = (chunk.model_copy(update={"metadata": meta}), vector)
        return len(matching)

    def _matching(self, filters: Mapping[str, Any]) -> list[tuple[Chunk, list[float]]]:
        self.pushed.append(dict(filters))
        for column in filters:
            if column != "id" and column not in self.indexed:
                raise AssertionError(f"filter on unindexed column '{column}' pushed")

        def keep(chunk: Chunk) -> bool:
            meta = chunk.metadata
            values = {
                "owner_id": meta.owner_id,
                "document_id": meta.document_id,
                "content_type": meta.content_type,
            }
            for column, expected in filters.items():
                if column == "id":
                    if chunk.id not in set(expected):
                        return False
                elif values[column] != expected:
                    return False
            return True

        return [(c, v) for c, v in self.rows.values() if keep(c)]


def _dot(a: list[float], b: list[float]) -> float:
    return sum(x * y for x, y in zip(a, b, strict=True))


class HashingEmbedder:
    """
    Deterministic bag-of-words embedder (md5 bucket per token, L2-normalized).

    Texts sharing words score high; unrelated texts score near zero.
    """

    def __init__(self, dimension: int = EMBEDDING_DIM) -> None:
        self._dimension = dimension
        self.calls: list[list[str]] = []
        self.fail = False

    @property
    def dimension(self) -> int:
        return self._dimension

    def vector(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        for token in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % self._dimension
            vector[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector] if norm else vector

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail:
            raise EmbeddingError("provider unavailable")
        return [self.vector(t) for t in texts]

    async def embed_query(self, text: str) -> list[float]:
        return (await self.embed_documents([text]))[0]


class RecordingGenerator:
    """
    Generator double that records every call.

    By default the reply echoes the context block of the user prompt, so
    answers contain the retrieved facts. ``stream`` yields the reply word
    by word; ``fail_after`` raises GenerationError after that many pieces.
    """

    def __init__(
        self,
        reply: str | None = None,
        fail_after: int | None = None,
    ) -> None:
        self.reply = reply
        self.fail_after = fail_after
        self.calls: list[tuple[str, str]] = []
        self.closed = False

    def _reply_for(self, user_prompt: str) -> str:
        if self.reply is not None:
            return self.reply
        context = user_prompt.split("Context:\n", 1)[-1].split("\n\nQuestion:", 1)[0]
        return f"According to your documents: {context}"

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if self.fail_after == 0:
            raise GenerationError("model unavailable")
        return self._reply_for(user_prompt)

    async def stream(self, system_prompt: str, user_prompt: str) -> AsyncIterator[str]:
        self.calls.append((system_prompt, user_prompt))
        try:
            for index, word in enumerate(self._reply_for(user_prompt).split(" ")):
                if self.fail_after is not None and index >= self.fail_after:
                    raise GenerationError("stream interrupted")
                yield word if index == 0 else f" {word}"
        finally:
            self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def embedder() -> HashingEmbedder:
    """Fresh deterministic embedder."""
    return HashingEmbedder()


@pytest.fixture
def generator() -> RecordingGenerator:
    """Generator that echoes its context."""
    return RecordingGenerator()


@pytest.fixture
def make_generator() -> Callable[..., RecordingGenerator]:
    """Factory for generators with a fixed reply or a failure point."""
    return RecordingGenerator


@pytest.fixture
def repository() -> FakeChunkRepository:
    """In-memory repository with every identity column indexed."""
    return FakeChunkRepository()


@pytest.fixture
def gateway(
    repository: FakeChunkRepository, embedder: HashingEmbedder
) -> VectorStoreGateway:
    """Gateway over the in-memory repository."""
    return VectorStoreGateway(repository, embedder)


@pytest.fixture
def make_gateway(
    embedder: HashingEmbedder,
) -> Callable[[frozenset[str]], tuple[VectorStoreGateway, FakeChunkRepository]]:
    """Factory for a gateway whose store indexes only the given columns."""

    def _make(
        indexed: frozenset[str],
    ) -> tuple[VectorStoreGateway, FakeChunkRepository]:
        repo = FakeChunkRepository(indexed=indexed)
        return VectorStoreGateway(repo, embedder), repo

    return _make


SITE: dict[str, str] = {
    "https://docs.example.com/": (
        "<html><head><title>Docs</title></head><body>"
        "<h1>Welcome</h1><p>The sky is blue on the docs site.</p>"
        '<a href="/guide/">Guide</a> <a href="/admin/panel">Admin</a>'
        '<a href="https://other.example.org/">Elsewhere</a>'
        "</body></html>"
    ),
    "https://docs.example.com/guide/": (
        "<html><body><p>The guide explains installation steps.</p>"
        '<a href="/guide/advanced">Advanced</a></body></html>'
    ),
    "https://docs.example.com/guide/advanced": (
        "<html><body><p>Advanced topics live here.</p></body></html>"
    ),
    "https://docs.example.com/admin/panel": (
        "<html><body><p>Secret admin panel.</p></body></html>"
    ),
}


def site_transport(pages: Mapping[str, str] = SITE) -> httpx.MockTransport:
    """MockTransport serving ``pages`` as HTML; anything else is a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = pages.get(str(request.url))
        if body is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, html=body)

    return httpx.MockTransport(handler)


@pytest.fixture
def serve() -> Callable[..., httpx.MockTransport]:
    """Builds a MockTransport for an arbitrary in-memory site."""
    return site_transport


@pytest.fixture
def crawler() -> WebCrawler:
    """Crawler wired to the in-memory docs.example.com site."""
    return WebCrawler(user_agent="DocVaultTest/1.0", transport=site_transport())


@pytest.fixture
def pipeline(
    gateway: VectorStoreGateway,
    generator: RecordingGenerator,
    crawler: WebCrawler,
) -> RAGPipeline:
    """Pipeline over the in-memory store, embedder, generator and site."""
    return RAGPipeline(gateway, generator=generator, crawler=crawler)
