"""
Embedding Service

Text embedding clients used by the vector store gateway.

Providers:
    - OpenAIEmbedder: text-embedding-3-small (1536 dims) via AsyncOpenAI,
      batched requests.
    - LocalEmbedder: sentence-transformers model (all-MiniLM-L6-v2,
      384 dims) loaded lazily and run in a thread pool. Set
      EMBEDDING_DIMENSION=384 when using it.

Both raise EmbeddingError on any failure so callers never see
provider-specific exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, ClassVar, Protocol

from openai import AsyncOpenAI, OpenAIError

from docvault.core.config import Settings
from docvault.core.errors import EmbeddingError, MissingCredentialsError

logger = logging.getLogger(__name__)

LOCAL_MODEL_NAME: str = "all-MiniLM-L6-v2"


class Embedder(Protocol):
    """Anything that turns text into fixed-size vectors."""

    @property
    def dimension(self) -> int: ...

    async def embed_documents(self, texts: list[str]) -> list[list[float]]: ...

    async def embed_query(self, text: str) -> list[float]: ...


class OpenAIEmbedder:
    """
    Embeddings from the OpenAI API.

    Usage::

        embedder = OpenAIEmbedder(api_key="sk-...")
        vectors = await embedder.embed_documents(["hello", "world"])
        assert len(vectors[0]) == 1536

    Args:
        api_key: OpenAI API key (request-supplied or process default).
        model: Embedding model name.
        dimension: Expected vector size.
        batch_size: Maximum inputs per API request.
        client: Pre-built AsyncOpenAI client (tests).
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "text-embedding-3-small",
        dimension: int = 1536,
        batch_size: int = 100,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key)
        self._model = model
        self._dimension = dimension
        self._batch_size = batch_size

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """
        Embed texts in batches of ``batch_size``.

        Raises:
            EmbeddingError: If any batch fails or returns a wrong shape.
        """
        if not texts:
            return []

        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            chunk = texts[start : start + self._batch_size]
            # OpenAI recommends single-line input
            batch = [text.replace("\n", " ") for text in chunk]
            try:
                response = await self._client.embeddings.create(
                    input=batch,
                    model=self._model,
                )
            except OpenAIError as exc:
                raise EmbeddingError(str(exc)) from exc

            ordered = sorted(response.data, key=lambda item: item.index)
            vectors.extend(item.embedding for item in ordered)

        self._check_shape(vectors, len(texts))
        logger.debug("Embedded %d texts with %s", len(texts), self._model)
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single search query."""
        results = await self.embed_documents([text])
        return results[0]

    def _check_shape(self, vectors: list[list[float]], expected: int) -> None:
        if len(vectors) != expected:
            raise EmbeddingError(f"expected {expected} vectors, got {len(vectors)}")
        for vector in vectors:
            if len(vector) != self._dimension:
                raise EmbeddingError(
                    f"expected dimension {self._dimension}, got {len(vector)}"
                )


class LocalEmbedder:
    """
    Async embedding service backed by a local sentence-transformers model.

    The model is loaded lazily on first use and cached at class level,
    keyed by model name. All inference runs in a thread pool to keep the
    event loop responsive.

    Usage::

        embedder = LocalEmbedder()
        vectors = await embedder.embed_documents(["hello", "world"])
        assert len(vectors[0]) == 384
    """

    _models: ClassVar[dict[str, Any]] = {}

    def __init__(
        self,
        model_name: str = LOCAL_MODEL_NAME,
        dimension: int = 384,
    ) -> None:
        self._model_name = model_name
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def _get_model(self) -> Any:
        """
        Get or lazily initialize the sentence-transformers model.

        The import is deferred so that ``sentence_transformers`` is only
        needed when the local provider is selected.
        """
        if self._model_name not in self._models:
            from sentence_transformers import SentenceTransformer

            logger.info("Loading embedding model: %s ...", self._model_name)
            self._models[self._model_name] = SentenceTransformer(self._model_name)
            logger.info("Model loaded (dim=%d)", self._dimension)
        return self._models[self._model_name]

    def _encode_sync(self, texts: list[str]) -> list[list[float]]:
        """
        Synchronous batch encoding.

        Always call via ``asyncio.to_thread``; this is CPU-bound and
        blocks the calling thread for the duration of inference.
        """
        model = self._get_model()
        embeddings = model.encode(texts, normalize_embeddings=True)
        # numpy ndarray to native Python lists for pgvector compatibility
        result: list[list[float]] = embeddings.tolist()
        return result

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """
        Embed texts with the local model (L2-normalized vectors).

        Raises:
            EmbeddingError: If the model cannot be loaded or inference fails.
        """
        if not texts:
            return []
        try:
            return await asyncio.to_thread(self._encode_sync, texts)
        except Exception as exc:
            raise EmbeddingError(str(exc)) from exc

    async def embed_query(self, text: str) -> list[float]:
        results = await self.embed_documents([text])
        return results[0]

    @classmethod
    def reset(cls) -> None:
        """Release all loaded models from memory."""
        cls._models.clear()
        logger.info("Local embedding models released")


def build_embedder(config: Settings, api_key: str | None = None) -> Embedder:
    """
    Embedder for the configured provider.

    Raises:
        MissingCredentialsError: OpenAI selected and no key available.
    """
    if config.EMBEDDING_PROVIDER == "local":
        return LocalEmbedder(config.LOCAL_EMBEDDING_MODEL, config.EMBEDDING_DIMENSION)

    key = api_key or config.OPENAI_API_KEY
    if not key:
        raise MissingCredentialsError(
            "OpenAI API key is required. Send it in the X-OpenAI-Key header "
            "or configure OPENAI_API_KEY."
        )
    return OpenAIEmbedder(
        api_key=key,
        model=config.EMBEDDING_MODEL,
        dimension=config.EMBEDDING_DIMENSION,
        batch_size=config.EMBEDDING_BATCH_SIZE,
    )
