"""
Vector Store Interface

Backends implement vector-level primitives; this base class owns the parts
shared by every backend: embedding chunk content in bounded batches before
upsert, and embedding the query text before search.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List, Optional, Sequence

from ..confluence.chunk import Chunk
from ..core.errors import EmbeddingError
from ..providers import registry as provider_registry
from .models import SearchResult

logger = logging.getLogger("kb.vectorstore")

UPSERT_BATCH_SIZE = 50

Embedder = Callable[[Sequence[str]], Awaitable[List[List[float]]]]


class VectorStore(ABC):
    """
    Namespaced store of chunk vectors.

    Parameters
    ----------
    namespace : str
        Partition every operation is scoped to.

    provider : Optional[str]
        Provider used for embeddings when no `embedder` is given.

    embedder : Optional[Embedder]
        Async callable mapping texts to vectors. Tests inject a fake here.
    """

    def __init__(
        self,
        namespace: str,
        provider: Optional[str] = None,
        embedder: Optional[Embedder] = None,
    ) -> None:
        self.namespace = namespace
        self._provider = provider
        self._embedder = embedder

    @property
    def provider(self) -> Optional[str]:
        return self._provider

    async def _embed(self, texts: Sequence[str]) -> List[List[float]]:
        if self._embedder is not None:
            vectors = await self._embedder(texts)
        else:
            vectors = await provider_registry.embed_texts(texts, self._provider)
        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedder returned {len(vectors)} vectors for {len(texts)} texts."
            )
        return vectors

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------

    @abstractmethod
    async def _upsert_vectors(self, chunks: Sequence[Chunk], vectors: List[List[float]]) -> None:
        ...

    @abstractmethod
    async def _query(self, vector: List[float], top_k: int) -> List[SearchResult]:
        ...

    @abstractmethod
    async def delete_page_chunks(self, page_id: str) -> None:
        """Remove every vector belonging to `page_id`. No vectors is not an error."""

    @abstractmethod
    async def clear_namespace(self) -> None:
        """Remove every vector in the namespace."""

    async def aclose(self) -> None:
        """Release backend resources."""

    # ------------------------------------------------------------------
    # Shared operations
    # ------------------------------------------------------------------

    async def upsert_chunks(self, chunks: Sequence[Chunk]) -> None:
        """
        Embed and store chunks, UPSERT_BATCH_SIZE at a time.
        """
        if not chunks:
            return

        for start in range(0, len(chunks), UPSERT_BATCH_SIZE):
            batch = list(chunks[start : start + UPSERT_BATCH_SIZE])
            vectors = await self._embed([c.content for c in batch])
            await self._upsert_vectors(batch, vectors)
            logger.debug(
                "Upserted %d vectors into namespace %s",
                len(batch),
                self.namespace,
            )

    async def search(self, query: str, top_k: int = 5) -> List[SearchResult]:
        """
        Return up to `top_k` results ordered by descending score.
        """
        if top_k <= 0:
            return []
        [vector] = await self._embed([query])
        results = await self._query(vector, top_k)
        return sorted(results, key=lambda r: r.score, reverse=True)
