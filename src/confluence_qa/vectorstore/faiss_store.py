"""
FAISS Vector Store

Local, file-backed alternative to Pinecone for development and tests.

Key Properties
--------------
- Explicit ID management via IndexIDMap2
- Cosine similarity (inner product over L2-normalized vectors)
- Chunk ids map to stable int64 ids; re-upserting a chunk replaces it
- Index and metadata persisted after every mutation
- Thread-safe (RLock) so sync helpers can be shared across tasks
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import RLock
from typing import Any, Dict, List, Optional, Sequence

import faiss
import numpy as np

from ..confluence.chunk import Chunk
from ..core.errors import VectorStoreError
from .base import Embedder, VectorStore
from .models import RetrievedChunk, SearchResult, chunk_metadata
from .namespaces import get_index_path, get_meta_path, validate_namespace

logger = logging.getLogger("kb.vectorstore")


class FaissPersistenceError(VectorStoreError):
    """Raised when the index or its metadata cannot be read or written."""


class FaissStore(VectorStore):
    """
    Persistent FAISS index for one namespace.
    """

    def __init__(
        self,
        namespace: str = "default",
        data_root: Optional[str] = None,
        provider: Optional[str] = None,
        embedder: Optional[Embedder] = None,
    ) -> None:
        """
        Parameters
        ----------
        namespace : str
            Namespace name; also the directory name under `data_root`.

        data_root : Optional[str]
            Root directory. Defaults to settings.faiss_data_root.

        Raises
        ------
        ValidationError
            If the namespace is not a safe directory name.
        """
        super().__init__(validate_namespace(namespace), provider=provider, embedder=embedder)

        self._index_path: Path = get_index_path(self.namespace, data_root)
        self._meta_path: Path = get_meta_path(self.namespace, data_root)

        self._index: Optional[faiss.IndexIDMap2] = None
        self._doc_map: Dict[int, Dict[str, Any]] = {}
        self._id_map: Dict[str, int] = {}
        self._next_id: int = 0

        self._lock = RLock()
        self.load()

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _init_index(self, dim: int) -> None:
        self._index = faiss.IndexIDMap2(faiss.IndexFlatIP(dim))

    def _remove_ids(self, ids: List[int]) -> None:
        if not ids or self._index is None:
            return
        try:
            self._index.remove_ids(np.asarray(ids, dtype="int64"))
        except Exception as exc:
            raise VectorStoreError(
                f"Failed to remove IDs from FAISS: {type(exc).__name__}"
            ) from exc
        for doc_id in ids:
            metadata = self._doc_map.pop(doc_id, None)
            if metadata is not None:
                self._id_map.pop(metadata["chunk_id"], None)

    @property
    def total_vectors(self) -> int:
        with self._lock:
            return self._index.ntotal if self._index is not None else 0

    # ------------------------------------------------------------------
    # VectorStore primitives
    # ------------------------------------------------------------------

    async def _upsert_vectors(self, chunks: Sequence[Chunk], vectors: List[List[float]]) -> None:
        if not chunks:
            return

        matrix = np.asarray(vectors, dtype="float32")
        if matrix.ndim != 2 or matrix.shape[1] == 0:
            raise VectorStoreError("Embedding vectors must be non-empty and equally sized.")

        with self._lock:
            if self._index is None:
                self._init_index(matrix.shape[1])
            elif self._index.d != matrix.shape[1]:
                raise VectorStoreError(
                    f"Embedding dimension {matrix.shape[1]} does not match index dimension {self._index.d}."
                )

            self._remove_ids([self._id_map[c.id] for c in chunks if c.id in self._id_map])

            ids = np.arange(self._next_id, self._next_id + len(chunks), dtype="int64")
            self._next_id += len(chunks)

            faiss.normalize_L2(matrix)
            try:
                self._index.add_with_ids(matrix, ids)
            except Exception as exc:
                raise VectorStoreError(
                    f"Failed to add vectors to FAISS: {type(exc).__name__}"
                ) from exc

            for doc_id, chunk in zip(ids, chunks):
                self._doc_map[int(doc_id)] = chunk_metadata(chunk)
                self._id_map[chunk.id] = int(doc_id)

            self.save()

    async def _query(self, vector: List[float], top_k: int) -> List[SearchResult]:
        with self._lock:
            if self._index is None or not self._doc_map:
                return []

            q = np.asarray([vector], dtype="float32")
            if q.shape[1] != self._index.d:
                raise VectorStoreError(
                    f"Query dimension {q.shape[1]} does not match index dimension {self._index.d}."
                )
            faiss.normalize_L2(q)

            scores, idxs = self._index.search(q, min(top_k, self._index.ntotal))

            results: List[SearchResult] = []
            for score, idx in zip(scores[0], idxs[0]):
                idx = int(idx)
                if idx == -1:
                    continue
                metadata = self._doc_map.get(idx)
                if metadata is None:
                    continue
                results.append(
                    SearchResult(
                        chunk=RetrievedChunk.from_metadata(metadata["chunk_id"], metadata),
                        score=float(score),
                    )
                )
            return results

    async def delete_page_chunks(self, page_id: str) -> None:
        with self._lock:
            ids = [doc_id for doc_id, m in self._doc_map.items() if m.get("page_id") == page_id]
            if not ids:
                return
            self._remove_ids(ids)
            self.save()
            logger.debug("Deleted %d vectors for page %s", len(ids), page_id)

    async def clear_namespace(self) -> None:
        with self._lock:
            self._index = None
            self._doc_map.clear()
            self._id_map.clear()
            self._next_id = 0
            for path in (self._index_path, self._meta_path):
                path.unlink(missing_ok=True)
        logger.info("Cleared FAISS namespace %s", self.namespace)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        """
        Persist both FAISS index and metadata to disk.
        """
        with self._lock:
            if self._index is None:
                return

            self._index_path.parent.mkdir(parents=True, exist_ok=True)

            try:
                faiss.write_index(self._index, str(self._index_path))
            except Exception as exc:
                raise FaissPersistenceError(
                    f"Failed to write FAISS index: {type(exc).__name__}"
                ) from exc

            meta = {
                "next_id": self._next_id,
                "doc_map": {str(k): v for k, v in self._doc_map.items()},
            }

            try:
                with self._meta_path.open("w", encoding="utf-8") as f:
                    json.dump(meta, f)
            except OSError as exc:
                raise FaissPersistenceError(
                    f"Failed to write FAISS metadata: {type(exc).__name__}"
                ) from exc

    def load(self) -> None:
        """
        Load index and metadata from disk if available.
        """
        with self._lock:
            if not self._index_path.exists():
                return

            try:
                self._index = faiss.read_index(str(self._index_path))
            except Exception as exc:
                raise FaissPersistenceError(
                    f"Failed to read FAISS index: {type(exc).__name__}"
                ) from exc

            if not self._meta_path.exists():
                self._doc_map.clear()
                self._id_map.clear()
                self._next_id = 0
                return

            try:
                with self._meta_path.open("r", encoding="utf-8") as f:
                    data = json.load(f)
                self._next_id = int(data.get("next_id", 0))
                self._doc_map = {int(k): v for k, v in data.get("doc_map", {}).items()}
            except (OSError, ValueError, AttributeError) as exc:
                raise FaissPersistenceError(
                    f"Failed to load FAISS metadata: {type(exc).__name__}"
                ) from exc

            self._id_map = {m["chunk_id"]: doc_id for doc_id, m in self._doc_map.items()}
