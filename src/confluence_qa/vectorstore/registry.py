"""
Vector Store Registry

Holds the process-wide VectorStore for the configured backend. The first
caller builds it under an asyncio lock; later callers get the same
instance. `reset_vector_store()` closes it and clears the slot.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..config import settings
from ..core.errors import ConfigurationError
from .base import VectorStore
from .faiss_store import FaissStore
from .pinecone_store import PineconeStore

logger = logging.getLogger("kb.vectorstore")

_store: Optional[VectorStore] = None
_store_lock = asyncio.Lock()


def create_vector_store(
    backend: Optional[str] = None,
    provider: Optional[str] = None,
) -> VectorStore:
    """
    Build a store for `backend` (default: settings.vector_backend) that
    embeds with `provider` (default: settings.provider).
    """
    name = (backend or settings.vector_backend).strip().lower()
    if name == "pinecone":
        return PineconeStore(provider=provider)
    if name == "faiss":
        return FaissStore(namespace=settings.pinecone_namespace, provider=provider)
    raise ConfigurationError(f"Unsupported VECTOR_BACKEND '{name}'. Use 'pinecone' or 'faiss'.")


async def get_vector_store() -> VectorStore:
    global _store
    if _store is not None:
        return _store

    async with _store_lock:
        if _store is None:
            _store = create_vector_store()
            logger.info(
                "Initialized %s vector store (namespace=%s)",
                type(_store).__name__,
                _store.namespace,
            )
    return _store


async def reset_vector_store() -> None:
    global _store
    async with _store_lock:
        store, _store = _store, None
    if store is not None:
        await store.aclose()
