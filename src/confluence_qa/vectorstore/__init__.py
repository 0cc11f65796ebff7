from .models import RetrievedChunk, SearchResult, chunk_metadata
from .base import UPSERT_BATCH_SIZE, VectorStore
from .pinecone_store import IndexIdentity, PineconeStore, parse_pinecone_host
from .faiss_store import FaissStore
from .registry import create_vector_store, get_vector_store, reset_vector_store

__all__ = [
    "FaissStore",
    "IndexIdentity",
    "PineconeStore",
    "RetrievedChunk",
    "SearchResult",
    "UPSERT_BATCH_SIZE",
    "VectorStore",
    "chunk_metadata",
    "create_vector_store",
    "get_vector_store",
    "parse_pinecone_host",
    "reset_vector_store",
]
