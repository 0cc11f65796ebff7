"""
Vector Store Models

Records returned by similarity search and the metadata layout used when
storing chunk vectors. Metadata carries every field needed to rebuild a
RetrievedChunk, so search never needs a second lookup.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..confluence.chunk import Chunk


class RetrievedChunk(BaseModel):
    """
    Chunk data as stored alongside its vector.
    """

    id: str
    page_id: str
    chunk_index: int = 0
    title: str
    content: str
    url: Optional[str] = None
    heading: Optional[str] = None
    heading_path: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_metadata(cls, vector_id: str, metadata: Dict[str, Any]) -> "RetrievedChunk":
        path = metadata.get("heading_path") or []
        return cls(
            id=str(metadata.get("chunk_id") or vector_id),
            page_id=str(metadata.get("page_id", "")),
            chunk_index=int(metadata.get("chunk_index", 0)),
            title=str(metadata.get("title", "")),
            content=str(metadata.get("content", "")),
            url=metadata.get("url"),
            heading=metadata.get("heading"),
            heading_path=[str(p) for p in path] if isinstance(path, list) else [],
        )


class SearchResult(BaseModel):
    """
    A retrieved chunk with its similarity score. Higher is more similar.
    """

    chunk: RetrievedChunk
    score: float

    model_config = ConfigDict(frozen=True)


def chunk_metadata(chunk: Chunk) -> Dict[str, Any]:
    """
    Build the metadata stored with a chunk vector. None values are dropped
    because vector databases reject null metadata.
    """
    metadata: Dict[str, Any] = {
        "chunk_id": chunk.id,
        "page_id": chunk.page_id,
        "chunk_index": chunk.chunk_index,
        "title": chunk.title,
        "content": chunk.content,
        "url": chunk.url,
        "heading": chunk.heading,
        "heading_path": list(chunk.heading_path) or None,
        "space_key": chunk.space_key,
        "updated_at": chunk.updated_at,
        "etag": chunk.etag,
        "embed_version": chunk.embed_version or None,
        "token_estimate": chunk.token_estimate,
        "pii_flag": chunk.pii_flag,
    }
    return {k: v for k, v in metadata.items() if v is not None}
