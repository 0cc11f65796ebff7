"""
Shared fixtures and fakes.

FakeStore is an in-memory VectorStore whose search results are scripted, so
pipeline tests never touch a provider or a vector database.
"""

from typing import Dict, List, Optional, Sequence

import pytest

from confluence_qa.confluence.chunk import Chunk
from confluence_qa.confluence.models import CleanPage, RawPage
from confluence_qa.vectorstore.base import VectorStore
from confluence_qa.vectorstore.models import RetrievedChunk, SearchResult


def make_clean_page(
    page_id: str = "P1",
    title: str = "Guide",
    markdown: Optional[str] = None,
    etag: Optional[str] = "3",
    updated_at: Optional[str] = "2024-01-01T00:00:00.000Z",
    url: Optional[str] = "https://wiki.example.com/display/DOC/Guide",
) -> CleanPage:
    return CleanPage(
        page_id=page_id,
        title=title,
        markdown=markdown if markdown is not None else f"# {title}\n\nSome useful content.",
        space_key="DOC",
        updated_at=updated_at,
        etag=etag,
        version_number=int(etag) if etag and etag.isdigit() else None,
        url=url,
    )


def make_raw_page(page_id: str = "P1", title: str = "Guide", body: str = "<p>Hello world</p>", version: int = 3) -> RawPage:
    return RawPage(
        id=page_id,
        title=title,
        body_html=body,
        space_key="DOC",
        version_number=version,
        updated_at="2024-01-01T00:00:00.000Z",
        url=f"https://wiki.example.com/display/DOC/{title}",
    )


def make_result(title: str, score: float, url: Optional[str] = None, content: str = "content") -> SearchResult:
    return SearchResult(
        chunk=RetrievedChunk(
            id=f"{title}-0",
            page_id=title,
            chunk_index=0,
            title=title,
            content=content,
            url=url,
        ),
        score=score,
    )


class FakeStore(VectorStore):
    """
    Records calls in order and returns scripted search results.
    """

    def __init__(self, results: Optional[List[SearchResult]] = None) -> None:
        super().__init__(namespace="test", provider="openai", embedder=self._fake_embed)
        self.results = results or []
        self.calls: List[tuple] = []
        self.vectors: Dict[str, Chunk] = {}
        self.fail_upsert_for: set = set()

    async def _fake_embed(self, texts: Sequence[str]) -> List[List[float]]:
        return [[float(len(t)), 1.0] for t in texts]

    async def _upsert_vectors(self, chunks, vectors) -> None:
        for chunk in chunks:
            if chunk.page_id in self.fail_upsert_for:
                raise RuntimeError("upsert rejected")
        self.calls.append(("upsert", [c.id for c in chunks]))
        for chunk in chunks:
            self.vectors[chunk.id] = chunk

    async def _query(self, vector, top_k) -> List[SearchResult]:
        self.calls.append(("query", top_k))
        return list(self.results[:top_k])

    async def delete_page_chunks(self, page_id: str) -> None:
        self.calls.append(("delete", page_id))
        for key in [k for k, c in self.vectors.items() if c.page_id == page_id]:
            del self.vectors[key]

    async def clear_namespace(self) -> None:
        self.calls.append(("clear",))
        self.vectors.clear()


@pytest.fixture
def fake_store():
    return FakeStore()
