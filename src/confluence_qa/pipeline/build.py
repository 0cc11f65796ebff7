"""
Knowledge Base Build

Composes the ingestion pipeline:

    fetch -> clean -> change check -> chunk -> delete old vectors
          -> embed + upsert -> cache entry

Pages are processed one at a time. A page's cache entry is written only
after its delete and upsert both succeed, so a failed page is re-embedded
on the next run instead of being mistaken for unchanged. Deleting before
upserting leaves no stale chunks behind when a page shrinks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel

from ..config import settings
from ..confluence.chunk import Chunk, chunk_page
from ..confluence.clean import clean_page
from ..confluence.client import ConfluenceClient
from ..confluence.models import CleanPage
from ..core.errors import AuthenticationError, ConfigurationError, PartialPageFailure
from ..providers.registry import embedding_model_version
from ..vectorstore.base import VectorStore
from ..vectorstore.registry import create_vector_store, get_vector_store
from .cache import VectorCache, build_entry, evaluate_change
from .run_log import (
    EmbeddedPageLog,
    RunLog,
    SkippedPageLog,
    chunk_log_entries,
    embedded_page_log,
    skipped_page_log,
    write_run_log,
)

logger = logging.getLogger("kb.build")

# Errors that would fail identically for every page; they abort the run.
FATAL_ERRORS = (ConfigurationError, AuthenticationError)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# ---------------------------------------------------------------------
# Options and results
# ---------------------------------------------------------------------

@dataclass
class BuildOptions:
    """
    Inputs for one build run. Unset values fall back to settings; injected
    collaborators (client, store, cache) are used as-is and not closed.
    """

    space_key: Optional[str] = None
    page_limit: Optional[int] = None
    max_batches: Optional[int] = None
    min_tokens: Optional[int] = None
    max_tokens: Optional[int] = None
    provider: Optional[str] = None

    client: Optional[ConfluenceClient] = None
    store: Optional[VectorStore] = None
    cache: Optional[VectorCache] = None
    run_log_path: Optional[str] = None


class KnowledgeBaseStats(BaseModel):
    embed_version: str
    total_pages: int
    embedded_pages: int
    skipped_pages: int
    failed_pages: int
    embedded_chunks: int


@dataclass
class KnowledgeBase:
    store: VectorStore
    pages: List[CleanPage]
    chunks: List[Chunk]
    embedded_pages: List[CleanPage]
    skipped_pages: List[CleanPage]
    failed_pages: List[CleanPage]
    stats: KnowledgeBaseStats
    failures: List[PartialPageFailure] = field(default_factory=list)


# ---------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------

def clean_pages(raw_pages) -> List[CleanPage]:
    """Clean every page, dropping empty ones and logging failures."""
    cleaned: List[CleanPage] = []
    for raw in raw_pages:
        try:
            page = clean_page(raw)
        except Exception as exc:
            logger.warning("%s", PartialPageFailure(raw.id, "clean", exc))
            continue
        if page is not None:
            cleaned.append(page)
    return cleaned


async def _embed_page(store: VectorStore, page: CleanPage, chunks: List[Chunk]) -> None:
    try:
        await store.delete_page_chunks(page.page_id)
    except FATAL_ERRORS:
        raise
    except Exception as exc:
        raise PartialPageFailure(page.page_id, "delete", exc) from exc

    try:
        await store.upsert_chunks(chunks)
    except FATAL_ERRORS:
        raise
    except Exception as exc:
        raise PartialPageFailure(page.page_id, "upsert", exc) from exc


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

async def build_knowledge_base(options: Optional[BuildOptions] = None) -> KnowledgeBase:
    """
    Run one incremental build.

    A store created here for `options.provider` is returned open in
    KnowledgeBase.store; the caller closes it.

    Raises
    ------
    ConfigurationError, AuthenticationError
        Problems that affect every page abort the run.
    """
    options = options or BuildOptions()

    owns_client = options.client is None
    client = options.client if options.client is not None else ConfluenceClient()

    if options.store is not None:
        store = options.store
    elif options.provider is not None:
        store = create_vector_store(provider=options.provider)
    else:
        store = await get_vector_store()

    cache = options.cache if options.cache is not None else VectorCache()
    cache.load()

    embed_version = embedding_model_version(options.provider or store.provider)
    page_limit = options.page_limit if options.page_limit is not None else settings.confluence_page_limit
    max_batches = options.max_batches if options.max_batches is not None else settings.confluence_max_pages
    min_tokens = options.min_tokens if options.min_tokens is not None else settings.chunk_min_tokens
    max_tokens = options.max_tokens if options.max_tokens is not None else settings.chunk_max_tokens

    embedded_pages: List[CleanPage] = []
    skipped_pages: List[CleanPage] = []
    failed_pages: List[CleanPage] = []
    failures: List[PartialPageFailure] = []
    embedded_chunks: List[Chunk] = []
    embedded_logs: List[EmbeddedPageLog] = []
    skipped_logs: List[SkippedPageLog] = []

    try:
        raw_pages = await client.fetch_pages_with_content(
            space_key=options.space_key or client.default_space_key,
            page_limit=page_limit,
            max_batches=max_batches,
        )
        pages = clean_pages(raw_pages)

        for page in pages:
            change = evaluate_change(page, embed_version, cache.get(page.page_id))

            if not change.changed:
                logger.info("Skipping %s: unchanged", page.title)
                skipped_pages.append(page)
                skipped_logs.append(skipped_page_log(page, change.reasons))
                continue

            try:
                chunks = chunk_page(
                    page,
                    min_tokens=min_tokens,
                    max_tokens=max_tokens,
                    embed_version=embed_version,
                )
            except Exception as exc:
                failure = PartialPageFailure(page.page_id, "chunk", exc)
                logger.error("%s", failure)
                failures.append(failure)
                failed_pages.append(page)
                continue

            if not chunks:
                logger.info("Skipping %s: no content after chunking", page.title)
                skipped_pages.append(page)
                skipped_logs.append(skipped_page_log(page, ["no content after chunking"]))
                continue

            logger.info(
                "Embedding %s: %d chunk%s (%s)",
                page.title,
                len(chunks),
                "" if len(chunks) == 1 else "s",
                ", ".join(change.reasons),
            )

            try:
                await _embed_page(store, page, chunks)
            except PartialPageFailure as failure:
                logger.error("%s", failure)
                failures.append(failure)
                failed_pages.append(page)
                continue

            cache.put(build_entry(page, embed_version, chunks, _utcnow()))
            embedded_pages.append(page)
            embedded_chunks.extend(chunks)
            embedded_logs.append(embedded_page_log(page, len(chunks)))

        cache.save()

        write_run_log(
            RunLog(
                generated_at=_utcnow(),
                embed_version=embed_version,
                embedded_pages=embedded_logs,
                skipped_pages=skipped_logs,
                chunks=chunk_log_entries(embedded_chunks),
            ),
            options.run_log_path,
        )
    finally:
        if owns_client:
            await client.aclose()

    stats = KnowledgeBaseStats(
        embed_version=embed_version,
        total_pages=len(pages),
        embedded_pages=len(embedded_pages),
        skipped_pages=len(skipped_pages),
        failed_pages=len(failed_pages),
        embedded_chunks=len(embedded_chunks),
    )
    logger.info(
        "Build finished: %d pages, %d embedded, %d skipped, %d failed, %d chunks",
        stats.total_pages,
        stats.embedded_pages,
        stats.skipped_pages,
        stats.failed_pages,
        stats.embedded_chunks,
    )

    return KnowledgeBase(
        store=store,
        pages=pages,
        chunks=embedded_chunks,
        embedded_pages=embedded_pages,
        skipped_pages=skipped_pages,
        failed_pages=failed_pages,
        stats=stats,
        failures=failures,
    )
