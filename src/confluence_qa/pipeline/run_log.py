"""
Vectorization Run Log

A JSON summary of the most recent build: which pages were embedded, which
were skipped and why, and one entry per embedded chunk. Writing it is
best-effort; a failure is logged and never aborts the run.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from ..config import settings
from ..confluence.chunk import Chunk
from ..confluence.models import CleanPage

logger = logging.getLogger("kb.build")


class EmbeddedPageLog(BaseModel):
    page_id: str
    page_title: str
    space_key: Optional[str] = None
    etag: Optional[str] = None
    updated_at: Optional[str] = None
    chunk_count: int


class SkippedPageLog(BaseModel):
    page_id: str
    page_title: str
    reasons: List[str]
    etag: Optional[str] = None
    updated_at: Optional[str] = None


class ChunkLogEntry(BaseModel):
    chunk_id: str
    page_id: str
    page_title: str
    heading: Optional[str] = None
    heading_path: Optional[str] = None
    updated_at: Optional[str] = None
    etag: Optional[str] = None
    space_key: Optional[str] = None
    embed_version: str
    token_estimate: int
    pii_flag: bool


class RunLog(BaseModel):
    generated_at: str
    embed_version: str
    embedded_pages: List[EmbeddedPageLog] = Field(default_factory=list)
    skipped_pages: List[SkippedPageLog] = Field(default_factory=list)
    chunks: List[ChunkLogEntry] = Field(default_factory=list)


def embedded_page_log(page: CleanPage, chunk_count: int) -> EmbeddedPageLog:
    return EmbeddedPageLog(
        page_id=page.page_id,
        page_title=page.title,
        space_key=page.space_key,
        etag=page.etag,
        updated_at=page.updated_at,
        chunk_count=chunk_count,
    )


def skipped_page_log(page: CleanPage, reasons: Sequence[str]) -> SkippedPageLog:
    return SkippedPageLog(
        page_id=page.page_id,
        page_title=page.title,
        reasons=list(reasons) or ["no changes detected"],
        etag=page.etag,
        updated_at=page.updated_at,
    )


def chunk_log_entries(chunks: Sequence[Chunk]) -> List[ChunkLogEntry]:
    return [
        ChunkLogEntry(
            chunk_id=c.id,
            page_id=c.page_id,
            page_title=c.title,
            heading=c.heading,
            heading_path=c.heading_path_text,
            updated_at=c.updated_at,
            etag=c.etag,
            space_key=c.space_key,
            embed_version=c.embed_version,
            token_estimate=c.token_estimate,
            pii_flag=c.pii_flag,
        )
        for c in chunks
    ]


def write_run_log(log: RunLog, path: Optional[str] = None) -> bool:
    """
    Write the run log as pretty JSON. Returns False (after logging) on failure.
    """
    target = Path(path or settings.vectorize_log_path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(log.model_dump_json(indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        logger.warning("Failed to write vectorization log %s: %s", target, exc)
        return False
    return True


def read_run_log(path: Optional[str] = None) -> Optional[RunLog]:
    """Load the last run log, or None if no run has written one."""
    target = Path(path or settings.vectorize_log_path)
    if not target.exists():
        return None
    return RunLog.model_validate(json.loads(target.read_text(encoding="utf-8")))
