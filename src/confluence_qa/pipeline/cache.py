"""
Change-Detection Cache

Persists one fingerprint per page so unchanged pages are skipped on later
runs. The file is a single JSON document:

    {"version": 1, "pages": {"<page_id>": {...CacheEntry...}}}

A missing or unreadable file is treated as an empty cache, never as an
error: the worst outcome is re-embedding pages that were already current.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from ..config import settings
from ..confluence.chunk import Chunk
from ..confluence.models import CleanPage

logger = logging.getLogger("kb.cache")

CURRENT_CACHE_VERSION = 1


# ---------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------

class CacheEntry(BaseModel):
    page_id: str = Field(..., min_length=1)
    page_title: str = ""
    space_key: Optional[str] = None
    etag: Optional[str] = None
    updated_at: Optional[str] = None
    embed_version: str
    chunk_count: int = Field(default=0, ge=0)
    chunk_ids: List[str] = Field(default_factory=list)
    last_embedded_at: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class CacheFile(BaseModel):
    version: int = CURRENT_CACHE_VERSION
    pages: Dict[str, CacheEntry] = Field(default_factory=dict)


class ChangeResult(BaseModel):
    changed: bool
    reasons: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------
# Change evaluation
# ---------------------------------------------------------------------

def _show(value: Optional[str]) -> str:
    return value if value else "none"


def evaluate_change(
    page: CleanPage,
    embed_version: str,
    cached: Optional[CacheEntry] = None,
) -> ChangeResult:
    """
    Compare a page against its cache entry.

    Every differing field contributes one reason; no entry at all yields
    the single reason "no existing cache entry".
    """
    if cached is None:
        return ChangeResult(changed=True, reasons=["no existing cache entry"])

    reasons: List[str] = []

    if cached.etag != page.etag:
        reasons.append(f"etag changed ({_show(cached.etag)} → {_show(page.etag)})")

    if cached.updated_at != page.updated_at:
        reasons.append(
            f"updated_at changed ({_show(cached.updated_at)} → {_show(page.updated_at)})"
        )

    if cached.embed_version != embed_version:
        reasons.append(
            f"embedding version changed ({_show(cached.embed_version)} → {_show(embed_version)})"
        )

    return ChangeResult(changed=bool(reasons), reasons=reasons)


def build_entry(
    page: CleanPage,
    embed_version: str,
    chunks: Sequence[Chunk],
    embedded_at: str,
) -> CacheEntry:
    return CacheEntry(
        page_id=page.page_id,
        page_title=page.title,
        space_key=page.space_key,
        etag=page.etag,
        updated_at=page.updated_at,
        embed_version=embed_version,
        chunk_count=len(chunks),
        chunk_ids=[c.id for c in chunks],
        last_embedded_at=embedded_at,
    )


# ---------------------------------------------------------------------
# Schema upgrade
# ---------------------------------------------------------------------

def upgrade_cache_payload(payload: Any) -> CacheFile:
    """
    Bring any decoded JSON document to the current cache shape.

    Unknown or missing versions are migrated rather than rejected.
    Individual entries that fail validation are dropped (their pages will
    simply be re-embedded).
    """
    if not isinstance(payload, dict):
        return CacheFile()

    version = payload.get("version")
    if version != CURRENT_CACHE_VERSION:
        logger.info("Upgrading vector cache from version %r to %d", version, CURRENT_CACHE_VERSION)

    raw_pages = payload.get("pages")
    if not isinstance(raw_pages, dict):
        return CacheFile()

    pages: Dict[str, CacheEntry] = {}
    for key, raw in raw_pages.items():
        if not isinstance(raw, dict):
            logger.warning("Dropping malformed cache entry for page %s", key)
            continue
        try:
            entry = CacheEntry.model_validate({"page_id": key, **raw})
        except PydanticValidationError as exc:
            logger.warning(
                "Dropping invalid cache entry for page %s (%d errors)", key, exc.error_count()
            )
            continue
        pages[entry.page_id] = entry

    return CacheFile(pages=pages)


# ---------------------------------------------------------------------
# File-backed cache
# ---------------------------------------------------------------------

class VectorCache:
    """
    JSON file holding one CacheEntry per page id.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = Path(path or settings.vector_cache_path)
        self.pages: Dict[str, CacheEntry] = {}

    def get(self, page_id: str) -> Optional[CacheEntry]:
        return self.pages.get(page_id)

    def put(self, entry: CacheEntry) -> None:
        self.pages[entry.page_id] = entry

    def __len__(self) -> int:
        return len(self.pages)

    def load(self) -> "VectorCache":
        """
        Read the cache file. Missing or corrupt files yield an empty cache.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self.pages = {}
            return self
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Failed to read vector cache %s; rebuilding from scratch: %s", self.path, exc)
            self.pages = {}
            return self

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Vector cache %s is not valid JSON; rebuilding from scratch: %s", self.path, exc)
            self.pages = {}
            return self

        self.pages = dict(upgrade_cache_payload(payload).pages)
        return self

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = CacheFile(pages=self.pages).model_dump(mode="json")
        self.path.write_text(json.dumps(document, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")

    def clear(self) -> None:
        """Delete the cache file and forget all entries."""
        self.pages = {}
        self.path.unlink(missing_ok=True)
        logger.info("Cleared vector cache %s", self.path)
