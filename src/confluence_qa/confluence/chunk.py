"""
Heading-Aware Chunker

Splits a CleanPage into ordered, non-overlapping, token-bounded chunks.

Algorithm
---------
1. Parse the Markdown into top-level blocks (see blocks.py).
2. Group blocks into sections. Each heading opens a section and updates the
   heading stack; code blocks and tables become atomic sections that are
   never split or merged with prose. Headings directly above one join it.
3. Inside a prose section, buffer blocks and flush when the next block would
   push the buffer over `max_tokens` while it already holds `min_tokens`, or
   when the buffer alone exceeds `max_tokens`. A single block larger than
   `max_tokens` becomes one oversized chunk.
4. Number the chunks and attach heading and page metadata.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..core.errors import ValidationError
from .blocks import Block, BlockKind, BlockVisitor, estimate_tokens, parse_blocks
from .models import CleanPage

logger = logging.getLogger("kb.chunker")

DEFAULT_MIN_TOKENS = 300
DEFAULT_MAX_TOKENS = 800
HEADING_PATH_SEPARATOR = " > "


class Chunk(BaseModel):
    """
    One embeddable slice of a page.
    """

    id: str = Field(..., min_length=1, description="Stable id: '<page_id>-<chunk_index>'.")
    page_id: str
    chunk_index: int = Field(..., ge=0)
    content: str
    token_estimate: int = Field(..., ge=0)
    heading: Optional[str] = None
    heading_path: List[str] = Field(default_factory=list)
    heading_path_text: Optional[str] = None
    embed_version: str = ""
    pii_flag: bool = False

    title: str
    url: Optional[str] = None
    space_key: Optional[str] = None
    updated_at: Optional[str] = None
    etag: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------
# PII detection
# ---------------------------------------------------------------------

_EMAIL = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_PHONE = re.compile(
    r"(?<!\w)(?:\+\d{1,3}[\s-]?)?(?:\(\d{2,4}\)|\d{2,4})[\s-]\d{3,4}[\s-]\d{3,4}(?!\w)"
)
_CARD = re.compile(r"(?<!\d)\d(?:[ -]?\d){12,18}(?!\d)")


def _passes_luhn(digits: str) -> bool:
    total = 0
    for i, ch in enumerate(reversed(digits)):
        n = int(ch)
        if i % 2 == 1:
            n *= 2
            if n > 9:
                n -= 9
        total += n
    return total % 10 == 0


def detect_pii(text: str) -> bool:
    """
    Flag text containing an email address, a phone number, or a
    Luhn-valid card number.
    """
    if _EMAIL.search(text) or _PHONE.search(text):
        return True
    for match in _CARD.finditer(text):
        if _passes_luhn(re.sub(r"\D", "", match.group())):
            return True
    return False


# ---------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------

@dataclass
class Section:
    heading_path: Tuple[str, ...]
    blocks: List[Block] = field(default_factory=list)
    atomic: bool = False

    @property
    def heading_only(self) -> bool:
        return bool(self.blocks) and all(b.kind is BlockKind.HEADING for b in self.blocks)


class SectionBuilder(BlockVisitor):
    """
    Walks the block tree and groups blocks into sections.

    The heading stack holds (level, text) pairs from the document root down
    to the nearest heading. Sections holding nothing but headings are carried
    into the next section, prose or atomic, so a heading never becomes a chunk
    on its own unless nothing follows it.
    """

    def __init__(self, fallback_title: str) -> None:
        self._stack: List[Tuple[int, str]] = []
        self._fallback: Tuple[str, ...] = (fallback_title,) if fallback_title else ()
        self._current: Optional[Section] = None
        self.sections: List[Section] = []

    @property
    def heading_path(self) -> Tuple[str, ...]:
        return tuple(text for _, text in self._stack) or self._fallback

    def _close(self) -> None:
        if self._current is not None and self._current.blocks:
            self.sections.append(self._current)
        self._current = None

    def visit_heading(self, block: Block) -> None:
        if not block.text:
            self.generic_visit(block)
            return

        carried: List[Block] = []
        if self._current is not None and self._current.heading_only:
            carried = self._current.blocks
            self._current = None
        else:
            self._close()

        while self._stack and self._stack[-1][0] >= block.level:
            self._stack.pop()
        self._stack.append((block.level, block.text))

        self._current = Section(heading_path=self.heading_path, blocks=carried + [block])

    def _visit_atomic(self, block: Block) -> None:
        carried: List[Block] = []
        if self._current is not None and self._current.heading_only:
            carried = self._current.blocks
            self._current = None
        else:
            self._close()
        self.sections.append(
            Section(heading_path=self.heading_path, blocks=carried + [block], atomic=True)
        )

    visit_code = _visit_atomic
    visit_table = _visit_atomic

    def generic_visit(self, block: Block) -> None:
        if self._current is None:
            self._current = Section(heading_path=self.heading_path)
        self._current.blocks.append(block)

    def finish(self) -> List[Section]:
        self._close()
        return self.sections


def build_sections(markdown: str, fallback_title: str) -> List[Section]:
    builder = SectionBuilder(fallback_title)
    parse_blocks(markdown).accept(builder)
    return builder.finish()


def split_section(section: Section, min_tokens: int, max_tokens: int) -> List[List[Block]]:
    """
    Group a section's blocks into chunk-sized runs.
    """
    if section.atomic:
        return [list(section.blocks)]

    groups: List[List[Block]] = []
    buffer: List[Block] = []
    buffered = 0

    for block in section.blocks:
        tokens = block.token_estimate

        if buffer and buffered + tokens > max_tokens and buffered >= min_tokens:
            groups.append(buffer)
            buffer, buffered = [], 0

        buffer.append(block)
        buffered += tokens

        if buffered > max_tokens:
            groups.append(buffer)
            buffer, buffered = [], 0

    if buffer:
        groups.append(buffer)

    return groups


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def chunk_page(
    page: CleanPage,
    min_tokens: Optional[int] = None,
    max_tokens: Optional[int] = None,
    embed_version: str = "",
) -> List[Chunk]:
    """
    Split a cleaned page into chunks.

    Parameters
    ----------
    page : CleanPage
        The page to split.

    min_tokens, max_tokens : Optional[int]
        Chunk size bounds. Default to 300 and 800.

    embed_version : str
        Embedding model version tag stamped on every chunk.

    Returns
    -------
    List[Chunk]
        Chunks in document order. Empty for an empty page.

    Raises
    ------
    ValidationError
        If the bounds are non-positive or inverted.
    """
    min_tokens = DEFAULT_MIN_TOKENS if min_tokens is None else min_tokens
    max_tokens = DEFAULT_MAX_TOKENS if max_tokens is None else max_tokens
    if min_tokens <= 0 or max_tokens <= 0 or min_tokens > max_tokens:
        raise ValidationError(
            f"Invalid chunk bounds: min_tokens={min_tokens}, max_tokens={max_tokens}"
        )

    chunks: List[Chunk] = []

    for section in build_sections(page.markdown, page.title):
        path = list(section.heading_path)
        for group in split_section(section, min_tokens, max_tokens):
            content = "\n\n".join(block.source for block in group)
            index = len(chunks)
            chunks.append(
                Chunk(
                    id=f"{page.page_id}-{index}",
                    page_id=page.page_id,
                    chunk_index=index,
                    content=content,
                    token_estimate=estimate_tokens(content),
                    heading=path[-1] if path else None,
                    heading_path=path,
                    heading_path_text=HEADING_PATH_SEPARATOR.join(path) if path else None,
                    embed_version=embed_version,
                    pii_flag=detect_pii(content),
                    title=page.title,
                    url=page.url,
                    space_key=page.space_key,
                    updated_at=page.updated_at,
                    etag=page.etag,
                )
            )

    logger.debug("Chunked page %s into %d chunks", page.page_id, len(chunks))
    return chunks
