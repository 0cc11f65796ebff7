"""
Markdown Block Tree

Parses Markdown into a flat document of top-level blocks, each tagged with a
BlockKind and carrying the exact source text it was parsed from. Chunks are
assembled from these source slices, so chunk content is always a faithful
copy of the cleaned page.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, List, Optional, Tuple

from markdown_it import MarkdownIt


class BlockKind(str, Enum):
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    LIST = "list"
    CODE = "code"
    TABLE = "table"
    BLOCKQUOTE = "blockquote"
    HTML = "html"
    THEMATIC_BREAK = "thematic_break"
    OTHER = "other"


ATOMIC_KINDS = frozenset({BlockKind.CODE, BlockKind.TABLE})

_TOKEN_KINDS = {
    "heading_open": BlockKind.HEADING,
    "paragraph_open": BlockKind.PARAGRAPH,
    "bullet_list_open": BlockKind.LIST,
    "ordered_list_open": BlockKind.LIST,
    "fence": BlockKind.CODE,
    "code_block": BlockKind.CODE,
    "table_open": BlockKind.TABLE,
    "blockquote_open": BlockKind.BLOCKQUOTE,
    "html_block": BlockKind.HTML,
    "hr": BlockKind.THEMATIC_BREAK,
}


def estimate_tokens(text: str) -> int:
    """Whitespace-delimited token count. Cheap, not a model tokenizer."""
    return len(text.split())


@dataclass(frozen=True)
class Block:
    kind: BlockKind
    source: str
    level: int = 0
    text: str = ""
    language: Optional[str] = None

    @property
    def is_atomic(self) -> bool:
        return self.kind in ATOMIC_KINDS

    @property
    def token_estimate(self) -> int:
        return estimate_tokens(self.source)


@dataclass(frozen=True)
class Document:
    blocks: Tuple[Block, ...]

    def __iter__(self) -> Iterator[Block]:
        return iter(self.blocks)

    def __len__(self) -> int:
        return len(self.blocks)

    def accept(self, visitor: "BlockVisitor") -> None:
        for block in self.blocks:
            visitor.visit(block)


class BlockVisitor:
    """
    Dispatches each block to `visit_<kind>`, falling back to
    `generic_visit`, in the manner of ast.NodeVisitor.
    """

    def visit(self, block: Block) -> Any:
        method = getattr(self, f"visit_{block.kind.value}", self.generic_visit)
        return method(block)

    def generic_visit(self, block: Block) -> Any:
        return None


# ---------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------

_parser = MarkdownIt("commonmark").enable("table")


def _slice(lines: List[str], start: int, end: int) -> str:
    return "\n".join(lines[start:end]).strip("\n")


def parse_blocks(markdown: str) -> Document:
    """
    Parse Markdown into top-level blocks.

    Non-blank lines that the parser attaches to no block (for example link
    reference definitions) are kept as OTHER blocks so no text is lost.
    """
    if not markdown.strip():
        return Document(blocks=())

    lines = markdown.split("\n")
    tokens = _parser.parse(markdown)
    blocks: List[Block] = []
    cursor = 0

    for i, tok in enumerate(tokens):
        if tok.level != 0 or tok.nesting == -1 or not tok.map:
            continue

        start, end = tok.map
        if start > cursor:
            gap = _slice(lines, cursor, start)
            if gap.strip():
                blocks.append(Block(kind=BlockKind.OTHER, source=gap))

        kind = _TOKEN_KINDS.get(tok.type, BlockKind.OTHER)
        source = _slice(lines, start, end)

        if kind is BlockKind.HEADING:
            inline = tokens[i + 1] if i + 1 < len(tokens) else None
            blocks.append(
                Block(
                    kind=kind,
                    source=source,
                    level=int(tok.tag[1:]),
                    text=(inline.content if inline is not None else "").strip(),
                )
            )
        elif kind is BlockKind.CODE:
            info = tok.info.strip().split()
            blocks.append(
                Block(kind=kind, source=source, language=info[0] if info else None)
            )
        elif source.strip():
            blocks.append(Block(kind=kind, source=source))

        cursor = max(cursor, end)

    tail = _slice(lines, cursor, len(lines))
    if tail.strip():
        blocks.append(Block(kind=BlockKind.OTHER, source=tail))

    return Document(blocks=tuple(blocks))
