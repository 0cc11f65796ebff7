"""
Block parsing and heading-aware chunking tests.
"""

import pytest

from confluence_qa.confluence.blocks import BlockKind, parse_blocks
from confluence_qa.confluence.chunk import chunk_page, detect_pii
from confluence_qa.core.errors import ValidationError

from conftest import make_clean_page


def _words(prefix: str, count: int) -> str:
    return " ".join(f"{prefix}{i}" for i in range(count))


def _normalized(text: str) -> str:
    return " ".join(text.split())


class TestParseBlocks:
    def test_block_kinds(self):
        md = (
            "# Title\n\n"
            "A paragraph.\n\n"
            "```py\nx = 1\n```\n\n"
            "| a | b |\n| --- | --- |\n| 1 | 2 |\n\n"
            "- item one\n- item two\n\n"
            "> quoted"
        )
        doc = parse_blocks(md)

        assert [b.kind for b in doc] == [
            BlockKind.HEADING,
            BlockKind.PARAGRAPH,
            BlockKind.CODE,
            BlockKind.TABLE,
            BlockKind.LIST,
            BlockKind.BLOCKQUOTE,
        ]
        assert doc.blocks[0].level == 1
        assert doc.blocks[0].text == "Title"
        assert doc.blocks[2].language == "py"
        assert doc.blocks[2].source == "```py\nx = 1\n```"

    def test_empty_markdown(self):
        assert len(parse_blocks("   \n\n")) == 0


class TestChunkPage:
    def test_empty_page_yields_no_chunks(self):
        assert chunk_page(make_clean_page(markdown="")) == []

    def test_invalid_bounds_rejected(self):
        page = make_clean_page()
        with pytest.raises(ValidationError):
            chunk_page(page, min_tokens=500, max_tokens=100)
        with pytest.raises(ValidationError):
            chunk_page(page, min_tokens=0, max_tokens=100)

    def test_heading_paths_and_ids(self):
        md = (
            "# Guide\n\n"
            "## Install\n\ntext a\n\n"
            "### Linux\n\ntext b\n\n"
            "## Usage\n\ntext c"
        )
        chunks = chunk_page(make_clean_page(markdown=md), min_tokens=1, max_tokens=800, embed_version="openai:m")

        assert [c.id for c in chunks] == ["P1-0", "P1-1", "P1-2"]
        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert chunks[0].heading_path == ["Guide", "Install"]
        assert chunks[1].heading_path == ["Guide", "Install", "Linux"]
        assert chunks[1].heading_path_text == "Guide > Install > Linux"
        assert chunks[1].heading == "Linux"
        assert chunks[2].heading_path == ["Guide", "Usage"]
        assert chunks[0].content.startswith("# Guide\n\n## Install")
        assert all(c.embed_version == "openai:m" for c in chunks)
        assert all(c.title == "Guide" and c.etag == "3" for c in chunks)

    def test_fallback_heading_path_is_page_title(self):
        chunks = chunk_page(make_clean_page(title="Notes", markdown="just prose"), min_tokens=1)
        assert chunks[0].heading_path == ["Notes"]

    def test_content_is_preserved(self):
        md = (
            "# Guide\n\n"
            f"{_words('intro', 120)}\n\n"
            "## Setup\n\n"
            f"{_words('setup', 90)}\n\n"
            "- step one\n- step two\n\n"
            "```bash\nmake install\n```\n\n"
            f"{_words('after', 200)}\n\n"
            "| k | v |\n| --- | --- |\n| a | 1 |\n\n"
            "## Usage\n\n"
            f"{_words('usage', 310)}"
        )
        chunks = chunk_page(make_clean_page(markdown=md), min_tokens=50, max_tokens=150)

        rebuilt = "\n\n".join(c.content for c in sorted(chunks, key=lambda c: c.chunk_index))
        assert _normalized(rebuilt) == _normalized(md)
        assert len({c.id for c in chunks}) == len(chunks)

    def test_token_bounds(self):
        paragraphs = "\n\n".join(_words(f"p{n}w", 100) for n in range(10))
        md = f"# Doc\n\n{paragraphs}"
        chunks = chunk_page(make_clean_page(title="Doc", markdown=md), min_tokens=150, max_tokens=300)

        assert [c.token_estimate for c in chunks] == [202, 300, 300, 200]
        for chunk in chunks:
            assert chunk.token_estimate <= 300
        for chunk in chunks[:-1]:
            assert chunk.token_estimate >= 150

    def test_oversized_paragraph_is_not_split(self):
        md = f"# Big\n\n{_words('w', 1200)}"
        chunks = chunk_page(make_clean_page(title="Big", markdown=md), min_tokens=300, max_tokens=800)

        assert len(chunks) == 1
        assert chunks[0].token_estimate > 800
        assert _words("w", 1200) in chunks[0].content

    def test_oversized_code_block_is_one_chunk(self):
        code = "\n".join(f"print({i}) # line {i}" for i in range(400))
        md = f"```python\n{code}\n```"
        chunks = chunk_page(make_clean_page(markdown=md), min_tokens=300, max_tokens=800)

        assert len(chunks) == 1
        assert chunks[0].token_estimate > 800
        assert chunks[0].content == md

    def test_code_block_is_never_merged_with_prose(self):
        md = "# Guide\n\nIntro text.\n\n```sh\nrun me\n```\n\nOutro text."
        chunks = chunk_page(make_clean_page(markdown=md), min_tokens=1, max_tokens=800)

        assert [c.content for c in chunks] == [
            "# Guide\n\nIntro text.",
            "```sh\nrun me\n```",
            "Outro text.",
        ]

    def test_heading_directly_above_code_joins_code_chunk(self):
        md = "# Guide\n\n## Install\n\n```sh\nmake install\n```\n\nThen run it."
        chunks = chunk_page(make_clean_page(markdown=md), min_tokens=1, max_tokens=800)

        assert [c.content for c in chunks] == [
            "# Guide\n\n## Install\n\n```sh\nmake install\n```",
            "Then run it.",
        ]
        assert chunks[0].heading_path == ["Guide", "Install"]
        assert chunks[1].heading_path == ["Guide", "Install"]

    def test_pii_flag(self):
        md = "# Contacts\n\nReach the team at ops@example.com for access."
        chunks = chunk_page(make_clean_page(markdown=md), min_tokens=1)
        assert chunks[0].pii_flag is True


class TestDetectPii:
    def test_email(self):
        assert detect_pii("mail alice@example.org please")

    def test_phone(self):
        assert detect_pii("call +1 415 555 0100 today")

    def test_luhn_valid_card(self):
        assert detect_pii("card 4111 1111 1111 1111 on file")

    def test_luhn_invalid_digits(self):
        assert not detect_pii("order 1234567890123 shipped")

    def test_plain_text(self):
        assert not detect_pii("Upgrade to version 1.2.3 before Friday.")
