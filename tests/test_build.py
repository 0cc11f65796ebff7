"""
Build orchestrator tests with a fake Confluence client and in-memory store.
"""

import json
from pathlib import Path
from typing import List

import pytest

from confluence_qa.config import settings
from confluence_qa.confluence.models import RawPage
from confluence_qa.pipeline.build import BuildOptions, build_knowledge_base
from confluence_qa.pipeline.cache import VectorCache
from confluence_qa.pipeline.run_log import read_run_log

from conftest import make_raw_page

EMBED_VERSION = "openai:text-embedding-3-small"


class FakeConfluence:
    default_space_key = "DOC"

    def __init__(self, pages: List[RawPage]) -> None:
        self.pages = pages
        self.closed = False

    async def fetch_pages_with_content(self, space_key=None, page_limit=25, max_batches=5):
        return list(self.pages)

    async def aclose(self):
        self.closed = True


@pytest.fixture(autouse=True)
def pinned_embedding_model(monkeypatch):
    monkeypatch.setattr(settings, "openai_embedding_model", None)


@pytest.fixture
def paths(tmp_path):
    return str(tmp_path / "data" / "cache.json"), str(tmp_path / "logs" / "run.json")


def _options(pages, store, paths):
    cache_path, log_path = paths
    return BuildOptions(
        client=FakeConfluence(pages),
        store=store,
        cache=VectorCache(cache_path),
        run_log_path=log_path,
        min_tokens=1,
        max_tokens=800,
    )


class TestBuildKnowledgeBase:
    @pytest.mark.asyncio
    async def test_first_run_embeds_every_page(self, fake_store, paths):
        pages = [make_raw_page("P1", "Alpha"), make_raw_page("P2", "Beta")]
        kb = await build_knowledge_base(_options(pages, fake_store, paths))

        assert [p.page_id for p in kb.embedded_pages] == ["P1", "P2"]
        assert kb.skipped_pages == []
        assert kb.stats.embed_version == EMBED_VERSION
        assert kb.stats.embedded_chunks == len(kb.chunks)
        assert fake_store.calls == [
            ("delete", "P1"),
            ("upsert", ["P1-0"]),
            ("delete", "P2"),
            ("upsert", ["P2-0"]),
        ]

        cache = VectorCache(paths[0]).load()
        assert cache.get("P1").etag == "3"
        assert cache.get("P1").chunk_ids == ["P1-0"]
        assert cache.get("P2").embed_version == EMBED_VERSION

        log = read_run_log(paths[1])
        assert log.embed_version == EMBED_VERSION
        assert [p.page_id for p in log.embedded_pages] == ["P1", "P2"]
        assert [c.chunk_id for c in log.chunks] == ["P1-0", "P2-0"]

    @pytest.mark.asyncio
    async def test_unchanged_pages_are_skipped(self, fake_store, paths):
        pages = [make_raw_page("P1", "Alpha")]
        await build_knowledge_base(_options(pages, fake_store, paths))
        fake_store.calls.clear()

        kb = await build_knowledge_base(_options(pages, fake_store, paths))

        assert [p.page_id for p in kb.skipped_pages] == ["P1"]
        assert kb.embedded_pages == []
        assert fake_store.calls == []

        log = read_run_log(paths[1])
        assert log.skipped_pages[0].reasons == ["no changes detected"]

    @pytest.mark.asyncio
    async def test_page_without_content_is_skipped(self, fake_store, paths):
        pages = [RawPage(id="E1", title="", body_html="<div></div>", version_number=1)]
        kb = await build_knowledge_base(_options(pages, fake_store, paths))

        assert [p.page_id for p in kb.skipped_pages] == ["E1"]
        assert fake_store.calls == []
        log = read_run_log(paths[1])
        assert log.skipped_pages[0].reasons == ["no content after chunking"]
        assert VectorCache(paths[0]).load().get("E1") is None

    @pytest.mark.asyncio
    async def test_failed_page_gets_no_cache_entry(self, fake_store, paths):
        fake_store.fail_upsert_for = {"P2"}
        pages = [make_raw_page("P1", "Alpha"), make_raw_page("P2", "Beta"), make_raw_page("P3", "Gamma")]

        kb = await build_knowledge_base(_options(pages, fake_store, paths))

        assert [p.page_id for p in kb.embedded_pages] == ["P1", "P3"]
        assert [p.page_id for p in kb.failed_pages] == ["P2"]
        assert kb.failures[0].stage == "upsert"
        assert kb.stats.failed_pages == 1

        cache = VectorCache(paths[0]).load()
        assert cache.get("P2") is None
        assert cache.get("P1") is not None

        fake_store.fail_upsert_for = set()
        fake_store.calls.clear()
        retry = await build_knowledge_base(_options(pages, fake_store, paths))
        assert [p.page_id for p in retry.embedded_pages] == ["P2"]

    @pytest.mark.asyncio
    async def test_shrinking_page_leaves_no_stale_chunks(self, fake_store, paths):
        body = "<h2>A</h2><p>first part</p><h2>B</h2><p>second part</p>"
        await build_knowledge_base(_options([make_raw_page("P1", "Doc", body, version=1)], fake_store, paths))
        assert sorted(fake_store.vectors) == ["P1-0", "P1-1"]

        smaller = make_raw_page("P1", "Doc", "<p>only part</p>", version=2)
        kb = await build_knowledge_base(_options([smaller], fake_store, paths))

        assert [p.page_id for p in kb.embedded_pages] == ["P1"]
        assert sorted(fake_store.vectors) == ["P1-0"]
        assert VectorCache(paths[0]).load().get("P1").chunk_count == 1

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self, fake_store, paths):
        options = _options([make_raw_page()], fake_store, paths)
        await build_knowledge_base(options)
        assert options.client.closed is False

    @pytest.mark.asyncio
    async def test_injected_empty_cache_is_used(self, fake_store, paths, tmp_path, monkeypatch):
        default_path = tmp_path / "default-cache.json"
        stale = {
            "version": 1,
            "pages": {
                "P1": {
                    "page_id": "P1",
                    "page_title": "Alpha",
                    "etag": "3",
                    "updated_at": "2024-01-01T00:00:00.000Z",
                    "embed_version": EMBED_VERSION,
                    "chunk_count": 1,
                    "chunk_ids": ["P1-0"],
                }
            },
        }
        default_path.write_text(json.dumps(stale), encoding="utf-8")
        monkeypatch.setattr(settings, "vector_cache_path", str(default_path))

        kb = await build_knowledge_base(_options([make_raw_page("P1", "Alpha")], fake_store, paths))

        assert [p.page_id for p in kb.embedded_pages] == ["P1"]
        assert VectorCache(paths[0]).load().get("P1") is not None
        assert json.loads(default_path.read_text(encoding="utf-8")) == stale

    @pytest.mark.asyncio
    async def test_undecodable_cache_file_rebuilds(self, fake_store, paths):
        cache_path = Path(paths[0])
        cache_path.parent.mkdir(parents=True)
        cache_path.write_bytes(b'{"version": 1, "pages": {\xff\xfe}}')

        kb = await build_knowledge_base(_options([make_raw_page("P1", "Alpha")], fake_store, paths))

        assert [p.page_id for p in kb.embedded_pages] == ["P1"]
        assert VectorCache(paths[0]).load().get("P1").etag == "3"
