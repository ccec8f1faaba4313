# tests/test_quota_and_sources.py
"""Tests for input quota detection and citation-to-source mapping."""

import pytest
from conftest import FakeRuntime, make_excerpts

from paper_chat.config import EngineConfig
from paper_chat.models import ContextExcerpt
from paper_chat.quota import InputQuotaProbe
from paper_chat.sources import build_source_index, map_sources, normalize_citation


class TestInputQuotaProbe:
    @pytest.mark.asyncio
    async def test_detects_and_caches(self):
        runtime = FakeRuntime(input_quota=6144)
        probe = InputQuotaProbe(runtime)
        assert await probe.get_input_quota() == 6144
        assert await probe.get_input_quota() == 6144
        assert len(runtime.created) == 1
        assert runtime.destroyed == runtime.created

    @pytest.mark.asyncio
    async def test_falls_back_when_unavailable(self):
        runtime = FakeRuntime()
        runtime.fail_create = True
        probe = InputQuotaProbe(runtime, EngineConfig(fallback_input_quota=1024))
        assert await probe.get_input_quota() == 1024

    @pytest.mark.asyncio
    async def test_reset_detects_again(self):
        runtime = FakeRuntime(input_quota=2048)
        probe = InputQuotaProbe(runtime)
        await probe.get_input_quota()
        probe.reset()
        await probe.get_input_quota()
        assert len(runtime.created) == 2

    @pytest.mark.asyncio
    async def test_optimal_excerpt_count(self):
        probe = InputQuotaProbe(FakeRuntime(input_quota=4096))
        # (4096 - 800 - 500) // 125 = 22, clamped to 8
        assert await probe.optimal_excerpt_count() == 8
        # (4096 - 1300) // 1000 = 2
        assert await probe.optimal_excerpt_count(avg_excerpt_chars=4000) == 2

    @pytest.mark.asyncio
    async def test_small_quota_keeps_minimum(self):
        probe = InputQuotaProbe(FakeRuntime(input_quota=1024))
        assert await probe.optimal_excerpt_count() == 2


class TestNormalizeCitation:
    def test_strips_paragraph(self):
        assert normalize_citation("Section: Methods > P 3") == "Section: Methods"

    def test_strips_sentences(self):
        assert normalize_citation("Section: Methods > Data > P 12 > Sentences") == "Section: Methods > Data"

    def test_leaves_section_only(self):
        assert normalize_citation("Section: Results") == "Section: Results"


class TestMapSources:
    def test_maps_known_citations(self):
        excerpts = make_excerpts(3)
        refs = map_sources(["Section: Methods 2 > P 1", "Section: Unknown", "Section: Methods 0"], excerpts)
        assert [ref.text for ref in refs] == ["Section: Methods 2", "Section: Methods 0"]
        assert refs[0].css_selector == "#sec-2"
        assert refs[0].section_heading == "Methods 2"

    def test_first_excerpt_per_section_wins(self):
        excerpts = [
            ContextExcerpt(content="a", section_path="Intro", document_order_index=0, element_id="first"),
            ContextExcerpt(content="b", section_path="Intro", document_order_index=1, element_id="second"),
        ]
        index = build_source_index(excerpts)
        assert list(index) == ["Section: Intro"]
        assert index["Section: Intro"].element_id == "first"

    def test_heading_from_last_path_segment(self):
        excerpt = ContextExcerpt(content="a", section_path="Methods > Data Collection", document_order_index=0)
        ref = build_source_index([excerpt])["Section: Methods > Data Collection"]
        assert ref.section_heading == "Data Collection"
