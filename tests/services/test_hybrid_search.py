"""Tests for rank fusion, stable pagination and the hybrid search service."""

import pytest

from card_search.errors import EmptyQueryError, SearchConfigurationError, VectorSearchDisabledError
from card_search.services.hybrid_search import (
    HybridSearchService,
    build_chunk_highlights,
    distinct_card_ids,
    fuse,
    ranked_ids,
    stable_page,
)
from card_search.services.index_manager import IndexManager


class TestFuse:
    def test_scores_follow_weighted_reciprocal_ranks(self):
        scores = fuse(["a", "b", "c"], ["c", "d"], k=60, chunk_weight=0.6)
        assert scores["a"] == pytest.approx(1 / 61)
        assert scores["b"] == pytest.approx(1 / 62)
        assert scores["c"] == pytest.approx(1 / 63 + 0.6 / 61)
        assert scores["d"] == pytest.approx(0.6 / 62)
        assert ranked_ids(scores) == ["c", "a", "b", "d"]

    def test_is_deterministic(self):
        """Identical inputs always give identical order and scores."""
        first = fuse(["1", "2", "3"], ["3", "2", "9"], k=10, chunk_weight=0.5)
        second = fuse(["1", "2", "3"], ["3", "2", "9"], k=10, chunk_weight=0.5)
        assert first == second
        assert ranked_ids(first) == ranked_ids(second)

    def test_ties_keep_first_appearance(self):
        scores = fuse(["x", "y"], ["y", "x"], k=60, chunk_weight=1.0)
        assert scores["x"] == pytest.approx(scores["y"])
        assert ranked_ids(scores) == ["x", "y"]

    def test_blank_ids_are_skipped(self):
        assert fuse(["a", ""], [None, "b"]) == pytest.approx({"a": 1 / 61, "b": 0.6 / 62})


class TestStablePage:
    def test_page_already_contains_window(self):
        assert stable_page(["a", "b", "c"], ["b", "a"], 0, 2) == ["a", "b"]

    def test_missing_window_cards_displace_lowest_fused(self):
        assert stable_page(["x", "y", "a", "b"], ["a", "b", "c"], 0, 2) == ["a", "b"]

    def test_partial_overlap_keeps_best_fused_entry(self):
        assert stable_page(["x", "a", "y"], ["a", "b"], 0, 3) == ["x", "a", "b"]

    def test_short_page_appends_without_displacing(self):
        assert stable_page(["x"], ["a"], 0, 3) == ["x", "a"]

    def test_window_follows_offset(self):
        fused = ["f1", "f2", "f3", "f4", "c3", "c4"]
        cards = ["c1", "c2", "c3", "c4"]
        assert stable_page(fused, cards, 2, 2) == ["c3", "c4"]


def test_chunk_highlights_keep_best_hit_per_card():
    highlights = build_chunk_highlights(
        [
            {"card_id": "7", "section": "description", "text": "best", "chunk_index": 2,
             "start_token": 10, "end_token": 40, "_rankingScore": 0.93},
            {"card_id": "7", "section": "scenario", "text": "worse"},
            {"cardId": 8, "text": "camel", "chunkIndex": 0},
            {"section": "orphan"},
            "garbage",
        ]
    )
    assert set(highlights) == {"7", "8"}
    best = highlights["7"]
    assert (best.section, best.text, best.chunk_index) == ("description", "best", 2)
    assert (best.start_token, best.end_token, best.score) == (10, 40, 0.93)
    assert highlights["8"].chunk_index == 0
    assert highlights["8"].score is None


async def _seed_vector_indexes(backend, config, cards=("1", "2"), chunks=("1-alt_greeting-0",)):
    await backend.add_documents(config.vector_cards_index, [{"id": i} for i in cards], "id")
    await backend.add_documents(
        config.vector_chunks_index, [{"id": i, "card_id": i.split("-")[0]} for i in chunks], "id"
    )
    backend.calls.clear()


@pytest.fixture
def hybrid(fake_backend, embedding_provider, config) -> HybridSearchService:
    return HybridSearchService(
        fake_backend, embedding_provider, IndexManager(fake_backend, config), config
    )


@pytest.mark.asyncio
async def test_hybrid_search_fuses_cards_and_chunks(hybrid, fake_backend, embedding_provider, config):
    await _seed_vector_indexes(fake_backend, config)
    fake_backend.search_handlers[config.vector_cards_index] = lambda payload: {
        "hits": [{"id": "1"}, {"id": "2"}, {"id": "3"}],
        "estimatedTotalHits": 30,
    }
    fake_backend.search_handlers[config.vector_chunks_index] = lambda payload: {
        "hits": [
            {"card_id": "3", "section": "description", "text": "elf ranger", "chunk_index": 0,
             "start_token": 0, "end_token": 12, "_rankingScore": 0.8},
            {"card_id": "4", "section": "alt_greeting", "text": "hello", "chunk_index": 1},
        ]
    }

    result = await hybrid.search("elf ranger", "topics:elf AND hasGallery:true", page=1, limit=10)

    assert embedding_provider.query_calls == ["elf ranger"]
    assert result.ids == ["3", "1", "2", "4"]
    assert result.total == 30
    assert result.applied_filter == 'topics = "elf" AND hasGallery = true'
    assert set(result.chunk_matches) == {"3", "4"}
    assert result.scores["3"] == pytest.approx(1 / 63 + 0.6 / 61)
    assert result.meta == {
        "semantic_ratio": 0.4,
        "cards_fetched": 3,
        "chunks_fetched": 2,
        "chunk_search_enabled": True,
    }

    searches = {uid: payload for uid, payload in fake_backend.calls_to("search")}
    cards_payload = searches[config.vector_cards_index]
    assert cards_payload["limit"] == 20
    assert cards_payload["offset"] == 0
    assert cards_payload["vector"] == [10.0, 1.0, 2.0, 3.0]
    assert cards_payload["hybrid"] == {"embedder": "stub-4", "semanticRatio": 0.4}
    assert cards_payload["filter"] == 'topics = "elf" AND hasGallery = true'

    chunk_payload = searches[config.vector_chunks_index]
    assert chunk_payload["limit"] == 80
    assert chunk_payload["distinct"] == "card_id"
    assert chunk_payload["hybrid"] == {"embedder": "stub-4", "semanticRatio": 1}
    assert chunk_payload["filter"] == 'tags = "elf"'


@pytest.mark.asyncio
async def test_top_card_hits_survive_fusion(fake_backend, embedding_provider, config):
    """Card hits with no chunk overlap stay on the page even when chunks outscore them."""
    config = config.model_copy(update={"chunk_weight": 5.0})
    hybrid = HybridSearchService(
        fake_backend, embedding_provider, IndexManager(fake_backend, config), config
    )
    await _seed_vector_indexes(fake_backend, config)
    fake_backend.search_handlers[config.vector_cards_index] = lambda payload: {
        "hits": [{"id": "1"}, {"id": "2"}]
    }
    fake_backend.search_handlers[config.vector_chunks_index] = lambda payload: {
        "hits": [{"card_id": "7"}, {"card_id": "8"}, {"card_id": "9"}]
    }

    result = await hybrid.search("dragon", limit=2)

    assert result.ids == ["1", "2"]


@pytest.mark.asyncio
async def test_repeated_chunk_hits_count_once_per_card(hybrid, fake_backend, config):
    await _seed_vector_indexes(fake_backend, config)
    fake_backend.search_handlers[config.vector_cards_index] = lambda payload: {
        "hits": [{"id": "1"}, {"id": "2"}]
    }
    fake_backend.search_handlers[config.vector_chunks_index] = lambda payload: {
        "hits": [
            {"card_id": "2", "section": "description", "chunk_index": 0, "text": "best"},
            {"card_id": "2", "section": "description", "chunk_index": 1, "text": "next"},
            {"card_id": "2", "section": "alt_greeting", "chunk_index": 0, "text": "last"},
        ]
    }

    result = await hybrid.search("elf", sort="new")

    assert result.ids == ["2", "1"]
    assert result.scores["2"] == pytest.approx(1 / 62 + 0.6 / 61)
    assert result.scores["1"] == pytest.approx(1 / 61)
    assert result.meta["chunks_fetched"] == 1
    assert result.chunk_matches["2"].text == "best"
    assert all("sort" not in payload for _, payload in fake_backend.calls_to("search"))


def test_distinct_card_ids_keeps_first_occurrence():
    hits = [
        {"card_id": "5"},
        {"card_id": 3},
        {"card_id": "5"},
        {"text": "orphan"},
        {"card_id": "3"},
    ]
    assert distinct_card_ids(hits) == ["5", "3"]


@pytest.mark.asyncio
async def test_empty_chunk_index_disables_chunk_search(hybrid, fake_backend, config):
    await _seed_vector_indexes(fake_backend, config, chunks=())

    result = await hybrid.search("elf")

    assert [uid for uid, _ in fake_backend.calls_to("search")] == [config.vector_cards_index]
    assert result.ids == ["1", "2"]
    assert result.chunk_matches == {}
    assert result.meta["chunk_search_enabled"] is False


@pytest.mark.asyncio
async def test_empty_card_vector_index_is_fatal(hybrid, fake_backend, config):
    with pytest.raises(SearchConfigurationError, match="card-search etl"):
        await hybrid.search("elf")
    assert fake_backend.calls_to("search") == []


@pytest.mark.asyncio
async def test_vector_search_disabled(fake_backend, embedding_provider, config):
    config = config.model_copy(update={"vector_enabled": False})
    hybrid = HybridSearchService(
        fake_backend, embedding_provider, IndexManager(fake_backend, config), config
    )
    with pytest.raises(VectorSearchDisabledError):
        await hybrid.search("elf")
    assert embedding_provider.query_calls == []


@pytest.mark.asyncio
async def test_blank_query_error_propagates(fake_backend, config):
    class RejectingProvider:
        model_name = "stub"
        dimensions = 4

        async def embed_query(self, text):
            raise EmptyQueryError("Vector search requires a query string")

    hybrid = HybridSearchService(
        fake_backend, RejectingProvider(), IndexManager(fake_backend, config), config
    )
    with pytest.raises(EmptyQueryError):
        await hybrid.search("   ")


@pytest.mark.asyncio
@pytest.mark.parametrize("ratio,expected", [(0.9, 0.9), (5, 1.0), (-1, 0.0), (float("nan"), 0.4)])
async def test_semantic_ratio_override(hybrid, fake_backend, config, ratio, expected):
    await _seed_vector_indexes(fake_backend, config)
    result = await hybrid.search("elf", semantic_ratio=ratio)
    searches = dict(fake_backend.calls_to("search"))
    assert searches[config.vector_cards_index]["hybrid"]["semanticRatio"] == expected
    assert result.meta["semantic_ratio"] == expected


def test_fetch_limits_are_capped(hybrid):
    assert hybrid.card_fetch_limit(0, 10) == 20
    assert hybrid.card_fetch_limit(380, 20) == 400
    assert hybrid.card_fetch_limit(0, 1) == 2
    assert hybrid.chunk_fetch_limit(10) == 80
    assert hybrid.chunk_fetch_limit(150) == 150
