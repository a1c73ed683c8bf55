"""Tests for the search facade and the advanced search flow."""

import pytest

from card_search.errors import SearchBackendError, VectorSearchDisabledError
from card_search.filters import StructuredFilter
from card_search.services import AdvancedSearchParams, IndexManager, SearchService


def _service(backend, config, provider=None) -> SearchService:
    return SearchService(config, backend, IndexManager(backend, config), provider)


async def _seed_card_vectors(backend, config, ids):
    await backend.add_documents(config.vector_cards_index, [{"id": i} for i in ids], "id")
    backend.calls.clear()


class TestReadiness:
    def test_flags(self, fake_backend, config, embedding_provider):
        assert _service(fake_backend, config).is_search_index_enabled() is True
        assert _service(fake_backend, config).is_vector_search_ready() is False
        assert _service(fake_backend, config, embedding_provider).is_vector_search_ready() is True

        disabled = config.model_copy(update={"search_enabled": False})
        assert _service(fake_backend, disabled, embedding_provider).is_vector_search_ready() is False

    def test_build_filter(self, fake_backend, config):
        service = _service(fake_backend, config)
        assert service.build_filter(StructuredFilter(has_gallery=True)) == "hasGallery = true"

    @pytest.mark.asyncio
    async def test_create_and_close(self, config):
        service = SearchService.create(config)
        assert service.hybrid is None
        assert service.index_manager.client is service.client
        await service.close()


@pytest.mark.asyncio
async def test_search_vector_cards_without_provider(fake_backend, config):
    with pytest.raises(VectorSearchDisabledError):
        await _service(fake_backend, config).search_vector_cards("elf")


class TestAdvancedSearch:
    @pytest.mark.asyncio
    async def test_backend_disabled_falls_back(self, fake_backend, config):
        service = _service(fake_backend, config.model_copy(update={"search_enabled": False}))

        result = await service.advanced_search(AdvancedSearchParams(query="elf"))

        assert result.fallback is True
        assert "requires Meilisearch" in result.fallback_reason
        assert result.ids is None

    @pytest.mark.asyncio
    async def test_no_query_and_no_filters_falls_back(self, fake_backend, config):
        result = await _service(fake_backend, config).advanced_search(AdvancedSearchParams())
        assert result.fallback is True
        assert "needs a query or filters" in result.fallback_reason
        assert fake_backend.calls == []

    @pytest.mark.asyncio
    async def test_lexical_only_with_filters(self, fake_backend, config):
        fake_backend.search_handlers["cards"] = lambda payload: {
            "hits": [{"id": 5}, {"id": 6}],
            "estimatedTotalHits": 2,
        }
        params = AdvancedSearchParams(include="elf", has_gallery=True, sort="tokens_desc")

        result = await _service(fake_backend, config).advanced_search(params)

        assert result.mode == "lexical"
        assert result.ids == ["5", "6"]
        assert result.total == 2
        assert result.applied_filter == 'hasGallery = true AND tags = "elf"'
        _, payload = fake_backend.calls_to("search")[0]
        assert payload["sort"] == ["tokenCount:desc", "id:desc"]

    @pytest.mark.asyncio
    async def test_vector_ids_lead_and_lexical_fills(
        self, fake_backend, config, embedding_provider
    ):
        await _seed_card_vectors(fake_backend, config, ["5", "6"])
        fake_backend.search_handlers["cards"] = lambda payload: {
            "hits": [{"id": 6}, {"id": 7}, {"id": 8}],
            "estimatedTotalHits": 40,
        }
        service = _service(fake_backend, config, embedding_provider)

        result = await service.advanced_search(
            AdvancedSearchParams(advanced_text="elf", limit=3, sort="tokens_desc")
        )

        assert result.mode == "vector"
        assert result.ids == ["5", "6", "7"]
        assert result.total == 40
        assert result.vector.ids == ["5", "6"]
        lexical_payload = dict(fake_backend.calls_to("search"))["cards"]
        assert "sort" not in lexical_payload

    @pytest.mark.asyncio
    async def test_vector_failure_degrades_to_lexical(
        self, fake_backend, config, embedding_provider
    ):
        """An unprovisioned vector index does not fail the request."""
        fake_backend.search_handlers["cards"] = lambda payload: {"hits": [{"id": 9}]}
        service = _service(fake_backend, config, embedding_provider)

        result = await service.advanced_search(AdvancedSearchParams(query="elf"))

        assert result.mode == "lexical"
        assert result.ids == ["9"]
        assert result.fallback is False

    @pytest.mark.asyncio
    async def test_lexical_failure_reports_reason(self, fake_backend, config):
        fake_backend.fail_on["search"] = SearchBackendError("Search backend error 503: down")
        service = _service(fake_backend, config)

        result = await service.advanced_search(AdvancedSearchParams(query="elf"))

        assert result.fallback is True
        assert result.fallback_reason == "Search backend error 503: down"


class TestMaintenancePassthroughs:
    @pytest.mark.asyncio
    async def test_index_and_delete_documents(self, fake_backend, config):
        service = _service(fake_backend, config)

        await service.index_documents([{"id": "1"}])
        await service.delete_documents_by_ids([1])
        await service.index_documents([])

        assert fake_backend.calls_to("add_documents") == [("cards", [{"id": "1"}], None)]
        assert fake_backend.calls_to("delete_documents") == [("cards", ["1"])]

    @pytest.mark.asyncio
    async def test_refresh_and_drain(self, fake_backend, config, session_maker, add_cards, make_card):
        await add_cards(make_card(1))
        service = SearchService(
            config, fake_backend, IndexManager(fake_backend, config, session_maker)
        )

        assert await service.drain_search_index_queue("test") == 1
        assert (await service.process_index_queue()).processed == 0

        await service.run_search_index_refresh("test")
        task = service.trigger_search_index_refresh("test")
        await task
        assert len(fake_backend.calls_to("delete_all_documents")) == 2
