"""Search entry points used by controllers and the command line."""

import asyncio
from dataclasses import dataclass
from typing import Literal, Optional

from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from card_search.config import CardSearchConfig
from card_search.embedding import EmbeddingProvider
from card_search.errors import VectorSearchDisabledError
from card_search.filters import StructuredFilter, build_search_filter
from card_search.search_backend import SearchBackendClient
from card_search.services.hybrid_search import HybridSearchResult, HybridSearchService
from card_search.services.index_manager import IndexManager, QueueResult
from card_search.services.lexical_search import LexicalSearchResult, LexicalSearchService


class AdvancedSearchParams(BaseModel):
    """Query text plus the structured filter fields of the advanced search form."""

    query: str = ""
    advanced_text: str = ""
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=48, ge=1)
    sort: Optional[str] = "new"

    advanced_filter: str = ""
    include: str = ""
    exclude: str = ""
    tag_match_mode: Literal["and", "or"] = "and"
    min_tokens: Optional[int] = None
    language: Optional[str] = None
    favorite_filter: Optional[str] = None
    source: Optional[str] = None
    has_lorebook: bool = False
    has_alternate_greetings: bool = False
    has_embedded_lorebook: bool = False
    has_linked_lorebook: bool = False
    has_example_dialogues: bool = False
    has_system_prompt: bool = False
    has_gallery: bool = False
    has_embedded_images: bool = False
    has_expressions: bool = False

    def structured_filter(self) -> StructuredFilter:
        return StructuredFilter.from_dict(self.model_dump())

    @property
    def text(self) -> str:
        return self.advanced_text or self.query or ""


@dataclass
class AdvancedSearchResult:
    mode: Optional[Literal["vector", "lexical"]] = None
    ids: Optional[list[str]] = None
    total: int = 0
    applied_filter: str = ""
    vector: Optional[HybridSearchResult] = None
    lexical: Optional[LexicalSearchResult] = None
    fallback: bool = False
    fallback_reason: Optional[str] = None


class SearchService:
    """Facade over lexical search, hybrid search and index maintenance."""

    def __init__(
        self,
        config: CardSearchConfig,
        client: SearchBackendClient,
        index_manager: IndexManager,
        embedding_provider: Optional[EmbeddingProvider] = None,
    ):
        self.config = config
        self.client = client
        self.index_manager = index_manager
        self.embedding_provider = embedding_provider
        self.lexical = LexicalSearchService(client, config)
        self.hybrid = (
            HybridSearchService(client, embedding_provider, index_manager, config)
            if embedding_provider is not None
            else None
        )

    @classmethod
    def create(
        cls,
        config: CardSearchConfig,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
    ) -> "SearchService":
        client = SearchBackendClient.from_config(config)
        return cls(config, client, IndexManager(client, config, session_maker), embedding_provider)

    async def close(self) -> None:
        await self.client.close()

    def is_search_index_enabled(self) -> bool:
        return self.config.search_index_enabled

    def is_vector_search_ready(self) -> bool:
        return self.config.vector_search_enabled and self.hybrid is not None

    def build_filter(self, params: StructuredFilter) -> str:
        return build_search_filter(params)

    async def search_cards(
        self,
        text: str = "",
        filter: Optional[str] = "",
        page: int = 1,
        limit: int = 48,
        sort: Optional[str] = "new",
    ) -> LexicalSearchResult:
        return await self.lexical.search(text, filter, page, limit, sort)

    async def search_vector_cards(
        self,
        text: str = "",
        filter: Optional[str] = "",
        page: int = 1,
        limit: int = 48,
        sort: Optional[str] = None,
        semantic_ratio: Optional[float] = None,
    ) -> HybridSearchResult:
        if self.hybrid is None:
            raise VectorSearchDisabledError("Vector search has no embedding provider")
        return await self.hybrid.search(
            text, filter, page, limit, sort=sort, semantic_ratio=semantic_ratio
        )

    async def advanced_search(self, params: AdvancedSearchParams) -> AdvancedSearchResult:
        """Search with structured filters, preferring hybrid retrieval.

        Hybrid and lexical run side by side; hybrid ids lead and lexical ids
        fill the rest of the page. A hybrid failure degrades to lexical only.
        """
        if not self.is_search_index_enabled():
            return AdvancedSearchResult(
                fallback=True,
                fallback_reason="Advanced search requires Meilisearch. Falling back to basic search.",
            )

        filter_expression = build_search_filter(params.structured_filter())
        query_text = params.text
        has_query_text = bool(query_text.strip())
        if not has_query_text and not filter_expression.strip():
            return AdvancedSearchResult(
                fallback=True,
                fallback_reason="Advanced search needs a query or filters. Showing default results.",
            )

        if has_query_text and self.is_vector_search_ready():
            try:
                return await self._vector_search(self.hybrid, params, query_text, filter_expression)
            except Exception as e:
                logger.error(f"Vector search failure, falling back to lexical: {e}")

        try:
            lexical = await self.lexical.search(
                params.advanced_text, filter_expression, params.page, params.limit, params.sort
            )
        except Exception as e:
            logger.error(f"Advanced search failure: {e}")
            return AdvancedSearchResult(
                fallback=True,
                fallback_reason=str(e) or "Advanced search failed. Falling back to basic search.",
            )

        return AdvancedSearchResult(
            mode="lexical",
            ids=lexical.ids,
            total=lexical.total or len(lexical.ids),
            applied_filter=lexical.applied_filter,
            lexical=lexical,
        )

    async def _vector_search(
        self,
        hybrid: HybridSearchService,
        params: AdvancedSearchParams,
        query_text: str,
        filter_expression: str,
    ) -> AdvancedSearchResult:
        vector, lexical = await asyncio.gather(
            hybrid.search(query_text, filter_expression, params.page, params.limit),
            self.lexical.search(
                params.advanced_text, filter_expression, params.page, params.limit, None
            ),
        )

        ids: list[str] = []
        for card_id in [*vector.ids, *lexical.ids]:
            if len(ids) >= params.limit:
                break
            if card_id not in ids:
                ids.append(card_id)

        return AdvancedSearchResult(
            mode="vector",
            ids=ids,
            total=lexical.total or vector.total or len(ids),
            applied_filter=vector.applied_filter or lexical.applied_filter,
            vector=vector,
            lexical=lexical,
        )

    # --- maintenance ---------------------------------------------------------

    async def process_index_queue(self, batch_size: Optional[int] = None) -> QueueResult:
        return await self.index_manager.process_index_queue(batch_size)

    async def drain_search_index_queue(self, reason: str = "manual") -> int:
        return await self.index_manager.drain_queue(reason)

    async def run_search_index_refresh(self, reason: str = "manual") -> None:
        await self.index_manager.run_refresh(reason)

    def trigger_search_index_refresh(self, reason: str = "manual") -> Optional[asyncio.Task]:
        return self.index_manager.trigger_refresh(reason)

    async def index_documents(self, documents: list[dict]) -> None:
        await self.index_manager.index_documents(documents)

    async def delete_documents_by_ids(self, ids: list[str]) -> None:
        await self.index_manager.delete_documents_by_ids(ids)
