"""Hybrid (lexical + semantic) card search fused with chunk-level evidence."""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger

from card_search.config import CardSearchConfig
from card_search.embedding import EmbeddingProvider
from card_search.errors import VectorSearchDisabledError
from card_search.filters import adapt_filter_for_chunks, normalize_filter_expression
from card_search.index_schema import CHUNK_DISTINCT_ATTRIBUTE, CHUNK_RETRIEVED_ATTRIBUTES
from card_search.search_backend import SearchBackendClient
from card_search.services.index_manager import IndexManager
from card_search.services.lexical_search import extract_hits

MAX_PER_PAGE = 200
MIN_CARD_HITS = 50
MAX_CARD_HITS = 1000
MAX_CHUNK_LIMIT = 200


@dataclass
class ChunkHighlight:
    section: Optional[str]
    text: str
    chunk_index: Optional[int]
    start_token: Optional[int]
    end_token: Optional[int]
    score: Optional[float]


@dataclass
class HybridSearchResult:
    ids: list[str]
    total: int
    applied_filter: str
    chunk_matches: dict[str, ChunkHighlight] = field(default_factory=dict)
    scores: dict[str, float] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)


def fuse(
    card_ids: list[str],
    chunk_ids: list[str],
    k: int = 60,
    chunk_weight: float = 0.6,
) -> dict[str, float]:
    """Reciprocal rank fusion of the card ranking and the chunk ranking.

    Each list contributes ``weight / (k + rank)`` per id with 1-based ranks;
    card weight is 1. Insertion order is first appearance, so sorting the
    result by score is deterministic for ties.
    """
    fused: dict[str, float] = {}
    for weight, ids in ((1.0, card_ids), (chunk_weight, chunk_ids)):
        for rank, card_id in enumerate(ids, start=1):
            if not card_id:
                continue
            fused[card_id] = fused.get(card_id, 0.0) + weight / (k + rank)
    return fused


def ranked_ids(scores: dict[str, float]) -> list[str]:
    return [card_id for card_id, _ in sorted(scores.items(), key=lambda x: x[1], reverse=True)]


def distinct_card_ids(chunk_hits: list[dict]) -> list[str]:
    """Card ids of chunk hits in rank order, keeping each card's best-ranked hit."""
    seen: set[str] = set()
    card_ids: list[str] = []
    for hit in chunk_hits:
        card_id = hit.get("card_id") if isinstance(hit, dict) else None
        if not card_id:
            continue
        key = str(card_id)
        if key not in seen:
            seen.add(key)
            card_ids.append(key)
    return card_ids


def stable_page(fused_ids: list[str], card_ids: list[str], offset: int, per_page: int) -> list[str]:
    """Slice the fused ranking and re-admit the card list's own window.

    Every card in ``card_ids[offset:offset + per_page]`` missing from the page
    is appended. Once the page is full it displaces the lowest fused entry that
    is not itself part of that window.
    """
    window = card_ids[offset : offset + per_page]
    protected = set(window)
    page = fused_ids[offset : offset + per_page]
    present = set(page)
    for card_id in window:
        if card_id in present:
            continue
        if len(page) >= per_page:
            for index in range(len(page) - 1, -1, -1):
                if page[index] not in protected:
                    present.discard(page.pop(index))
                    break
        page.append(card_id)
        present.add(card_id)
    return page


def _int_or_none(hit: dict, *keys: str) -> Optional[int]:
    for key in keys:
        value = hit.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def build_chunk_highlights(chunk_hits: list[dict]) -> dict[str, ChunkHighlight]:
    """First (best ranked) chunk hit per card."""
    highlights: dict[str, ChunkHighlight] = {}
    for hit in chunk_hits:
        if not isinstance(hit, dict):
            continue
        card_id = hit.get("card_id", hit.get("cardId"))
        if not card_id:
            continue
        key = str(card_id)
        if key in highlights:
            continue
        score = hit.get("_rankingScore")
        highlights[key] = ChunkHighlight(
            section=hit.get("section") or None,
            text=hit.get("text") or "",
            chunk_index=_int_or_none(hit, "chunk_index", "chunkIndex"),
            start_token=_int_or_none(hit, "start_token", "startToken"),
            end_token=_int_or_none(hit, "end_token", "endToken"),
            score=float(score) if isinstance(score, (int, float)) else None,
        )
    return highlights


class HybridSearchService:
    """Blend lexical and semantic card ranking with chunk-level recall."""

    def __init__(
        self,
        client: SearchBackendClient,
        embedding_provider: EmbeddingProvider,
        index_manager: IndexManager,
        config: CardSearchConfig,
    ):
        self.client = client
        self.embedding_provider = embedding_provider
        self.index_manager = index_manager
        self.config = config

    def card_fetch_limit(self, offset: int, per_page: int) -> int:
        multiplier = max(1.0, self.config.cards_multiplier)
        target = max(per_page, math.ceil((offset + per_page) * multiplier))
        max_hits = max(MIN_CARD_HITS, min(MAX_CARD_HITS, self.config.max_card_hits))
        return min(max_hits, target)

    def chunk_fetch_limit(self, per_page: int) -> int:
        return max(per_page, min(self.config.chunk_limit, MAX_CHUNK_LIMIT))

    async def search(
        self,
        text: str = "",
        filter: Optional[str] = "",
        page: int = 1,
        limit: int = 48,
        sort: Optional[str] = None,
        semantic_ratio: Optional[float] = None,
    ) -> HybridSearchResult:
        """Run one hybrid search page.

        Results are always in fused relevance order; ``sort`` is accepted for
        parity with lexical search and ignored.

        Raises:
            VectorSearchDisabledError: vector search is switched off
            EmptyQueryError: ``text`` is blank
            EmbeddingBackendError: the query could not be embedded
            SearchConfigurationError: the vector indices cannot be made ready
            SearchBackendError: a backend search failed
        """
        if not self.config.vector_search_enabled:
            raise VectorSearchDisabledError("Vector search is not enabled")

        normalized_filter = normalize_filter_expression(filter)
        per_page = max(1, min(int(limit or 1), MAX_PER_PAGE))
        page_number = max(1, int(page or 1))
        offset = (page_number - 1) * per_page
        if isinstance(semantic_ratio, (int, float)) and math.isfinite(semantic_ratio):
            ratio = min(1.0, max(0.0, float(semantic_ratio)))
        else:
            ratio = self.config.semantic_ratio

        embedding = await self.embedding_provider.embed_query(text)
        await self.index_manager.ensure_vector_indexes_ready(len(embedding))

        embedder = self.config.embedder_name
        cards_payload: dict[str, Any] = {
            "q": text,
            "vector": embedding,
            "limit": self.card_fetch_limit(offset, per_page),
            "offset": 0,
            "showRankingScore": True,
            "hybrid": {"embedder": embedder, "semanticRatio": ratio},
        }
        if normalized_filter:
            cards_payload["filter"] = normalized_filter

        chunk_search_enabled = self.index_manager.chunk_index_has_docs
        searches = [self.client.search(self.config.vector_cards_index, cards_payload)]
        if chunk_search_enabled:
            chunk_payload: dict[str, Any] = {
                "q": text,
                "vector": embedding,
                "limit": self.chunk_fetch_limit(per_page),
                "offset": 0,
                "attributesToRetrieve": list(CHUNK_RETRIEVED_ATTRIBUTES),
                "showRankingScore": True,
                "distinct": CHUNK_DISTINCT_ATTRIBUTE,
                "hybrid": {"embedder": embedder, "semanticRatio": 1},
            }
            chunk_filter = adapt_filter_for_chunks(normalized_filter)
            if chunk_filter:
                chunk_payload["filter"] = chunk_filter
            searches.append(self.client.search(self.config.vector_chunks_index, chunk_payload))

        results = await asyncio.gather(*searches)
        cards_response = results[0]
        chunk_response = results[1] if chunk_search_enabled else {"hits": []}

        card_hits, total = extract_hits(cards_response)
        chunk_hits, _ = extract_hits(chunk_response)
        card_ids = [str(hit["id"]) for hit in card_hits if hit.get("id") is not None]
        chunk_ids = distinct_card_ids(chunk_hits)

        scores = fuse(card_ids, chunk_ids, k=self.config.rrf_k, chunk_weight=self.config.chunk_weight)
        page_ids = stable_page(ranked_ids(scores), card_ids, offset, per_page)

        highlights = build_chunk_highlights(chunk_hits)
        logger.debug(
            f"Hybrid search text={text!r} cards={len(card_ids)} chunks={len(chunk_ids)} "
            f"page={len(page_ids)}"
        )
        return HybridSearchResult(
            ids=page_ids,
            total=total,
            applied_filter=normalized_filter,
            chunk_matches={i: highlights[i] for i in page_ids if i in highlights},
            scores={i: scores[i] for i in page_ids if i in scores},
            meta={
                "semantic_ratio": ratio,
                "cards_fetched": len(card_ids),
                "chunks_fetched": len(chunk_ids),
                "chunk_search_enabled": chunk_search_enabled,
            },
        )
