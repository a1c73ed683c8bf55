"""Search services: document building, lexical and hybrid search, index maintenance."""

from card_search.services.documents import build_card_document, compute_scores
from card_search.services.lexical_search import LexicalSearchResult, LexicalSearchService
from card_search.services.index_manager import IndexManager, QueueResult
from card_search.services.hybrid_search import HybridSearchResult, HybridSearchService, fuse
from card_search.services.search_service import (
    AdvancedSearchParams,
    AdvancedSearchResult,
    SearchService,
)

__all__ = [
    "AdvancedSearchParams",
    "AdvancedSearchResult",
    "HybridSearchResult",
    "HybridSearchService",
    "IndexManager",
    "LexicalSearchResult",
    "LexicalSearchService",
    "QueueResult",
    "SearchService",
    "build_card_document",
    "compute_scores",
    "fuse",
]
