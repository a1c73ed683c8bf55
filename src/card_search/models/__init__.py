"""Models package for card-search."""

from card_search.models.base import Base
from card_search.models.card import Card
from card_search.models.search import CardChunkMap, CardEmbeddingMeta, SearchIndexQueue

__all__ = ["Base", "Card", "CardChunkMap", "CardEmbeddingMeta", "SearchIndexQueue"]
