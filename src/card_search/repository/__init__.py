"""Async repositories over the relational card store."""

from card_search.repository.card_repository import CardRepository
from card_search.repository.chunk_map_repository import ChunkMapping, ChunkMapRepository
from card_search.repository.embedding_meta_repository import (
    EmbeddingMetaRecord,
    EmbeddingMetaRepository,
)
from card_search.repository.index_queue_repository import IndexQueueRepository

__all__ = [
    "CardRepository",
    "ChunkMapRepository",
    "ChunkMapping",
    "EmbeddingMetaRecord",
    "EmbeddingMetaRepository",
    "IndexQueueRepository",
]
