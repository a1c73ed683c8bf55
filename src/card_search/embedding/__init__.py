"""Embedding backend providers."""

from card_search.embedding.factory import create_embedding_provider
from card_search.embedding.fanout_provider import FanOutEmbeddingProvider
from card_search.embedding.ollama_provider import OllamaEmbeddingProvider
from card_search.embedding.provider import EmbeddingProvider

__all__ = [
    "EmbeddingProvider",
    "FanOutEmbeddingProvider",
    "OllamaEmbeddingProvider",
    "create_embedding_provider",
]
