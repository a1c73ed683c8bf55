"""Embedding provider protocol for pluggable embedding backends."""

from typing import Protocol


class EmbeddingProvider(Protocol):
    """Contract for embedding providers."""

    model_name: str
    dimensions: int

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query string."""
        ...

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed a batch of texts, preserving input order."""
        ...

    async def close(self) -> None:
        """Release any HTTP resources."""
        ...
