"""Ollama-compatible embedding provider."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import httpx
from loguru import logger

from card_search.embedding.provider import EmbeddingProvider
from card_search.errors import EmbeddingBackendError, EmptyQueryError


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Embedding provider backed by an Ollama ``/api/embed`` endpoint."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:11434",
        model_name: str = "snowflake-arctic-embed2:latest",
        *,
        dimensions: int = 1024,
        batch_size: int = 64,
        query_timeout: float = 30.0,
        batch_timeout: float = 60.0,
        health_timeout: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model_name = model_name
        self.dimensions = dimensions
        self.batch_size = batch_size
        self._query_timeout = query_timeout
        self._batch_timeout = batch_timeout
        self._health_timeout = health_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"OllamaEmbeddingProvider({self.base_url!r}, {self.model_name!r})"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client

        async with self._client_lock:
            if self._client is not None:
                return self._client
            self._client = httpx.AsyncClient(base_url=self.base_url, transport=self._transport)
            return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _embed(self, texts: list[str], timeout: float) -> list[list[float]]:
        client = await self._get_client()
        try:
            response = await client.post(
                "/api/embed",
                json={"model": self.model_name, "input": texts},
                timeout=timeout,
            )
        except httpx.HTTPError as e:
            raise EmbeddingBackendError(f"Ollama embed request to {self.base_url} failed: {e}") from e

        if response.is_error:
            raise EmbeddingBackendError(
                f"Ollama embed failed: {response.status_code} {response.text}"
            )

        try:
            payload: Any = response.json()
        except ValueError as e:
            raise EmbeddingBackendError("Ollama embed response is not valid JSON") from e

        vectors = payload.get("embeddings") if isinstance(payload, dict) else None
        if not isinstance(vectors, list) or len(vectors) != len(texts):
            raise EmbeddingBackendError("Ollama embed response malformed or length mismatch")
        return [[float(value) for value in vector] for vector in vectors]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        all_vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start : start + self.batch_size]
            all_vectors.extend(await self._embed(batch, self._batch_timeout))
        return all_vectors

    async def embed_query(self, text: str) -> list[float]:
        trimmed = text.strip() if isinstance(text, str) else ""
        if not trimmed:
            raise EmptyQueryError("Vector search requires a query string")

        vectors = await self._embed([trimmed], self._query_timeout)
        if not vectors or not vectors[0]:
            raise EmbeddingBackendError("Received empty embedding from Ollama")
        return vectors[0]

    async def is_available(self) -> bool:
        """Liveness probe against ``/api/tags``. Never raises."""
        client = await self._get_client()
        try:
            response = await client.get("/api/tags", timeout=self._health_timeout)
        except httpx.HTTPError as e:
            logger.debug(f"Embedding instance {self.base_url} unreachable: {e}")
            return False
        return response.is_success
