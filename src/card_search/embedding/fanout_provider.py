"""Embedding provider that spreads batches across several backend instances."""

from __future__ import annotations

import asyncio
import math
from typing import Sequence

from loguru import logger

from card_search.embedding.provider import EmbeddingProvider


class FanOutEmbeddingProvider(EmbeddingProvider):
    """Split each batch into one slice per instance and embed slices concurrently.

    A slice that fails on a secondary instance is retried on the primary. A
    failure on the primary propagates.
    """

    def __init__(self, primary: EmbeddingProvider, secondaries: Sequence[EmbeddingProvider]):
        self.primary = primary
        self.secondaries = list(secondaries)
        self.model_name = primary.model_name
        self.dimensions = primary.dimensions

    @property
    def instances(self) -> list[EmbeddingProvider]:
        return [self.primary, *self.secondaries]

    async def embed_query(self, text: str) -> list[float]:
        return await self.primary.embed_query(text)

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        instances = self.instances
        if len(instances) == 1:
            return await self.primary.embed_documents(texts)

        slice_size = math.ceil(len(texts) / len(instances))
        slices = [texts[start : start + slice_size] for start in range(0, len(texts), slice_size)]
        results = await asyncio.gather(
            *(
                self._embed_slice(instances[idx % len(instances)], batch)
                for idx, batch in enumerate(slices)
            )
        )
        return [vector for result in results for vector in result]

    async def _embed_slice(
        self, instance: EmbeddingProvider, texts: list[str]
    ) -> list[list[float]]:
        if instance is self.primary:
            return await self.primary.embed_documents(texts)
        try:
            return await instance.embed_documents(texts)
        except Exception as e:
            logger.warning(
                f"Secondary embedding instance {instance!r} failed, "
                f"falling back to primary for {len(texts)} texts: {e}"
            )
            return await self.primary.embed_documents(texts)

    async def close(self) -> None:
        for instance in self.instances:
            close = getattr(instance, "close", None)
            if close is not None:
                await close()
