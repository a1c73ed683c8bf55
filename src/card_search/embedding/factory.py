"""Factory for creating configured embedding providers."""

from loguru import logger

from card_search.config import CardSearchConfig
from card_search.embedding.fanout_provider import FanOutEmbeddingProvider
from card_search.embedding.ollama_provider import OllamaEmbeddingProvider
from card_search.embedding.provider import EmbeddingProvider


def _ollama_provider(config: CardSearchConfig, base_url: str) -> OllamaEmbeddingProvider:
    return OllamaEmbeddingProvider(
        base_url,
        config.embed_model,
        dimensions=config.embed_dimensions,
        query_timeout=config.embed_query_timeout,
        batch_timeout=config.embed_batch_timeout,
        health_timeout=config.embed_health_timeout,
    )


async def create_embedding_provider(
    config: CardSearchConfig, *, probe_secondary: bool = True
) -> EmbeddingProvider:
    """Create the embedding provider described by config.

    When a secondary instance is configured it is health-checked once and only
    joins the fan-out if it answers.
    """
    primary = _ollama_provider(config, config.ollama_url)
    if not config.ollama_secondary_url or not probe_secondary:
        logger.info(f"Using single embedding instance: {config.ollama_url}")
        return primary

    secondary = _ollama_provider(config, config.ollama_secondary_url)
    logger.info(f"Checking secondary embedding instance at {config.ollama_secondary_url}")
    if not await secondary.is_available():
        await secondary.close()
        logger.info(
            f"Secondary instance configured but not available, "
            f"using single instance: {config.ollama_url}"
        )
        return primary

    logger.info(
        f"Using 2 embedding instances for parallel embedding: "
        f"{config.ollama_url}, {config.ollama_secondary_url}"
    )
    return FanOutEmbeddingProvider(primary, [secondary])
