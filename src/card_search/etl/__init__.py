"""Embedding ETL for the card-vector and chunk indices."""

from card_search.etl.pipeline import ChunkEntry, EmbeddingPipeline, EtlStats, plan_chunks
from card_search.etl.sources import CardText, StaticFileSources, gather_card_text
from card_search.etl.text import approx_token_count, normalize_text, sha256_hex, split_into_chunks

__all__ = [
    "CardText",
    "ChunkEntry",
    "EmbeddingPipeline",
    "EtlStats",
    "StaticFileSources",
    "approx_token_count",
    "gather_card_text",
    "normalize_text",
    "plan_chunks",
    "sha256_hex",
    "split_into_chunks",
]
