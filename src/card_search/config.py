"""Configuration management for card-search."""

import json
import os
from pathlib import Path
from typing import Any, Literal, Optional

from loguru import logger
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DATA_DIR_NAME = ".card-search"
CONFIG_FILE_NAME = "config.json"

Environment = Literal["test", "dev", "user"]


def _default_data_dir() -> Path:
    return Path(os.getenv("CARD_SEARCH_CONFIG_DIR", str(Path.home() / DATA_DIR_NAME)))


class CardSearchConfig(BaseSettings):
    """Settings for the search backend, vector search, index maintenance and the ETL."""

    env: Environment = Field(default="dev", description="Environment name")

    # Search backend
    search_enabled: bool = Field(default=False, description="Enable the document-search backend")
    search_host: str = Field(default="", description="Base URL of the search backend")
    search_api_key: Optional[str] = Field(default=None, description="Search backend API key")
    search_index: str = Field(default="cards", description="Lexical card index uid")
    search_timeout: float = Field(default=10.0, gt=0, description="Per-request timeout (seconds)")
    task_timeout: float = Field(
        default=60.0, gt=0, description="Upper bound when waiting for backend tasks (seconds)"
    )
    task_poll_interval: float = Field(default=0.5, gt=0, description="Task poll interval")

    # Vector search
    vector_enabled: bool = Field(default=False, description="Enable hybrid vector search")
    vector_cards_index: str = Field(default="cards_vsem", description="Card-vector index uid")
    vector_chunks_index: str = Field(default="card_chunks", description="Chunk index uid")
    embed_model: str = Field(default="snowflake-arctic-embed2:latest")
    embedder_name: str = Field(default="arctic2-1024")
    embed_dimensions: int = Field(default=1024, gt=0)
    ollama_url: str = Field(default="http://127.0.0.1:11434")
    ollama_secondary_url: Optional[str] = Field(default=None)
    embed_query_timeout: float = Field(default=30.0, gt=0)
    embed_batch_timeout: float = Field(default=60.0, gt=0)
    embed_health_timeout: float = Field(default=3.0, gt=0)
    semantic_ratio: float = Field(default=0.4, description="Semantic share of hybrid ranking")
    cards_multiplier: float = Field(default=2.0)
    max_card_hits: int = Field(default=400)
    chunk_limit: int = Field(default=80)
    chunk_weight: float = Field(default=0.6)
    rrf_k: int = Field(default=60)

    # Index maintenance
    index_batch_size: int = Field(default=1000, gt=0)
    queue_batch_size: int = Field(default=500, gt=0)
    drain_max_iterations: int = Field(default=5, gt=0)

    # ETL
    chunk_token_threshold: int = Field(default=300, gt=0)
    chunk_char_target: int = Field(default=1200, gt=0)
    chunk_char_overlap: int = Field(default=300, ge=0)
    card_page_size: int = Field(default=100, gt=0)
    log_every: int = Field(default=25, gt=0)

    # Storage
    database_path: Path = Field(default_factory=lambda: _default_data_dir() / "cards.db")
    static_dir: Path = Field(default_factory=lambda: _default_data_dir() / "static")

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="CARD_SEARCH_",
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @field_validator("ollama_url", "search_host")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("ollama_secondary_url")
    @classmethod
    def strip_secondary_url(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().rstrip("/")
        return value or None

    @field_validator("semantic_ratio")
    @classmethod
    def clamp_semantic_ratio(cls, value: float) -> float:
        return min(1.0, max(0.0, value))

    @field_validator("cards_multiplier")
    @classmethod
    def clamp_cards_multiplier(cls, value: float) -> float:
        return max(1.0, value)

    @field_validator("max_card_hits")
    @classmethod
    def clamp_max_card_hits(cls, value: int) -> int:
        return max(50, min(1000, int(value)))

    @field_validator("chunk_limit")
    @classmethod
    def clamp_chunk_limit(cls, value: int) -> int:
        return max(20, min(200, int(value)))

    @field_validator("chunk_weight")
    @classmethod
    def clamp_chunk_weight(cls, value: float) -> float:
        return max(0.0, value)

    @field_validator("rrf_k")
    @classmethod
    def clamp_rrf_k(cls, value: int) -> int:
        return max(1, int(value))

    @property
    def search_index_enabled(self) -> bool:
        """True when the lexical backend is switched on and has a host."""
        return self.search_enabled and bool(self.search_host)

    @property
    def vector_search_enabled(self) -> bool:
        return self.vector_enabled and self.search_index_enabled


class ConfigManager:
    """Loads and persists CardSearchConfig as JSON.

    Values from the environment take precedence over the file.
    """

    def __init__(self, config_dir: Optional[Path] = None) -> None:
        self.config_dir = config_dir or _default_data_dir()
        self.config_file = self.config_dir / CONFIG_FILE_NAME

    @property
    def config(self) -> CardSearchConfig:
        return self.load_config()

    def load_config(self) -> CardSearchConfig:
        file_values: dict[str, Any] = {}
        if self.config_file.exists():
            try:
                file_values = json.loads(self.config_file.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                logger.warning(f"Ignoring unreadable config file {self.config_file}: {e}")
                file_values = {}

        # BaseSettings gives init kwargs priority over env vars, so drop file keys the env sets
        overridden = {
            key
            for key in CardSearchConfig.model_fields
            if f"CARD_SEARCH_{key.upper()}" in os.environ
        }
        init_values = {k: v for k, v in file_values.items() if k not in overridden}
        return CardSearchConfig(**init_values)

    def save_config(self, config: CardSearchConfig) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file.write_text(config.model_dump_json(indent=2), encoding="utf-8")
        logger.info(f"Saved config to {self.config_file}")
