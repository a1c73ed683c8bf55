"""Bookkeeping tables for search indexing: change queue, embedding meta, chunk map."""

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from card_search.models.base import Base


class SearchIndexQueue(Base):
    """Pending upsert/delete job for the lexical card index."""

    __tablename__ = "search_index_queue"
    __table_args__ = (
        CheckConstraint("action IN ('upsert','delete')", name="ck_search_index_queue_action"),
        Index("idx_search_index_queue_card", "cardId"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    card_id: Mapped[str] = mapped_column("cardId", Text, nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    queued_at: Mapped[Optional[datetime]] = mapped_column(
        "queuedAt", DateTime, server_default=func.current_timestamp()
    )


class CardEmbeddingMeta(Base):
    """Content hash of the text last embedded for one card section or chunk.

    ``chunk_index`` is -1 for whole-section entries.
    """

    __tablename__ = "card_embedding_meta"
    __table_args__ = (Index("idx_card_embedding_meta_card", "cardId"),)

    card_id: Mapped[str] = mapped_column("cardId", Text, primary_key=True)
    embedder_name: Mapped[str] = mapped_column(Text, primary_key=True)
    section: Mapped[str] = mapped_column(Text, primary_key=True)
    chunk_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    model_name: Mapped[str] = mapped_column(Text, nullable=False)
    dims: Mapped[int] = mapped_column(Integer, nullable=False)
    text_sha256: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, server_default=func.current_timestamp(), onupdate=func.current_timestamp()
    )


class CardChunkMap(Base):
    """One live chunk document in the chunk index."""

    __tablename__ = "card_chunk_map"
    __table_args__ = (Index("idx_card_chunk_map_card", "cardId"),)

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    card_id: Mapped[str] = mapped_column("cardId", Text, nullable=False)
    section: Mapped[str] = mapped_column(Text, nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    start_token: Mapped[Optional[int]] = mapped_column(Integer)
    end_token: Mapped[Optional[int]] = mapped_column(Integer)
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, server_default=func.current_timestamp(), onupdate=func.current_timestamp()
    )
