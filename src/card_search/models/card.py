"""Relational card rows consumed by the search index and the ETL."""

from typing import Any, Optional

from sqlalchemy import Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from card_search.models.base import Base


class Card(Base):
    """An archived character card.

    Column names follow the archive's existing schema (camelCase); attributes are snake_case.
    """

    __tablename__ = "cards"
    __table_args__ = (
        Index("idx_author", "author"),
        Index("idx_language", "language"),
        Index("idx_favorited", "favorited"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    author: Mapped[Optional[str]] = mapped_column(Text)
    name: Mapped[Optional[str]] = mapped_column(Text)
    tagline: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    topics: Mapped[Optional[str]] = mapped_column(Text)
    token_count: Mapped[Optional[int]] = mapped_column("tokenCount", Integer)
    token_description_count: Mapped[Optional[int]] = mapped_column("tokenDescriptionCount", Integer)
    token_personality_count: Mapped[Optional[int]] = mapped_column("tokenPersonalityCount", Integer)
    token_scenario_count: Mapped[Optional[int]] = mapped_column("tokenScenarioCount", Integer)
    token_mes_example_count: Mapped[Optional[int]] = mapped_column("tokenMesExampleCount", Integer)
    token_first_message_count: Mapped[Optional[int]] = mapped_column(
        "tokenFirstMessageCount", Integer
    )
    token_system_prompt_count: Mapped[Optional[int]] = mapped_column(
        "tokenSystemPromptCount", Integer
    )
    token_post_history_count: Mapped[Optional[int]] = mapped_column(
        "tokenPostHistoryCount", Integer
    )
    last_modified: Mapped[Optional[str]] = mapped_column("lastModified", Text)
    created_at: Mapped[Optional[str]] = mapped_column("createdAt", Text)
    n_chats: Mapped[Optional[int]] = mapped_column("nChats", Integer)
    n_messages: Mapped[Optional[int]] = mapped_column("nMessages", Integer)
    n_favorites: Mapped[Optional[int]] = mapped_column("n_favorites", Integer)
    star_count: Mapped[Optional[int]] = mapped_column("starCount", Integer)
    rating: Mapped[Optional[float]] = mapped_column(Float)
    rating_count: Mapped[Optional[int]] = mapped_column("ratingCount", Integer)
    full_path: Mapped[Optional[str]] = mapped_column("fullPath", Text)
    favorited: Mapped[int] = mapped_column(Integer, default=0)
    language: Mapped[Optional[str]] = mapped_column(String, default="unknown")
    visibility: Mapped[Optional[str]] = mapped_column(String, default="unknown")
    has_alternate_greetings: Mapped[int] = mapped_column("hasAlternateGreetings", Integer, default=0)
    has_lorebook: Mapped[int] = mapped_column("hasLorebook", Integer, default=0)
    has_embedded_lorebook: Mapped[int] = mapped_column("hasEmbeddedLorebook", Integer, default=0)
    has_linked_lorebook: Mapped[int] = mapped_column("hasLinkedLorebook", Integer, default=0)
    has_example_dialogues: Mapped[int] = mapped_column("hasExampleDialogues", Integer, default=0)
    has_system_prompt: Mapped[int] = mapped_column("hasSystemPrompt", Integer, default=0)
    has_gallery: Mapped[int] = mapped_column("hasGallery", Integer, default=0)
    has_embedded_images: Mapped[int] = mapped_column("hasEmbeddedImages", Integer, default=0)
    has_expressions: Mapped[int] = mapped_column("hasExpressions", Integer, default=0)
    is_fuzzed: Mapped[int] = mapped_column("isFuzzed", Integer, default=0)
    source: Mapped[Optional[str]] = mapped_column(String, default="chub")
    source_id: Mapped[Optional[str]] = mapped_column("sourceId", Text)
    source_path: Mapped[Optional[str]] = mapped_column("sourcePath", Text)
    source_url: Mapped[Optional[str]] = mapped_column("sourceUrl", Text)

    def as_row(self) -> dict[str, Any]:
        """Return the row keyed by column name, the shape document builders expect."""
        return {
            column.name: getattr(self, attr.key)
            for attr in self.__mapper__.column_attrs
            for column in attr.columns
        }

    def __repr__(self) -> str:
        return f"Card(id={self.id}, name={self.name!r})"
