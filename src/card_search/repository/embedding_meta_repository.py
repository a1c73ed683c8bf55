"""Content-hash cache rows for embedded card sections and chunks."""

from dataclasses import dataclass
from typing import Iterable, Sequence

from sqlalchemy import and_, delete, func, or_
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from card_search import db
from card_search.models import CardEmbeddingMeta
from card_search.repository.repository import Repository


@dataclass(frozen=True)
class EmbeddingMetaRecord:
    """Values written for one embedded section (chunk_index -1) or chunk."""

    section: str
    chunk_index: int
    text_sha256: str
    dims: int


class EmbeddingMetaRepository(Repository[CardEmbeddingMeta]):
    """Repository for card_embedding_meta, scoped to one embedder."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        embedder_name: str,
        model_name: str,
    ):
        super().__init__(session_maker, CardEmbeddingMeta)
        self.embedder_name = embedder_name
        self.model_name = model_name

    async def find_for_card(self, card_id: str) -> Sequence[CardEmbeddingMeta]:
        query = self.select().where(
            CardEmbeddingMeta.card_id == card_id,
            CardEmbeddingMeta.embedder_name == self.embedder_name,
        )
        return await self.find_all(query)

    async def upsert_many(self, card_id: str, records: Iterable[EmbeddingMetaRecord]) -> None:
        values = [
            {
                "cardId": card_id,
                "embedder_name": self.embedder_name,
                "model_name": self.model_name,
                "dims": record.dims,
                "section": record.section,
                "chunk_index": record.chunk_index,
                "text_sha256": record.text_sha256,
            }
            for record in records
        ]
        if not values:
            return

        # Core insert on the table, so keys are column names
        stmt = sqlite_insert(CardEmbeddingMeta.__table__).values(values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["cardId", "embedder_name", "section", "chunk_index"],
            set_={
                "text_sha256": stmt.excluded.text_sha256,
                "model_name": stmt.excluded.model_name,
                "dims": stmt.excluded.dims,
                "updated_at": func.current_timestamp(),
            },
        )
        async with db.scoped_session(self.session_maker) as session:
            await session.execute(stmt)

    async def delete_keys(self, card_id: str, keys: Iterable[tuple[str, int]]) -> None:
        """Delete rows by (section, chunk_index)."""
        conditions = [
            and_(CardEmbeddingMeta.section == section, CardEmbeddingMeta.chunk_index == index)
            for section, index in keys
        ]
        if not conditions:
            return
        async with db.scoped_session(self.session_maker) as session:
            await session.execute(
                delete(CardEmbeddingMeta).where(
                    CardEmbeddingMeta.card_id == card_id,
                    CardEmbeddingMeta.embedder_name == self.embedder_name,
                    or_(*conditions),
                )
            )
