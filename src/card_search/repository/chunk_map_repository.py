"""Live chunk document ids per card."""

from dataclasses import dataclass
from typing import Sequence

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from card_search import db
from card_search.models import CardChunkMap
from card_search.repository.repository import Repository


@dataclass(frozen=True)
class ChunkMapping:
    id: str
    section: str
    chunk_index: int
    start_token: int
    end_token: int


class ChunkMapRepository(Repository[CardChunkMap]):
    """Repository for card_chunk_map."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        super().__init__(session_maker, CardChunkMap)

    async def find_for_card(self, card_id: str) -> Sequence[CardChunkMap]:
        return await self.find_all(self.select().where(CardChunkMap.card_id == card_id))

    async def replace_for_card(self, card_id: str, mappings: Sequence[ChunkMapping]) -> None:
        """Rewrite every mapping row of a card in one transaction."""
        async with db.scoped_session(self.session_maker) as session:
            await session.execute(delete(CardChunkMap).where(CardChunkMap.card_id == card_id))
            session.add_all(
                [
                    CardChunkMap(
                        id=mapping.id,
                        card_id=card_id,
                        section=mapping.section,
                        chunk_index=mapping.chunk_index,
                        start_token=mapping.start_token,
                        end_token=mapping.end_token,
                    )
                    for mapping in mappings
                ]
            )

    async def delete_ids(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        async with db.scoped_session(self.session_maker) as session:
            await session.execute(delete(CardChunkMap).where(CardChunkMap.id.in_(list(ids))))

    async def clear(self) -> None:
        async with db.scoped_session(self.session_maker) as session:
            await session.execute(delete(CardChunkMap))
