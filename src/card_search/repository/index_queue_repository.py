"""Durable change queue feeding the incremental index drain."""

from typing import Sequence

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from card_search import db
from card_search.models import SearchIndexQueue
from card_search.repository.repository import Repository


class IndexQueueRepository(Repository[SearchIndexQueue]):
    """Repository for search_index_queue rows."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        super().__init__(session_maker, SearchIndexQueue)

    async def next_batch(self, limit: int) -> Sequence[SearchIndexQueue]:
        """Oldest pending jobs first."""
        query = self.select().order_by(SearchIndexQueue.id.asc()).limit(limit)
        return await self.find_all(query)

    async def enqueue(self, card_id: str | int, action: str = "upsert") -> None:
        if action not in ("upsert", "delete"):
            raise ValueError(f"Unsupported queue action: {action}")
        await self.add_all([SearchIndexQueue(card_id=str(card_id), action=action)])

    async def delete_ids(self, row_ids: Sequence[int]) -> None:
        if not row_ids:
            return
        async with db.scoped_session(self.session_maker) as session:
            await session.execute(
                delete(SearchIndexQueue).where(SearchIndexQueue.id.in_(list(row_ids)))
            )
