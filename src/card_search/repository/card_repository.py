"""Read access to archived card rows."""

from typing import Iterable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from card_search.models import Card
from card_search.repository.repository import Repository


class CardRepository(Repository[Card]):
    """Repository for Card rows."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        super().__init__(session_maker, Card)

    async def find_by_ids(self, ids: Iterable[str | int]) -> Sequence[Card]:
        """Load cards by id; ids that are not integers or not present are skipped."""
        numeric_ids = []
        for value in ids:
            try:
                numeric_ids.append(int(value))
            except (TypeError, ValueError):
                continue
        if not numeric_ids:
            return []
        return await self.find_all(self.select().where(Card.id.in_(numeric_ids)))

    async def page_after(self, last_id: int | None, limit: int) -> Sequence[Card]:
        """Return the next page of cards ordered by ascending id."""
        query = self.select().order_by(Card.id.asc()).limit(limit)
        if last_id is not None:
            query = query.where(Card.id > last_id)
        return await self.find_all(query)
