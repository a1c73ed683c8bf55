"""Base repository implementation."""

from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.engine import Result
from sqlalchemy.sql.expression import Executable, Select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from card_search import db
from card_search.models.base import Base

T = TypeVar("T", bound=Base)


class Repository(Generic[T]):
    """Base repository with session handling shared by the concrete repositories."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], Model: Type[T]):
        self.session_maker = session_maker
        self.Model = Model

    def select(self, *entities: Any) -> Select:
        """Create a new SELECT statement, defaulting to the repository model."""
        if not entities:
            entities = (self.Model,)
        return select(*entities)

    async def execute_query(self, query: Executable) -> Result[Any]:
        """Execute a query in a fresh session."""
        async with db.scoped_session(self.session_maker) as session:
            return await session.execute(query)

    async def find_all(self, query: Optional[Select] = None) -> Sequence[T]:
        query = query if query is not None else self.select()
        result = await self.execute_query(query)
        return list(result.scalars().all())

    async def count(self) -> int:
        result = await self.execute_query(select(func.count()).select_from(self.Model))
        return int(result.scalar_one())

    async def add_all(self, models: Sequence[T]) -> None:
        async with db.scoped_session(self.session_maker) as session:
            session.add_all(list(models))
