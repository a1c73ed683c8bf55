"""Utility functions for commands."""

import asyncio
from typing import Any, Coroutine, TypeVar

from rich.console import Console

from card_search import db
from card_search.config import CardSearchConfig

console = Console()

T = TypeVar("T")


def run_with_cleanup(coro: Coroutine[Any, Any, T]) -> T:
    """Run a command coroutine and dispose database engines before the loop closes."""

    async def _run() -> T:
        try:
            return await coro
        finally:
            await db.shutdown_db()

    return asyncio.run(_run())


async def open_store(config: CardSearchConfig):
    _, session_maker = await db.get_or_create_db(config.database_path)
    return session_maker
