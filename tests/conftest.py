"""Shared fixtures: a fresh card store, an in-memory search backend and a stub embedder."""

import asyncio
from typing import Any, AsyncGenerator, Callable, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from card_search import db
from card_search.config import CardSearchConfig
from card_search.db import DatabaseType, engine_session_factory
from card_search.errors import IndexNotFoundError
from card_search.models import Card


class FakeSearchBackend:
    """In-memory stand-in for SearchBackendClient.

    Keeps indexes, settings and documents in dicts and records every call.
    Search responses come from ``search_handlers[uid]`` when set, otherwise
    every stored document is returned as a hit.
    """

    def __init__(self):
        self.indexes: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.search_handlers: dict[str, Callable[[dict], dict]] = {}
        self.multi_search_handler: Optional[Callable[[dict], dict]] = None
        self.fail_on: dict[str, Exception] = {}
        self._task_uid = 0
        self.closed = False

    def _task(self) -> dict:
        self._task_uid += 1
        return {"taskUid": self._task_uid, "status": "enqueued"}

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if method in self.fail_on:
            raise self.fail_on[method]

    def calls_to(self, method: str) -> list[tuple]:
        return [args for name, args in self.calls if name == method]

    def documents(self, uid: str) -> dict[str, dict]:
        return self.indexes.get(uid, {}).get("documents", {})

    def _index(self, uid: str, primary_key: Optional[str] = None) -> dict[str, Any]:
        if uid not in self.indexes:
            self.indexes[uid] = {"primaryKey": primary_key, "settings": {}, "documents": {}}
        return self.indexes[uid]

    async def close(self) -> None:
        self.closed = True

    async def get_index(self, uid: str) -> dict:
        self._record("get_index", uid)
        # yield so concurrent provisioning calls interleave
        await asyncio.sleep(0)
        if uid not in self.indexes:
            raise IndexNotFoundError(f"Index `{uid}` not found.", code="index_not_found")
        return {"uid": uid, "primaryKey": self.indexes[uid]["primaryKey"]}

    async def create_index(self, uid: str, primary_key: Optional[str] = "id") -> dict:
        self._record("create_index", uid, primary_key)
        self._index(uid, primary_key)
        return self._task()

    async def update_index(self, uid: str, primary_key: str) -> dict:
        self._record("update_index", uid, primary_key)
        self._index(uid)["primaryKey"] = primary_key
        return self._task()

    async def delete_index(self, uid: str) -> dict:
        self._record("delete_index", uid)
        if uid not in self.indexes:
            raise IndexNotFoundError(f"Index `{uid}` not found.", code="index_not_found")
        del self.indexes[uid]
        return self._task()

    async def get_settings(self, uid: str) -> dict:
        self._record("get_settings", uid)
        return dict(self._index(uid)["settings"])

    async def update_settings(self, uid: str, settings: dict) -> dict:
        self._record("update_settings", uid, settings)
        self._index(uid)["settings"].update(settings)
        return self._task()

    async def get_stats(self, uid: str) -> dict:
        self._record("get_stats", uid)
        return {"numberOfDocuments": len(self.documents(uid))}

    async def add_documents(
        self, uid: str, documents: list[dict], primary_key: Optional[str] = None
    ) -> dict:
        self._record("add_documents", uid, documents, primary_key)
        index = self._index(uid, primary_key)
        for document in documents:
            index["documents"][str(document["id"])] = document
        return self._task()

    async def delete_documents(self, uid: str, ids: list[str]) -> dict:
        self._record("delete_documents", uid, ids)
        for document_id in ids:
            self._index(uid)["documents"].pop(str(document_id), None)
        return self._task()

    async def delete_all_documents(self, uid: str) -> dict:
        self._record("delete_all_documents", uid)
        self._index(uid)["documents"].clear()
        return self._task()

    async def search(self, uid: str, payload: dict) -> dict:
        self._record("search", uid, payload)
        handler = self.search_handlers.get(uid)
        if handler is not None:
            return handler(payload)
        hits = list(self.documents(uid).values())
        return {"hits": hits, "estimatedTotalHits": len(hits)}

    async def multi_search(self, payload: dict) -> dict:
        self._record("multi_search", payload)
        if self.multi_search_handler is not None:
            return self.multi_search_handler(payload)
        return {"hits": [], "estimatedTotalHits": 0}

    async def wait_for_task(self, task: Any, timeout: Optional[float] = None) -> Optional[dict]:
        self._record("wait_for_task", task)
        return {"status": "succeeded"}


class StubEmbeddingProvider:
    """Deterministic embeddings: ``[len(text), 1, 2, 3]`` truncated or padded to ``dimensions``."""

    def __init__(self, dimensions: int = 4, model_name: str = "stub-embed"):
        self.dimensions = dimensions
        self.model_name = model_name
        self.query_calls: list[str] = []
        self.document_calls: list[list[str]] = []
        self.closed = False

    def _vector(self, text: str) -> list[float]:
        base = [float(len(text)), 1.0, 2.0, 3.0]
        return (base + [0.0] * self.dimensions)[: self.dimensions]

    async def embed_query(self, text: str) -> list[float]:
        self.query_calls.append(text)
        return self._vector(text)

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.document_calls.append(list(texts))
        return [self._vector(text) for text in texts]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def config(tmp_path) -> CardSearchConfig:
    """Config with the lexical and vector paths switched on."""
    return CardSearchConfig(
        env="test",
        search_enabled=True,
        search_host="http://search.test",
        search_api_key="test-key",
        vector_enabled=True,
        embed_dimensions=4,
        embedder_name="stub-4",
        database_path=tmp_path / "cards.db",
        static_dir=tmp_path / "static",
    )


@pytest.fixture
def fake_backend() -> FakeSearchBackend:
    return FakeSearchBackend()


@pytest.fixture
def embedding_provider() -> StubEmbeddingProvider:
    return StubEmbeddingProvider()


@pytest_asyncio.fixture
async def session_maker(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh SQLite store with tables and change-queue triggers."""
    async with engine_session_factory(tmp_path / "store.db", DatabaseType.FILESYSTEM) as (
        engine,
        maker,
    ):
        await db.create_schema(engine)
        yield maker


@pytest.fixture
def make_card() -> Callable[..., Card]:
    def _make(card_id: int, **values: Any) -> Card:
        defaults: dict[str, Any] = {
            "name": f"Card {card_id}",
            "author": "someone",
            "description": f"Description of card {card_id}",
            "topics": "fantasy,elf",
            "token_count": 800,
            "language": "en",
            "created_at": "2026-01-01 00:00:00",
            "last_modified": "2026-01-02 00:00:00",
        }
        defaults.update(values)
        return Card(id=card_id, **defaults)

    return _make


@pytest_asyncio.fixture
async def add_cards(session_maker):
    """Insert cards and return them."""

    async def _add(*cards: Card) -> list[Card]:
        async with db.scoped_session(session_maker) as session:
            session.add_all(list(cards))
        return list(cards)

    return _add
