"""Provisioning and maintenance of the lexical and vector search indices."""

import asyncio
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from card_search.config import CardSearchConfig
from card_search.errors import (
    IndexNotFoundError,
    SearchBackendError,
    SearchConfigurationError,
    SearchIndexDisabledError,
    TaskTimeoutError,
)
from card_search.index_schema import (
    CARD_FILTERABLE_FIELDS,
    CHUNK_DISTINCT_ATTRIBUTE,
    CHUNK_FILTERABLE_FIELDS,
    default_card_index_settings,
)
from card_search.repository import CardRepository, ChunkMapRepository, IndexQueueRepository
from card_search.search_backend import SearchBackendClient
from card_search.services.documents import build_card_document
from card_search.utils import batched


@dataclass(frozen=True)
class VectorIndexDefinition:
    uid: str
    primary_key: str
    filterables: list[str]
    distinct: Optional[str] = None


@dataclass
class QueueResult:
    processed: int = 0
    has_more: bool = False


class IndexManager:
    """Owns index readiness state and the single-flight maintenance jobs.

    One instance per configuration: readiness flags, the provisioning lock and
    the drain/refresh flags all live here rather than at module level.
    """

    def __init__(
        self,
        client: SearchBackendClient,
        config: CardSearchConfig,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self.client = client
        self.config = config
        self.session_maker = session_maker
        self.embed_dimensions = config.embed_dimensions

        self.vector_index_ready = False
        self.chunk_index_has_docs = True
        self._setup_lock = asyncio.Lock()

        self._drain_in_flight = False
        self._refresh_in_flight = False
        self._refresh_queued = False
        self._background_tasks: set[asyncio.Task] = set()

    @property
    def index_uid(self) -> str:
        return self.config.search_index or "cards"

    def _require_store(self) -> async_sessionmaker[AsyncSession]:
        if self.session_maker is None:
            raise SearchConfigurationError("Index maintenance requires a card database")
        return self.session_maker

    # --- vector index provisioning -------------------------------------------

    async def ensure_vector_index(self, uid: str, primary_key: str = "id") -> None:
        """Make sure an index exists and has a primary key."""
        uid = (uid or "").strip()
        if not uid:
            raise SearchConfigurationError("Vector index UID is not configured")
        try:
            info = await self.client.get_index(uid)
        except IndexNotFoundError:
            logger.info(f"Creating search index {uid!r} (primaryKey={primary_key})")
            task = await self.client.create_index(uid, primary_key)
            await self._wait(task)
            return

        if not (info or {}).get("primaryKey") and primary_key:
            logger.info(f"Setting primary key {primary_key!r} on index {uid!r}")
            task = await self.client.update_index(uid, primary_key)
            await self._wait(task)

    def resolve_embed_dimensions(self, observed_length: Optional[int] = None) -> Optional[int]:
        """Return the dimension count to register; the observed vector length wins."""
        configured = self.embed_dimensions
        if configured and configured > 0:
            if observed_length and configured != observed_length:
                logger.warning(
                    f"embed_dimensions ({configured}) does not match embed length "
                    f"({observed_length}). Using observed length."
                )
                self.embed_dimensions = observed_length
                return observed_length
            return configured
        if observed_length and observed_length > 0:
            self.embed_dimensions = observed_length
            return observed_length
        return None

    def vector_index_definitions(self) -> list[VectorIndexDefinition]:
        definitions = [
            VectorIndexDefinition(
                uid=self.config.vector_cards_index.strip(),
                primary_key="id",
                filterables=sorted(CARD_FILTERABLE_FIELDS),
            ),
            VectorIndexDefinition(
                uid=self.config.vector_chunks_index.strip(),
                primary_key="id",
                filterables=list(CHUNK_FILTERABLE_FIELDS),
                distinct=CHUNK_DISTINCT_ATTRIBUTE,
            ),
        ]
        return [definition for definition in definitions if definition.uid]

    async def ensure_vector_indexes_ready(self, observed_length: Optional[int] = None) -> None:
        """Provision the card-vector and chunk indices once.

        Concurrent callers wait on the same setup instead of racing index
        creation.

        Raises:
            SearchConfigurationError: no embedder configured, unknown
                dimensions, a registered embedder with a different dimension
                count, or an empty card-vector index
        """
        if self.vector_index_ready:
            return
        if not self.config.embedder_name:
            raise SearchConfigurationError("Vector search embedder_name is not configured")
        dimensions = self.resolve_embed_dimensions(observed_length)
        if not dimensions:
            raise SearchConfigurationError(
                "Unable to determine embedding dimensions; set embed_dimensions"
            )

        async with self._setup_lock:
            if self.vector_index_ready:
                return

            definitions = self.vector_index_definitions()
            if not definitions:
                raise SearchConfigurationError("Vector indexes are not configured")

            doc_counts: dict[str, Optional[int]] = {}
            for definition in definitions:
                await self.ensure_vector_index(definition.uid, definition.primary_key)
                await self._provision_settings(definition, dimensions)
                doc_counts[definition.uid] = await self._document_count(definition.uid)

            cards_docs = doc_counts.get(self.config.vector_cards_index.strip())
            if not cards_docs or cards_docs <= 0:
                self.vector_index_ready = False
                raise SearchConfigurationError(
                    "Vector cards index is empty. Run `card-search etl` to populate "
                    "embeddings or disable vector search."
                )

            chunk_docs = doc_counts.get(self.config.vector_chunks_index.strip())
            self.chunk_index_has_docs = bool(chunk_docs and chunk_docs > 0)
            if not self.chunk_index_has_docs:
                logger.warning(
                    "Vector chunk index appears empty; chunk highlights are disabled "
                    "until you run `card-search etl`."
                )
            self.vector_index_ready = True

    async def _provision_settings(self, definition: VectorIndexDefinition, dimensions: int) -> None:
        settings = await self.client.get_settings(definition.uid)
        pending: dict[str, Any] = {}

        embedders = settings.get("embedders") or {}
        embedder_name = self.config.embedder_name
        current = embedders.get(embedder_name)
        if current:
            current_dimensions = current.get("dimensions")
            if isinstance(current_dimensions, int) and current_dimensions != dimensions:
                raise SearchConfigurationError(
                    f"Embedder {embedder_name!r} on index {definition.uid!r} expects dimension "
                    f"{current_dimensions}, but the current model produced {dimensions}. "
                    f"Recreate the index or update embed_dimensions."
                )
        else:
            pending["embedders"] = {
                **embedders,
                embedder_name: {"source": "userProvided", "dimensions": dimensions},
            }

        current_filterables = list(settings.get("filterableAttributes") or [])
        missing = [attr for attr in definition.filterables if attr not in current_filterables]
        if missing:
            pending["filterableAttributes"] = current_filterables + missing

        if definition.distinct and settings.get("distinctAttribute") != definition.distinct:
            pending["distinctAttribute"] = definition.distinct

        if pending:
            task = await self.client.update_settings(definition.uid, pending)
            await self._wait(task)
            logger.info(f"Updated settings for index {definition.uid!r} ({', '.join(pending)})")

    async def _document_count(self, uid: str) -> Optional[int]:
        try:
            stats = await self.client.get_stats(uid)
        except SearchBackendError as e:
            logger.warning(f"Failed to read stats for index {uid!r}: {e}")
            return None
        count = stats.get("numberOfDocuments")
        return count if isinstance(count, int) else None

    async def flush_vector_indexes(self, keep_chunk_map: bool = False) -> None:
        """Delete both vector indices and, unless asked not to, the chunk map."""
        for uid in (self.config.vector_cards_index, self.config.vector_chunks_index):
            uid = (uid or "").strip()
            if not uid:
                continue
            try:
                task = await self.client.delete_index(uid)
            except IndexNotFoundError:
                logger.warning(f"Index {uid!r} does not exist, skipping")
                continue
            await self._wait(task)
            logger.info(f"Deleted index {uid!r}")

        self.vector_index_ready = False
        if not keep_chunk_map:
            await ChunkMapRepository(self._require_store()).clear()
            logger.info("Cleared card_chunk_map")

    # --- lexical index -------------------------------------------------------

    async def _wait(self, task: Any) -> None:
        """Wait for a write task; a timeout is logged, not raised."""
        try:
            await self.client.wait_for_task(task)
        except TaskTimeoutError as e:
            logger.warning(f"Failed waiting for search backend task: {e}")

    async def apply_default_settings(self) -> None:
        task = await self.client.update_settings(self.index_uid, default_card_index_settings())
        await self._wait(task)

    async def index_documents(self, documents: Sequence[dict]) -> None:
        if not self.config.search_index_enabled or not documents:
            return
        await self.client.add_documents(self.index_uid, list(documents))

    async def delete_documents_by_ids(self, ids: Sequence[str | int]) -> None:
        if not self.config.search_index_enabled or not ids:
            return
        await self.client.delete_documents(self.index_uid, [str(i) for i in ids])

    async def rebuild_from_rows(self, rows: Sequence[dict]) -> int:
        """Replace the whole lexical index with documents built from rows.

        Returns:
            Number of documents indexed
        """
        if not self.config.search_index_enabled:
            raise SearchIndexDisabledError("Meilisearch is not enabled")

        documents = [doc for doc in (build_card_document(row) for row in rows) if doc]

        logger.info("Applying default settings to index")
        await self.apply_default_settings()

        logger.info("Clearing existing documents")
        await self._wait(await self.client.delete_all_documents(self.index_uid))

        batches = list(batched(documents, self.config.index_batch_size))
        logger.info(f"Indexing {len(documents)} documents in {len(batches)} batches")
        for number, batch in enumerate(batches, start=1):
            task = await self.client.add_documents(self.index_uid, batch, primary_key="id")
            await self._wait(task)
            logger.info(f"Indexed batch {number}/{len(batches)} ({len(batch)} documents)")

        return len(documents)

    async def rebuild_from_store(self) -> int:
        cards = await CardRepository(self._require_store()).find_all()
        return await self.rebuild_from_rows([card.as_row() for card in cards])

    async def process_index_queue(self, batch_size: Optional[int] = None) -> QueueResult:
        """Apply one batch of queued upsert/delete jobs to the lexical index.

        Duplicate jobs for a card collapse to the last one queued. Queue rows are
        removed only after the backend calls succeed.
        """
        if not self.config.search_index_enabled:
            return QueueResult()

        batch_size = batch_size or self.config.queue_batch_size
        session_maker = self._require_store()
        queue = IndexQueueRepository(session_maker)
        rows = await queue.next_batch(batch_size)
        if not rows:
            return QueueResult()

        jobs: dict[str, str] = {}
        for row in rows:
            jobs[str(row.card_id)] = "delete" if row.action == "delete" else "upsert"

        delete_ids = [card_id for card_id, action in jobs.items() if action == "delete"]
        upsert_ids = [card_id for card_id, action in jobs.items() if action == "upsert"]

        if delete_ids:
            await self.delete_documents_by_ids(delete_ids)

        if upsert_ids:
            cards = await CardRepository(session_maker).find_by_ids(upsert_ids)
            documents = [doc for doc in (build_card_document(c.as_row()) for c in cards) if doc]
            if documents:
                await self.index_documents(documents)

        await queue.delete_ids([row.id for row in rows])
        return QueueResult(processed=len(rows), has_more=len(rows) == batch_size)

    async def drain_queue(self, reason: str = "manual") -> int:
        """Drain the change queue for a bounded number of batches.

        A call made while a drain is running returns immediately. Errors are
        logged and leave the unprocessed rows queued.

        Returns:
            Number of queue rows processed by this call
        """
        if not self.config.search_index_enabled or self._drain_in_flight:
            return 0

        self._drain_in_flight = True
        total_processed = 0
        try:
            for _ in range(self.config.drain_max_iterations):
                result = await self.process_index_queue()
                total_processed += result.processed
                if not result.has_more:
                    break
            if total_processed > 0:
                logger.info(
                    f"Search index incremental update processed {total_processed} jobs "
                    f"[reason={reason}]"
                )
        except Exception as e:
            logger.error(f"Failed to process search index queue ({reason}): {e}")
        finally:
            self._drain_in_flight = False
            self._run_queued_refresh()
        return total_processed

    async def run_refresh(self, reason: str = "manual") -> None:
        """Full rebuild from the card store.

        A request that arrives while a rebuild or drain is running is queued and
        runs once after it completes.
        """
        if not self.config.search_index_enabled:
            return
        if self._refresh_in_flight or self._drain_in_flight:
            self._refresh_queued = True
            return

        self._refresh_in_flight = True
        try:
            count = await self.rebuild_from_store()
            logger.info(f"Search index refreshed ({count} docs) [reason={reason}]")
        except Exception as e:
            logger.error(f"Failed to refresh search index ({reason}): {e}")
        finally:
            self._refresh_in_flight = False
            self._run_queued_refresh()

    def trigger_refresh(self, reason: str = "manual") -> Optional[asyncio.Task]:
        """Start a refresh in the background and return its task."""
        if not self.config.search_index_enabled:
            return None
        return self._spawn(self.run_refresh(reason))

    def _run_queued_refresh(self) -> None:
        if self._refresh_queued:
            self._refresh_queued = False
            self._spawn(self.run_refresh("queued"))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def wait_for_background_tasks(self) -> None:
        """Await refreshes started by ``trigger_refresh`` or queued re-runs."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks))
