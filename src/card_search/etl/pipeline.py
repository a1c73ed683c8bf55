"""Embedding ETL: card rows to the card-vector and chunk indices.

Each card's section and chunk texts are hashed and compared with the hashes
recorded in ``card_embedding_meta``; only changed text is embedded. Chunk
document ids live in ``card_chunk_map`` so stale chunks can be deleted.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from card_search.config import CardSearchConfig
from card_search.embedding import EmbeddingProvider
from card_search.etl.sources import (
    ALT_GREETING_SECTION,
    CardText,
    MetadataReader,
    SpecReader,
    StaticFileSources,
    gather_card_text,
)
from card_search.etl.text import approx_token_count, sha256_hex, split_into_chunks
from card_search.repository import (
    CardRepository,
    ChunkMapping,
    ChunkMapRepository,
    EmbeddingMetaRecord,
    EmbeddingMetaRepository,
)
from card_search.search_backend import SearchBackendClient
from card_search.services.documents import build_card_document

CARD_SECTION_INDEX = -1

# Row columns that fall back to the sidecar metadata when the row has no value
METADATA_FALLBACK_COLUMNS = {
    "source": "source",
    "sourceId": "sourceId",
    "sourcePath": "sourcePath",
    "sourceUrl": "sourceUrl",
    "visibility": "visibility",
    "rating": "rating",
    "ratingCount": "ratingCount",
    "starCount": "starCount",
    "nChats": "nChats",
    "nMessages": "nMessages",
    "tokenCount": "nTokens",
    "createdAt": "createdAt",
    "lastModified": "lastModified",
}


@dataclass
class EtlStats:
    """Counters reported at the end of an ETL run.

    Attributes:
        total: Cards in the store when the run started
        processed: Cards visited
        skipped: Cards with no usable text or no changes
        card_updates: Card-vector documents written
        chunk_updates: Chunk documents written
        chunk_deletes: Chunk documents deleted
    """

    total: int = 0
    processed: int = 0
    skipped: int = 0
    card_updates: int = 0
    chunk_updates: int = 0
    chunk_deletes: int = 0


@dataclass(frozen=True)
class ChunkEntry:
    id: str
    section: str
    chunk_index: int
    text: str
    text_sha256: str
    start_token: int
    end_token: int

    def mapping(self) -> ChunkMapping:
        return ChunkMapping(
            id=self.id,
            section=self.section,
            chunk_index=self.chunk_index,
            start_token=self.start_token,
            end_token=self.end_token,
        )


def plan_chunks(
    card_id: str,
    text: CardText,
    token_threshold: int,
    target: int,
    overlap: int,
) -> list[ChunkEntry]:
    """Chunk every alternate greeting and every section over the token threshold.

    Chunk ids are ``{card_id}-{section}-{n}`` with ``n`` counting per section.
    """
    pieces: list[tuple[str, Any]] = []
    for greeting in text.alternate_greetings:
        for piece in split_into_chunks(greeting, target, overlap):
            pieces.append((ALT_GREETING_SECTION, piece))
    for section, section_text in text.sections.items():
        if approx_token_count(section_text) > token_threshold:
            for piece in split_into_chunks(section_text, target, overlap):
                pieces.append((section, piece))

    counters: dict[str, int] = {}
    entries: list[ChunkEntry] = []
    for section, piece in pieces:
        index = counters.get(section, 0)
        counters[section] = index + 1
        entries.append(
            ChunkEntry(
                id=f"{card_id}-{section}-{index}",
                section=section,
                chunk_index=index,
                text=piece.text,
                text_sha256=sha256_hex(piece.text),
                start_token=piece.start,
                end_token=piece.start + approx_token_count(piece.text),
            )
        )
    return entries


def merge_metadata_fallbacks(row: Mapping[str, Any], metadata: Mapping[str, Any]) -> dict:
    merged = dict(row)
    for column, metadata_key in METADATA_FALLBACK_COLUMNS.items():
        if merged.get(column) in (None, "") and metadata.get(metadata_key) not in (None, ""):
            merged[column] = metadata[metadata_key]
    if not merged.get("sourcePath"):
        merged["sourcePath"] = metadata.get("fullPath") or row.get("fullPath") or ""
    if not merged.get("lastModified"):
        merged["lastModified"] = metadata.get("updatedAt") or None
    return merged


class EmbeddingPipeline:
    """Incrementally embeds cards into the vector indices."""

    def __init__(
        self,
        config: CardSearchConfig,
        client: SearchBackendClient,
        embedding_provider: EmbeddingProvider,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        spec_reader: Optional[SpecReader] = None,
        metadata_reader: Optional[MetadataReader] = None,
        now: Optional[datetime] = None,
    ):
        self.config = config
        self.client = client
        self.embedding_provider = embedding_provider
        self.card_repository = CardRepository(session_maker)
        self.chunk_map_repository = ChunkMapRepository(session_maker)
        self.meta_repository = EmbeddingMetaRepository(
            session_maker, config.embedder_name, embedding_provider.model_name
        )
        static_sources = StaticFileSources(config.static_dir)
        self.spec_reader = spec_reader or static_sources.read_spec
        self.metadata_reader = metadata_reader or static_sources.read_metadata
        self.now = now
        self.stats = EtlStats()

    @property
    def embedder_name(self) -> str:
        return self.config.embedder_name

    def _vectors(self, embeddings: list[list[float]]) -> dict:
        return {self.embedder_name: {"embeddings": embeddings, "regenerate": False}}

    async def process_card(self, row: Mapping[str, Any], force: bool = False) -> None:
        """Embed whatever changed for one card row (column-name keys)."""
        card_id = str(row["id"])
        metadata = self.metadata_reader(card_id) or {}
        text = gather_card_text(row, self.spec_reader(card_id), metadata)
        if text.is_empty:
            self.stats.skipped += 1
            logger.warning(f"No usable text sections for card {card_id}, skipping")
            return

        stored_meta = await self.meta_repository.find_for_card(card_id)
        card_hashes = {
            m.section: m.text_sha256 for m in stored_meta if m.chunk_index == CARD_SECTION_INDEX
        }
        chunk_hashes = {
            (m.section, m.chunk_index): m.text_sha256
            for m in stored_meta
            if m.chunk_index >= 0
        }

        section_hashes = {section: sha256_hex(body) for section, body in text.sections.items()}
        stale_card_sections = [section for section in card_hashes if section not in section_hashes]
        card_needs_update = (
            force
            or bool(stale_card_sections)
            or any(card_hashes.get(section) != digest for section, digest in section_hashes.items())
        )

        chunks = plan_chunks(
            card_id,
            text,
            self.config.chunk_token_threshold,
            self.config.chunk_char_target,
            self.config.chunk_char_overlap,
        )
        existing_chunks = await self.chunk_map_repository.find_for_card(card_id)
        new_chunk_ids = {chunk.id for chunk in chunks}
        chunk_ids_to_delete = [c.id for c in existing_chunks if c.id not in new_chunk_ids]
        new_chunk_keys = {(chunk.section, chunk.chunk_index) for chunk in chunks}
        stale_chunk_keys = [key for key in chunk_hashes if key not in new_chunk_keys]
        chunks_to_embed = [
            chunk
            for chunk in chunks
            if force or chunk_hashes.get((chunk.section, chunk.chunk_index)) != chunk.text_sha256
        ]
        chunk_structure_changed = bool(chunk_ids_to_delete) or len(existing_chunks) != len(chunks)
        should_process_chunks = force or bool(chunks_to_embed) or chunk_structure_changed

        if not card_needs_update and not should_process_chunks:
            self.stats.skipped += 1
            return

        if card_needs_update:
            await self._write_card_document(row, metadata, text, section_hashes)
            if stale_card_sections:
                await self.meta_repository.delete_keys(
                    card_id, [(section, CARD_SECTION_INDEX) for section in stale_card_sections]
                )

        if chunk_ids_to_delete:
            await self.client.delete_documents(self.config.vector_chunks_index, chunk_ids_to_delete)
            self.stats.chunk_deletes += len(chunk_ids_to_delete)
            await self.chunk_map_repository.delete_ids(chunk_ids_to_delete)

        if chunks_to_embed:
            await self._write_chunk_documents(row, metadata, text, chunks_to_embed)

        if stale_chunk_keys:
            await self.meta_repository.delete_keys(card_id, stale_chunk_keys)

        if should_process_chunks:
            await self.chunk_map_repository.replace_for_card(
                card_id, [chunk.mapping() for chunk in chunks]
            )

    async def _write_card_document(
        self,
        row: Mapping[str, Any],
        metadata: Mapping[str, Any],
        text: CardText,
        section_hashes: dict[str, str],
    ) -> None:
        card_id = str(row["id"])
        sections = list(text.sections)
        vectors = await self.embedding_provider.embed_documents(
            [text.sections[section] for section in sections]
        )

        merged = merge_metadata_fallbacks(row, metadata)
        document = build_card_document(merged, self.now) or {"id": card_id}
        document.update(
            {
                "data": text.data,
                "sourceUrl": merged.get("sourceUrl") or None,
                "updatedAt": merged.get("lastModified") or merged.get("createdAt") or None,
                "vector_sections": sections,
            }
        )
        if vectors:
            document["_vectors"] = self._vectors(vectors)

        await self.client.add_documents(
            self.config.vector_cards_index, [document], primary_key="id"
        )
        self.stats.card_updates += 1

        dims = len(vectors[0]) if vectors else 0
        await self.meta_repository.upsert_many(
            card_id,
            [
                EmbeddingMetaRecord(
                    section=section,
                    chunk_index=CARD_SECTION_INDEX,
                    text_sha256=section_hashes[section],
                    dims=dims,
                )
                for section in sections
            ],
        )

    async def _write_chunk_documents(
        self,
        row: Mapping[str, Any],
        metadata: Mapping[str, Any],
        text: CardText,
        chunks: list[ChunkEntry],
    ) -> None:
        card_id = str(row["id"])
        vectors = await self.embedding_provider.embed_documents([chunk.text for chunk in chunks])
        documents = [
            {
                "id": chunk.id,
                "card_id": card_id,
                "section": chunk.section,
                "chunk_index": chunk.chunk_index,
                "text": chunk.text,
                "data": {
                    "creator": text.creator,
                    "character_version": text.character_version,
                    "extensions": text.extensions,
                    "language": text.language,
                },
                "tags": text.tags,
                "source": row.get("source") or metadata.get("source") or "chub",
                "visibility": row.get("visibility") or metadata.get("visibility") or "unknown",
                "start_token": chunk.start_token,
                "end_token": chunk.end_token,
                "_vectors": self._vectors([vector]),
            }
            for chunk, vector in zip(chunks, vectors)
        ]
        await self.client.add_documents(
            self.config.vector_chunks_index, documents, primary_key="id"
        )
        self.stats.chunk_updates += len(documents)

        await self.meta_repository.upsert_many(
            card_id,
            [
                EmbeddingMetaRecord(
                    section=chunk.section,
                    chunk_index=chunk.chunk_index,
                    text_sha256=chunk.text_sha256,
                    dims=len(vector),
                )
                for chunk, vector in zip(chunks, vectors)
            ],
        )

    async def run(
        self,
        limit: Optional[int] = None,
        start_after: Optional[int] = None,
        force: bool = False,
    ) -> EtlStats:
        """Walk the card store by ascending id and process every card.

        Args:
            limit: Stop after this many cards
            start_after: Resume after this card id
            force: Re-embed every section and chunk regardless of hashes
        """
        self.stats = EtlStats(total=await self.card_repository.count())
        logger.info(
            f"Starting vector ETL into {self.config.vector_cards_index} / "
            f"{self.config.vector_chunks_index}"
        )

        last_id = start_after
        while True:
            cards = await self.card_repository.page_after(last_id, self.config.card_page_size)
            if not cards:
                break

            for card in cards:
                if limit and self.stats.processed >= limit:
                    break
                await self.process_card(card.as_row(), force=force)
                self.stats.processed += 1
                last_id = card.id
                if self.stats.processed % self.config.log_every == 0:
                    self._log_progress(limit)

            if limit and self.stats.processed >= limit:
                break

        logger.info(f"Vector ETL complete: {asdict(self.stats)}")
        return self.stats

    def _log_progress(self, limit: Optional[int]) -> None:
        stats = self.stats
        logger.info(
            f"Processed {stats.processed}/{limit or stats.total} cards - "
            f"updated cards: {stats.card_updates}, chunk upserts: {stats.chunk_updates}, "
            f"chunk deletes: {stats.chunk_deletes}, skipped: {stats.skipped}"
        )
