"""Tests for the card store repositories."""

import pytest

from card_search.repository import (
    CardRepository,
    ChunkMapping,
    ChunkMapRepository,
    EmbeddingMetaRecord,
    EmbeddingMetaRepository,
    IndexQueueRepository,
)


@pytest.mark.asyncio
async def test_find_by_ids_skips_invalid_ids(session_maker, add_cards, make_card):
    await add_cards(make_card(1), make_card(2), make_card(3))
    repository = CardRepository(session_maker)

    cards = await repository.find_by_ids(["1", "abc", None, 3, "99"])

    assert sorted(card.id for card in cards) == [1, 3]
    assert await repository.find_by_ids(["abc"]) == []


@pytest.mark.asyncio
async def test_page_after(session_maker, add_cards, make_card):
    await add_cards(make_card(3), make_card(1), make_card(2))
    repository = CardRepository(session_maker)

    assert [card.id for card in await repository.page_after(None, 2)] == [1, 2]
    assert [card.id for card in await repository.page_after(2, 10)] == [3]
    assert await repository.page_after(3, 10) == []
    assert await repository.count() == 3


@pytest.mark.asyncio
async def test_card_row_uses_column_names(session_maker, add_cards, make_card):
    await add_cards(make_card(5, token_count=321, has_gallery=1))

    (card,) = await CardRepository(session_maker).find_by_ids([5])
    row = card.as_row()

    assert row["tokenCount"] == 321
    assert row["hasGallery"] == 1
    assert row["createdAt"] == "2026-01-01 00:00:00"


@pytest.mark.asyncio
async def test_card_writes_feed_the_queue(session_maker, add_cards, make_card):
    await add_cards(make_card(1), make_card(2))
    repository = IndexQueueRepository(session_maker)
    await repository.enqueue(1, "delete")

    jobs = await repository.next_batch(10)

    assert [(job.card_id, job.action) for job in jobs] == [
        ("1", "upsert"),
        ("2", "upsert"),
        ("1", "delete"),
    ]

    await repository.delete_ids([jobs[0].id, jobs[1].id])
    assert [job.action for job in await repository.next_batch(10)] == ["delete"]


@pytest.mark.asyncio
async def test_enqueue_rejects_unknown_action(session_maker):
    with pytest.raises(ValueError, match="Unsupported queue action"):
        await IndexQueueRepository(session_maker).enqueue(1, "merge")


@pytest.mark.asyncio
async def test_embedding_meta_upsert_and_delete(session_maker):
    repository = EmbeddingMetaRepository(session_maker, "arctic2-1024", "arctic")
    await repository.upsert_many(
        "7",
        [
            EmbeddingMetaRecord("description", -1, "aaa", 1024),
            EmbeddingMetaRecord("alt_greeting", 0, "bbb", 1024),
        ],
    )
    await repository.upsert_many("7", [EmbeddingMetaRecord("description", -1, "ccc", 1024)])

    rows = await repository.find_for_card("7")
    assert sorted((row.section, row.chunk_index, row.text_sha256) for row in rows) == [
        ("alt_greeting", 0, "bbb"),
        ("description", -1, "ccc"),
    ]

    other_embedder = EmbeddingMetaRepository(session_maker, "other-384", "other")
    assert await other_embedder.find_for_card("7") == []

    await repository.delete_keys("7", [("alt_greeting", 0)])
    await repository.delete_keys("7", [])
    rows = await repository.find_for_card("7")
    assert [(row.section, row.chunk_index) for row in rows] == [("description", -1)]


@pytest.mark.asyncio
async def test_chunk_map_replace_and_delete(session_maker):
    repository = ChunkMapRepository(session_maker)
    await repository.replace_for_card(
        "7",
        [
            ChunkMapping("7-alt_greeting-0", "alt_greeting", 0, 0, 100),
            ChunkMapping("7-alt_greeting-1", "alt_greeting", 1, 0, 80),
        ],
    )
    await repository.replace_for_card("8", [ChunkMapping("8-scenario-0", "scenario", 0, 0, 300)])
    await repository.replace_for_card(
        "7", [ChunkMapping("7-alt_greeting-0", "alt_greeting", 0, 0, 120)]
    )

    rows = await repository.find_for_card("7")
    assert [(row.id, row.end_token) for row in rows] == [("7-alt_greeting-0", 120)]

    await repository.delete_ids(["8-scenario-0"])
    assert await repository.find_for_card("8") == []

    await repository.clear()
    assert await repository.count() == 0
