"""Search command."""

import typer
from rich.table import Table

from card_search.cli.app import app
from card_search.cli.commands.command_utils import console, open_store, run_with_cleanup
from card_search.config import CardSearchConfig, ConfigManager
from card_search.embedding import create_embedding_provider
from card_search.errors import (
    EmbeddingBackendError,
    EmptyQueryError,
    SearchBackendError,
    SearchConfigurationError,
    SearchIndexDisabledError,
    VectorSearchDisabledError,
)
from card_search.models import Card
from card_search.repository import CardRepository
from card_search.services import SearchService

SEARCH_ERRORS = (
    EmbeddingBackendError,
    EmptyQueryError,
    SearchBackendError,
    SearchConfigurationError,
    SearchIndexDisabledError,
    VectorSearchDisabledError,
)


async def _search(
    config: CardSearchConfig,
    text: str,
    filter: str,
    page: int,
    limit: int,
    sort: str,
    hybrid: bool,
) -> tuple[list[str], int, dict[str, Card], dict[str, float]]:
    session_maker = await open_store(config)
    provider = await create_embedding_provider(config, probe_secondary=False) if hybrid else None
    service = SearchService.create(config, session_maker, provider)
    try:
        if hybrid:
            result = await service.search_vector_cards(text, filter, page, limit)
            ids, total, scores = result.ids, result.total, result.scores
        else:
            lexical = await service.search_cards(text, filter, page, limit, sort)
            ids, total, scores = lexical.ids, lexical.total, {}
        cards = await CardRepository(session_maker).find_by_ids(ids)
        return ids, total, {str(card.id): card for card in cards}, scores
    finally:
        await service.close()
        if provider is not None:
            await provider.close()


@app.command()
def search(
    text: str = typer.Argument("", help="Query text; OR separates alternative phrases"),
    filter: str = typer.Option("", "--filter", "-f", help="Filter expression, e.g. topics:elf"),
    page: int = typer.Option(1, "--page", min=1),
    limit: int = typer.Option(20, "--limit", min=1),
    sort: str = typer.Option("new", "--sort", help="Sort preset for lexical search"),
    hybrid: bool = typer.Option(False, "--hybrid", help="Blend in semantic search"),
):  # pragma: no cover
    """Search the card index and print the matching cards."""
    config = ConfigManager().config
    try:
        ids, total, cards, scores = run_with_cleanup(
            _search(config, text, filter, page, limit, sort, hybrid)
        )
    except SEARCH_ERRORS as e:
        console.print(f"[red]Search failed:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title=f"{total} matches (page {page})")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Author")
    if hybrid:
        table.add_column("Score", justify="right")
    for card_id in ids:
        card = cards.get(card_id)
        row = [card_id, card.name if card else "?", (card.author or "") if card else ""]
        if hybrid:
            row.append(f"{scores.get(card_id, 0.0):.4f}")
        table.add_row(*row)
    console.print(table)
