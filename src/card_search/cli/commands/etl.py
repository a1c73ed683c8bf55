"""Embedding ETL command."""

from dataclasses import asdict
from typing import Optional

import typer
from loguru import logger
from rich.table import Table

from card_search.cli.app import app
from card_search.cli.commands.command_utils import console, open_store, run_with_cleanup
from card_search.config import CardSearchConfig, ConfigManager
from card_search.embedding import create_embedding_provider
from card_search.errors import EmbeddingBackendError, SearchBackendError
from card_search.etl import EmbeddingPipeline, EtlStats
from card_search.search_backend import SearchBackendClient


async def _run_etl(
    config: CardSearchConfig,
    limit: Optional[int],
    start_after: Optional[int],
    force: bool,
) -> EtlStats:
    session_maker = await open_store(config)
    client = SearchBackendClient.from_config(config)
    provider = await create_embedding_provider(config)
    try:
        pipeline = EmbeddingPipeline(config, client, provider, session_maker)
        return await pipeline.run(limit=limit, start_after=start_after, force=force)
    finally:
        await client.close()
        await provider.close()


@app.command()
def etl(
    limit: Optional[int] = typer.Option(None, "--limit", help="Stop after this many cards"),
    start_after: Optional[int] = typer.Option(
        None, "--start-after", help="Resume after this card id"
    ),
    force: bool = typer.Option(False, "--force", help="Re-embed every section and chunk"),
):  # pragma: no cover
    """Embed changed cards into the card-vector and chunk indices."""
    config = ConfigManager().config
    if not config.search_host:
        console.print(
            "[red]Error:[/red] Missing search backend host. Set CARD_SEARCH_SEARCH_HOST."
        )
        raise typer.Exit(1)

    try:
        stats = run_with_cleanup(_run_etl(config, limit, start_after, force))
    except (SearchBackendError, EmbeddingBackendError) as e:
        logger.error(f"Vector ETL failed: {e}")
        console.print(f"[red]Vector ETL failed:[/red] {e}")
        raise typer.Exit(1)

    table = Table(title="Vector ETL")
    table.add_column("Counter", style="cyan")
    table.add_column("Value", justify="right")
    for name, value in asdict(stats).items():
        table.add_row(name, str(value))
    console.print(table)
