"""Lexical and vector index maintenance commands."""

import typer
from loguru import logger

from card_search.cli.app import app
from card_search.cli.commands.command_utils import console, open_store, run_with_cleanup
from card_search.config import CardSearchConfig, ConfigManager
from card_search.errors import SearchBackendError, SearchConfigurationError
from card_search.search_backend import SearchBackendClient
from card_search.services import IndexManager


def _require_search(config: CardSearchConfig) -> None:
    if not config.search_index_enabled:
        console.print(
            "[red]Error:[/red] The search backend is not enabled. "
            "Set CARD_SEARCH_SEARCH_ENABLED=true and CARD_SEARCH_SEARCH_HOST."
        )
        raise typer.Exit(1)


async def _with_manager(config: CardSearchConfig, action):
    session_maker = await open_store(config)
    client = SearchBackendClient.from_config(config)
    try:
        return await action(IndexManager(client, config, session_maker))
    finally:
        await client.close()


@app.command()
def rebuild():  # pragma: no cover
    """Rebuild the lexical card index from the card database."""
    config = ConfigManager().config
    _require_search(config)
    try:
        count = run_with_cleanup(_with_manager(config, lambda m: m.rebuild_from_store()))
    except SearchBackendError as e:
        logger.error(f"Rebuild failed: {e}")
        console.print(f"[red]Rebuild failed:[/red] {e}")
        raise typer.Exit(1)
    console.print(f"[green]Indexed {count} cards into {config.search_index}[/green]")


@app.command()
def drain():  # pragma: no cover
    """Apply queued card changes to the lexical card index."""
    config = ConfigManager().config
    _require_search(config)
    processed = run_with_cleanup(_with_manager(config, lambda m: m.drain_queue("cli")))
    console.print(f"[green]Processed {processed} queued jobs[/green]")


@app.command()
def flush(
    keep_chunks: bool = typer.Option(
        False, "--keep-chunks", help="Keep card_chunk_map rows after deleting the indices"
    ),
):  # pragma: no cover
    """Delete the card-vector and chunk indices so the ETL can rebuild them."""
    config = ConfigManager().config
    if not config.search_host:
        console.print("[red]Error:[/red] Search backend host is not configured.")
        raise typer.Exit(1)
    if not typer.confirm(
        f"Delete indices {config.vector_cards_index!r} and {config.vector_chunks_index!r}?"
    ):
        raise typer.Exit(0)
    try:
        run_with_cleanup(
            _with_manager(config, lambda m: m.flush_vector_indexes(keep_chunk_map=keep_chunks))
        )
    except (SearchBackendError, SearchConfigurationError) as e:
        console.print(f"[red]Flush failed:[/red] {e}")
        raise typer.Exit(1)
    console.print("[green]Vector indices flushed. Run `card-search etl` to rebuild.[/green]")
