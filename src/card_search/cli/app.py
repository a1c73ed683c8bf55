from typing import Optional

import typer

from card_search.config import ConfigManager
from card_search.utils import setup_logging


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:  # pragma: no cover
        import card_search

        config = ConfigManager().config
        typer.echo(f"card-search version: {card_search.__version__}")
        typer.echo(f"Search backend: {config.search_host or '(not configured)'}")
        typer.echo(f"Database: {config.database_path}")
        raise typer.Exit()


app = typer.Typer(name="card-search")


@app.callback()
def app_callback(
    verbose: bool = typer.Option(False, "--verbose", help="Log at DEBUG level."),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """card-search - hybrid search and embedding ETL for a character-card archive."""
    config = ConfigManager().config
    setup_logging(log_level="DEBUG" if verbose else config.log_level)
