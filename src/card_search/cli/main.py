"""Main CLI entry point for card-search."""  # pragma: no cover

from card_search.cli.app import app  # pragma: no cover

# Register commands
from card_search.cli.commands import etl, index, search  # noqa: F401  # pragma: no cover


def main() -> None:  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
