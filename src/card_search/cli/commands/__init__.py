"""CLI commands for card-search."""

from . import etl, index, search

__all__ = ["etl", "index", "search"]
