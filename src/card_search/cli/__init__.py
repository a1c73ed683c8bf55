"""Command line interface for card-search."""
