"""card-search - search and retrieval core for a character-card archive."""

__version__ = "0.4.0"
