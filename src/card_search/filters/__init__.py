"""Filter compiler: boolean filter expressions for the card and chunk indices."""

from card_search.filters.ast import AndNode, FilterNode, LiteralNode, NotNode, OrNode
from card_search.filters.card_filter import (
    StructuredFilter,
    build_search_filter,
    normalize_filter_expression,
)
from card_search.filters.chunk_filter import adapt_filter_for_chunks
from card_search.filters.lexer import FilterLexer, Token, TokenType
from card_search.filters.parser import FilterParser
from card_search.filters.phrases import QueryPhrases, expand, parse_query_phrases

__all__ = [
    "AndNode",
    "FilterLexer",
    "FilterNode",
    "FilterParser",
    "LiteralNode",
    "NotNode",
    "OrNode",
    "QueryPhrases",
    "StructuredFilter",
    "Token",
    "TokenType",
    "adapt_filter_for_chunks",
    "build_search_filter",
    "expand",
    "normalize_filter_expression",
    "parse_query_phrases",
]
