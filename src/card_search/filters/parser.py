"""
Parser for filter expressions.

Recursive descent with the precedence OR < AND < NOT < parenthesis/literal.
The parser never raises: malformed input produces a partial tree, and an empty
or unparsable token stream produces None.
"""

from typing import Optional

from loguru import logger

from card_search.filters.ast import AndNode, FilterNode, LiteralNode, NotNode, OrNode
from card_search.filters.lexer import FilterLexer, Token, TokenType


class FilterParser:
    """Parser for filter expressions."""

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens or [Token(TokenType.EOF, "", 0)]
        self.pos = 0

    @classmethod
    def parse(cls, text: str) -> Optional[FilterNode]:
        """Parse a filter string into an AST, or None when nothing usable is found."""
        tokens = FilterLexer(text).tokenize()
        try:
            return cls(tokens).parse_expression()
        except RecursionError:
            logger.warning(f"Filter expression nested too deeply to parse ({len(text)} chars)")
            return None

    def parse_expression(self) -> Optional[FilterNode]:
        """Parse a complete expression."""
        return self._parse_or_expression()

    def _parse_or_expression(self) -> Optional[FilterNode]:
        """Parse OR expression."""
        left = self._parse_and_expression()

        while self._check(TokenType.OR):
            self._advance()
            right = self._parse_and_expression()
            left = self._join(OrNode, left, right)

        return left

    def _parse_and_expression(self) -> Optional[FilterNode]:
        """Parse AND expression."""
        left = self._parse_unary_expression()

        while self._check(TokenType.AND):
            self._advance()
            right = self._parse_unary_expression()
            left = self._join(AndNode, left, right)

        return left

    def _parse_unary_expression(self) -> Optional[FilterNode]:
        """Parse NOT, a parenthesized group, or a literal."""
        if self._check(TokenType.NOT):
            self._advance()
            child = self._parse_unary_expression()
            return NotNode(child) if child is not None else None

        if self._check(TokenType.LPAREN):
            self._advance()
            inner = self.parse_expression()
            # A missing closing paren is tolerated
            if self._check(TokenType.RPAREN):
                self._advance()
            return inner

        if self._check(TokenType.LITERAL):
            return LiteralNode(self._advance().value)

        return None

    @staticmethod
    def _join(node_type, left: Optional[FilterNode], right: Optional[FilterNode]):
        """Build a binary node, collapsing to the surviving side when one is missing."""
        if left is None:
            return right
        if right is None:
            return left
        return node_type(left=left, right=right)

    def _current(self) -> Token:
        """Get the current token."""
        if self.pos < len(self.tokens):
            return self.tokens[self.pos]
        return self.tokens[-1]  # Return EOF

    def _advance(self) -> Token:
        """Advance to the next token."""
        token = self._current()
        if not self._is_at_end():
            self.pos += 1
        return token

    def _check(self, token_type: TokenType) -> bool:
        """Check if current token matches the given type."""
        if self._is_at_end():
            return False
        return self._current().type == token_type

    def _is_at_end(self) -> bool:
        """Check if we're at the end of tokens."""
        return self._current().type == TokenType.EOF
