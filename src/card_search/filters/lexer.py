"""
Lexical analyzer (tokenizer) for filter expressions.

Recognizes quoted literals, parentheses and the case-sensitive keywords
AND / OR / NOT. Everything else accumulates into literal tokens.
"""

import re
from dataclasses import dataclass
from enum import Enum, auto


class TokenType(Enum):
    """Token types for filter expressions."""

    LITERAL = auto()
    LPAREN = auto()
    RPAREN = auto()
    AND = auto()
    OR = auto()
    NOT = auto()
    EOF = auto()


@dataclass
class Token:
    """A token in a filter expression."""

    type: TokenType
    value: str
    position: int

    def __repr__(self) -> str:
        return f"Token({self.type.name}, {self.value!r}, {self.position})"


WHITESPACE_RUN = re.compile(r"\s+")


class FilterLexer:
    """Tokenizer for filter expressions. Never raises."""

    OPERATORS = {
        "AND": TokenType.AND,
        "OR": TokenType.OR,
        "NOT": TokenType.NOT,
    }

    def __init__(self, text: str):
        self.text = text or ""
        self.pos = 0
        self.tokens: list[Token] = []
        self._buffer: list[str] = []
        self._buffer_start = 0

    def tokenize(self) -> list[Token]:
        """Tokenize the entire input."""
        quote_char = ""

        while self.pos < len(self.text):
            char = self.text[self.pos]

            if quote_char:
                self._append(char)
                prev_char = self.text[self.pos - 1] if self.pos > 0 else ""
                if char == quote_char and prev_char != "\\":
                    quote_char = ""
                self.pos += 1
                continue

            if char in ('"', "'"):
                quote_char = char
                self._append(char)
                self.pos += 1
                continue

            if char in "()":
                self._flush()
                token_type = TokenType.LPAREN if char == "(" else TokenType.RPAREN
                self.tokens.append(Token(token_type, char, self.pos))
                self.pos += 1
                continue

            operator = self._match_operator()
            if operator:
                self._flush()
                self.tokens.append(Token(self.OPERATORS[operator], operator, self.pos))
                self.pos += len(operator)
                continue

            self._append(char)
            self.pos += 1

        # An unterminated quote simply runs to the end of the input
        self._flush()
        self.tokens.append(Token(TokenType.EOF, "", len(self.text)))
        return self.tokens

    def _match_operator(self) -> str:
        """Return the keyword starting at the cursor, if it stands alone."""
        for operator in self.OPERATORS:
            end = self.pos + len(operator)
            if self.text[self.pos : end] != operator:
                continue
            before = self.text[self.pos - 1] if self.pos > 0 else ""
            after = self.text[end] if end < len(self.text) else ""
            if self._is_boundary(before) and self._is_boundary(after):
                return operator
        return ""

    @staticmethod
    def _is_boundary(char: str) -> bool:
        return not char or char.isspace() or char in '"()'

    def _append(self, char: str) -> None:
        if not self._buffer:
            if char.isspace():
                return
            self._buffer_start = self.pos
        self._buffer.append(char)

    def _flush(self) -> None:
        """Emit buffered text as a whitespace-collapsed literal."""
        value = WHITESPACE_RUN.sub(" ", "".join(self._buffer)).strip()
        if value:
            self.tokens.append(Token(TokenType.LITERAL, value, self._buffer_start))
        self._buffer = []
