"""Expansion of boolean text queries into OR-able search phrases."""

import re
from dataclasses import dataclass, field
from typing import Optional

from card_search.filters.ast import AndNode, FilterNode, LiteralNode, NotNode, OrNode
from card_search.filters.parser import FilterParser

WHITESPACE_RUN = re.compile(r"\s+")


@dataclass
class QueryPhrases:
    """Phrases extracted from a text query and whether an OR split them."""

    phrases: list[str] = field(default_factory=list)
    used_or: bool = False


def expand(node: Optional[FilterNode]) -> list[list[str]]:
    """Expand an AST into disjunctive normal form.

    Each inner list is one conjunction of literal parts; the outer list is the
    disjunction of those conjunctions. ``a AND b OR c`` expands to
    ``[["a", "b"], ["c"]]``.
    """
    if node is None:
        return []
    if isinstance(node, LiteralNode):
        return [[node.value]]
    if isinstance(node, NotNode):
        return [[f"NOT ({' '.join(parts)})"] for parts in expand(node.child)]
    if isinstance(node, AndNode):
        return _combine_conjunctions(expand(node.left), expand(node.right))
    if isinstance(node, OrNode):
        return expand(node.left) + expand(node.right)
    return []


def _combine_conjunctions(left: list[list[str]], right: list[list[str]]) -> list[list[str]]:
    if not left:
        return right
    if not right:
        return left
    return [l_parts + r_parts for l_parts in left for r_parts in right]


def trim_outer_parens(value: str) -> str:
    """Strip enclosing parentheses while the inner text stays balanced."""
    result = value.strip()
    while result.startswith("(") and result.endswith(")"):
        inner = result[1:-1].strip()
        if not inner or not has_balanced_parens(inner):
            break
        result = inner
    return result


def has_balanced_parens(value: str) -> bool:
    depth = 0
    for char in value:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def parse_query_phrases(text: Optional[str]) -> QueryPhrases:
    """Split a text query on top-level OR into distinct search phrases.

    AND groups inside each disjunct are flattened to a single space-joined
    phrase. Anything that does not parse is returned as a single phrase.
    """
    raw = text.strip() if isinstance(text, str) else ""
    if not raw:
        return QueryPhrases()

    normalized = trim_outer_parens(raw)
    ast = FilterParser.parse(normalized)
    if ast is None:
        return QueryPhrases(phrases=[normalized] if normalized else [])

    try:
        conjunctions = expand(ast)
    except RecursionError:
        return QueryPhrases(phrases=[normalized])

    phrases: list[str] = []
    for parts in conjunctions:
        phrase = " ".join(part.strip() for part in parts if part.strip())
        phrase = WHITESPACE_RUN.sub(" ", phrase).strip()
        if phrase and phrase not in phrases:
            phrases.append(phrase)

    if not phrases:
        return QueryPhrases(phrases=[normalized] if normalized else [])
    return QueryPhrases(phrases=phrases, used_or=len(phrases) > 1)
