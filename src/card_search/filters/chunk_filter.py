"""Chunk-index rendering of filter expressions.

The chunk index carries only a handful of filterable attributes. Card filters
are adapted by remapping field names and dropping clauses that reference
card-only attributes. A binary node with one dropped side degrades to the
surviving side; a NOT whose operand lost any clause is dropped whole.
"""

import re
from typing import Optional

from loguru import logger

from card_search.filters.ast import AndNode, FilterNode, LiteralNode, NotNode, OrNode
from card_search.filters.card_filter import normalize_filter_expression
from card_search.filters.parser import FilterParser
from card_search.index_schema import CHUNK_FIELD_MAP, chunk_field_for, is_chunk_unsupported

LEADING_FIELD = re.compile(r"^(?P<field>[A-Za-z_][\w.]*)(?P<rest>.*)$", re.DOTALL)
CONNECTOR_SPLIT = re.compile(r"(\s+(?:AND|OR)\s+)", re.IGNORECASE)
CONNECTOR = re.compile(r"^\s*(AND|OR)\s*$", re.IGNORECASE)
LEADING_NOISE = re.compile(r"^(?:\(|\s|NOT\s+)+")

# Word-boundary replacements used by the text-level fallback
FALLBACK_MAPPINGS = [
    (re.compile(rf"(?<![\w.]){re.escape(source)}(?![\w.])", re.IGNORECASE), target.value)
    for source, target in CHUNK_FIELD_MAP.items()
    if source != target.value.lower()
]


def adapt_literal(value: str) -> Optional[str]:
    """Remap a single comparison for the chunk index, or None to drop it."""
    match = LEADING_FIELD.match(value.strip())
    if not match:
        return value
    field_name = match.group("field")
    if is_chunk_unsupported(field_name):
        return None
    chunk_field = chunk_field_for(field_name)
    if chunk_field is None:
        return value
    return f"{chunk_field.value}{match.group('rest')}"


def count_literals(node: Optional[FilterNode]) -> int:
    if node is None:
        return 0
    if isinstance(node, LiteralNode):
        return 1
    if isinstance(node, NotNode):
        return count_literals(node.child)
    if isinstance(node, (AndNode, OrNode)):
        return count_literals(node.left) + count_literals(node.right)
    return 0


def transform_for_chunks(node: Optional[FilterNode]) -> Optional[FilterNode]:
    """Return a new tree with chunk field names and unsupported clauses removed."""
    if node is None:
        return None

    if isinstance(node, LiteralNode):
        adapted = adapt_literal(node.value)
        return LiteralNode(adapted) if adapted else None

    if isinstance(node, NotNode):
        child = transform_for_chunks(node.child)
        # a negation survives only if its whole operand does
        if child is None or count_literals(child) != count_literals(node.child):
            return None
        return NotNode(child)

    if isinstance(node, (AndNode, OrNode)):
        left = transform_for_chunks(node.left)
        right = transform_for_chunks(node.right)
        if left is None:
            return right
        if right is None:
            return left
        return type(node)(left=left, right=right)

    return None


def rebuild_expression(node: Optional[FilterNode]) -> str:
    """Render a tree back to filter syntax, parenthesizing every join."""
    if node is None:
        return ""
    if isinstance(node, LiteralNode):
        return node.value
    if isinstance(node, NotNode):
        child = rebuild_expression(node.child)
        return f"NOT ({child})" if child else ""
    if isinstance(node, (AndNode, OrNode)):
        left = rebuild_expression(node.left)
        right = rebuild_expression(node.right)
        if not left or not right:
            return left or right
        operator = "AND" if isinstance(node, AndNode) else "OR"
        return f"({left}) {operator} ({right})"
    return ""


def _clause_is_unsupported(clause: str) -> bool:
    stripped = LEADING_NOISE.sub("", clause.strip())
    match = LEADING_FIELD.match(stripped)
    return bool(match) and is_chunk_unsupported(match.group("field"))


def strip_unsupported_clauses(filter_expr: str) -> str:
    """Drop AND/OR-separated clauses that lead with a card-only attribute.

    Works on raw text, so it cannot keep parentheses balanced when a dropped
    clause opened or closed a group.
    """
    cleaned: list[str] = []
    last_was_connector = True
    for piece in CONNECTOR_SPLIT.split(filter_expr):
        if not piece:
            continue
        if CONNECTOR.match(piece):
            if not last_was_connector:
                cleaned.append(piece)
                last_was_connector = True
            continue
        if not piece.strip():
            continue
        if _clause_is_unsupported(piece):
            last_was_connector = True
            continue
        cleaned.append(piece)
        last_was_connector = False

    if cleaned and CONNECTOR.match(cleaned[-1]):
        cleaned.pop()
    return "".join(cleaned).strip()


def fallback_adapt(filter_expr: str) -> Optional[str]:
    """Text-level adaptation used when the expression cannot be parsed."""
    adapted = filter_expr
    for pattern, replacement in FALLBACK_MAPPINGS:
        adapted = pattern.sub(replacement, adapted)
    return strip_unsupported_clauses(adapted) or None


def adapt_filter_for_chunks(filter_expr: Optional[str]) -> Optional[str]:
    """Adapt a card filter for the chunk index.

    Returns None when nothing applicable to chunks survives. Never raises: input
    that does not parse goes through a best-effort text rewrite that may over- or
    under-match, and that path is logged.
    """
    if not filter_expr or not isinstance(filter_expr, str):
        return None

    normalized = normalize_filter_expression(filter_expr)
    ast = FilterParser.parse(normalized)
    if ast is None:
        logger.warning(f"Chunk filter did not parse, using text fallback: {filter_expr!r}")
        return fallback_adapt(normalized)

    try:
        transformed = transform_for_chunks(ast)
        rebuilt = rebuild_expression(transformed)
    except RecursionError:
        logger.warning(f"Chunk filter too deeply nested, using text fallback: {filter_expr!r}")
        return fallback_adapt(normalized)

    if not rebuilt:
        logger.debug("Chunk filter has no clauses supported by the chunk index")
        return None
    return rebuilt
