"""
Abstract Syntax Tree (AST) definitions for filter expressions.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class FilterNode:
    """Base class for filter expression nodes."""

    pass


@dataclass(frozen=True)
class LiteralNode(FilterNode):
    """A bare comparison or phrase, e.g. 'topics:elf' or 'tags = "elf"'."""

    value: str


@dataclass(frozen=True)
class NotNode(FilterNode):
    """Negation of a child expression."""

    child: FilterNode


@dataclass(frozen=True)
class AndNode(FilterNode):
    """Conjunction of two expressions."""

    left: FilterNode
    right: FilterNode


@dataclass(frozen=True)
class OrNode(FilterNode):
    """Disjunction of two expressions."""

    left: FilterNode
    right: FilterNode
