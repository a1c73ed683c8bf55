"""Tests for the recursive-descent filter parser and phrase expansion."""

import pytest

from card_search.filters import (
    AndNode,
    FilterParser,
    LiteralNode,
    NotNode,
    OrNode,
    expand,
    parse_query_phrases,
)


class TestFilterParser:
    def test_and_binds_tighter_than_or(self):
        ast = FilterParser.parse("a AND b OR c")
        assert ast == OrNode(AndNode(LiteralNode("a"), LiteralNode("b")), LiteralNode("c"))

    def test_parentheses_override_precedence(self):
        ast = FilterParser.parse("a AND (b OR c)")
        assert ast == AndNode(LiteralNode("a"), OrNode(LiteralNode("b"), LiteralNode("c")))

    def test_not_binds_tightest(self):
        ast = FilterParser.parse("NOT a AND b")
        assert ast == AndNode(NotNode(LiteralNode("a")), LiteralNode("b"))

    def test_chained_or_is_left_associative(self):
        ast = FilterParser.parse("a OR b OR c")
        assert ast == OrNode(OrNode(LiteralNode("a"), LiteralNode("b")), LiteralNode("c"))

    @pytest.mark.parametrize("text", ["", "   ", "NOT", "AND", "()", ")"])
    def test_empty_or_unusable_input_returns_none(self, text):
        assert FilterParser.parse(text) is None

    def test_dangling_operator_collapses_to_surviving_side(self):
        assert FilterParser.parse("a AND") == LiteralNode("a")
        assert FilterParser.parse("OR b") == LiteralNode("b")

    def test_missing_close_paren_is_tolerated(self):
        assert FilterParser.parse("(a OR b") == OrNode(LiteralNode("a"), LiteralNode("b"))

    def test_pathological_nesting_returns_none(self):
        """Nesting deeper than the interpreter allows yields None instead of raising."""
        assert FilterParser.parse("NOT " * 5000 + "elf") is None


class TestExpand:
    def test_expands_to_disjunctive_normal_form(self):
        assert expand(FilterParser.parse("a AND b OR c")) == [["a", "b"], ["c"]]

    def test_and_distributes_over_or(self):
        assert expand(FilterParser.parse("(a OR b) AND c")) == [["a", "c"], ["b", "c"]]

    def test_not_wraps_each_conjunction(self):
        assert expand(FilterParser.parse("NOT a")) == [["NOT (a)"]]

    def test_none_expands_to_nothing(self):
        assert expand(None) == []


class TestParseQueryPhrases:
    """Top-level OR splitting for text queries."""

    def test_or_splits_into_phrases(self):
        result = parse_query_phrases("elf OR orc knight")
        assert result.phrases == ["elf", "orc knight"]
        assert result.used_or is True

    def test_and_groups_flatten_to_one_phrase(self):
        result = parse_query_phrases("a AND b OR c")
        assert result.phrases == ["a b", "c"]
        assert result.used_or is True

    def test_plain_text_is_single_phrase(self):
        result = parse_query_phrases("  dark   elf ranger ")
        assert result.phrases == ["dark elf ranger"]
        assert result.used_or is False

    def test_outer_parens_are_trimmed(self):
        assert parse_query_phrases("(elf OR orc)").phrases == ["elf", "orc"]

    def test_duplicate_phrases_are_not_an_or(self):
        result = parse_query_phrases("elf OR elf")
        assert result.phrases == ["elf"]
        assert result.used_or is False

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_blank_query_has_no_phrases(self, text):
        result = parse_query_phrases(text)
        assert result.phrases == []
        assert result.used_or is False

    def test_unparsable_query_is_returned_whole(self):
        assert parse_query_phrases("NOT").phrases == ["NOT"]
