"""Card-index rendering of filter expressions."""

import re
from dataclasses import dataclass, fields
from typing import Literal, Optional

from card_search.index_schema import CARD_FILTERABLE_FIELDS, CardField

# Quoted strings are matched first so their contents are never rewritten.
FIELD_VALUE_PATTERN = re.compile(
    r"(?P<quoted>\"[^\"]*\"|'[^']*')"
    r"|(?P<field>\b[a-zA-Z_]\w*)\s*:\s*(?P<value>\"[^\"]*\"|'[^']*'|[^\s()]+)"
)
NUMBER_PATTERN = re.compile(r"^-?\d+(?:\.\d+)?$")
BOOLEAN_PATTERN = re.compile(r"^(true|false)$", re.IGNORECASE)


def is_quoted(value: str) -> bool:
    return len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'")


def format_filter_value(value: str) -> str:
    """Quote a filter value unless it is quoted, numeric or boolean already."""
    if is_quoted(value) or NUMBER_PATTERN.match(value) or BOOLEAN_PATTERN.match(value):
        return value
    return f'"{value}"'


def normalize_filter_expression(raw_filter: Optional[str]) -> str:
    """Rewrite ``field:value`` shorthand into backend ``field = value`` syntax.

    Only fields on the card allow-list are rewritten; every other piece of the
    expression passes through untouched.

    Examples:
        >>> normalize_filter_expression("hasGallery:true AND topics:elf")
        'hasGallery = true AND topics = "elf"'
    """
    if not raw_filter or not isinstance(raw_filter, str):
        return ""

    def _replace(match: re.Match) -> str:
        if match.group("quoted") is not None:
            return match.group(0)
        field_name = match.group("field")
        if field_name not in CARD_FILTERABLE_FIELDS:
            return match.group(0)
        return f"{field_name} = {format_filter_value(match.group('value'))}"

    return FIELD_VALUE_PATTERN.sub(_replace, raw_filter).strip()


FEATURE_FLAGS: dict[str, CardField] = {
    "has_lorebook": CardField.HAS_LOREBOOK,
    "has_alternate_greetings": CardField.HAS_ALTERNATE_GREETINGS,
    "has_embedded_lorebook": CardField.HAS_EMBEDDED_LOREBOOK,
    "has_linked_lorebook": CardField.HAS_LINKED_LOREBOOK,
    "has_example_dialogues": CardField.HAS_EXAMPLE_DIALOGUES,
    "has_system_prompt": CardField.HAS_SYSTEM_PROMPT,
    "has_gallery": CardField.HAS_GALLERY,
    "has_embedded_images": CardField.HAS_EMBEDDED_IMAGES,
    "has_expressions": CardField.HAS_EXPRESSIONS,
}


@dataclass
class StructuredFilter:
    """Discrete filter parameters collected by a search form."""

    advanced_filter: str = ""
    include: str = ""
    exclude: str = ""
    tag_match_mode: Literal["and", "or"] = "and"
    min_tokens: Optional[int] = None
    language: Optional[str] = None
    favorite_filter: Optional[str] = None
    source: Optional[str] = None
    has_lorebook: bool = False
    has_alternate_greetings: bool = False
    has_embedded_lorebook: bool = False
    has_linked_lorebook: bool = False
    has_example_dialogues: bool = False
    has_system_prompt: bool = False
    has_gallery: bool = False
    has_embedded_images: bool = False
    has_expressions: bool = False

    @classmethod
    def from_dict(cls, values: dict) -> "StructuredFilter":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in values.items() if k in known and v is not None})


def _split_tags(value: str) -> list[str]:
    return [tag.strip().lower() for tag in value.split(",") if tag.strip()]


def build_search_filter(params: StructuredFilter) -> str:
    """Assemble a card-index filter string from structured parameters.

    Tag clauses always target ``tags`` so the same string adapts cleanly to the
    chunk index.
    """
    parts: list[str] = []

    if params.advanced_filter and params.advanced_filter.strip():
        parts.append(f"({params.advanced_filter.strip()})")

    for attribute, card_field in FEATURE_FLAGS.items():
        if getattr(params, attribute):
            parts.append(f"{card_field.value} = true")

    if params.min_tokens is not None:
        parts.append(f"{CardField.TOKEN_COUNT.value} >= {int(params.min_tokens)}")

    if params.language and params.language != "all":
        parts.append(f'{CardField.LANGUAGE.value} = "{params.language}"')

    if params.favorite_filter in ("favorited", "fav"):
        parts.append(f"{CardField.FAVORITED.value} = 1")
    elif params.favorite_filter in ("unfavorited", "not_fav"):
        parts.append(f"{CardField.FAVORITED.value} = 0")

    if params.source and params.source != "all":
        parts.append(f'{CardField.SOURCE.value} = "{params.source}"')

    include_tags = _split_tags(params.include or "")
    if include_tags:
        clauses = [f'{CardField.TAGS.value} = "{tag}"' for tag in include_tags]
        if params.tag_match_mode == "and":
            parts.extend(clauses)
        else:
            parts.append(f"({' OR '.join(clauses)})")

    for tag in _split_tags(params.exclude or ""):
        parts.append(f'NOT {CardField.TAGS.value} = "{tag}"')

    return " AND ".join(parts)
