"""Field catalogues for the card and chunk search indices.

Both filter renderers and the index provisioning code read from these tables,
so a field name is spelled in exactly one place.
"""

from enum import Enum
from typing import Optional


class CardField(str, Enum):
    """Filterable attributes of a card document."""

    ID = "id"
    SOURCE = "source"
    SOURCE_ID = "sourceId"
    SOURCE_PATH = "sourcePath"
    NAME = "name"
    AUTHOR = "author"
    TAGLINE = "tagline"
    DESCRIPTION = "description"
    PLATFORM_SUMMARY = "platform_summary"
    PLATFORM_SUMMARY_CAMEL = "platformSummary"
    TAGS = "tags"
    TOPICS = "topics"
    TYPE = "type"
    LANGUAGE = "language"
    VISIBILITY = "visibility"
    FAVORITED = "favorited"
    HAS_ALTERNATE_GREETINGS = "hasAlternateGreetings"
    HAS_LOREBOOK = "hasLorebook"
    HAS_EMBEDDED_LOREBOOK = "hasEmbeddedLorebook"
    HAS_LINKED_LOREBOOK = "hasLinkedLorebook"
    HAS_EXAMPLE_DIALOGUES = "hasExampleDialogues"
    HAS_SYSTEM_PROMPT = "hasSystemPrompt"
    HAS_GALLERY = "hasGallery"
    HAS_EMBEDDED_IMAGES = "hasEmbeddedImages"
    HAS_EXPRESSIONS = "hasExpressions"
    TOKEN_COUNT = "tokenCount"
    TOKEN_COUNT_SNAKE = "token_count"
    RATING = "rating"
    RATING_COUNT = "ratingCount"
    STAR_COUNT = "starCount"
    N_FAVORITES = "n_favorites"
    FAVORITES = "favorites"
    N_CHATS = "nChats"
    N_MESSAGES = "nMessages"
    TOKEN_DESCRIPTION_COUNT = "tokenDescriptionCount"
    TOKEN_PERSONALITY_COUNT = "tokenPersonalityCount"
    TOKEN_SCENARIO_COUNT = "tokenScenarioCount"
    TOKEN_MES_EXAMPLE_COUNT = "tokenMesExampleCount"
    TOKEN_FIRST_MESSAGE_COUNT = "tokenFirstMessageCount"
    TOKEN_SYSTEM_PROMPT_COUNT = "tokenSystemPromptCount"
    TOKEN_POST_HISTORY_COUNT = "tokenPostHistoryCount"
    CREATED = "created"
    CREATED_AT = "createdAt"
    ADDED = "added"
    UPDATED = "updated"
    LAST_MODIFIED = "lastModified"
    FULL_PATH = "fullPath"


class ChunkField(str, Enum):
    """Filterable attributes of a chunk document."""

    CARD_ID = "card_id"
    TAGS = "tags"
    SECTION = "section"
    CREATOR = "data.creator"
    CHARACTER_VERSION = "data.character_version"
    NSFW = "data.extensions.nsfw"
    LANGUAGE = "data.language"


CARD_FILTERABLE_FIELDS: frozenset[str] = frozenset(field.value for field in CardField)

# Card (or caller) field name -> chunk field name. Keys are matched case-insensitively.
CHUNK_FIELD_MAP: dict[str, ChunkField] = {
    "topics": ChunkField.TAGS,
    "tags": ChunkField.TAGS,
    "language": ChunkField.LANGUAGE,
    "creator": ChunkField.CREATOR,
    "author": ChunkField.CREATOR,
    **{field.value.lower(): field for field in ChunkField},
}

# Card-only attributes that have no counterpart in the chunk index.
CHUNK_UNSUPPORTED_FIELDS: frozenset[str] = frozenset(
    name.lower()
    for name in (
        *(field.value for field in CardField if field.value.lower() not in CHUNK_FIELD_MAP),
        "isFuzzed",
        "favoritedBool",
        "sourceSpecific",
        "scoreComposite",
        "scoreVelocity",
        "engagementScore",
        "engagementVelocity",
    )
)


def chunk_field_for(name: str) -> Optional[ChunkField]:
    """Return the chunk field a card field maps to, if any."""
    return CHUNK_FIELD_MAP.get(name.lower())


def is_chunk_unsupported(name: str) -> bool:
    return name.lower() in CHUNK_UNSUPPORTED_FIELDS


CHUNK_FILTERABLE_FIELDS: list[str] = [
    ChunkField.CARD_ID.value,
    ChunkField.TAGS.value,
    ChunkField.SECTION.value,
    ChunkField.CREATOR.value,
    ChunkField.CHARACTER_VERSION.value,
    ChunkField.NSFW.value,
    ChunkField.LANGUAGE.value,
]
CHUNK_DISTINCT_ATTRIBUTE = ChunkField.CARD_ID.value
CHUNK_RETRIEVED_ATTRIBUTES = [
    "id",
    "card_id",
    "section",
    "chunk_index",
    "text",
    "start_token",
    "end_token",
]

SEARCHABLE_FIELDS: list[str] = [
    "name",
    "tagline",
    "description",
    "platform_summary",
    "author",
    "tags",
    "topics",
    "source",
    "sourcePath",
    "sourceSpecific",
    "fullPath",
]


def _preset(attribute: str, direction: str) -> list[str]:
    return [f"{attribute}:{direction}", f"id:{direction}"]


SORT_PRESETS: dict[str, list[str]] = {
    "new": _preset("lastModified", "desc"),
    "old": _preset("lastModified", "asc"),
    "create_new": _preset("createdAt", "desc"),
    "create_old": _preset("createdAt", "asc"),
    "tokens_desc": _preset("tokenCount", "desc"),
    "tokens_asc": _preset("tokenCount", "asc"),
    "most_stars_desc": _preset("starCount", "desc"),
    "most_stars_asc": _preset("starCount", "asc"),
    "most_favs_desc": _preset("n_favorites", "desc"),
    "most_favs_asc": _preset("n_favorites", "asc"),
    "most_msgs_desc": _preset("nMessages", "desc"),
    "most_msgs_asc": _preset("nMessages", "asc"),
    "most_chats_desc": _preset("nChats", "desc"),
    "most_chats_asc": _preset("nChats", "asc"),
    "overall_rating_desc": _preset("scoreComposite", "desc"),
    "overall_rating_asc": _preset("scoreComposite", "asc"),
    "trending_desc": _preset("scoreVelocity", "desc"),
    "trending_asc": _preset("scoreVelocity", "asc"),
    "engagement_desc": _preset("engagementScore", "desc"),
    "engagement_asc": _preset("engagementScore", "asc"),
    "fresh_engagement_desc": _preset("engagementVelocity", "desc"),
    "fresh_engagement_asc": _preset("engagementVelocity", "asc"),
}
DEFAULT_SORT = "new"


def resolve_sort(sort: Optional[str]) -> Optional[list[str]]:
    """Map a sort preset to backend sort rules.

    ``None`` means "relevance order" and yields no rules; unknown presets fall back to ``new``.
    """
    if sort is None:
        return None
    return list(SORT_PRESETS.get(sort, SORT_PRESETS[DEFAULT_SORT]))


def sortable_attributes() -> list[str]:
    attributes: list[str] = []
    for rules in SORT_PRESETS.values():
        for rule in rules:
            attribute = rule.split(":", 1)[0]
            if attribute and attribute not in attributes:
                attributes.append(attribute)
    return attributes


TYPO_TOLERANCE = {"minWordSizeForTypos": {"oneTypo": 4, "twoTypos": 8}}


def default_card_index_settings() -> dict:
    """Settings applied to the lexical card index on a full rebuild."""
    return {
        "searchableAttributes": list(SEARCHABLE_FIELDS),
        "filterableAttributes": sorted(CARD_FILTERABLE_FIELDS),
        "sortableAttributes": sortable_attributes(),
        "displayedAttributes": ["*"],
        "typoTolerance": TYPO_TOLERANCE,
    }
