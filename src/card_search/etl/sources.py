"""Card text sources: the embedded PNG spec, the sidecar metadata file and the card row."""

import base64
import binascii
import json
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from loguru import logger

from card_search.etl.text import normalize_text
from card_search.services.documents import split_topics

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
SPEC_KEYWORD = "chara"

# Card-level sections in embedding order
CARD_SECTIONS = ("description", "personality", "scenario", "first_mes")
ALT_GREETING_SECTION = "alt_greeting"

SpecReader = Callable[[str], Optional[dict]]
MetadataReader = Callable[[str], Optional[dict]]


def card_file_paths(static_dir: Path, card_id: str) -> tuple[Path, Path]:
    """Return the (json, png) paths for a card: ``{static_dir}/{id[:2]}/{id}.*``."""
    folder = Path(static_dir) / card_id[:2]
    return folder / f"{card_id}.json", folder / f"{card_id}.png"


def read_png_spec(png_path: Path) -> Optional[dict]:
    """Decode the character spec stored in a PNG ``tEXt`` chunk keyed ``chara``.

    Returns None when the file is missing, is not a PNG, has no spec chunk, or
    the chunk is not base64-encoded JSON.
    """
    if not png_path.exists():
        return None
    data = png_path.read_bytes()
    if not data.startswith(PNG_SIGNATURE):
        return None

    offset = len(PNG_SIGNATURE)
    while offset + 8 <= len(data):
        (length,) = struct.unpack(">I", data[offset : offset + 4])
        chunk_type = data[offset + 4 : offset + 8].decode("ascii", errors="replace")
        chunk = data[offset + 8 : offset + 8 + length]
        if chunk_type == "tEXt":
            keyword, _, text = chunk.partition(b"\x00")
            if keyword.decode("latin-1").lower() == SPEC_KEYWORD:
                try:
                    return json.loads(base64.b64decode(text).decode("utf-8"))
                except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
                    logger.warning(f"Failed to parse embedded PNG spec in {png_path}: {e}")
                    return None
        offset += 12 + length
    return None


def read_metadata(json_path: Path) -> Optional[dict]:
    if not json_path.exists():
        return None
    try:
        return json.loads(json_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to read metadata JSON {json_path}: {e}")
        return None


class StaticFileSources:
    """Readers for the spec and sidecar files kept under the static directory."""

    def __init__(self, static_dir: Path):
        self.static_dir = Path(static_dir)

    def read_spec(self, card_id: str) -> Optional[dict]:
        _, png_path = card_file_paths(self.static_dir, card_id)
        return read_png_spec(png_path)

    def read_metadata(self, card_id: str) -> Optional[dict]:
        json_path, _ = card_file_paths(self.static_dir, card_id)
        return read_metadata(json_path)


def _first_present(*values: Any) -> Any:
    """First value that is not None (empty strings count as present)."""
    for value in values:
        if value is not None:
            return value
    return None


def collect_alternate_greetings(spec_data: Mapping, metadata: Mapping) -> list[str]:
    """Normalized, de-duplicated alternate greetings from every known location."""
    definition = metadata.get("definition") or {}
    candidates = [
        spec_data.get("alternate_greetings"),
        metadata.get("alternate_greetings"),
        (definition.get("data") or {}).get("alternate_greetings"),
        (metadata.get("card_data") or {}).get("alternate_greetings"),
        (metadata.get("cardData") or {}).get("alternate_greetings"),
    ]
    seen: set[str] = set()
    greetings: list[str] = []
    for candidate in candidates:
        if not isinstance(candidate, list):
            continue
        for entry in candidate:
            normalized = normalize_text(entry)
            if normalized and normalized not in seen:
                seen.add(normalized)
                greetings.append(normalized)
    return greetings


@dataclass
class CardText:
    """Everything the ETL embeds or stores for one card.

    Attributes:
        sections: Non-empty card-level sections in embedding order
        alternate_greetings: Normalized alternate greetings
        data: The ``data`` payload carried by card-vector documents
        tags: Lower-cased tags shared by the card and its chunks
        creator: Card creator (chunk filter attribute)
        character_version: Spec character version
        extensions: Spec extensions object
        language: Card language
    """

    sections: dict[str, str] = field(default_factory=dict)
    alternate_greetings: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    creator: str = ""
    character_version: Optional[str] = None
    extensions: Optional[dict] = None
    language: str = "unknown"

    @property
    def is_empty(self) -> bool:
        return not self.sections and not self.alternate_greetings


def gather_card_text(
    row: Mapping[str, Any], spec: Optional[Mapping], metadata: Optional[Mapping]
) -> CardText:
    """Merge the three sources.

    The embedded spec wins over the sidecar metadata, which wins over the card
    row. Only the description has a relational fallback.
    """
    spec_data = (spec or {}).get("data") or {}
    metadata = metadata or {}

    raw_sections = {
        "description": _first_present(
            spec_data.get("description"), metadata.get("description"), row.get("description")
        ),
        "personality": _first_present(spec_data.get("personality"), metadata.get("personality")),
        "scenario": _first_present(spec_data.get("scenario"), metadata.get("scenario")),
        "first_mes": _first_present(spec_data.get("first_mes"), metadata.get("first_mes")),
    }
    normalized = {name: normalize_text(raw_sections[name]) for name in CARD_SECTIONS}
    sections = {name: text for name, text in normalized.items() if text}
    greetings = collect_alternate_greetings(spec_data, metadata)

    spec_tags = spec_data.get("tags")
    if isinstance(spec_tags, list) and spec_tags:
        tags = split_topics(spec_tags)
    else:
        tags = split_topics(row.get("topics") or metadata.get("topics"))

    language = metadata.get("language") or row.get("language") or "unknown"
    creator = spec_data.get("creator") or metadata.get("creator") or row.get("author") or ""
    character_version = _first_present(
        spec_data.get("character_version"), metadata.get("character_version")
    )
    extensions = spec_data.get("extensions") or metadata.get("extensions") or None

    def token_count(column: str, metadata_key: Optional[str] = None) -> Any:
        return _first_present(row.get(column), metadata.get(metadata_key or column))

    data = {
        "name": spec_data.get("name") or metadata.get("name") or row.get("name") or "",
        "tagline": row.get("tagline") or metadata.get("tagline") or "",
        **{name: normalized[name] for name in CARD_SECTIONS},
        "mes_example": normalize_text(
            _first_present(spec_data.get("mes_example"), metadata.get("mes_example"))
        ),
        "alternate_greetings": greetings,
        "tags": tags,
        "topics": tags,
        "creator": creator,
        "character_version": character_version,
        "extensions": extensions,
        "language": language,
        "token_counts": {
            "total": token_count("tokenCount", "nTokens"),
            "description": token_count("tokenDescriptionCount"),
            "personality": token_count("tokenPersonalityCount"),
            "scenario": token_count("tokenScenarioCount"),
            "mes_example": token_count("tokenMesExampleCount"),
            "first_mes": token_count("tokenFirstMessageCount"),
            "system_prompt": token_count("tokenSystemPromptCount"),
            "post_history": token_count("tokenPostHistoryCount"),
        },
    }

    return CardText(
        sections=sections,
        alternate_greetings=greetings,
        data=data,
        tags=tags,
        creator=creator,
        character_version=character_version,
        extensions=extensions,
        language=language,
    )
