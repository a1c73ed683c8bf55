"""Text normalization, hashing and chunking for the embedding ETL."""

import hashlib
import math
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class TextSlice:
    """One chunk window of a section.

    Attributes:
        text: Trimmed window text
        start: Approximate token offset of the window within the section
    """

    text: str
    start: int


def approx_token_count(text: str) -> int:
    """Four characters per token."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def normalize_text(value: Any) -> str:
    if not value or not isinstance(value, str):
        return ""
    return value.replace("\r\n", "\n").strip()


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def split_into_chunks(text: Any, target: int = 1200, overlap: int = 300) -> list[TextSlice]:
    """Split text into overlapping character windows of ``target`` characters.

    Consecutive windows share ``overlap`` characters. Text no longer than
    ``target`` yields a single window.
    """
    cleaned = normalize_text(text)
    if not cleaned:
        return []
    if len(cleaned) <= target:
        return [TextSlice(cleaned, 0)]

    # overlap below target keeps the window advancing
    step_back = min(max(0, overlap), target - 1)

    slices: list[TextSlice] = []
    start = 0
    while start < len(cleaned):
        end = min(len(cleaned), start + target)
        slices.append(TextSlice(cleaned[start:end].strip(), approx_token_count(cleaned[:start])))
        if end >= len(cleaned):
            break
        start = max(0, end - step_back)
    return slices
