"""Lexical card search with federated OR-phrase queries."""

import functools
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from loguru import logger

from card_search.config import CardSearchConfig
from card_search.errors import SearchBackendError, SearchIndexDisabledError
from card_search.filters import normalize_filter_expression, parse_query_phrases
from card_search.index_schema import DEFAULT_SORT, resolve_sort
from card_search.search_backend import SearchBackendClient
from card_search.services.documents import parse_timestamp

FEDERATION_SORT_UNSUPPORTED = "Unknown field `sort` inside `.federation`"
MAX_HITS_PER_PAGE = 100
MAX_MANUAL_OR_LIMIT = 1000
MANUAL_OR_HEADROOM = 100


@dataclass
class LexicalSearchResult:
    ids: list[str]
    total: int
    applied_filter: str
    raw: Optional[dict] = None
    fallback: Optional[str] = None


def extract_hits(response: Optional[dict]) -> tuple[list[dict], int]:
    """Hits and total from a plain or federated search response."""
    response = response or {}
    container = response.get("federation") if isinstance(response.get("federation"), dict) else None
    if container is None or "hits" not in container:
        container = response
    hits = container.get("hits")
    hits = hits if isinstance(hits, list) else []
    return hits, _total_of(container, len(hits))


def _total_of(container: dict, default: int) -> int:
    for key in ("estimatedTotalHits", "totalHits"):
        value = container.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return int(value)
    return default


def hit_ids(hits: list[dict]) -> list[str]:
    return [str(hit["id"]) for hit in hits if isinstance(hit, dict) and hit.get("id") is not None]


def is_federation_sort_unsupported(error: BaseException) -> bool:
    return FEDERATION_SORT_UNSUPPORTED in str(error)


def normalize_sortable_value(value: Any) -> Any:
    """Reduce a hit value to something comparable.

    Booleans become 0/1, numeric strings become numbers, date-like strings
    become POSIX timestamps and any other string is lower-cased.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, datetime):
        return value.timestamp()
    if isinstance(value, str):
        stripped = value.strip()
        if stripped:
            try:
                return float(stripped)
            except ValueError:
                pass
        moment = parse_timestamp(stripped)
        if moment is not None:
            return moment.timestamp()
        return value.lower()
    return value


def compare_hits(hit_a: dict, hit_b: dict, sort_rules: list[str]) -> int:
    """Multi-key comparator over backend sort rules (``field:asc|desc``).

    Nulls always sort last, ties fall through to the next rule. Values of
    mismatched kinds compare by their string form.
    """
    for rule in sort_rules:
        if not rule or not isinstance(rule, str):
            continue
        field_name, _, direction_raw = rule.partition(":")
        if not field_name:
            continue
        direction = -1 if (direction_raw or "asc").lower() == "desc" else 1
        value_a = normalize_sortable_value(hit_a.get(field_name))
        value_b = normalize_sortable_value(hit_b.get(field_name))

        if value_a == value_b:
            continue
        if value_a is None:
            return 1
        if value_b is None:
            return -1

        if isinstance(value_a, str) != isinstance(value_b, str):
            value_a, value_b = str(value_a), str(value_b)
        if value_a < value_b:
            return -direction
        if value_a > value_b:
            return direction
    return 0


class LexicalSearchService:
    """Plain and federated keyword search against the lexical card index."""

    def __init__(self, client: SearchBackendClient, config: CardSearchConfig):
        self.client = client
        self.config = config

    @property
    def index_uid(self) -> str:
        return self.config.search_index or "cards"

    def ensure_enabled(self) -> None:
        if not self.config.search_index_enabled:
            raise SearchIndexDisabledError("Meilisearch is not configured")

    async def search(
        self,
        text: str = "",
        filter: Optional[str] = "",
        page: int = 1,
        limit: int = 48,
        sort: Optional[str] = DEFAULT_SORT,
    ) -> LexicalSearchResult:
        """Search the card index.

        A text query whose top level is an OR of several phrases runs as one
        federated multi-search; anything else runs as a single search.

        Raises:
            SearchIndexDisabledError: lexical search is not configured
            SearchBackendError: the backend rejected or failed the request
        """
        self.ensure_enabled()

        normalized_filter = normalize_filter_expression(filter)
        hits_per_page = max(1, min(int(limit or 1), MAX_HITS_PER_PAGE))
        page_number = max(1, int(page or 1))
        offset = (page_number - 1) * hits_per_page
        sort_rules = resolve_sort(sort)

        parsed = parse_query_phrases(text)
        phrases = parsed.phrases
        query_text = phrases[0] if phrases else (text or "").strip()

        try:
            if parsed.used_or and len(phrases) > 1:
                logger.debug(f"Federating {len(phrases)} OR phrases: {phrases}")
                result = await self._federated_search(
                    phrases, normalized_filter, hits_per_page, offset, sort_rules
                )
                result.applied_filter = normalized_filter
                return result

            payload: dict[str, Any] = {
                "q": query_text,
                "page": page_number,
                "hitsPerPage": hits_per_page,
            }
            if sort_rules:
                payload["sort"] = sort_rules
            if normalized_filter:
                payload["filter"] = normalized_filter

            response = await self.client.search(self.index_uid, payload)
        except SearchBackendError as e:
            logger.error(f"Lexical search failed for text={text!r} filter={normalized_filter!r}: {e}")
            raise

        hits, total = extract_hits(response)
        return LexicalSearchResult(
            ids=hit_ids(hits),
            total=total,
            applied_filter=normalized_filter,
            raw=response,
        )

    async def _federated_search(
        self,
        phrases: list[str],
        filter: str,
        limit: int,
        offset: int,
        sort_rules: Optional[list[str]],
    ) -> LexicalSearchResult:
        try:
            return await self._multi_search(phrases, filter, limit, offset, sort_rules)
        except SearchBackendError as e:
            if not is_federation_sort_unsupported(e):
                raise
            logger.warning("Federation sort unsupported, falling back to manual OR search")
            return await self._manual_or_search(phrases, filter, limit, offset, sort_rules)

    def _phrase_queries(
        self, phrases: list[str], filter: str, sort_rules: Optional[list[str]]
    ) -> list[dict[str, Any]]:
        queries = []
        for phrase in phrases:
            phrase = phrase.strip() if isinstance(phrase, str) else ""
            if not phrase:
                continue
            query: dict[str, Any] = {"indexUid": self.index_uid, "q": phrase}
            if filter:
                query["filter"] = filter
            if sort_rules:
                query["sort"] = sort_rules
            queries.append(query)
        return queries

    async def _multi_search(
        self,
        phrases: list[str],
        filter: str,
        limit: int,
        offset: int,
        sort_rules: Optional[list[str]],
    ) -> LexicalSearchResult:
        queries = self._phrase_queries(phrases, filter, sort_rules)
        if not queries:
            return LexicalSearchResult(ids=[], total=0, applied_filter=filter)

        payload = {
            "federation": {"limit": max(1, min(limit, MAX_HITS_PER_PAGE)), "offset": max(0, offset)},
            "queries": queries,
        }
        response = await self.client.multi_search(payload)
        hits, total = extract_hits(response)
        return LexicalSearchResult(ids=hit_ids(hits), total=total, applied_filter=filter, raw=response)

    async def _manual_or_search(
        self,
        phrases: list[str],
        filter: str,
        limit: int,
        offset: int,
        sort_rules: Optional[list[str]],
    ) -> LexicalSearchResult:
        """Run each phrase on its own, merge by id and sort in-process."""
        limit = max(1, min(limit, MAX_HITS_PER_PAGE))
        offset = max(0, offset)
        per_query_limit = min(MAX_MANUAL_OR_LIMIT, offset + limit + MANUAL_OR_HEADROOM)

        merged: dict[str, dict] = {}
        for query in self._phrase_queries(phrases, filter, sort_rules):
            payload = {key: value for key, value in query.items() if key != "indexUid"}
            payload.update({"limit": per_query_limit, "offset": 0})
            response = await self.client.search(self.index_uid, payload)
            hits, _ = extract_hits(response)
            for hit in hits:
                if not isinstance(hit, dict) or hit.get("id") is None:
                    continue
                merged.setdefault(str(hit["id"]), hit)

        combined = list(merged.values())
        if sort_rules:
            combined.sort(key=functools.cmp_to_key(lambda a, b: compare_hits(a, b, sort_rules)))

        page_hits = combined[offset : offset + limit]
        total = len(combined)
        return LexicalSearchResult(
            ids=[str(hit["id"]) for hit in page_hits],
            total=total,
            applied_filter=filter,
            raw={"hits": page_hits, "estimatedTotalHits": total, "fallback": "manual-or"},
            fallback="manual-or",
        )
