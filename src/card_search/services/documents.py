"""Card document construction for the lexical card index.

Ranking scores are pure functions of the source row and the build time:

- ``scoreComposite = stars + 2 * favorites``
- ``scoreVelocity = scoreComposite / max(1, days since created)``
- ``engagementScore = 1.5 * chats + 0.1 * messages + 2 * favorites + 0.5 * stars
  + max(0, rating - 3) * ratingCount * 0.2 + freshness_bonus(activity age)``
- ``engagementVelocity = engagementScore / max(1, days since last activity)``
"""

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

SECONDS_IN_DAY = 24 * 60 * 60

FEATURE_FLAG_COLUMNS = [
    "hasAlternateGreetings",
    "hasLorebook",
    "hasEmbeddedLorebook",
    "hasLinkedLorebook",
    "hasExampleDialogues",
    "hasSystemPrompt",
    "hasGallery",
    "hasEmbeddedImages",
    "hasExpressions",
]

SECTION_TOKEN_COLUMNS = [
    "tokenDescriptionCount",
    "tokenPersonalityCount",
    "tokenScenarioCount",
    "tokenMesExampleCount",
    "tokenFirstMessageCount",
    "tokenSystemPromptCount",
    "tokenPostHistoryCount",
]


def freshness_bonus(age_days: float) -> int:
    """Step bonus for recently active cards."""
    if age_days <= 3:
        return 25
    if age_days <= 7:
        return 15
    if age_days <= 14:
        return 8
    return 0


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse the archive's timestamp strings (``YYYY-MM-DD HH:MM:SS`` or ISO 8601).

    Naive values are taken as UTC. Unparsable values yield None.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip().replace(" ", "T", 1)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def age_in_days(moment: datetime, now: datetime) -> float:
    return max(1.0, (now - moment).total_seconds() / SECONDS_IN_DAY)


def _number(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if number != number:  # NaN
        return 0
    return int(number) if number.is_integer() else number


def split_topics(topics: Any) -> list[str]:
    """Lower-cased, comma-separated topic list."""
    if not topics:
        return []
    if isinstance(topics, (list, tuple)):
        items = topics
    else:
        items = str(topics).split(",")
    return [str(tag).strip().lower() for tag in items if str(tag).strip()]


def compute_scores(row: Mapping[str, Any], now: Optional[datetime] = None) -> dict[str, float]:
    """Derived ranking scores for one card row."""
    now = now or datetime.now(timezone.utc)
    stars = _number(row.get("starCount"))
    favorites = _number(row.get("n_favorites"))
    chats = _number(row.get("nChats"))
    messages = _number(row.get("nMessages"))
    rating = _number(row.get("rating"))
    rating_votes = _number(row.get("ratingCount"))

    score_composite = stars * 1 + favorites * 2

    created = parse_timestamp(row.get("createdAt"))
    updated = parse_timestamp(row.get("lastModified"))

    created_age_days = 1.0
    score_velocity = float(score_composite)
    if created is not None:
        created_age_days = age_in_days(created, now)
        score_velocity = score_composite / created_age_days

    last_activity = updated or created
    activity_age_days = created_age_days
    if last_activity is not None:
        activity_age_days = age_in_days(last_activity, now)

    rating_contribution = max(0, rating - 3) * rating_votes * 0.2
    engagement_score = (
        chats * 1.5
        + messages * 0.1
        + favorites * 2
        + stars * 0.5
        + rating_contribution
        + freshness_bonus(activity_age_days)
    )

    return {
        "scoreComposite": score_composite,
        "scoreVelocity": score_velocity,
        "engagementScore": engagement_score,
        "engagementVelocity": engagement_score / activity_age_days,
    }


def build_card_document(
    row: Optional[Mapping[str, Any]], now: Optional[datetime] = None
) -> Optional[dict[str, Any]]:
    """Build a complete card document from a relational row (column-name keys)."""
    if not row:
        return None

    card_id = str(row["id"])
    topics = split_topics(row.get("topics"))
    token_count = _number(row.get("tokenCount"))
    favorites = _number(row.get("n_favorites"))
    created_time = row.get("createdAt") or None
    updated_time = row.get("lastModified") or None

    document: dict[str, Any] = {
        "id": card_id,
        "name": row.get("name") or "",
        "tagline": row.get("tagline") or "",
        "description": row.get("description") or "",
        "platform_summary": row.get("description") or "",
        "author": row.get("author") or "",
        "source": row.get("source") or "chub",
        "sourceId": row.get("sourceId") or card_id,
        "sourcePath": row.get("sourcePath") or "",
        "sourceSpecific": row.get("sourcePath") or "",
        "fullPath": row.get("fullPath") or row.get("sourcePath") or "",
        "tags": topics,
        "topics": list(topics),
        "type": "character",
        "language": row.get("language") or "unknown",
        "visibility": row.get("visibility") or "unknown",
        "favorited": 1 if row.get("favorited") else 0,
        "favoritedBool": bool(row.get("favorited")),
        "tokenCount": token_count,
        "token_count": token_count,
        "rating": _number(row.get("rating")),
        "ratingCount": _number(row.get("ratingCount")),
        "starCount": _number(row.get("starCount")),
        "n_favorites": favorites,
        "favorites": favorites,
        "nChats": _number(row.get("nChats")),
        "nMessages": _number(row.get("nMessages")),
        "created": created_time,
        "createdAt": created_time,
        "added": created_time,
        "updated": updated_time,
        "lastModified": updated_time,
    }
    for column in FEATURE_FLAG_COLUMNS:
        document[column] = bool(row.get(column))
    for column in SECTION_TOKEN_COLUMNS:
        document[column] = _number(row.get(column))

    document.update(compute_scores(row, now))
    return document
