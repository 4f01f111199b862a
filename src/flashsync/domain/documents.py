"""
Remote document layout and record <-> document mapping.

Documents use camelCase keys and ISO-8601 timestamps so that data written by
older clients stays readable.
"""

from datetime import datetime, timezone
from typing import Any

from .constants import (
    ACCOUNTS_COLLECTION,
    CARD_SETS_COLLECTION,
    DEFAULT_EASINESS_FACTOR,
    FIRST_INTERVAL,
    LEGACY_PROGRESS_COLLECTION,
)
from .models import Card, CardSetProgress, FlashcardContent, RecallState, UserProfile

# ---------- Paths ----------


def account_path(account_id: str) -> str:
    return f"{ACCOUNTS_COLLECTION}/{account_id}"


def card_set_path(account_id: str, card_set_id: str) -> str:
    return f"{account_path(account_id)}/{CARD_SETS_COLLECTION}/{card_set_id}"


def legacy_progress_collection(account_id: str) -> str:
    return f"{account_path(account_id)}/{LEGACY_PROGRESS_COLLECTION}"


# ---------- Timestamps ----------


def encode_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def decode_datetime(value: Any) -> datetime | None:
    """Accept datetimes, ISO strings and epoch seconds; anything else maps to None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


# ---------- Cards ----------


def _content_to_document(content: FlashcardContent) -> dict[str, str]:
    return {"icon": content.icon, "title": content.title, "description": content.description}


def content_from_document(data: Any) -> FlashcardContent:
    if not isinstance(data, dict):
        return FlashcardContent(title=str(data) if data is not None else "")
    return FlashcardContent(
        icon=str(data.get("icon", "")),
        title=str(data.get("title", "")),
        description=str(data.get("description", "")),
    )


def recall_to_document(recall: RecallState) -> dict[str, Any]:
    return {
        "easinessFactor": recall.easiness_factor,
        "repetitions": recall.repetitions,
        "interval": recall.interval,
        "nextReviewDate": encode_datetime(recall.next_review_date),
        "lastReviewDate": encode_datetime(recall.last_review_date),
        "totalReviews": recall.total_reviews,
        "correctStreak": recall.correct_streak,
        "averageQuality": recall.average_quality,
    }


def recall_from_document(data: dict[str, Any]) -> RecallState:
    return RecallState(
        easiness_factor=float(data.get("easinessFactor", DEFAULT_EASINESS_FACTOR)),
        repetitions=int(data.get("repetitions", 0)),
        interval=int(data.get("interval", FIRST_INTERVAL)),
        next_review_date=decode_datetime(data.get("nextReviewDate")),
        last_review_date=decode_datetime(data.get("lastReviewDate")),
        total_reviews=int(data.get("totalReviews", 0)),
        correct_streak=int(data.get("correctStreak", 0)),
        average_quality=float(data.get("averageQuality", 0.0)),
    )


def card_to_document(card: Card) -> dict[str, Any]:
    return {
        "id": card.id,
        "cardSetId": card.card_set_id,
        "front": _content_to_document(card.front),
        "back": _content_to_document(card.back),
        **recall_to_document(card.recall),
        "isNew": card.is_new,
        "createdAt": encode_datetime(card.created_at),
        "updatedAt": encode_datetime(card.updated_at),
    }


def card_from_document(data: dict[str, Any], card_set_id: str) -> Card:
    return Card(
        id=str(data["id"]),
        card_set_id=str(data.get("cardSetId") or card_set_id),
        front=content_from_document(data.get("front")),
        back=content_from_document(data.get("back")),
        recall=recall_from_document(data),
        is_new=bool(data.get("isNew", int(data.get("totalReviews", 0)) == 0)),
        created_at=decode_datetime(data.get("createdAt")),
        updated_at=decode_datetime(data.get("updatedAt")),
    )


def cards_from_card_set_document(
    data: dict[str, Any] | None, card_set_id: str
) -> list[Card]:
    if not data:
        return []
    raw_cards = data.get("cards") or []
    return [
        card_from_document(raw, card_set_id)
        for raw in raw_cards
        if isinstance(raw, dict) and "id" in raw
    ]


# ---------- Progress ----------


def progress_to_document(progress: CardSetProgress) -> dict[str, Any]:
    return {
        "cardSetId": progress.card_set_id,
        "totalCards": progress.total_cards,
        "reviewedCards": progress.reviewed_cards,
        "progressPercentage": progress.progress_percentage,
        "masteredCards": progress.mastered_cards,
        "needPracticeCards": progress.need_practice_cards,
        "reviewedToday": progress.reviewed_today,
        "createdAt": encode_datetime(progress.created_at),
        "updatedAt": encode_datetime(progress.updated_at),
    }


def progress_from_document(data: dict[str, Any], card_set_id: str | None = None) -> CardSetProgress:
    return CardSetProgress(
        card_set_id=str(data.get("cardSetId") or card_set_id),
        total_cards=int(data.get("totalCards", 0)),
        reviewed_cards=int(data.get("reviewedCards") or 0),
        progress_percentage=int(data.get("progressPercentage") or 0),
        mastered_cards=int(data.get("masteredCards") or 0),
        need_practice_cards=int(data.get("needPracticeCards") or 0),
        reviewed_today=int(data.get("reviewedToday") or 0),
        created_at=decode_datetime(data.get("createdAt")),
        updated_at=decode_datetime(data.get("updatedAt")),
    )


# ---------- Profile ----------


def profile_from_document(account_id: str, data: dict[str, Any]) -> UserProfile:
    raw_progress = data.get("cardSetsProgress") or {}
    progress = {}
    if isinstance(raw_progress, dict):
        for card_set_id, entry in raw_progress.items():
            if isinstance(entry, dict):
                progress[card_set_id] = progress_from_document(entry, card_set_id)

    version = data.get("migrationVersion")
    return UserProfile(
        account_id=str(data.get("uid") or account_id),
        email=data.get("email"),
        display_name=data.get("displayName"),
        migration_version=int(version) if isinstance(version, int) else None,
        card_sets_progress=progress,
        created_at=decode_datetime(data.get("createdAt")),
        updated_at=decode_datetime(data.get("updatedAt")),
    )
