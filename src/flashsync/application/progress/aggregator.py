"""
Progress aggregation.

Folds the pending per-card updates of one session into a single consolidated
CardSetProgress, so N card updates cost one summary write.

This is a pure computation module with no I/O.
"""

from dataclasses import replace
from datetime import datetime
from typing import Mapping

from flashsync.domain.constants import MASTERED_EASINESS_FACTOR, MASTERED_INTERVAL
from flashsync.domain.models import Card, CardSetProgress, RecallState

from ..utils.common import ensure_aware, round_half_up, start_of_day, utc_now


def apply_pending(cards: list[Card], pending_progress: Mapping[str, RecallState]) -> list[Card]:
    """
    Overlay pending recall states on the authoritative cards.

    Identity and content fields always come from the authoritative card.
    Pending entries for unknown card ids are ignored.
    """
    if not pending_progress:
        return list(cards)
    return [
        replace(card, recall=pending_progress[card.id], is_new=False)
        if card.id in pending_progress
        else card
        for card in cards
    ]


def _is_mastered(card: Card) -> bool:
    return (
        card.recall.easiness_factor >= MASTERED_EASINESS_FACTOR
        and card.recall.interval >= MASTERED_INTERVAL
    )


def _reviewed_today(card: Card, today: datetime) -> bool:
    if card.recall.total_reviews == 0 or card.recall.last_review_date is None:
        return False
    return ensure_aware(card.recall.last_review_date) >= today


def calculate_card_set_progress(
    cards: list[Card],
    card_set_id: str,
    now: datetime | None = None,
) -> CardSetProgress:
    """Summarize the current state of every card in a set."""
    now = now or utc_now()
    today = start_of_day(ensure_aware(now))

    total = len(cards)
    reviewed = sum(1 for card in cards if card.recall.total_reviews > 0)
    mastered = sum(1 for card in cards if _is_mastered(card))
    reviewed_today = sum(1 for card in cards if _reviewed_today(card, today))

    return CardSetProgress(
        card_set_id=card_set_id,
        total_cards=total,
        reviewed_cards=reviewed,
        progress_percentage=round_half_up(100 * reviewed / total) if total else 0,
        mastered_cards=mastered,
        need_practice_cards=reviewed - mastered,
        reviewed_today=reviewed_today,
        created_at=now,
        updated_at=now,
    )


def fold(
    pending_progress: Mapping[str, RecallState],
    authoritative_cards: list[Card],
    card_set_id: str,
    *,
    previous: CardSetProgress | None = None,
    now: datetime | None = None,
) -> CardSetProgress:
    """
    Consolidate one session's pending progress into a card-set summary.

    Args:
        pending_progress: card id -> proposed recall state (may be empty).
        authoritative_cards: Every card of the set as last persisted.
        card_set_id: The owning card set.
        previous: Earlier summary, used to keep the original ``created_at``.
        now: Clock override.
    """
    updated_cards = apply_pending(authoritative_cards, pending_progress)
    progress = calculate_card_set_progress(updated_cards, card_set_id, now)
    if previous is not None and previous.created_at is not None:
        progress.created_at = previous.created_at
    return progress


def create_progress_summary(
    before: CardSetProgress | None,
    after: CardSetProgress,
    pending_progress: Mapping[str, RecallState],
) -> str:
    """One-line human-readable summary of what a session changed."""
    before_reviewed = before.reviewed_cards if before else 0
    newly_learned = after.reviewed_cards - before_reviewed
    increase = after.progress_percentage - (before.progress_percentage if before else 0)
    return (
        f"Review session completed: {len(pending_progress)} cards reviewed, "
        f"{newly_learned} new cards learned, progress increased by {increase}% "
        f"({before_reviewed}->{after.reviewed_cards}/{after.total_cards})"
    )
