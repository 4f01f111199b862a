"""
Consistency checks for a proposed CardSetProgress before it is persisted.

Pure function; callers abort persistence on any failure instead of clamping.
The explicit progress reset path does not go through here.
"""

from dataclasses import dataclass, field
from typing import Mapping

from flashsync.domain.models import Card, CardSetProgress, RecallState


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    details: dict[str, int] = field(default_factory=dict)


def check(
    proposed: CardSetProgress,
    pending_progress: Mapping[str, RecallState],
    authoritative_cards: list[Card],
) -> ValidationResult:
    """
    Validate ``proposed`` against the pre-session card state.

    Rules:
        - progress_percentage within [0, 100]
        - reviewed_cards <= total_cards
        - reviewed_cards not below the pre-session reviewed count (no regression)
        - total_cards equal to the number of authoritative cards
        - no negative counters
    """
    errors: list[str] = []

    baseline = sum(1 for card in authoritative_cards if card.recall.total_reviews > 0)
    by_id = {card.id: card for card in authoritative_cards}
    newly_reviewed = sum(
        1
        for card_id in pending_progress
        if card_id in by_id and by_id[card_id].recall.total_reviews == 0
    )

    if not 0 <= proposed.progress_percentage <= 100:
        errors.append(f"Invalid progress percentage: {proposed.progress_percentage}%")

    if proposed.reviewed_cards > proposed.total_cards:
        errors.append(
            f"Reviewed cards exceed total: {proposed.reviewed_cards} > {proposed.total_cards}"
        )

    if proposed.reviewed_cards < baseline:
        errors.append(
            f"Reviewed cards decreased: was {baseline}, now {proposed.reviewed_cards}"
        )

    if proposed.total_cards != len(authoritative_cards):
        errors.append(
            f"Total cards mismatch: expected {len(authoritative_cards)}, "
            f"got {proposed.total_cards}"
        )

    for name in ("total_cards", "reviewed_cards", "mastered_cards", "need_practice_cards", "reviewed_today"):
        value = getattr(proposed, name)
        if value < 0:
            errors.append(f"Negative {name}: {value}")

    return ValidationResult(
        is_valid=not errors,
        errors=errors,
        details={
            "baseline_reviewed_cards": baseline,
            "expected_reviewed_cards": baseline + newly_reviewed,
            "actual_reviewed_cards": proposed.reviewed_cards,
            "reviewed_in_session": len(pending_progress),
        },
    )
