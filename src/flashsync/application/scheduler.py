"""
SM-2 scheduler.

Turns a quality rating into updated recall parameters. This is a pure
computation module with no I/O.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from flashsync.domain.constants import (
    CORRECT_QUALITY_THRESHOLD,
    DIFFICULT_EASINESS_FACTOR,
    FIRST_INTERVAL,
    MAX_EASINESS_FACTOR,
    MIN_EASINESS_FACTOR,
    SECOND_INTERVAL,
)
from flashsync.domain.models import Card, FlashcardData, Quality, RecallState

from .utils.common import ensure_aware, round_half_up, start_of_day, utc_now


@dataclass(frozen=True)
class SM2Result:
    """Updated recall parameters plus whether the card should come back today."""

    easiness_factor: float
    repetitions: int
    interval: int
    next_review_date: datetime
    last_review_date: datetime
    total_reviews: int
    correct_streak: int
    average_quality: float
    should_repeat_today: bool

    def to_recall_state(self) -> RecallState:
        return RecallState(
            easiness_factor=self.easiness_factor,
            repetitions=self.repetitions,
            interval=self.interval,
            next_review_date=self.next_review_date,
            last_review_date=self.last_review_date,
            total_reviews=self.total_reviews,
            correct_streak=self.correct_streak,
            average_quality=self.average_quality,
        )


def _easiness_factor(current: float, quality: int) -> float:
    """EF' = EF + (0.1 - (5-q) * (0.08 + (5-q) * 0.02)), clamped to [1.3, 2.5]."""
    miss = 5 - quality
    new_ef = current + (0.1 - miss * (0.08 + miss * 0.02))
    return max(MIN_EASINESS_FACTOR, min(MAX_EASINESS_FACTOR, new_ef))


def interval_for(repetitions: int, easiness_factor: float) -> int:
    """
    Interval in days once a card has ``repetitions`` consecutive correct answers.

    f(0) = 1, f(1) = 6, f(n) = round(f(n-1) * EF).
    """
    if repetitions <= 0:
        return FIRST_INTERVAL
    interval = SECOND_INTERVAL
    for _ in range(repetitions - 1):
        interval = round_half_up(interval * easiness_factor)
    return interval


def _average_quality(current: float, total_reviews: int, quality: int) -> float:
    if total_reviews == 0:
        return float(quality)
    return (current * total_reviews + quality) / (total_reviews + 1)


def compute(
    current: RecallState,
    quality: Quality | int,
    review_date: datetime | None = None,
) -> SM2Result:
    """
    Apply one SM-2 review.

    Args:
        current: Recall parameters before the review.
        quality: One of the ``Quality`` values. SKIP is accepted here and graded
            as a failed recall; the session machine never passes it.
        review_date: When the review happened (defaults to now). Normalized to
            day granularity.

    Raises:
        ValueError: if ``quality`` is not a ``Quality`` value.
    """
    q = int(Quality(quality))
    day = start_of_day(review_date if review_date is not None else utc_now())

    new_ef = _easiness_factor(current.easiness_factor, q)

    if q >= CORRECT_QUALITY_THRESHOLD:
        repetitions = current.repetitions + 1
        interval = interval_for(repetitions, new_ef)
        correct_streak = current.correct_streak + 1
        repeat_today = False
    else:
        interval = FIRST_INTERVAL
        repetitions = 0
        correct_streak = 0
        repeat_today = True

    return SM2Result(
        easiness_factor=new_ef,
        repetitions=repetitions,
        interval=interval,
        next_review_date=day + timedelta(days=interval),
        last_review_date=day,
        total_reviews=current.total_reviews + 1,
        correct_streak=correct_streak,
        average_quality=_average_quality(current.average_quality, current.total_reviews, q),
        should_repeat_today=repeat_today,
    )


def review_card(card: Card, quality: Quality | int, review_date: datetime | None = None) -> Card:
    """Return ``card`` with the scheduler output merged in."""
    result = compute(card.recall, quality, review_date)
    return replace(
        card,
        recall=result.to_recall_state(),
        is_new=False,
        updated_at=review_date or utc_now(),
    )


def initial_recall_state(created: datetime | None = None) -> RecallState:
    """
    Recall state for a brand new card.

    New cards are due on their creation day. The last review date is set to
    the day before so they never count as reviewed today.
    """
    day = start_of_day(created or utc_now())
    return RecallState(next_review_date=day, last_review_date=day - timedelta(days=1))


def cards_from_seed(
    data: list[FlashcardData], card_set_id: str, now: datetime | None = None
) -> list[Card]:
    """Fresh, never-reviewed cards for seed content."""
    now = now or utc_now()
    recall = initial_recall_state(now)
    return [
        Card(
            id=item.id,
            card_set_id=card_set_id,
            front=item.front,
            back=item.back,
            recall=recall,
            is_new=True,
            created_at=now,
            updated_at=now,
        )
        for item in data
    ]


def is_due(card: Card, as_of: datetime | None = None) -> bool:
    """A card is due when its next review day is on or before ``as_of``'s day."""
    if card.recall.next_review_date is None:
        return True
    today = start_of_day(ensure_aware(as_of or utc_now()))
    return start_of_day(ensure_aware(card.recall.next_review_date)) <= today


def get_due_cards(cards: list[Card], as_of: datetime | None = None) -> list[Card]:
    as_of = as_of or utc_now()
    return [card for card in cards if is_due(card, as_of)]


def sort_by_priority(cards: list[Card], as_of: datetime | None = None) -> list[Card]:
    """
    Most overdue first; ties broken by lower easiness factor (harder cards first).
    """
    today = start_of_day(ensure_aware(as_of or utc_now()))

    def key(card: Card) -> tuple[int, float]:
        if card.recall.next_review_date is None:
            days = 0
        else:
            days = (start_of_day(ensure_aware(card.recall.next_review_date)) - today).days
        return (days, card.recall.easiness_factor)

    return sorted(cards, key=key)


@dataclass
class ReviewStats:
    total_cards: int = 0
    due_cards: int = 0
    overdue_cards: int = 0
    mastered_cards: int = 0
    difficult_cards: int = 0
    average_easiness_factor: float = 0.0
    total_reviews: int = 0
    average_quality: float = 0.0


def calculate_review_stats(cards: list[Card], as_of: datetime | None = None) -> ReviewStats:
    """
    Dashboard statistics for a list of cards.

    Mastered here means at least 3 consecutive correct answers with EF >= 2.0;
    difficult means EF below 1.8.
    """
    if not cards:
        return ReviewStats()

    today = start_of_day(ensure_aware(as_of or utc_now()))
    stats = ReviewStats(total_cards=len(cards))
    ef_sum = 0.0
    quality_sum = 0.0

    for card in cards:
        recall = card.recall
        if is_due(card, today):
            stats.due_cards += 1
            if (
                recall.next_review_date is not None
                and start_of_day(ensure_aware(recall.next_review_date)) < today
            ):
                stats.overdue_cards += 1
        if recall.repetitions >= 3 and recall.easiness_factor >= 2.0:
            stats.mastered_cards += 1
        if recall.easiness_factor < DIFFICULT_EASINESS_FACTOR:
            stats.difficult_cards += 1

        ef_sum += recall.easiness_factor
        stats.total_reviews += recall.total_reviews
        quality_sum += recall.average_quality * recall.total_reviews

    stats.average_easiness_factor = ef_sum / len(cards)
    if stats.total_reviews:
        stats.average_quality = quality_sum / stats.total_reviews
    return stats
