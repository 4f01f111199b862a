"""
Domain models for review scheduling and progress sync.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any, Literal, Mapping

from .constants import DEFAULT_EASINESS_FACTOR, FIRST_INTERVAL


class Quality(IntEnum):
    """
    Quality ratings accepted by the scheduler.

    A restricted subset of the classic 0-5 SM-2 scale, one value per review button.
    """

    SKIP = 0  # "Ask me again", never graded
    HARD = 2
    GOOD = 4
    EASY = 5


@dataclass(frozen=True)
class FlashcardContent:
    icon: str = ""
    title: str = ""
    description: str = ""


@dataclass(frozen=True)
class FlashcardData:
    """Raw card content as shipped in a seed card set."""

    id: str
    front: FlashcardContent
    back: FlashcardContent


@dataclass(frozen=True)
class RecallState:
    """
    SM-2 recall parameters for a single card.

    Attributes:
        easiness_factor: E-Factor, clamped to [1.3, 2.5].
        repetitions: Consecutive correct answers.
        interval: Days until the next review.
        next_review_date: Day the card becomes due.
        last_review_date: Day of the most recent graded review.
        total_reviews: Graded reviews ever recorded (never decreases).
        correct_streak: Current run of correct answers.
        average_quality: Running mean of quality ratings, in [0, 5].
    """

    easiness_factor: float = DEFAULT_EASINESS_FACTOR
    repetitions: int = 0
    interval: int = FIRST_INTERVAL
    next_review_date: datetime | None = None
    last_review_date: datetime | None = None
    total_reviews: int = 0
    correct_streak: int = 0
    average_quality: float = 0.0


@dataclass(frozen=True)
class Card:
    """A flashcard enriched with its recall state."""

    id: str
    card_set_id: str
    front: FlashcardContent
    back: FlashcardContent
    recall: RecallState = field(default_factory=RecallState)
    is_new: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    COMPLETE = "complete"


@dataclass(frozen=True)
class ReviewSession:
    """
    An ephemeral review session.

    Instances are never mutated; every event produces a new record with
    ``dataclasses.replace``. ``pending_progress`` holds the latest proposed
    recall state per card id (latest rating wins).
    """

    id: str
    cards: tuple[Card, ...]
    start_time: datetime
    total_cards: int
    current_index: int = 0
    state: SessionState = SessionState.ACTIVE
    is_showing_back: bool = False
    easy_count: int = 0
    hard_count: int = 0
    again_count: int = 0
    reviewed_card_ids: frozenset[str] = frozenset()
    pending_progress: Mapping[str, RecallState] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @property
    def reviewed_cards(self) -> int:
        return len(self.reviewed_card_ids)

    @property
    def is_complete(self) -> bool:
        return self.state is SessionState.COMPLETE

    @property
    def current_card(self) -> Card | None:
        if self.is_complete or self.current_index >= len(self.cards):
            return None
        return self.cards[self.current_index]


@dataclass
class CardSetProgress:
    """
    Consolidated per-account progress summary for one card set.

    Invariants: ``reviewed_cards <= total_cards`` and
    ``progress_percentage == round(100 * reviewed_cards / total_cards)``.
    """

    card_set_id: str
    total_cards: int
    reviewed_cards: int = 0
    progress_percentage: int = 0
    mastered_cards: int = 0
    need_practice_cards: int = 0
    reviewed_today: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class UserProfile:
    """Consolidated account profile holding progress for every card set."""

    account_id: str
    email: str | None = None
    display_name: str | None = None
    migration_version: int | None = None
    card_sets_progress: dict[str, CardSetProgress] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


SyncKind = Literal["progress", "cards", "profile"]


@dataclass
class BatchSyncOperation:
    """A queued intent to write something remotely."""

    kind: SyncKind
    card_set_id: str | None
    payload: Any
    timestamp: datetime
    retry_count: int = 0

    @property
    def key(self) -> tuple[str, str | None]:
        return (self.kind, self.card_set_id)


@dataclass
class MigrationResult:
    success: bool = False
    migrated_card_sets: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    total_read_operations: int = 0
    total_write_operations: int = 0
    skipped: bool = False  # Account was already on the current layout


@dataclass
class HybridSaveResult:
    """
    Outcome of the three-step session save.

    ``failed_step`` is 1 (ensure card set), 2 (card writes) or 3 (progress
    summary) when the save halted, ``None`` on success.
    """

    success: bool
    failed_step: int | None = None
    error: str | None = None
    progress: CardSetProgress | None = None
    read_operations: int = 0
    write_operations: int = 0


@dataclass
class CacheStats:
    read_operations: int
    write_operations: int
    cached_card_sets: int
    has_profile: bool
    last_sync_time: datetime | None
    is_dirty: bool
    queue_size: int
    status: str
