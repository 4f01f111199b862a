"""
Review facade used by the CLI and the HTTP service.

Wires the session machine to progress aggregation, validation and the cache
manager: when a session completes, its pending progress is folded into one
summary, checked, and persisted with the three-step session save.
"""

import logging
from datetime import datetime
from typing import Callable

from flashsync.domain.constants import DEFAULT_REVIEW_CARDS
from flashsync.domain.errors import CardSetError, ValidationError
from flashsync.domain.models import (
    CacheStats,
    Card,
    CardSetProgress,
    HybridSaveResult,
    Quality,
    ReviewSession,
    SessionState,
)
from flashsync.domain.ports import SeedLoader

from . import scheduler
from .cache_manager import CacheManager
from .progress import aggregator, validator
from .session import SessionMachine
from .utils.common import utc_now

logger = logging.getLogger(__name__)


class ReviewService:
    """
    Producer-side API for one account.

    Args:
        cache: The account's cache manager.
        seed_loader: Supplies content for card sets never persisted remotely.
        clock: Time source, shared with the session machine.
    """

    def __init__(
        self,
        cache: CacheManager,
        seed_loader: SeedLoader | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.cache = cache
        self._seed_loader = seed_loader
        self._clock = clock or utc_now
        self.sessions = SessionMachine(clock=self._clock)

        self._cards: dict[str, list[Card]] = {}
        self._seed_cards: dict[str, list[Card]] = {}
        self._session_base: list[Card] = []
        self._saved_session_id: str | None = None
        self.last_save_result: HybridSaveResult | None = None

    async def initialize(self) -> bool:
        return await self.cache.initialize()

    # ---------- Card sets ----------

    async def load_card_set(self, card_set_id: str) -> list[Card]:
        """
        Cards for ``card_set_id``: persisted cards when they exist, otherwise
        fresh cards built from seed content.

        Raises:
            CardSetError: no persisted cards and no usable seed data.
            FlashsyncError: remote read failed.
        """
        if card_set_id in self._cards:
            return list(self._cards[card_set_id])

        cards = await self.cache.load_cards(card_set_id)
        if not cards:
            if self._seed_loader is None:
                raise CardSetError("CARD_SET_NOT_FOUND", card_set_id)
            data = await self._seed_loader.load(card_set_id)
            cards = scheduler.cards_from_seed(data, card_set_id, self._clock())
            self._seed_cards[card_set_id] = cards
            logger.info(f"Card set {card_set_id} not persisted yet; using {len(cards)} seed cards")

        self._cards[card_set_id] = cards
        return list(cards)

    def get_due_cards(self, all_cards: list[Card], as_of: datetime | None = None) -> list[Card]:
        """Due cards, most overdue first."""
        as_of = as_of or self._clock()
        return scheduler.sort_by_priority(scheduler.get_due_cards(all_cards, as_of), as_of)

    def build_review_queue(
        self,
        all_cards: list[Card],
        size: int = DEFAULT_REVIEW_CARDS,
        as_of: datetime | None = None,
    ) -> list[Card]:
        return self.get_due_cards(all_cards, as_of)[:size]

    # ---------- Session ----------

    @property
    def session(self) -> ReviewSession | None:
        return self.sessions.session

    def start_session(self, cards: list[Card]) -> ReviewSession | None:
        session = self.sessions.start(cards)
        if session is not None:
            card_set_id = cards[0].card_set_id
            base = self._cards.get(card_set_id)
            if base is None:
                base = list({card.id: card for card in cards}.values())
            self._session_base = list(base)
        return session

    def show_back(self) -> None:
        self.sessions.show_back()

    async def rate(self, card_id: str, quality: Quality | int) -> ReviewSession:
        """
        Rate the current card. When this completes the session, its progress
        is saved before returning.
        """
        session = self.sessions.rate(card_id, quality)
        if session.is_complete:
            await self._save_session(session)
        return session

    async def complete_session(self) -> HybridSaveResult | None:
        """End the session now and save whatever was rated."""
        session = self.sessions.complete()
        if session is None:
            return None
        return await self._save_session(session)

    def reset_session(self) -> None:
        """
        Discard the current session. A save already in flight keeps running;
        nothing more can be rated afterwards.
        """
        self.sessions.reset()
        self._session_base = []

    async def _save_session(self, session: ReviewSession) -> HybridSaveResult | None:
        if session.state is not SessionState.COMPLETE or session.id == self._saved_session_id:
            return None
        self._saved_session_id = session.id

        pending = dict(session.pending_progress)
        if not pending:
            logger.info(f"Session {session.id} completed without graded reviews; nothing to save")
            return None

        card_set_id = session.cards[0].card_set_id
        base = self._session_base
        previous = self.cache.get_progress(card_set_id)
        progress = aggregator.fold(pending, base, card_set_id, previous=previous, now=self._clock())

        validation = validator.check(progress, pending, base)
        if not validation.is_valid:
            error = ValidationError(
                f"Invalid aggregated progress: {', '.join(validation.errors)}",
                context={"card_set_id": card_set_id, **validation.details},
            )
            self.cache.last_error = error.to_app_error()
            logger.error(error.message)
            self.last_save_result = HybridSaveResult(success=False, error=error.message)
            return self.last_save_result

        logger.debug(f"Progress aggregation validated: {validation.details}")
        seed = self._seed_cards.get(card_set_id) or base
        result = await self.cache.save_session_progress(card_set_id, pending, progress, seed)
        if result.success:
            self._cards[card_set_id] = aggregator.apply_pending(base, pending)
            self._seed_cards.pop(card_set_id, None)
            logger.info(aggregator.create_progress_summary(previous, progress, pending))
        self.last_save_result = result
        return result

    # ---------- Progress ----------

    def get_card_set_progress(self, card_set_id: str) -> CardSetProgress | None:
        return self.cache.get_progress(card_set_id)

    def get_all_progress(self) -> dict[str, CardSetProgress]:
        return self.cache.get_all_progress()

    async def reset_progress(self, card_set_id: str) -> CardSetProgress:
        """Explicitly reset a card set's progress and cards."""
        progress = await self.cache.reset_card_set(card_set_id)
        self._cards.pop(card_set_id, None)
        self._seed_cards.pop(card_set_id, None)
        return progress

    async def force_sync(self) -> bool:
        return await self.cache.force_sync_now()

    def get_cache_stats(self) -> CacheStats:
        return self.cache.get_cache_stats()
