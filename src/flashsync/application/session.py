"""
Review session state machine.

Sequences a fixed list of cards, consumes rating events and accumulates the
per-card pending progress that is saved in one go when the session completes.

States: NOT_STARTED -> ACTIVE -> COMPLETE (terminal).
"""

import logging
from dataclasses import replace
from datetime import datetime
from types import MappingProxyType
from typing import Callable

from ulid import ULID

from flashsync.domain.errors import SessionError
from flashsync.domain.models import Card, Quality, RecallState, ReviewSession, SessionState

from . import scheduler
from .utils.common import utc_now

logger = logging.getLogger(__name__)


class SessionMachine:
    """
    Owns at most one review session at a time.

    Every transition builds a new ``ReviewSession`` record; the previous one is
    never mutated, so snapshots handed out earlier stay valid.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or utc_now
        self._session: ReviewSession | None = None

    # ---------- Accessors ----------

    @property
    def session(self) -> ReviewSession | None:
        return self._session

    @property
    def state(self) -> SessionState:
        if self._session is None:
            return SessionState.NOT_STARTED
        return self._session.state

    @property
    def current_card(self) -> Card | None:
        return self._session.current_card if self._session else None

    @property
    def pending_progress(self) -> MappingProxyType:
        if self._session is None:
            return MappingProxyType({})
        return MappingProxyType(dict(self._session.pending_progress))

    # ---------- Transitions ----------

    def start(self, cards: list[Card]) -> ReviewSession | None:
        """
        Start a session over ``cards``.

        An empty list is rejected as a no-op: the previous state is kept and
        None is returned.
        """
        if not cards:
            logger.info("Not starting review session: no cards to review")
            return None

        unique_ids = {card.id for card in cards}
        self._session = ReviewSession(
            id=str(ULID()),
            cards=tuple(cards),
            start_time=self._clock(),
            total_cards=len(unique_ids),
        )
        logger.info(f"Started review session {self._session.id} with {len(cards)} cards")
        return self._session

    def show_back(self) -> None:
        if self._session is None or self._session.is_complete:
            return
        self._session = replace(self._session, is_showing_back=True)

    def rate(self, card_id: str, quality: Quality | int) -> ReviewSession:
        """
        Record a rating for the current card and advance.

        SKIP re-queues the same card at the end and records nothing else.
        Any other rating runs the scheduler and stores the result in
        ``pending_progress`` (overwriting an earlier entry for the same card).

        Raises:
            SessionError: no active session, or ``card_id`` is not the current card.
            ValueError: ``quality`` is not a ``Quality`` value.
        """
        session = self._require_active()
        quality = Quality(quality)
        card = session.current_card
        if card is None or card.id != card_id:
            current = card.id if card else None
            raise SessionError(
                f"Cannot rate card '{card_id}': current card is '{current}'",
                context={"card_id": card_id, "current_card_id": current},
            )

        if quality is Quality.SKIP:
            session = replace(
                session,
                cards=session.cards + (card,),
                again_count=session.again_count + 1,
            )
            logger.debug(f"Skipped {card_id}; re-queued at position {len(session.cards) - 1}")
        else:
            session = self._apply_rating(session, card, quality)

        self._session = self._advance(session)
        return self._session

    def complete(self) -> ReviewSession | None:
        """Finish the session early. Ratings already given are kept."""
        if self._session is None:
            return None
        if not self._session.is_complete:
            self._session = replace(self._session, state=SessionState.COMPLETE)
        return self._session

    def reset(self) -> None:
        if self._session is not None:
            logger.debug(f"Reset review session {self._session.id}")
        self._session = None

    # ---------- Queries ----------

    def updated_cards(self) -> list[Card]:
        """Latest version of every unique card in the session, in first-seen order."""
        if self._session is None:
            return []
        latest: dict[str, Card] = {}
        for card in self._session.cards:
            latest.setdefault(card.id, card)
        for card_id, recall in self._session.pending_progress.items():
            if card_id in latest:
                latest[card_id] = replace(latest[card_id], recall=recall, is_new=False)
        return list(latest.values())

    # ---------- Internals ----------

    def _require_active(self) -> ReviewSession:
        if self._session is None or self._session.state is not SessionState.ACTIVE:
            raise SessionError(f"No active review session (state: {self.state.value})")
        return self._session

    def _apply_rating(self, session: ReviewSession, card: Card, quality: Quality) -> ReviewSession:
        # Rate against the latest recall state so a card revisited after a skip
        # builds on whatever was recorded for it earlier in this session.
        recall: RecallState = session.pending_progress.get(card.id, card.recall)
        result = scheduler.compute(recall, quality, self._clock())
        updated = replace(card, recall=result.to_recall_state(), is_new=False, updated_at=self._clock())

        pending = dict(session.pending_progress)
        pending[card.id] = updated.recall

        cards = tuple(updated if c.id == card.id else c for c in session.cards)

        if quality is Quality.HARD:
            counts = {"hard_count": session.hard_count + 1}
        else:
            counts = {"easy_count": session.easy_count + 1}

        logger.debug(
            f"Rated {card.id} q={int(quality)}: EF={updated.recall.easiness_factor:.2f} "
            f"interval={updated.recall.interval}d"
        )
        return replace(
            session,
            cards=cards,
            pending_progress=MappingProxyType(pending),
            reviewed_card_ids=session.reviewed_card_ids | {card.id},
            **counts,
        )

    def _advance(self, session: ReviewSession) -> ReviewSession:
        next_index = session.current_index + 1
        if next_index >= len(session.cards):
            logger.info(
                f"Review session {session.id} complete: {session.reviewed_cards} reviewed, "
                f"easy={session.easy_count} hard={session.hard_count} again={session.again_count}"
            )
            return replace(
                session,
                current_index=next_index,
                state=SessionState.COMPLETE,
                is_showing_back=False,
            )
        return replace(session, current_index=next_index, is_showing_back=False)
