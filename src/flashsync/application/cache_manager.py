"""
Per-account cache with optimistic updates and debounced batch sync.

The cache holds the last-known consolidated profile and the card lists of the
card sets touched in this process. Reads are served from the snapshot without
remote calls. Writes update the snapshot immediately, are queued, and are
flushed as one batch after a quiet period.

Status lifecycle: EMPTY -> LOADED -> (DIRTY <-> SYNCING) -> LOADED.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from flashsync.domain import documents
from flashsync.domain.constants import (
    BACKOFF_BASE_DELAY,
    BACKOFF_MAX_ATTEMPTS,
    MAX_SYNC_RETRY_ATTEMPTS,
    SYNC_INTERVAL,
    SYNC_RETRY_DELAY,
)
from flashsync.domain.errors import AppError, FlashsyncError
from flashsync.domain.models import (
    BatchSyncOperation,
    CacheStats,
    Card,
    CardSetProgress,
    HybridSaveResult,
    RecallState,
    UserProfile,
)
from flashsync.domain.ports import SERVER_TIMESTAMP, DocumentStore, WriteOp

from .migration import MigrationService
from .progress.aggregator import apply_pending
from .retry import classify_error, retry_with_backoff
from .utils.common import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheStatus(str, Enum):
    EMPTY = "empty"
    LOADED = "loaded"
    DIRTY = "dirty"
    SYNCING = "syncing"


class _SaveStepFailed(Exception):
    def __init__(self, step: int, error: FlashsyncError):
        super().__init__(error.message)
        self.step = step
        self.error = error


class CacheManager:
    """
    Owned cache for a single account.

    Not safe for concurrent mutation: every call is expected to come from the
    same event loop. A single in-flight flag keeps batch syncs from overlapping.
    """

    def __init__(
        self,
        store: DocumentStore,
        account_id: str,
        migration: MigrationService | None = None,
        *,
        sync_delay: float = SYNC_INTERVAL,
        retry_delay: float = SYNC_RETRY_DELAY,
        max_retry_attempts: int = MAX_SYNC_RETRY_ATTEMPTS,
        backoff_base_delay: float = BACKOFF_BASE_DELAY,
        backoff_max_attempts: int = BACKOFF_MAX_ATTEMPTS,
        clock: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self.account_id = account_id
        self._migration = migration
        self._sync_delay = sync_delay
        self._retry_delay = retry_delay
        self._max_retry_attempts = max_retry_attempts
        self._backoff_base_delay = backoff_base_delay
        self._backoff_max_attempts = backoff_max_attempts
        self._clock = clock or utc_now

        self._sync_task: asyncio.Task | None = None
        self._reset_state()

    def _reset_state(self) -> None:
        self._profile: UserProfile | None = None
        self._card_sets: dict[str, list[Card]] = {}
        self._queue: list[BatchSyncOperation] = []
        self._is_dirty = False
        self._syncing = False
        self._read_operations = 0
        self._write_operations = 0
        self._last_sync_time: datetime | None = None
        self.last_error: AppError | None = None

    # ---------- Lifecycle ----------

    @property
    def status(self) -> CacheStatus:
        if self._profile is None:
            return CacheStatus.EMPTY
        if self._syncing:
            return CacheStatus.SYNCING
        if self._is_dirty:
            return CacheStatus.DIRTY
        return CacheStatus.LOADED

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def profile(self) -> UserProfile | None:
        return self._profile

    @property
    def is_dirty(self) -> bool:
        return self._is_dirty

    async def initialize(self) -> bool:
        """
        Load the account profile with one remote read.

        Runs the migration service first when one is configured. A missing
        profile yields an empty snapshot. Returns False (and sets
        ``last_error``) if the profile could not be read.
        """
        if self._profile is not None:
            return True

        logger.info(f"Loading profile for account {self.account_id}")
        migration = self._migration
        if migration is not None:
            reads_before = migration.read_operations
            writes_before = migration.write_operations
        try:
            if migration is not None:
                profile = await migration.auto_migrate_and_load(self.account_id)
            else:
                self._read_operations += 1
                data = await self._call(
                    lambda: self._store.get(documents.account_path(self.account_id))
                )
                profile = (
                    documents.profile_from_document(self.account_id, data) if data else None
                )
        except Exception as e:
            error = classify_error(e)
            self.last_error = error.to_app_error()
            logger.error(f"Failed to load profile for {self.account_id}: {error.message}")
            return False
        finally:
            # Probe, migration and load all count against this account
            if migration is not None:
                self._read_operations += migration.read_operations - reads_before
                self._write_operations += migration.write_operations - writes_before

        if profile is None:
            logger.info(f"No profile for {self.account_id}; starting with an empty snapshot")
            profile = UserProfile(account_id=self.account_id)

        self._profile = profile
        self._last_sync_time = self._clock()
        self._is_dirty = False
        logger.info(
            f"Profile cached with {len(profile.card_sets_progress)} card set progress records"
        )
        return True

    def clear(self) -> None:
        """Drop every cached value and cancel the pending sync."""
        logger.info(f"Clearing cache for account {self.account_id}")
        self._cancel_scheduled_sync()
        self._reset_state()

    # ---------- Reads (snapshot only) ----------

    def get_progress(self, card_set_id: str) -> CardSetProgress | None:
        if self._profile is None:
            logger.debug(f"No cached profile; no progress for {card_set_id}")
            return None
        progress = self._profile.card_sets_progress.get(card_set_id)
        if progress is not None:
            logger.debug(f"Served progress for {card_set_id} from cache")
        return progress

    def get_all_progress(self) -> dict[str, CardSetProgress]:
        if self._profile is None:
            return {}
        return dict(self._profile.card_sets_progress)

    def cache_card_set(self, card_set_id: str, cards: list[Card]) -> None:
        self._card_sets[card_set_id] = list(cards)
        logger.debug(f"Cached {len(cards)} cards for {card_set_id}")

    def get_cached_cards(self, card_set_id: str) -> list[Card] | None:
        cards = self._card_sets.get(card_set_id)
        return list(cards) if cards is not None else None

    async def load_cards(self, card_set_id: str) -> list[Card]:
        """
        Cards persisted for ``card_set_id``, from the cache or with one read.

        Returns an empty list when the card set was never persisted.

        Raises:
            FlashsyncError: classified remote failure after retries.
        """
        cached = self._card_sets.get(card_set_id)
        if cached is not None:
            logger.debug(f"Served {len(cached)} cards for {card_set_id} from cache")
            return list(cached)

        path = documents.card_set_path(self.account_id, card_set_id)
        self._read_operations += 1
        data = await self._call(lambda: self._store.get(path))
        cards = documents.cards_from_card_set_document(data, card_set_id)
        if cards:
            self.cache_card_set(card_set_id, cards)
        return cards

    async def preload_card_sets(self, card_set_ids: list[str]) -> list[str]:
        """
        Warm the card cache. Returns the ids that now have cached cards.

        Card sets that are already cached cost nothing. Read failures are
        logged and skipped.
        """
        logger.info(f"Preloading {len(card_set_ids)} card sets")
        loaded = []
        for card_set_id in card_set_ids:
            try:
                cards = await self.load_cards(card_set_id)
            except FlashsyncError as e:
                logger.warning(f"Failed to preload card set {card_set_id}: {e.message}")
                continue
            if cards:
                loaded.append(card_set_id)
        return loaded

    # ---------- Optimistic writes ----------

    def update_progress_optimistic(self, card_set_id: str, progress: CardSetProgress) -> bool:
        """
        Apply ``progress`` to the snapshot now and queue it for batch sync.

        Returns False when no profile is loaded.
        """
        if self._profile is None:
            logger.warning(f"Cannot update progress for {card_set_id}: no cached profile")
            return False

        now = self._clock()
        progress = replace(progress, updated_at=now)
        self._profile.card_sets_progress[card_set_id] = progress
        self.queue_operation(
            BatchSyncOperation(kind="progress", card_set_id=card_set_id, payload=progress, timestamp=now)
        )
        return True

    def queue_operation(self, operation: BatchSyncOperation) -> None:
        """Queue an operation, replacing any queued one with the same kind and card set."""
        self._queue = [op for op in self._queue if op.key != operation.key]
        self._queue.append(operation)
        self._is_dirty = True
        logger.debug(f"Queued {operation.kind} operation (queue size: {len(self._queue)})")
        self._schedule_batch_sync(self._sync_delay)

    # ---------- Batch sync ----------

    def _schedule_batch_sync(self, delay: float) -> None:
        self._cancel_scheduled_sync()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; batch sync not scheduled")
            return
        self._sync_task = loop.create_task(self._delayed_sync(delay))
        logger.debug(f"Batch sync scheduled in {delay:g}s")

    def _cancel_scheduled_sync(self) -> None:
        if self._sync_task is not None:
            self._sync_task.cancel()
            self._sync_task = None

    async def _delayed_sync(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # Detach first so the sync can reschedule without cancelling itself.
        self._sync_task = None
        await self.perform_batch_sync()

    async def perform_batch_sync(self) -> bool:
        """
        Flush the queue as one batch write.

        Returns True when the queue was written (or was already empty), False
        when the write failed or another sync is in flight.
        """
        if self._syncing:
            logger.debug("Batch sync already in progress")
            return False
        if not self._queue:
            logger.debug("No operations to sync")
            return True

        operations = self._queue
        self._queue = []
        writes = self._build_writes(operations)
        self._syncing = True
        logger.info(f"Performing batch sync of {len(operations)} operations ({len(writes)} writes)")
        try:
            await self._store.batch_write(writes)
        except Exception as e:
            self._handle_sync_failure(operations, classify_error(e))
            return False
        finally:
            self._syncing = False

        self._write_operations += len(writes)
        if not self._queue:
            self._is_dirty = False
        self._last_sync_time = self._clock()
        self.last_error = None
        logger.info(f"Batch sync completed for {len(operations)} operations")
        return True

    def _build_writes(self, operations: list[BatchSyncOperation]) -> list[WriteOp]:
        account_update: dict[str, Any] = {}
        progress_updates: dict[str, Any] = {}
        writes: list[WriteOp] = []

        for op in operations:
            if op.kind == "progress":
                doc = documents.progress_to_document(op.payload)
                doc["updatedAt"] = SERVER_TIMESTAMP
                progress_updates[op.card_set_id] = doc
            elif op.kind == "profile":
                account_update.update(op.payload)
            elif op.kind == "cards":
                writes.append(
                    WriteOp.set(
                        documents.card_set_path(self.account_id, op.card_set_id),
                        {
                            "cardSetId": op.card_set_id,
                            "cards": [documents.card_to_document(card) for card in op.payload],
                            "updatedAt": SERVER_TIMESTAMP,
                        },
                        merge=True,
                    )
                )

        if progress_updates:
            account_update["cardSetsProgress"] = progress_updates
        if account_update:
            account_update["updatedAt"] = SERVER_TIMESTAMP
            writes.insert(
                0, WriteOp.set(documents.account_path(self.account_id), account_update, merge=True)
            )
        return writes

    def _handle_sync_failure(
        self, operations: list[BatchSyncOperation], error: FlashsyncError
    ) -> None:
        retrying: list[BatchSyncOperation] = []
        dropped: list[BatchSyncOperation] = []
        for op in operations:
            op.retry_count += 1
            if op.retry_count < self._max_retry_attempts:
                retrying.append(op)
            else:
                dropped.append(op)

        # Anything queued while the write was in flight is newer.
        newer = {op.key for op in self._queue}
        self._queue = [op for op in retrying if op.key not in newer] + self._queue

        if dropped:
            self.last_error = AppError(
                code=error.code,
                message=(
                    f"Failed to sync {len(dropped)} operations after "
                    f"{self._max_retry_attempts} attempts: {error.message}"
                ),
                retryable=True,
                context={"card_set_ids": [op.card_set_id for op in dropped]},
            )
            logger.error(f"Batch sync failed, dropping {len(dropped)} operations: {error.message}")
        else:
            logger.warning(f"Batch sync failed ({error.code}): {error.message}")

        if self._queue:
            logger.info(f"Retrying {len(self._queue)} operations in {self._retry_delay:g}s")
            self._schedule_batch_sync(self._retry_delay)

    async def force_sync_now(self) -> bool:
        """Cancel the debounce timer and sync immediately."""
        self._cancel_scheduled_sync()
        return await self.perform_batch_sync()

    # ---------- Session save ----------

    async def save_session_progress(
        self,
        card_set_id: str,
        pending_progress: Mapping[str, RecallState],
        progress: CardSetProgress,
        seed_cards: list[Card],
    ) -> HybridSaveResult:
        """
        Persist a completed session in three ordered steps, halting on the
        first failure:

            1. ensure the card set document exists (created from ``seed_cards``
               if absent; progress is never touched here)
            2. write the updated cards in one document write
            3. write the consolidated progress summary

        The snapshot is updated before any remote call and is not rolled back.
        If step 3 fails the summary is queued so batch sync retries it.
        """
        result = HybridSaveResult(success=False, progress=progress)
        if self._profile is not None:
            progress = replace(progress, updated_at=self._clock())
            self._profile.card_sets_progress[card_set_id] = progress
            result.progress = progress

        card_set_path = documents.card_set_path(self.account_id, card_set_id)
        reads_before, writes_before = self._read_operations, self._write_operations
        try:
            existing = await self._ensure_card_set(card_set_id, card_set_path, seed_cards)
            updated = await self._write_cards(card_set_id, card_set_path, existing, pending_progress)
            await self._write_progress_summary(card_set_id, progress)
        except _SaveStepFailed as failure:
            result.failed_step = failure.step
            result.error = failure.error.message
            self.last_error = failure.error.to_app_error()
            logger.error(f"Session save halted at step {failure.step}: {failure.error.message}")
            if failure.step == 3:
                self.queue_operation(
                    BatchSyncOperation(
                        kind="progress",
                        card_set_id=card_set_id,
                        payload=progress,
                        timestamp=self._clock(),
                    )
                )
        else:
            result.success = True
            self.cache_card_set(card_set_id, updated)
            self._queue = [op for op in self._queue if op.key != ("progress", card_set_id)]
            if not self._queue:
                self._is_dirty = False
            self._last_sync_time = self._clock()
            logger.info(
                f"Saved session for {card_set_id}: {len(pending_progress)} card updates "
                f"in {self._write_operations - writes_before} writes"
            )

        result.read_operations = self._read_operations - reads_before
        result.write_operations = self._write_operations - writes_before
        return result

    async def _ensure_card_set(
        self, card_set_id: str, path: str, seed_cards: list[Card]
    ) -> list[Card]:
        try:
            self._read_operations += 1
            data = await self._call(lambda: self._store.get(path))
            existing = documents.cards_from_card_set_document(data, card_set_id)
            if existing:
                logger.debug(f"Card set {card_set_id} exists with {len(existing)} cards")
                return existing
            if not seed_cards:
                raise FlashsyncError(f"No seed cards available to create card set {card_set_id}")

            logger.info(f"Creating card set {card_set_id} from {len(seed_cards)} seed cards")
            doc = {
                "cardSetId": card_set_id,
                "cards": [documents.card_to_document(card) for card in seed_cards],
                "createdAt": SERVER_TIMESTAMP,
                "updatedAt": SERVER_TIMESTAMP,
            }
            await self._call(lambda: self._store.set(path, doc))
            self._write_operations += 1
            return list(seed_cards)
        except Exception as e:
            raise _SaveStepFailed(1, classify_error(e)) from e

    async def _write_cards(
        self,
        card_set_id: str,
        path: str,
        existing: list[Card],
        pending_progress: Mapping[str, RecallState],
    ) -> list[Card]:
        updated = apply_pending(existing, pending_progress)
        doc = {
            "cardSetId": card_set_id,
            "cards": [documents.card_to_document(card) for card in updated],
            "updatedAt": SERVER_TIMESTAMP,
        }
        try:
            await self._call(lambda: self._store.set(path, doc, merge=True))
        except Exception as e:
            raise _SaveStepFailed(2, classify_error(e)) from e
        self._write_operations += 1
        return updated

    async def _write_progress_summary(self, card_set_id: str, progress: CardSetProgress) -> None:
        summary = documents.progress_to_document(progress)
        summary["updatedAt"] = SERVER_TIMESTAMP
        doc = {"cardSetsProgress": {card_set_id: summary}, "updatedAt": SERVER_TIMESTAMP}
        try:
            await self._call(
                lambda: self._store.set(documents.account_path(self.account_id), doc, merge=True)
            )
        except Exception as e:
            raise _SaveStepFailed(3, classify_error(e)) from e
        self._write_operations += 1

    # ---------- Reset ----------

    async def reset_card_set(self, card_set_id: str) -> CardSetProgress:
        """
        Explicitly reset a card set: delete its cards document and zero its
        summary in one batch. Skips progress validation.

        Raises:
            FlashsyncError: classified remote failure after retries.
        """
        previous = self.get_progress(card_set_id)
        cached = self._card_sets.get(card_set_id)
        now = self._clock()
        total = len(cached) if cached else (previous.total_cards if previous else 0)
        zeroed = CardSetProgress(
            card_set_id=card_set_id, total_cards=total, created_at=now, updated_at=now
        )

        summary = documents.progress_to_document(zeroed)
        writes = [
            WriteOp.delete(documents.card_set_path(self.account_id, card_set_id)),
            WriteOp.set(
                documents.account_path(self.account_id),
                {"cardSetsProgress": {card_set_id: summary}, "updatedAt": SERVER_TIMESTAMP},
                merge=True,
            ),
        ]
        await self._call(lambda: self._store.batch_write(writes))
        self._write_operations += len(writes)

        self._queue = [op for op in self._queue if op.card_set_id != card_set_id]
        if not self._queue:
            self._is_dirty = False
        self._card_sets.pop(card_set_id, None)
        if self._profile is not None:
            self._profile.card_sets_progress[card_set_id] = zeroed
        logger.info(f"Reset progress for card set {card_set_id}")
        return zeroed

    # ---------- Stats ----------

    def get_cache_stats(self) -> CacheStats:
        return CacheStats(
            read_operations=self._read_operations,
            write_operations=self._write_operations,
            cached_card_sets=len(self._card_sets),
            has_profile=self._profile is not None,
            last_sync_time=self._last_sync_time,
            is_dirty=self._is_dirty,
            queue_size=len(self._queue),
            status=self.status.value,
        )

    async def _call(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await retry_with_backoff(
            operation,
            max_attempts=self._backoff_max_attempts,
            base_delay=self._backoff_base_delay,
        )
