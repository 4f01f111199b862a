"""
One-time migration from the fragmented progress layout to the consolidated one.

Legacy accounts store one document per card set under
``accounts/{id}/cardSetProgress``. The current layout keeps every summary in
the ``cardSetsProgress`` map of the account document, so loading all progress
costs a single read.
"""

import logging
from typing import Any

from flashsync.domain import documents
from flashsync.domain.constants import CURRENT_MIGRATION_VERSION
from flashsync.domain.models import CardSetProgress, MigrationResult, UserProfile
from flashsync.domain.ports import SERVER_TIMESTAMP, DocumentStore, WriteOp

from .retry import classify_error

logger = logging.getLogger(__name__)


def _validate_legacy(doc_id: str, data: dict[str, Any]) -> CardSetProgress:
    card_set_id = data.get("cardSetId")
    total_cards = data.get("totalCards")
    if not isinstance(card_set_id, str) or not card_set_id:
        raise ValueError(f"Invalid progress document {doc_id}: missing cardSetId")
    if not isinstance(total_cards, int) or isinstance(total_cards, bool):
        raise ValueError(f"Invalid progress document {doc_id}: totalCards must be an integer")
    return documents.progress_from_document(data, card_set_id)


def _is_current(data: dict[str, Any] | None) -> bool:
    return (
        data is not None
        and isinstance(data.get("cardSetsProgress"), dict)
        and data.get("migrationVersion") == CURRENT_MIGRATION_VERSION
    )


class MigrationService:
    """Detects and upgrades legacy accounts. Safe to run repeatedly."""

    def __init__(self, store: DocumentStore):
        self._store = store
        self.read_operations = 0
        self.write_operations = 0

    async def needs_migration(self, account_id: str) -> bool:
        """
        True when the profile is missing, lacks the current version marker,
        or legacy progress documents still exist.

        If the remote state cannot be read, migration is assumed to be needed.
        """
        try:
            self.read_operations += 1
            data = await self._store.get(documents.account_path(account_id))
            if data is None:
                logger.info(f"No profile for account {account_id}; migration needed")
                return True
            if not _is_current(data):
                return True
            self.read_operations += 1
            legacy = await self._store.list_documents(
                documents.legacy_progress_collection(account_id)
            )
            return bool(legacy)
        except Exception as e:
            logger.warning(f"Could not determine migration status for {account_id}: {e}")
            return True

    async def migrate(self, account_id: str) -> MigrationResult:
        """
        Consolidate legacy progress documents into the account profile.

        Malformed legacy documents are recorded in ``errors`` and skipped, but
        still deleted. Entries already present in the consolidated map win over
        legacy ones. The profile write and the deletes go out as one batch.
        """
        result = MigrationResult()
        profile_path = documents.account_path(account_id)

        try:
            self.read_operations += 1
            existing = await self._store.get(profile_path)
            result.total_read_operations += 1
            self.read_operations += 1
            legacy_docs = await self._store.list_documents(
                documents.legacy_progress_collection(account_id)
            )
            result.total_read_operations += 1
        except Exception as e:
            error = classify_error(e)
            result.errors.append(f"Migration failed: {error.message}")
            logger.error(f"Migration read failed for {account_id}: {error.message}")
            return result

        if _is_current(existing) and not legacy_docs:
            logger.debug(f"Account {account_id} already on schema v{CURRENT_MIGRATION_VERSION}")
            result.success = True
            result.skipped = True
            return result

        current_progress = (existing or {}).get("cardSetsProgress")
        if not isinstance(current_progress, dict):
            current_progress = {}

        consolidated: dict[str, Any] = {}
        for doc_id, data in legacy_docs:
            try:
                progress = _validate_legacy(doc_id, data)
            except ValueError as e:
                logger.warning(str(e))
                result.errors.append(str(e))
                continue
            if progress.card_set_id in current_progress or progress.card_set_id in consolidated:
                logger.debug(f"Keeping existing progress for {progress.card_set_id}")
                continue
            consolidated[progress.card_set_id] = documents.progress_to_document(progress)
            result.migrated_card_sets.append(progress.card_set_id)

        profile_update: dict[str, Any] = {
            "uid": account_id,
            "migrationVersion": CURRENT_MIGRATION_VERSION,
            "cardSetsProgress": consolidated,
            "lastMigrationDate": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        }
        if existing is None:
            profile_update["createdAt"] = SERVER_TIMESTAMP

        writes = [WriteOp.set(profile_path, profile_update, merge=True)]
        collection = documents.legacy_progress_collection(account_id)
        writes.extend(WriteOp.delete(f"{collection}/{doc_id}") for doc_id, _ in legacy_docs)

        try:
            await self._store.batch_write(writes)
        except Exception as e:
            error = classify_error(e)
            result.errors.append(f"Migration failed: {error.message}")
            result.migrated_card_sets = []
            logger.error(f"Migration batch failed for {account_id}: {error.message}")
            return result

        result.total_write_operations = len(writes)
        self.write_operations += len(writes)
        result.success = True
        logger.info(
            f"Migrated account {account_id}: {len(result.migrated_card_sets)} card sets, "
            f"{len(result.errors)} errors, "
            f"{result.total_read_operations + result.total_write_operations} operations"
        )
        return result

    async def load_profile(self, account_id: str) -> UserProfile | None:
        """Load the consolidated profile with a single read."""
        self.read_operations += 1
        data = await self._store.get(documents.account_path(account_id))
        if data is None:
            logger.debug(f"No profile document for account {account_id}")
            return None
        profile = documents.profile_from_document(account_id, data)
        logger.info(
            f"Loaded profile for {account_id} with "
            f"{len(profile.card_sets_progress)} card set progress records"
        )
        return profile

    async def auto_migrate_and_load(self, account_id: str) -> UserProfile | None:
        """
        Migrate if needed, then load.

        A failed migration is logged and the profile is loaded as it stands.
        Load failures propagate.
        """
        try:
            if await self.needs_migration(account_id):
                result = await self.migrate(account_id)
                if not result.success:
                    logger.warning(
                        f"Migration incomplete for {account_id}: {'; '.join(result.errors)}"
                    )
        except Exception as e:
            logger.warning(f"Migration for {account_id} failed, loading current state: {e}")
        return await self.load_profile(account_id)
