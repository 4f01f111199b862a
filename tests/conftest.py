from collections import defaultdict
from datetime import datetime, timedelta, timezone

import pytest

from flashsync.application.scheduler import initial_recall_state
from flashsync.domain.models import Card, FlashcardContent, RecallState
from flashsync.infrastructure.stores import InMemoryDocumentStore

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.replace(hour=0)


class FlakyStore(InMemoryDocumentStore):
    """
    In-memory store that can be told to fail specific calls.

    ``fail("set", None, err)`` lets the first ``set`` through and raises ``err``
    on the second one.
    """

    def __init__(self, documents=None):
        super().__init__(documents)
        self.failures = defaultdict(list)
        self.calls = defaultdict(int)
        self.before_batch = None

    def fail(self, method, *errors):
        self.failures[method].extend(errors)

    def _maybe_fail(self, method):
        self.calls[method] += 1
        if self.failures[method]:
            error = self.failures[method].pop(0)
            if error is not None:
                raise error

    async def get(self, path):
        self._maybe_fail("get")
        return await super().get(path)

    async def set(self, path, data, merge=False):
        self._maybe_fail("set")
        return await super().set(path, data, merge)

    async def delete(self, path):
        self._maybe_fail("delete")
        return await super().delete(path)

    async def batch_write(self, writes):
        if self.before_batch is not None:
            await self.before_batch()
        self._maybe_fail("batch_write")
        return await super().batch_write(writes)

    async def list_documents(self, collection):
        self._maybe_fail("list_documents")
        return await super().list_documents(collection)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def make_card():
    """Factory for cards in card set ``set-1``, due today unless overridden."""

    def _make(card_id, card_set_id="set-1", **recall):
        state = initial_recall_state(NOW)
        if recall:
            state = RecallState(**{**vars(state), **recall})
        return Card(
            id=card_id,
            card_set_id=card_set_id,
            front=FlashcardContent(title=f"front {card_id}"),
            back=FlashcardContent(title=f"back {card_id}"),
            recall=state,
            is_new=state.total_reviews == 0,
            created_at=NOW - timedelta(days=30),
            updated_at=NOW - timedelta(days=30),
        )

    return _make


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def flaky_store():
    return FlakyStore()


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() and the config file location to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setattr(
        "flashsync.application.config.CONFIG_FILE", home / ".config/flashsync/config.toml"
    )
    return home
