import copy
import logging
from datetime import datetime, timezone
from typing import Any, Callable

from flashsync.domain.ports import SERVER_TIMESTAMP, DocumentStore, WriteOp


def deep_merge(target: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Merge ``updates`` into ``target`` in place. Nested dicts merge, everything else replaces."""
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
    return target


def resolve_server_timestamps(data: Any, now: str) -> Any:
    if data is SERVER_TIMESTAMP:
        return now
    if isinstance(data, dict):
        return {k: resolve_server_timestamps(v, now) for k, v in data.items()}
    if isinstance(data, list):
        return [resolve_server_timestamps(v, now) for v in data]
    return data


class InMemoryDocumentStore(DocumentStore):
    """
    Dict-backed document store.

    Documents are keyed by their full slash-separated path. Reads return deep
    copies, so callers never alias stored state.
    """

    def __init__(
        self,
        documents: dict[str, dict[str, Any]] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.logger = logging.getLogger(__name__)
        self._documents: dict[str, dict[str, Any]] = copy.deepcopy(documents or {})
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.reads = 0
        self.writes = 0
        self.deletes = 0

    @property
    def documents(self) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self._documents)

    async def get(self, path: str) -> dict[str, Any] | None:
        self.reads += 1
        data = self._documents.get(path)
        return copy.deepcopy(data) if data is not None else None

    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        staged = dict(self._documents)
        self._apply_set(staged, path, data, merge)
        self._commit(staged)
        self.writes += 1

    async def delete(self, path: str) -> None:
        staged = dict(self._documents)
        staged.pop(path, None)
        self._commit(staged)
        self.deletes += 1

    async def batch_write(self, writes: list[WriteOp]) -> None:
        # Stage every write first, so a bad write leaves nothing half-applied.
        staged = dict(self._documents)
        for write in writes:
            if write.kind == "delete":
                staged.pop(write.path, None)
            else:
                self._apply_set(staged, write.path, write.data, write.merge)
        self._commit(staged)
        self.writes += sum(1 for w in writes if w.kind == "set")
        self.deletes += sum(1 for w in writes if w.kind == "delete")

    async def list_documents(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        self.reads += 1
        prefix = collection.rstrip("/") + "/"
        return [
            (path[len(prefix):], copy.deepcopy(data))
            for path, data in sorted(self._documents.items())
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        ]

    def _apply_set(
        self,
        documents: dict[str, dict[str, Any]],
        path: str,
        data: dict[str, Any],
        merge: bool,
    ) -> None:
        resolved = resolve_server_timestamps(data, self._clock().isoformat())
        if merge and path in documents:
            documents[path] = deep_merge(copy.deepcopy(documents[path]), resolved)
        else:
            documents[path] = copy.deepcopy(resolved)

    def _commit(self, staged: dict[str, dict[str, Any]]) -> None:
        self._persist(staged)
        self._documents = staged

    def _persist(self, documents: dict[str, dict[str, Any]]) -> None:
        """Hook called with the new state before a mutation becomes visible."""
        pass
