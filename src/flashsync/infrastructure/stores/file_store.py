import json
import os
from pathlib import Path
from typing import Any

from flashsync.domain.errors import RemoteError

from .memory_store import InMemoryDocumentStore


class JsonFileDocumentStore(InMemoryDocumentStore):
    """
    InMemoryDocumentStore persisted to a single JSON file.

    The file is rewritten atomically (temp file + rename) on every mutation, before
    the change becomes visible in memory.
    """

    def __init__(self, path: Path):
        super().__init__(self._load(path))
        self.path = path

    @staticmethod
    def _load(path: Path) -> dict[str, dict[str, Any]]:
        if not path.exists():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise RemoteError(f"Cannot read document store {path}: {e}") from e
        if not isinstance(data, dict):
            raise RemoteError(f"Document store {path} is not a JSON object")
        return data

    def _persist(self, documents: dict[str, dict[str, Any]]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(documents, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except OSError as e:
            self.logger.error(f"Failed to persist document store to {self.path}: {e}")
            raise RemoteError(f"Cannot write document store {self.path}: {e}") from e
