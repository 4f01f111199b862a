"""
Ports (interfaces) for remote persistence and seed data.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

from .models import FlashcardData


class _ServerTimestamp:
    """Sentinel replaced by the store with its own clock at write time."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class WriteOp:
    """A single write inside a batch."""

    kind: Literal["set", "delete"]
    path: str
    data: dict[str, Any] = field(default_factory=dict)
    merge: bool = False

    @classmethod
    def set(cls, path: str, data: dict[str, Any], merge: bool = False) -> "WriteOp":
        return cls(kind="set", path=path, data=data, merge=merge)

    @classmethod
    def delete(cls, path: str) -> "WriteOp":
        return cls(kind="delete", path=path)


class DocumentStore(ABC):
    """
    Port for a remote key/document service.

    Guarantees per-document atomicity (a write never lands half-applied) and
    deep merging of nested maps when ``merge=True``. Nothing is guaranteed
    across documents, except that a ``batch_write`` is applied all-or-nothing.

    Implementations:
        - InMemoryDocumentStore: dict-backed, used by tests and the memory backend.
        - JsonFileDocumentStore: the memory store persisted to a JSON file.
        - HttpDocumentStore: REST document service over httpx.

    Failures surface as ``RemoteError`` subclasses.
    """

    @abstractmethod
    async def get(self, path: str) -> dict[str, Any] | None:
        """Return the document at ``path`` or None when it does not exist."""
        pass

    @abstractmethod
    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        """Create or replace (``merge=False``) or deep-merge the document."""
        pass

    @abstractmethod
    async def batch_write(self, writes: list[WriteOp]) -> None:
        pass

    @abstractmethod
    async def delete(self, path: str) -> None:
        pass

    @abstractmethod
    async def list_documents(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        """
        List the direct children of a collection.

        Returns:
            List of ``(document_id, data)`` pairs.
        """
        pass

    async def close(self) -> None:
        return None


class SeedLoader(ABC):
    """Port supplying initial card content for card sets never persisted remotely."""

    @abstractmethod
    async def load(self, card_set_id: str) -> list[FlashcardData]:
        """
        Raises:
            CardSetError: when the set is missing, malformed or empty.
        """
        pass
