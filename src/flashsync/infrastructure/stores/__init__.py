from .file_store import JsonFileDocumentStore
from .http_store import HttpDocumentStore
from .memory_store import InMemoryDocumentStore

__all__ = ["InMemoryDocumentStore", "JsonFileDocumentStore", "HttpDocumentStore"]
