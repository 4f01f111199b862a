"""
Service Factory
Centralizes the selection of the document store backend and the wiring of
migration, cache and review services for one account.
"""

from flashsync.application.cache_manager import CacheManager
from flashsync.application.config import AppConfig
from flashsync.application.migration import MigrationService
from flashsync.application.review_service import ReviewService
from flashsync.domain.ports import DocumentStore, SeedLoader
from flashsync.infrastructure.seed import JsonSeedLoader
from flashsync.infrastructure.stores import (
    HttpDocumentStore,
    InMemoryDocumentStore,
    JsonFileDocumentStore,
)


def get_document_store(config: AppConfig) -> DocumentStore:
    """
    Returns the DocumentStore implementation selected by ``store_backend``.
    """
    if config.store_backend == "http":
        return HttpDocumentStore(
            url=config.store_url,
            token=config.store_token,
            timeout=config.request_timeout,
        )
    if config.store_backend == "memory":
        return InMemoryDocumentStore()
    return JsonFileDocumentStore(config.store_path)


def get_seed_loader(config: AppConfig) -> SeedLoader:
    return JsonSeedLoader(config.data_dir)


def build_review_service(
    config: AppConfig, store: DocumentStore | None = None
) -> ReviewService:
    store = store or get_document_store(config)
    cache = CacheManager(
        store,
        config.account_id,
        migration=MigrationService(store),
        sync_delay=config.sync_delay,
        retry_delay=config.retry_delay,
        max_retry_attempts=config.max_retry_attempts,
        backoff_base_delay=config.backoff_base_delay,
        backoff_max_attempts=config.backoff_max_attempts,
    )
    return ReviewService(cache, get_seed_loader(config))
