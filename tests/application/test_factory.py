from flashsync.application.config import AppConfig
from flashsync.application.factory import build_review_service, get_document_store
from flashsync.infrastructure.seed import JsonSeedLoader
from flashsync.infrastructure.stores import (
    HttpDocumentStore,
    InMemoryDocumentStore,
    JsonFileDocumentStore,
)


def test_store_backends(mock_home, tmp_path):
    assert isinstance(get_document_store(AppConfig(store_backend="memory")), InMemoryDocumentStore)

    file_store = get_document_store(
        AppConfig(store_backend="file", store_path=tmp_path / "store.json")
    )
    assert isinstance(file_store, JsonFileDocumentStore)

    http_store = get_document_store(
        AppConfig(store_backend="http", store_url="http://store.test/", store_token="t")
    )
    assert isinstance(http_store, HttpDocumentStore)
    assert http_store.url == "http://store.test"


def test_build_review_service(mock_home, tmp_path):
    config = AppConfig(
        store_backend="memory", account_id="bob", data_dir=tmp_path, sync_delay=1.5
    )
    service = build_review_service(config)

    assert service.cache.account_id == "bob"
    assert service.cache._sync_delay == 1.5
    assert isinstance(service._seed_loader, JsonSeedLoader)
    assert service._seed_loader.data_dir == tmp_path.resolve()
