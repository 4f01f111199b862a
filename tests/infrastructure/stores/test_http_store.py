import json

import httpx
import pytest

from flashsync.domain.errors import PermissionDeniedError, RemoteError, TransientRemoteError
from flashsync.domain.ports import SERVER_TIMESTAMP, WriteOp
from flashsync.infrastructure.stores import HttpDocumentStore


def _store(handler, token="secret"):
    return HttpDocumentStore(
        "http://store.test/", token=token, transport=httpx.MockTransport(handler)
    )


@pytest.mark.asyncio
async def test_get_document():
    def handler(request):
        assert request.method == "GET"
        assert request.url.path == "/documents/accounts/a"
        assert request.headers["Authorization"] == "Bearer secret"
        return httpx.Response(200, json={"uid": "a"})

    store = _store(handler)
    assert await store.get("accounts/a") == {"uid": "a"}
    await store.close()


@pytest.mark.asyncio
async def test_get_missing_returns_none():
    store = _store(lambda request: httpx.Response(404))
    assert await store.get("accounts/a") is None
    assert await store.list_documents("accounts/a/cardSetProgress") == []
    await store.delete("accounts/a")


@pytest.mark.asyncio
async def test_set_sends_merge_flag_and_encodes_timestamps():
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["merge"] = request.url.params["merge"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(204)

    store = _store(handler, token=None)
    await store.set("accounts/a", {"updatedAt": SERVER_TIMESTAMP, "n": 1}, merge=True)

    assert seen["method"] == "PUT"
    assert seen["merge"] == "true"
    assert seen["body"] == {"updatedAt": {"$serverTimestamp": True}, "n": 1}


@pytest.mark.asyncio
async def test_batch_write_payload():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True})

    store = _store(handler)
    await store.batch_write(
        [WriteOp.set("accounts/a", {"uid": "a"}, merge=True), WriteOp.delete("accounts/a/x/1")]
    )

    assert seen["path"] == "/batch"
    assert seen["body"] == {
        "writes": [
            {"op": "set", "path": "accounts/a", "data": {"uid": "a"}, "merge": True},
            {"op": "delete", "path": "accounts/a/x/1"},
        ]
    }


@pytest.mark.asyncio
async def test_list_documents():
    def handler(request):
        assert request.url.path == "/collections/accounts/a/cardSetProgress"
        return httpx.Response(
            200, json={"documents": [{"id": "s1", "data": {"cardSetId": "s1"}}, {"id": "s2"}]}
        )

    listed = await _store(handler).list_documents("accounts/a/cardSetProgress")
    assert listed == [("s1", {"cardSetId": "s1"}), ("s2", {})]


@pytest.mark.parametrize(
    "status, expected",
    [
        (401, PermissionDeniedError),
        (403, PermissionDeniedError),
        (429, TransientRemoteError),
        (503, TransientRemoteError),
        (400, RemoteError),
    ],
)
@pytest.mark.asyncio
async def test_status_mapping(status, expected):
    store = _store(lambda request: httpx.Response(status, text="nope"))
    with pytest.raises(expected) as exc_info:
        await store.set("accounts/a", {"uid": "a"})
    assert type(exc_info.value) is expected
    assert exc_info.value.context["status"] == status


@pytest.mark.asyncio
async def test_transport_errors_are_transient():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransientRemoteError):
        await _store(handler).get("accounts/a")


@pytest.mark.asyncio
async def test_timeouts_are_transient():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(TransientRemoteError, match="timed out"):
        await _store(handler).get("accounts/a")
