import logging
from typing import Any

import httpx

from flashsync.domain.constants import REQUEST_TIMEOUT
from flashsync.domain.errors import PermissionDeniedError, RemoteError, TransientRemoteError
from flashsync.domain.ports import SERVER_TIMESTAMP, DocumentStore, WriteOp

_TRANSIENT_STATUS = {408, 429}


def _encode(data: Any) -> Any:
    """Replace the server timestamp sentinel with its wire form."""
    if data is SERVER_TIMESTAMP:
        return {"$serverTimestamp": True}
    if isinstance(data, dict):
        return {k: _encode(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_encode(v) for v in data]
    return data


class HttpDocumentStore(DocumentStore):
    """
    Adapter for a REST document service.

    Endpoints:
        GET    /documents/{path}            -> 200 JSON document, 404 if missing
        PUT    /documents/{path}?merge=bool -> create/replace or deep merge
        DELETE /documents/{path}
        GET    /collections/{path}          -> {"documents": [{"id": ..., "data": {...}}]}
        POST   /batch                       -> {"writes": [...]}, applied atomically
    """

    def __init__(
        self,
        url: str,
        token: str | None = None,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.logger = logging.getLogger(__name__)
        self.url = url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def get(self, path: str) -> dict[str, Any] | None:
        resp = await self._request("GET", f"/documents/{path}", allow_missing=True)
        if resp is None:
            return None
        return resp.json()

    async def set(self, path: str, data: dict[str, Any], merge: bool = False) -> None:
        await self._request(
            "PUT",
            f"/documents/{path}",
            params={"merge": "true" if merge else "false"},
            json=_encode(data),
        )

    async def delete(self, path: str) -> None:
        await self._request("DELETE", f"/documents/{path}", allow_missing=True)

    async def batch_write(self, writes: list[WriteOp]) -> None:
        payload = {
            "writes": [
                {"op": w.kind, "path": w.path, "data": _encode(w.data), "merge": w.merge}
                if w.kind == "set"
                else {"op": w.kind, "path": w.path}
                for w in writes
            ]
        }
        await self._request("POST", "/batch", json=payload)

    async def list_documents(self, collection: str) -> list[tuple[str, dict[str, Any]]]:
        resp = await self._request("GET", f"/collections/{collection}", allow_missing=True)
        if resp is None:
            return []
        body = resp.json()
        return [(str(doc["id"]), doc.get("data") or {}) for doc in body.get("documents", [])]

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self, method: str, url: str, allow_missing: bool = False, **kwargs: Any
    ) -> httpx.Response | None:
        try:
            resp = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientRemoteError(f"{method} {url} timed out") from e
        except httpx.TransportError as e:
            raise TransientRemoteError(f"{method} {url} failed: {e}") from e

        status = resp.status_code
        if status == 404 and allow_missing:
            return None
        if status < 400:
            return resp

        context = {"status": status, "url": url}
        self.logger.debug(f"{method} {url} -> {status}")
        if status in (401, 403):
            raise PermissionDeniedError(f"{method} {url}: permission denied", context=context)
        if status in _TRANSIENT_STATUS or status >= 500:
            raise TransientRemoteError(f"{method} {url}: service unavailable ({status})", context=context)
        raise RemoteError(f"{method} {url} failed ({status}): {resp.text}", context=context)
