"""SafeScore Engine: Document store clients

The engine only needs a key/query view of its backing store. Collections
hold plain dict documents keyed by string ids.
"""

import copy
import logging
import operator
from typing import Any, Optional, Protocol

import httpx
from pydantic_core import to_jsonable_python

from safescore.config import STORE_TIMEOUT, STORE_TOKEN
from safescore.errors import StoreError

logger = logging.getLogger("safescore.store")

# (field, op, value)
Filter = tuple[str, str, Any]

_OPS = {
    "==": operator.eq,
    ">=": operator.ge,
    ">": operator.gt,
    "<=": operator.le,
    "<": operator.lt,
}


class DocumentStore(Protocol):
    async def get(self, collection: str, key: str) -> Optional[dict]: ...

    async def set(self, collection: str, key: str, doc: dict) -> None: ...

    async def delete(self, collection: str, key: str) -> None: ...

    async def delete_many(self, collection: str, keys: list[str]) -> None: ...

    async def query(
        self,
        collection: str,
        where: Optional[list[Filter]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]: ...

    async def aclose(self) -> None: ...


def _check_filters(where: Optional[list[Filter]]) -> list[Filter]:
    filters = list(where or [])
    for field, op, _ in filters:
        if op not in _OPS:
            raise StoreError(f"unsupported operator {op!r} on field {field!r}")
    return filters


# ─────────────────────────── In-memory ──────────────────────────

class MemoryDocumentStore:
    """Dict-backed store for tests and single-process deployments."""

    def __init__(self):
        self._collections: dict[str, dict[str, dict]] = {}

    async def get(self, collection: str, key: str) -> Optional[dict]:
        doc = self._collections.get(collection, {}).get(key)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, collection: str, key: str, doc: dict) -> None:
        self._collections.setdefault(collection, {})[key] = copy.deepcopy(doc)

    async def delete(self, collection: str, key: str) -> None:
        self._collections.get(collection, {}).pop(key, None)

    async def delete_many(self, collection: str, keys: list[str]) -> None:
        docs = self._collections.get(collection, {})
        for key in keys:
            docs.pop(key, None)

    async def query(self, collection, where=None, order_by=None, descending=False, limit=None) -> list[dict]:
        filters = _check_filters(where)
        matches = []
        for doc in self._collections.get(collection, {}).values():
            try:
                if all(field in doc and _OPS[op](doc[field], value) for field, op, value in filters):
                    matches.append(doc)
            except TypeError as e:
                raise StoreError(f"query on {collection} compared incompatible values: {e}") from e

        if order_by:
            matches.sort(key=lambda d: d[order_by], reverse=descending)
        if limit is not None:
            matches = matches[:limit]
        return [copy.deepcopy(d) for d in matches]

    async def aclose(self) -> None:
        pass

    def count(self, collection: str) -> int:
        return len(self._collections.get(collection, {}))


# ─────────────────────────── HTTP ───────────────────────────────

class HttpDocumentStore:
    """Client for a REST document service.

    Endpoints, relative to base_url:
      GET/PUT/DELETE  /collections/{c}/documents/{key}
      POST            /collections/{c}:batchDelete   {"keys": [...]}
      POST            /collections/{c}:query         {"where", "orderBy", "descending", "limit"}
    """

    def __init__(self, base_url: str, token: str = STORE_TOKEN, timeout: float = STORE_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, path: str, allow_404: bool = False, **kwargs) -> Optional[httpx.Response]:
        try:
            r = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {path} failed: {e}") from e
        if r.status_code == 404 and allow_404:
            return None
        if r.status_code >= 400:
            raise StoreError(f"{method} {path} returned {r.status_code}")
        return r

    async def get(self, collection: str, key: str) -> Optional[dict]:
        r = await self._request("GET", f"/collections/{collection}/documents/{key}", allow_404=True)
        if r is None:
            return None
        try:
            return r.json()
        except ValueError as e:
            raise StoreError(f"invalid JSON for {collection}/{key}") from e

    async def set(self, collection: str, key: str, doc: dict) -> None:
        await self._request("PUT", f"/collections/{collection}/documents/{key}", json=to_jsonable_python(doc))

    async def delete(self, collection: str, key: str) -> None:
        await self._request("DELETE", f"/collections/{collection}/documents/{key}", allow_404=True)

    async def delete_many(self, collection: str, keys: list[str]) -> None:
        await self._request("POST", f"/collections/{collection}:batchDelete", json={"keys": list(keys)})

    async def query(self, collection, where=None, order_by=None, descending=False, limit=None) -> list[dict]:
        body = {
            "where": [[f, op, v] for f, op, v in _check_filters(where)],
            "orderBy": order_by,
            "descending": descending,
            "limit": limit,
        }
        r = await self._request("POST", f"/collections/{collection}:query", json=to_jsonable_python(body))
        try:
            data = r.json()
        except ValueError as e:
            raise StoreError(f"invalid JSON from {collection} query") from e
        docs = data.get("documents", [])
        logger.debug(f"Query {collection}: {len(docs)} documents")
        return docs

    async def aclose(self) -> None:
        await self._client.aclose()
