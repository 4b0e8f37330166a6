"""HTTP client for the remote document sync API."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..editor.document_model import Document, Identity

__all__ = [
    "RemoteDocumentStore",
    "RemoteStoreError",
    "UnauthorizedError",
    "DocumentNotFoundError",
]

LOGGER = logging.getLogger(__name__)
_SYNC_PATH = "/api/documents/sync"
_CLEAR_PATH = "/api/documents/clear"


class RemoteStoreError(RuntimeError):
    """Base class for remote document store failures."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(RemoteStoreError):
    """The identity token was missing or rejected."""


class DocumentNotFoundError(RemoteStoreError):
    """The requested document does not exist remotely."""


class _TransientStatusError(RemoteStoreError):
    pass


class RemoteDocumentStore:
    """Async client for ``/api/documents`` with bearer-token authentication."""

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
        max_retries: int = 3,
        retry_min_seconds: float = 0.5,
        retry_max_seconds: float = 4.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self._base_url, timeout=timeout)
        self._owns_client = client is None
        self._max_retries = max_retries
        self._retry_min_seconds = retry_min_seconds
        self._retry_max_seconds = retry_max_seconds

    @property
    def base_url(self) -> str:
        return self._base_url

    async def list(self, identity: Identity) -> List[Document]:
        response = await self._request("GET", _SYNC_PATH, identity)
        payload = self._json(response)
        records = payload.get("documents") if isinstance(payload, Mapping) else payload
        if not isinstance(records, list):
            raise RemoteStoreError("Sync response did not contain a document list")
        documents: list[Document] = []
        for record in records:
            if not isinstance(record, Mapping):
                continue
            try:
                documents.append(Document.from_record(record).with_owner(identity.user_id))
            except ValueError as exc:
                LOGGER.warning("Skipping malformed remote document: %s", exc)
        return documents

    async def upsert(self, document: Document, *, identity: Identity) -> None:
        record = document.to_record()
        record.pop("ownerId", None)
        record["userId"] = identity.user_id
        await self._request("POST", _SYNC_PATH, identity, json={"documents": [record]})

    async def delete(self, document_id: str, *, identity: Identity) -> None:
        await self._request("DELETE", f"/api/documents/{document_id}", identity)

    async def clear(self, identity: Identity) -> int:
        """Delete every remote document owned by ``identity`` and return the count."""

        response = await self._request("DELETE", _CLEAR_PATH, identity)
        payload = self._json(response)
        if isinstance(payload, Mapping):
            try:
                return int(payload.get("count", 0))
            except (TypeError, ValueError):
                return 0
        return 0

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        identity: Identity,
        *,
        json: Any = None,
    ) -> httpx.Response:
        if not identity.token:
            raise UnauthorizedError("Unauthorized", status_code=401)
        headers = {"Authorization": f"Bearer {identity.token}"}
        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client.request(method, self._url(path), headers=headers, json=json)
                    if response.status_code >= 500:
                        raise _TransientStatusError(
                            f"{method} {path} failed with {response.status_code}",
                            status_code=response.status_code,
                        )
        except _TransientStatusError as exc:
            raise RemoteStoreError(str(exc), status_code=exc.status_code) from exc
        except httpx.HTTPError as exc:
            raise RemoteStoreError(f"{method} {path} failed: {exc}") from exc
        return self._check_status(method, path, response)

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._max_retries)),
            wait=wait_exponential(multiplier=self._retry_min_seconds, max=self._retry_max_seconds),
            retry=retry_if_exception_type((httpx.TransportError, _TransientStatusError)),
        )

    def _url(self, path: str) -> str:
        if self._owns_client:
            return path
        return f"{self._base_url}{path}"

    @staticmethod
    def _check_status(method: str, path: str, response: httpx.Response) -> httpx.Response:
        status = response.status_code
        if status == 401:
            raise UnauthorizedError("Unauthorized", status_code=status)
        if status == 404:
            raise DocumentNotFoundError(f"{path} not found", status_code=status)
        if status >= 400:
            raise RemoteStoreError(f"{method} {path} failed with {status}", status_code=status)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteStoreError(f"Invalid JSON from {response.request.url}") from exc
