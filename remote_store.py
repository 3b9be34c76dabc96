import logging
from typing import Any, Dict, List, Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)


class RemoteUnavailable(Exception):
    """The remote document store could not serve a request (network, permission or server error)."""


class PreconditionFailed(Exception):
    """A conditional update was refused because the stored document no longer matched."""


class RemoteStoreClient:
    """
    Thin client for the remote document store REST API.

    Documents live in named collections and are addressed by id. Every
    call opens its own client and either returns the decoded answer or
    raises RemoteUnavailable.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.REMOTE_STORE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.REMOTE_STORE_TIMEOUT
        self.api_key = api_key if api_key is not None else settings.REMOTE_STORE_API_KEY
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-Api-Key"] = self.api_key
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise RemoteUnavailable(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response):
        if response.is_error:
            raise RemoteUnavailable(
                f"{response.request.method} {response.request.url.path} returned HTTP {response.status_code}"
            )

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise RemoteUnavailable(f"Malformed response from remote store: {e}") from e

    @staticmethod
    def _documents(payload: Any) -> List[Dict[str, Any]]:
        if not isinstance(payload, dict) or not isinstance(payload.get("documents"), list):
            raise RemoteUnavailable("Remote store answered without a document list")
        return payload["documents"]

    async def list_documents(self, collection: str) -> List[Dict[str, Any]]:
        response = await self._request("GET", f"/collections/{collection}/documents")
        self._raise_for_status(response)
        return self._documents(self._decode(response))

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        response = await self._request("GET", f"/collections/{collection}/documents/{doc_id}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        return self._decode(response)

    async def put_document(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        """Upsert: the stored document is replaced by `fields`."""
        response = await self._request("PUT", f"/collections/{collection}/documents/{doc_id}", json=fields)
        self._raise_for_status(response)

    async def update_document(
        self,
        collection: str,
        doc_id: str,
        fields: Optional[Dict[str, Any]] = None,
        increments: Optional[Dict[str, int]] = None,
        precondition: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Partially update an existing document.

        `increments` are applied atomically by the store. When
        `precondition` is given the update only happens if every listed
        field currently holds the listed value; otherwise the store
        answers 409/412 and PreconditionFailed is raised.
        """
        body: Dict[str, Any] = {"fields": fields or {}}
        if increments:
            body["increments"] = increments
        if precondition is not None:
            body["precondition"] = precondition

        response = await self._request("PATCH", f"/collections/{collection}/documents/{doc_id}", json=body)
        if response.status_code in (409, 412):
            raise PreconditionFailed(f"{collection}/{doc_id} did not match {precondition}")
        self._raise_for_status(response)
        return self._decode(response)

    async def delete_document(self, collection: str, doc_id: str) -> None:
        response = await self._request("DELETE", f"/collections/{collection}/documents/{doc_id}")
        if response.status_code == 404:
            logger.debug("Delete of missing document %s/%s ignored", collection, doc_id)
            return
        self._raise_for_status(response)

    async def query_by_field(self, collection: str, field: str, value: Any, limit: int = 1) -> List[Dict[str, Any]]:
        response = await self._request(
            "POST",
            f"/collections/{collection}/query",
            json={"field": field, "value": value, "limit": limit},
        )
        self._raise_for_status(response)
        return self._documents(self._decode(response))
