"""Async REST client for the backend-as-a-service platform.

Covers the slice of the platform the demo reset flows need: documents,
files, the session-scoped account, and the admin users API. Wire format
follows the Appwrite v1 REST API.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

import httpx

from .throttle import Throttle

logger = logging.getLogger(__name__)


class BackendError(RuntimeError):
    """Error response (or transport failure) from the backend platform."""

    def __init__(self, message: str, code: int = 0, error_type: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.type = error_type

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}" if self.code else self.message


def is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, BackendError) and exc.code == 404


def is_conflict(exc: BaseException) -> bool:
    return isinstance(exc, BackendError) and exc.code == 409


def is_rate_limited(exc: BaseException) -> bool:
    if isinstance(exc, BackendError) and exc.code == 429:
        return True
    text = str(exc).lower()
    return "rate limit" in text or "too many requests" in text


class ID:
    @staticmethod
    def unique() -> str:
        return uuid.uuid4().hex[:20]


class Query:
    """Builders for the JSON-encoded query strings accepted by list endpoints."""

    @staticmethod
    def _encode(method: str, attribute: str | None = None, values: list | None = None) -> str:
        query: dict[str, Any] = {"method": method}
        if attribute is not None:
            query["attribute"] = attribute
        if values is not None:
            query["values"] = values
        return json.dumps(query, separators=(",", ":"))

    @staticmethod
    def equal(attribute: str, value: Any) -> str:
        values = value if isinstance(value, list) else [value]
        return Query._encode("equal", attribute, values)

    @staticmethod
    def less_than(attribute: str, value: Any) -> str:
        return Query._encode("lessThan", attribute, [value])

    @staticmethod
    def limit(n: int) -> str:
        return Query._encode("limit", values=[n])

    @staticmethod
    def offset(n: int) -> str:
        return Query._encode("offset", values=[n])


class _Section:
    def __init__(self, client: BackendClient) -> None:
        self._client = client


class Databases(_Section):
    """Document store: collections of JSON documents inside a database."""

    @staticmethod
    def _docs(database_id: str, collection_id: str) -> str:
        return f"/databases/{database_id}/collections/{collection_id}/documents"

    async def create_document(
        self, database_id: str, collection_id: str, document_id: str, data: dict[str, Any]
    ) -> dict:
        return await self._client.request(
            "POST",
            self._docs(database_id, collection_id),
            json={"documentId": document_id, "data": data},
        )

    async def get_document(self, database_id: str, collection_id: str, document_id: str) -> dict:
        return await self._client.request("GET", f"{self._docs(database_id, collection_id)}/{document_id}")

    async def update_document(
        self, database_id: str, collection_id: str, document_id: str, data: dict[str, Any]
    ) -> dict:
        return await self._client.request(
            "PATCH", f"{self._docs(database_id, collection_id)}/{document_id}", json={"data": data}
        )

    async def delete_document(self, database_id: str, collection_id: str, document_id: str) -> None:
        await self._client.request("DELETE", f"{self._docs(database_id, collection_id)}/{document_id}")

    async def list_documents(
        self, database_id: str, collection_id: str, queries: list[str] | None = None
    ) -> dict:
        params = [("queries[]", q) for q in queries or []]
        return await self._client.request("GET", self._docs(database_id, collection_id), params=params)

    async def list_all_documents(
        self, database_id: str, collection_id: str, queries: list[str] | None = None, page_size: int = 100
    ) -> list[dict]:
        """Page through every matching document (list endpoints cap each page)."""
        documents: list[dict] = []
        while True:
            page = await self.list_documents(
                database_id,
                collection_id,
                [*(queries or []), Query.limit(page_size), Query.offset(len(documents))],
            )
            batch = page.get("documents", [])
            documents.extend(batch)
            if len(batch) < page_size or len(documents) >= page.get("total", 0):
                return documents

    async def create_collection(self, database_id: str, collection_id: str, name: str, permissions: list[str]) -> dict:
        return await self._client.request(
            "POST",
            f"/databases/{database_id}/collections",
            json={"collectionId": collection_id, "name": name, "permissions": permissions},
        )

    async def create_string_attribute(
        self, database_id: str, collection_id: str, key: str, size: int, required: bool
    ) -> dict:
        return await self._client.request(
            "POST",
            f"/databases/{database_id}/collections/{collection_id}/attributes/string",
            json={"key": key, "size": size, "required": required},
        )

    async def create_index(
        self, database_id: str, collection_id: str, key: str, index_type: str, attributes: list[str]
    ) -> dict:
        return await self._client.request(
            "POST",
            f"/databases/{database_id}/collections/{collection_id}/indexes",
            json={"key": key, "type": index_type, "attributes": attributes},
        )


class Storage(_Section):
    """Blob store: files grouped in buckets."""

    async def create_file(self, bucket_id: str, file_id: str, filename: str, content: bytes) -> dict:
        return await self._client.request(
            "POST",
            f"/storage/buckets/{bucket_id}/files",
            data={"fileId": file_id},
            files={"file": (filename, content)},
        )

    async def delete_file(self, bucket_id: str, file_id: str) -> None:
        await self._client.request("DELETE", f"/storage/buckets/{bucket_id}/files/{file_id}")

    async def get_file_view(self, bucket_id: str, file_id: str) -> bytes:
        return await self._client.request("GET", f"/storage/buckets/{bucket_id}/files/{file_id}/view", raw=True)


class Account(_Section):
    """The identity behind the current session (or JWT)."""

    async def create_email_password_session(self, email: str, password: str) -> dict:
        session = await self._client.request(
            "POST", "/account/sessions/email", json={"email": email, "password": password}
        )
        secret = session.get("secret") if isinstance(session, dict) else None
        if secret:
            self._client.set_session(secret)
        return session

    async def delete_session(self, session_id: str = "current") -> None:
        await self._client.request("DELETE", f"/account/sessions/{session_id}")
        self._client.clear_session()

    async def get(self) -> dict:
        return await self._client.request("GET", "/account")

    async def get_prefs(self) -> dict:
        return await self._client.request("GET", "/account/prefs")

    async def update_prefs(self, prefs: dict[str, Any]) -> dict:
        """Replace the whole preference bag."""
        return await self._client.request("PATCH", "/account/prefs", json={"prefs": prefs})


class Users(_Section):
    """Admin users API (requires an API key)."""

    async def list(self, queries: list[str] | None = None) -> dict:
        params = [("queries[]", q) for q in queries or []]
        return await self._client.request("GET", "/users", params=params)

    async def get_prefs(self, user_id: str) -> dict:
        return await self._client.request("GET", f"/users/{user_id}/prefs")

    async def update_prefs(self, user_id: str, prefs: dict[str, Any]) -> dict:
        return await self._client.request("PATCH", f"/users/{user_id}/prefs", json={"prefs": prefs})


class BackendClient:
    """One authenticated identity talking to the backend.

    Authentication is either a session (cookie or session secret), a JWT, or
    an admin API key. Every request draws from ``throttle`` first.
    """

    def __init__(
        self,
        endpoint: str,
        project_id: str,
        *,
        api_key: str | None = None,
        jwt: str | None = None,
        throttle: Throttle | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        headers = {"X-Appwrite-Project": project_id, "X-Appwrite-Response-Format": "1.4.0"}
        if api_key:
            headers["X-Appwrite-Key"] = api_key
        if jwt:
            headers["X-Appwrite-JWT"] = jwt
        self.endpoint = endpoint.rstrip("/")
        self.throttle = throttle or Throttle.disabled()
        self._client = httpx.AsyncClient(
            base_url=self.endpoint, headers=headers, timeout=timeout, transport=transport
        )
        self.databases = Databases(self)
        self.storage = Storage(self)
        self.account = Account(self)
        self.users = Users(self)

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def set_session(self, secret: str) -> None:
        self._client.headers["X-Appwrite-Session"] = secret

    def clear_session(self) -> None:
        self._client.headers.pop("X-Appwrite-Session", None)
        self._client.cookies.clear()

    async def request(self, method: str, path: str, *, raw: bool = False, **kwargs: Any) -> Any:
        """Send one request and decode the JSON body, raising BackendError on failure."""
        await self.throttle.acquire()
        logger.debug("%s %s", method, path)
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise BackendError(f"{method} {path} failed: {exc}") from exc

        if resp.status_code >= 400:
            raise _error_from_response(resp)
        if raw:
            return resp.content
        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            return resp.json()
        except json.JSONDecodeError:
            return {}


def _error_from_response(resp: httpx.Response) -> BackendError:
    try:
        body = resp.json()
    except (json.JSONDecodeError, ValueError):
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = body.get("message") or resp.reason_phrase or f"HTTP {resp.status_code}"
    return BackendError(message, code=int(body.get("code") or resp.status_code), error_type=body.get("type", ""))
