"""Shared fixtures: an in-memory stand-in for the backend platform."""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Callable

import pytest

from vox_demo.services.backend import BackendError
from vox_demo.services.session import DemoSessionLifecycle
from vox_demo.services.throttle import Throttle

DEMO_EMAIL = "test@sjcem.edu.in"
DEMO_PASSWORD = "DemoUser2025!@#"
DATABASE_ID = "test-db"
TRACKING = "demo_session_tracking"
ACCESS_LOG = "test_user_access_logs"


def not_found(what: str = "Document") -> BackendError:
    return BackendError(f"{what} with the requested ID could not be found.", code=404, error_type="not_found")


def rate_limited() -> BackendError:
    return BackendError("Rate limit for the current endpoint has been exceeded.", code=429)


class FakeBackend:
    """Implements the BackendClient surface over dicts.

    Every call is logged in ``calls`` and yields to the event loop once, so
    overlapping calls would show up in ``max_in_flight``.
    """

    def __init__(self) -> None:
        self.collections: dict[tuple[str, str], dict[str, dict]] = {}
        self.files: dict[str, dict[str, bytes]] = {}
        self.users_by_email: dict[str, dict] = {}
        self.current_user: dict | None = None
        self.calls: list[tuple[str, tuple]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._failures: list[dict] = []
        self.closed = False

        self.databases = _FakeDatabases(self)
        self.storage = _FakeStorage(self)
        self.account = _FakeAccount(self)
        self.users = _FakeUsers(self)

    # ── Test helpers ─────────────────────────────────────────────────────

    def add_user(self, email: str, password: str = "secret", prefs: dict | None = None) -> dict:
        user = {"$id": uuid.uuid4().hex[:12], "email": email, "name": email.split("@")[0],
                "password": password, "prefs": prefs or {}}
        self.users_by_email[email] = user
        return user

    def fail(self, op: str, exc: Exception, when: Callable[..., bool] | None = None, times: int | None = None) -> None:
        """Make ``op`` raise ``exc`` when ``when(*args)`` is true, ``times`` times (forever if None)."""
        self._failures.append({"op": op, "exc": exc, "when": when, "times": times})

    def docs(self, collection: str, database_id: str = DATABASE_ID) -> dict[str, dict]:
        return self.collections.setdefault((database_id, collection), {})

    def ops(self, name: str) -> list[tuple]:
        return [args for op, args in self.calls if op == name]

    async def aclose(self) -> None:
        self.closed = True

    async def _call(self, op: str, *args: Any) -> None:
        self.calls.append((op, args))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            for rule in self._failures:
                if rule["op"] != op or rule["times"] == 0:
                    continue
                if rule["when"] is not None and not rule["when"](*args):
                    continue
                if rule["times"] is not None:
                    rule["times"] -= 1
                raise rule["exc"]
        finally:
            self.in_flight -= 1


def _matches(doc: dict, queries: list[str]) -> bool:
    for raw in queries:
        query = json.loads(raw)
        method = query["method"]
        if method == "equal" and doc.get(query["attribute"]) not in query["values"]:
            return False
        if method == "lessThan" and not (doc.get(query["attribute"], "") < query["values"][0]):
            return False
    return True


def _page(docs: list[dict], queries: list[str]) -> list[dict]:
    limit, offset = 25, 0
    for raw in queries:
        query = json.loads(raw)
        if query["method"] == "limit":
            limit = query["values"][0]
        elif query["method"] == "offset":
            offset = query["values"][0]
    return docs[offset:offset + limit]


class _FakeDatabases:
    def __init__(self, backend: FakeBackend) -> None:
        self.b = backend

    async def create_document(self, database_id, collection_id, document_id, data):
        await self.b._call("create_document", database_id, collection_id, document_id, data)
        doc = {**data, "$id": document_id, "$collectionId": collection_id, "$databaseId": database_id}
        self.b.docs(collection_id, database_id)[document_id] = doc
        return dict(doc)

    async def get_document(self, database_id, collection_id, document_id):
        await self.b._call("get_document", database_id, collection_id, document_id)
        doc = self.b.docs(collection_id, database_id).get(document_id)
        if doc is None:
            raise not_found()
        return dict(doc)

    async def update_document(self, database_id, collection_id, document_id, data):
        await self.b._call("update_document", database_id, collection_id, document_id, data)
        doc = self.b.docs(collection_id, database_id).get(document_id)
        if doc is None:
            raise not_found()
        doc.update(data)
        return dict(doc)

    async def delete_document(self, database_id, collection_id, document_id):
        await self.b._call("delete_document", database_id, collection_id, document_id)
        if self.b.docs(collection_id, database_id).pop(document_id, None) is None:
            raise not_found()

    async def list_documents(self, database_id, collection_id, queries=None):
        queries = list(queries or [])
        await self.b._call("list_documents", database_id, collection_id, tuple(queries))
        matching = [dict(d) for d in self.b.docs(collection_id, database_id).values() if _matches(d, queries)]
        return {"total": len(matching), "documents": _page(matching, queries)}

    async def list_all_documents(self, database_id, collection_id, queries=None, page_size=100):
        documents: list[dict] = []
        while True:
            page = await self.list_documents(
                database_id,
                collection_id,
                [*(queries or []), json.dumps({"method": "limit", "values": [page_size]}),
                 json.dumps({"method": "offset", "values": [len(documents)]})],
            )
            documents.extend(page["documents"])
            if len(page["documents"]) < page_size or len(documents) >= page["total"]:
                return documents

    async def create_collection(self, database_id, collection_id, name, permissions):
        await self.b._call("create_collection", database_id, collection_id, name)
        return {"$id": collection_id}

    async def create_string_attribute(self, database_id, collection_id, key, size, required):
        await self.b._call("create_string_attribute", database_id, collection_id, key, size, required)
        return {"key": key}

    async def create_index(self, database_id, collection_id, key, index_type, attributes):
        await self.b._call("create_index", database_id, collection_id, key)
        return {"key": key}


class _FakeStorage:
    def __init__(self, backend: FakeBackend) -> None:
        self.b = backend

    async def create_file(self, bucket_id, file_id, filename, content):
        await self.b._call("create_file", bucket_id, file_id)
        self.b.files.setdefault(bucket_id, {})[file_id] = content
        return {"$id": file_id, "bucketId": bucket_id, "name": filename}

    async def delete_file(self, bucket_id, file_id):
        await self.b._call("delete_file", bucket_id, file_id)
        if self.b.files.get(bucket_id, {}).pop(file_id, None) is None:
            raise not_found("File")

    async def get_file_view(self, bucket_id, file_id):
        await self.b._call("get_file_view", bucket_id, file_id)
        content = self.b.files.get(bucket_id, {}).get(file_id)
        if content is None:
            raise not_found("File")
        return content


class _FakeAccount:
    def __init__(self, backend: FakeBackend) -> None:
        self.b = backend

    def _user(self) -> dict:
        if self.b.current_user is None:
            raise BackendError("User (role: guests) missing scope (account)", code=401)
        return self.b.current_user

    async def create_email_password_session(self, email, password):
        await self.b._call("create_session", email)
        user = self.b.users_by_email.get(email)
        if user is None or user["password"] != password:
            raise BackendError("Invalid credentials.", code=401, error_type="user_invalid_credentials")
        self.b.current_user = user
        return {"$id": uuid.uuid4().hex[:12], "userId": user["$id"]}

    async def delete_session(self, session_id="current"):
        await self.b._call("delete_session", session_id)
        self._user()
        self.b.current_user = None

    async def get(self):
        await self.b._call("get_account")
        user = self._user()
        return {"$id": user["$id"], "email": user["email"], "name": user["name"]}

    async def get_prefs(self):
        await self.b._call("get_prefs")
        return json.loads(json.dumps(self._user()["prefs"]))

    async def update_prefs(self, prefs):
        await self.b._call("update_prefs", json.loads(json.dumps(prefs)))
        self._user()["prefs"] = json.loads(json.dumps(prefs))
        return {"prefs": prefs}


class _FakeUsers:
    def __init__(self, backend: FakeBackend) -> None:
        self.b = backend

    def _by_id(self, user_id: str) -> dict:
        for user in self.b.users_by_email.values():
            if user["$id"] == user_id:
                return user
        raise not_found("User")

    async def list(self, queries=None):
        queries = list(queries or [])
        await self.b._call("list_users", tuple(queries))
        users = [{"$id": u["$id"], "email": u["email"]} for u in self.b.users_by_email.values()
                 if _matches(u, queries)]
        return {"total": len(users), "users": users}

    async def get_prefs(self, user_id):
        await self.b._call("admin_get_prefs", user_id)
        return json.loads(json.dumps(self._by_id(user_id)["prefs"]))

    async def update_prefs(self, user_id, prefs):
        await self.b._call("admin_update_prefs", user_id, json.loads(json.dumps(prefs)))
        self._by_id(user_id)["prefs"] = json.loads(json.dumps(prefs))
        return {"prefs": prefs}


@pytest.fixture
def backend() -> FakeBackend:
    fake = FakeBackend()
    fake.add_user(DEMO_EMAIL, DEMO_PASSWORD)
    fake.add_user("student@sjcem.edu.in", "student-pass")
    return fake


@pytest.fixture
def throttle() -> Throttle:
    return Throttle.disabled()


@pytest.fixture
def lifecycle(backend, throttle) -> DemoSessionLifecycle:
    return DemoSessionLifecycle(
        backend,
        throttle,
        demo_email=DEMO_EMAIL,
        database_id=DATABASE_ID,
        tracking_collection=TRACKING,
        access_log_collection=ACCESS_LOG,
        default_association_id="association-ascai",
    )
