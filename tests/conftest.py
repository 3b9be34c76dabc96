"""
Shared fixtures: an in-memory fake of the remote document store served
through httpx.MockTransport, and a local cache on a temporary SQLite file.
"""

import json
import sys
from collections import defaultdict
from pathlib import Path

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Flat module layout: make the project root importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from database import LocalCacheStore, init_db  # noqa: E402
from persistence import PersistenceFacade  # noqa: E402
from remote_store import RemoteStoreClient  # noqa: E402

REMOTE_URL = "http://remote.test/v1"


class FakeDocumentStore:
    """Minimal server side of the remote store REST contract."""

    def __init__(self):
        self.collections = defaultdict(dict)
        self.requests = []
        self.fail = False
        # Called with (collection, doc_id, body) before a PATCH is applied
        self.before_patch = None

    def seed(self, collection, documents):
        for document in documents:
            self.collections[collection][document["id"]] = dict(document)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if self.fail:
            raise httpx.ConnectError("remote store unreachable", request=request)

        parts = request.url.path.split("/")[3:]  # collection, then "documents"/"query", then id
        collection, kind = parts[0], parts[1]
        documents = self.collections[collection]
        body = json.loads(request.content) if request.content else None

        if kind == "query":
            matches = [d for d in documents.values() if d.get(body["field"]) == body["value"]]
            return httpx.Response(200, json={"documents": matches[: body["limit"]]})

        if len(parts) == 2:
            return httpx.Response(200, json={"documents": list(documents.values())})

        doc_id = parts[2]
        if request.method == "GET":
            if doc_id not in documents:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, json=documents[doc_id])

        if request.method == "PUT":
            documents[doc_id] = body
            return httpx.Response(200, json=body)

        if request.method == "DELETE":
            if documents.pop(doc_id, None) is None:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(204)

        if request.method == "PATCH":
            if self.before_patch:
                self.before_patch(collection, doc_id, body)
            if doc_id not in documents:
                return httpx.Response(404, json={"error": "not found"})
            document = documents[doc_id]
            for field, expected in (body.get("precondition") or {}).items():
                if document.get(field) != expected:
                    return httpx.Response(412, json={"error": "precondition failed"})
            document.update(body.get("fields") or {})
            for field, amount in (body.get("increments") or {}).items():
                document[field] = (document.get(field) or 0) + amount
            return httpx.Response(200, json=document)

        return httpx.Response(405)

    def remote_calls(self):
        return len(self.requests)


@pytest.fixture
def fake_store():
    return FakeDocumentStore()


@pytest.fixture
def remote(fake_store):
    return RemoteStoreClient(
        base_url=REMOTE_URL,
        timeout=5,
        api_key="test-api-key",
        transport=httpx.MockTransport(fake_store.handle),
    )


@pytest.fixture
def cache_engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'cache.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def cache(cache_engine):
    return LocalCacheStore(sessionmaker(autocommit=False, autoflush=False, bind=cache_engine))


@pytest.fixture
def facade(remote, cache):
    return PersistenceFacade(remote, cache)
