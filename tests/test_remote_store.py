"""Tests for the remote document store client."""

import httpx
import pytest

from remote_store import PreconditionFailed, RemoteStoreClient, RemoteUnavailable
from conftest import REMOTE_URL


def client_for(handler) -> RemoteStoreClient:
    return RemoteStoreClient(base_url=REMOTE_URL, timeout=5, api_key="", transport=httpx.MockTransport(handler))


async def test_put_list_and_get(remote):
    await remote.put_document("products", "1", {"id": "1", "name": "Solar Tea"})

    assert await remote.list_documents("products") == [{"id": "1", "name": "Solar Tea"}]
    assert await remote.get_document("products", "1") == {"id": "1", "name": "Solar Tea"}


async def test_get_missing_document_is_none(remote):
    assert await remote.get_document("settings", "admin_creds") is None


async def test_query_by_field_respects_limit(remote, fake_store):
    fake_store.seed("auth_keys", [
        {"id": "a", "key": "KSR-SAME"},
        {"id": "b", "key": "KSR-SAME"},
        {"id": "c", "key": "KSR-OTHER"},
    ])

    found = await remote.query_by_field("auth_keys", "key", "KSR-SAME", limit=1)
    assert len(found) == 1
    assert found[0]["key"] == "KSR-SAME"


async def test_update_applies_fields_and_increments(remote, fake_store):
    fake_store.seed("auth_keys", [{"id": "k", "usage_count": 2, "deviceId": None}])

    updated = await remote.update_document("auth_keys", "k", fields={"deviceId": "D1"}, increments={"usage_count": 1})

    assert updated["deviceId"] == "D1"
    assert updated["usage_count"] == 3


async def test_failed_precondition_raises(remote, fake_store):
    fake_store.seed("auth_keys", [{"id": "k", "deviceId": "D1"}])

    with pytest.raises(PreconditionFailed):
        await remote.update_document("auth_keys", "k", fields={"deviceId": "D2"}, precondition={"deviceId": None})
    assert fake_store.collections["auth_keys"]["k"]["deviceId"] == "D1"


async def test_delete_missing_document_is_tolerated(remote):
    await remote.delete_document("products", "nope")


async def test_api_key_header_is_sent(fake_store):
    seen = {}

    def handler(request):
        seen["api_key"] = request.headers.get("X-Api-Key")
        return httpx.Response(200, json={"documents": []})

    client = RemoteStoreClient(base_url=REMOTE_URL, api_key="secret", transport=httpx.MockTransport(handler))
    await client.list_documents("products")
    assert seen["api_key"] == "secret"


async def test_connection_error_raises_remote_unavailable(remote, fake_store):
    fake_store.fail = True
    with pytest.raises(RemoteUnavailable):
        await remote.list_documents("products")


async def test_server_error_raises_remote_unavailable():
    client = client_for(lambda request: httpx.Response(500, json={"error": "boom"}))
    with pytest.raises(RemoteUnavailable):
        await client.put_document("products", "1", {"id": "1"})


async def test_permission_error_raises_remote_unavailable():
    client = client_for(lambda request: httpx.Response(403, json={"error": "denied"}))
    with pytest.raises(RemoteUnavailable):
        await client.get_document("settings", "admin_creds")


async def test_malformed_listing_raises_remote_unavailable():
    client = client_for(lambda request: httpx.Response(200, text="<html>proxy login</html>"))
    with pytest.raises(RemoteUnavailable):
        await client.list_documents("products")
