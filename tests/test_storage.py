"""Unit tests for the storage and auth HTTP clients."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator

import httpx
import pytest
from respx import MockRouter
from tenacity import wait_none

from heritage.auth import AuthClient, AuthError, extract_token
from heritage.config import BackendSettings, settings
from heritage.storage import StorageClient, StorageError, TransientStorageError

BASE = "https://backend.test"


@pytest.fixture
async def http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture
def storage(http_client: httpx.AsyncClient) -> StorageClient:
    return StorageClient(http_client, base_url=BASE, key="service-key")


@pytest.fixture
def no_retry_wait(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(StorageClient.upload.retry, "wait", wait_none())


@pytest.mark.asyncio
async def test_upload_sends_headers(storage: StorageClient, respx_mock: MockRouter) -> None:
    route = respx_mock.post(f"{BASE}/storage/v1/object/site-images/gallery/1/a.jpg").mock(
        return_value=httpx.Response(200, json={"Key": "site-images/gallery/1/a.jpg"})
    )

    path = await storage.upload(
        "site-images", "gallery/1/a.jpg", b"bytes", content_type="image/jpeg", upsert=True, cache_control="3600"
    )

    assert path == "gallery/1/a.jpg"
    request = route.calls[0].request
    assert request.headers["authorization"] == "Bearer service-key"
    assert request.headers["x-upsert"] == "true"
    assert request.headers["cache-control"] == "max-age=3600"
    assert request.headers["content-type"] == "image/jpeg"
    assert request.content == b"bytes"


@pytest.mark.asyncio
async def test_upload_retries_server_errors(
    storage: StorageClient, respx_mock: MockRouter, no_retry_wait: None
) -> None:
    route = respx_mock.post(f"{BASE}/storage/v1/object/site-images/x.jpg").mock(
        side_effect=[httpx.Response(503, text="busy"), httpx.Response(200, json={})]
    )

    await storage.upload("site-images", "x.jpg", b"data")

    assert route.call_count == 2


@pytest.mark.asyncio
async def test_upload_gives_up_after_last_attempt(
    storage: StorageClient, respx_mock: MockRouter, no_retry_wait: None
) -> None:
    respx_mock.post(f"{BASE}/storage/v1/object/site-images/x.jpg").mock(return_value=httpx.Response(500, text="down"))

    with pytest.raises(TransientStorageError):
        await storage.upload("site-images", "x.jpg", b"data")


@pytest.mark.asyncio
async def test_upload_client_error_is_not_retried(
    storage: StorageClient, respx_mock: MockRouter, no_retry_wait: None
) -> None:
    route = respx_mock.post(f"{BASE}/storage/v1/object/site-images/x.jpg").mock(
        return_value=httpx.Response(400, text="bad")
    )

    with pytest.raises(StorageError) as exc_info:
        await storage.upload("site-images", "x.jpg", b"data")

    assert not isinstance(exc_info.value, TransientStorageError)
    assert route.call_count == 1


@pytest.mark.asyncio
async def test_remove_sends_prefixes(storage: StorageClient, respx_mock: MockRouter) -> None:
    route = respx_mock.delete(f"{BASE}/storage/v1/object/user-photos").mock(return_value=httpx.Response(200, json=[]))

    await storage.remove("user-photos", ["u/1.jpg", "u/2.jpg"])

    assert json.loads(route.calls[0].request.content) == {"prefixes": ["u/1.jpg", "u/2.jpg"]}


@pytest.mark.asyncio
async def test_remove_nothing_makes_no_request(storage: StorageClient, respx_mock: MockRouter) -> None:
    await storage.remove("user-photos", [])
    assert len(respx_mock.calls) == 0


def test_public_and_render_urls(storage: StorageClient) -> None:
    public = storage.public_url("site-images", "gallery/1/a b.jpg")

    assert public == f"{BASE}/storage/v1/object/public/site-images/gallery/1/a%20b.jpg"
    assert StorageClient.render_url(public, 640) == (
        f"{BASE}/storage/v1/render/image/public/site-images/gallery/1/a%20b.jpg?width=640&quality=75"
    )


@pytest.mark.asyncio
async def test_list_posts_prefix_and_paging(storage: StorageClient, respx_mock: MockRouter) -> None:
    route = respx_mock.post(f"{BASE}/storage/v1/object/list/site-images").mock(
        return_value=httpx.Response(200, json=[{"name": "a.jpg"}])
    )

    assert await storage.list("site-images", "gallery/1", limit=10) == [{"name": "a.jpg"}]
    body = json.loads(route.calls[0].request.content)
    assert body["prefix"] == "gallery/1"
    assert body["limit"] == 10
    assert body["offset"] == 0


def test_extract_token_prefers_bearer_header() -> None:
    assert extract_token("Bearer abc", "cookie") == "abc"
    assert extract_token("Basic xyz", "cookie") == "cookie"
    assert extract_token(None, None) is None


@pytest.mark.asyncio
async def test_get_user(http_client: httpx.AsyncClient, respx_mock: MockRouter) -> None:
    route = respx_mock.get(f"{BASE}/auth/v1/user").mock(
        return_value=httpx.Response(200, json={"id": "user-1", "email": "a@example.com"})
    )

    user = await AuthClient(http_client, base_url=BASE).get_user("token-1")

    assert user.id == "user-1"
    assert user.email == "a@example.com"
    assert route.calls[0].request.headers["authorization"] == "Bearer token-1"


@pytest.mark.asyncio
async def test_get_user_rejects_invalid_token(http_client: httpx.AsyncClient, respx_mock: MockRouter) -> None:
    respx_mock.get(f"{BASE}/auth/v1/user").mock(return_value=httpx.Response(401))
    auth = AuthClient(http_client, base_url=BASE)

    with pytest.raises(AuthError):
        await auth.get_user("expired")
    with pytest.raises(AuthError):
        await auth.get_user(None)


@pytest.mark.asyncio
async def test_storage_key_comes_from_backend_settings(http_client: httpx.AsyncClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BACKEND_SERVICE_ROLE_KEY", "role-from-env")
    backend = BackendSettings()
    assert backend.service_role_key == "role-from-env"

    monkeypatch.setattr(settings, "backend", backend)
    assert StorageClient(http_client, base_url=BASE)._headers()["apikey"] == "role-from-env"

    monkeypatch.setattr(settings.backend, "service_role_key", "")
    monkeypatch.setattr(settings.backend, "anon_key", "anon-key")
    assert StorageClient(http_client, base_url=BASE)._headers()["Authorization"] == "Bearer anon-key"
