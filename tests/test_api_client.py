# FILE: tests/test_api_client.py
"""CapsuleClient against the real app (ASGI transport) and a mocked storage endpoint"""
import json

import httpx
import pytest

from capsule.client.api_client import CapsuleClient, CapsuleClientError
from capsule.client.ledger import OwnershipLedger
from conftest import image_url


@pytest.fixture
def ledger(tmp_path):
    return OwnershipLedger(str(tmp_path / "ledger.json"))


@pytest.fixture
def asgi_client(api, ledger):
    """Client routed into the FastAPI app; `api` installs the fake-store overrides"""
    from capsule.app import app

    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")
    return CapsuleClient("http://testserver", ledger=ledger, http_client=http)


@pytest.mark.asyncio
async def test_owner_lifecycle_keeps_ledger_in_step(asgi_client, ledger, blob_store):
    async with asgi_client as client:
        code = await client.create_memory("Beach Day", gallery_images=[image_url("a"), image_url("b")])
        assert ledger.is_owner(code)

        memory = await client.get_memory(code)
        assert memory["title"] == "Beach Day"
        assert ledger.visited() == []

        updated = await client.update_memory(code, gallery_images=[image_url("b")], story="Sunny")
        assert updated["galleryImages"] == [image_url("b")]
        assert blob_store.delete_calls == [{image_url("a")}]

        assert await client.code_exists(code)
        await client.delete_memory(code)
        assert ledger.all_codes() == []
        assert await client.get_memory(code) is None


@pytest.mark.asyncio
async def test_visiting_and_listing(asgi_client, ledger, service):
    from capsule.models.memory import MemoryCreateRequest

    older = await service.create_memory(MemoryCreateRequest(title="Older"))
    newer = await service.create_memory(MemoryCreateRequest(title="Newer"))

    async with asgi_client as client:
        await client.get_memory(older.code)
        await client.get_memory(newer.code)
        ledger.record_visited("00000000")

        summaries = await client.list_summaries()

    assert ledger.visited() == [older.code, newer.code, "00000000"]
    assert [s["title"] for s in summaries] == ["Newer", "Older"]


@pytest.mark.asyncio
async def test_update_of_unowned_code_fails_locally(asgi_client):
    async with asgi_client as client:
        with pytest.raises(CapsuleClientError) as exc_info:
            await client.update_memory("12345678", title="Mine now")

    assert exc_info.value.status_code == 403


@pytest.mark.asyncio
async def test_create_error_surfaces_server_detail(asgi_client):
    async with asgi_client as client:
        with pytest.raises(CapsuleClientError) as exc_info:
            await client.create_memory("")

    assert exc_info.value.status_code == 400
    assert "Title is required" in exc_info.value.message


@pytest.mark.asyncio
async def test_upload_images_puts_bytes_to_granted_urls(ledger):
    uploads = {}

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/upload-url":
            body = json.loads(request.content)
            name = body["filename"]
            return httpx.Response(200, json={
                "uploadUrl": f"https://storage.example.com/bucket/{name}?sig=1",
                "publicUrl": f"https://cdn.example.com/{name}",
                "expiresIn": 360,
            })
        if request.method == "PUT" and request.url.host == "storage.example.com":
            uploads[request.url.path] = (request.headers["content-type"], request.content)
            return httpx.Response(200)
        return httpx.Response(404)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api.test")
    async with CapsuleClient("http://api.test", ledger=ledger, http_client=http) as client:
        urls = await client.upload_images([
            ("a.jpg", "image/jpeg", b"aaa"),
            ("b.png", "image/png", b"bbb"),
        ])

    assert urls == ["https://cdn.example.com/a.jpg", "https://cdn.example.com/b.png"]
    assert uploads == {
        "/bucket/a.jpg": ("image/jpeg", b"aaa"),
        "/bucket/b.png": ("image/png", b"bbb"),
    }


@pytest.mark.asyncio
async def test_failed_direct_upload_raises(ledger):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/upload-url":
            return httpx.Response(200, json={
                "uploadUrl": "https://storage.example.com/bucket/a.jpg",
                "publicUrl": "https://cdn.example.com/a.jpg",
                "expiresIn": 360,
            })
        return httpx.Response(403)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api.test")
    async with CapsuleClient("http://api.test", ledger=ledger, http_client=http) as client:
        with pytest.raises(CapsuleClientError) as exc_info:
            await client.upload_images([("a.jpg", "image/jpeg", b"aaa")])

    assert exc_info.value.status_code == 403


@pytest.mark.asyncio
async def test_network_failure_is_reported(ledger):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://api.test")
    async with CapsuleClient("http://api.test", ledger=ledger, http_client=http) as client:
        with pytest.raises(CapsuleClientError) as exc_info:
            await client.get_memory("12345678")

    assert exc_info.value.status_code == 0
