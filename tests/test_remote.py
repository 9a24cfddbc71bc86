"""Tests for the httpx favorites client."""

import json

import httpx
import pytest

from favsync.remote import USER_ID_HEADER, FavoritesClient
from favsync.types import RemoteSyncError

BASE_URL = "https://app.example.com/api"


def make_client(handler, **kwargs) -> FavoritesClient:
    return FavoritesClient(BASE_URL, transport=httpx.MockTransport(handler), **kwargs)


class TestAddFavorite:
    @pytest.mark.asyncio
    async def test_posts_message_id(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["user"] = request.headers.get(USER_ID_HEADER)
            seen["cookie"] = request.headers.get("cookie")
            return httpx.Response(201, json={"favorite": {"id": "fav-remote-1"}})

        client = make_client(handler, cookies={"session": "abc"})
        remote_id = await client.add_favorite("rm-1", user_id="user-1")
        await client.aclose()

        assert remote_id == "fav-remote-1"
        assert seen["method"] == "POST"
        assert seen["url"] == f"{BASE_URL}/favorites"
        assert seen["body"] == {"messageId": "rm-1"}
        assert seen["user"] == "user-1"
        assert "session=abc" in seen["cookie"]

    @pytest.mark.asyncio
    async def test_missing_favorite_in_body(self):
        client = make_client(lambda request: httpx.Response(200, json={}))
        assert await client.add_favorite("rm-1") is None
        await client.aclose()

    @pytest.mark.asyncio
    async def test_error_body_message_is_used(self):
        client = make_client(
            lambda request: httpx.Response(400, json={"error": "Message not found"})
        )

        with pytest.raises(RemoteSyncError) as exc_info:
            await client.add_favorite("rm-1")
        await client.aclose()

        assert str(exc_info.value) == "Message not found"
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_error_without_body(self):
        client = make_client(lambda request: httpx.Response(500, text="oops"))

        with pytest.raises(RemoteSyncError, match="Failed to sync favorite: 500"):
            await client.add_favorite("rm-1")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(RemoteSyncError) as exc_info:
            await client.add_favorite("rm-1")
        await client.aclose()

        assert exc_info.value.status_code is None


class TestRemoveFavorite:
    @pytest.mark.asyncio
    async def test_deletes_by_message_id(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"success": True})

        client = make_client(handler)
        await client.remove_favorite("rm-1", user_id="user-1")
        await client.aclose()

        assert seen == {"method": "DELETE", "params": {"messageId": "rm-1"}}

    @pytest.mark.asyncio
    async def test_not_found_counts_as_success(self):
        client = make_client(lambda request: httpx.Response(404, json={"error": "Not found"}))
        await client.remove_favorite("rm-1")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        client = make_client(lambda request: httpx.Response(503))

        with pytest.raises(RemoteSyncError) as exc_info:
            await client.remove_favorite("rm-1")
        await client.aclose()

        assert exc_info.value.status_code == 503


class TestListFavorites:
    @pytest.mark.asyncio
    async def test_returns_favorites(self):
        records = [{"id": "r1", "message": {"id": "rm-1", "content": "hi", "role": "user"}}]
        client = make_client(lambda request: httpx.Response(200, json={"favorites": records}))

        assert await client.list_favorites(user_id="user-1") == records
        await client.aclose()

    @pytest.mark.asyncio
    async def test_invalid_payload_raises(self):
        client = make_client(lambda request: httpx.Response(200, json={"items": []}))

        with pytest.raises(RemoteSyncError, match="Invalid favorites response"):
            await client.list_favorites()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_unauthorized_raises(self):
        client = make_client(lambda request: httpx.Response(401, json={"error": "Unauthorized"}))

        with pytest.raises(RemoteSyncError, match="Unauthorized"):
            await client.list_favorites()
        await client.aclose()


class TestCheckConnection:
    @pytest.mark.asyncio
    async def test_reachable(self):
        client = make_client(lambda request: httpx.Response(401))
        assert await client.check_connection() is True
        await client.aclose()

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        client = make_client(handler)
        assert await client.check_connection() is False
        await client.aclose()
