"""HTTP client for the remote favorites service.

Talks to ``POST/DELETE/GET {base_url}/favorites`` with httpx. The acting
user travels in the ``x-user-id`` header next to the session cookies.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from favsync.types import RemoteSyncError

logger = logging.getLogger(__name__)

USER_ID_HEADER = "x-user-id"


def _error_message(response: httpx.Response, fallback: str) -> str:
    """Prefer the service's ``{"error": ...}`` body over a generic message."""
    try:
        data = response.json()
    except ValueError:
        return fallback
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return fallback


class FavoritesClient:
    """Async client for the remote favorites endpoints.

    Args:
        base_url: Service root, e.g. ``https://app.example.com/api``.
        cookies: Session cookies sent with every request.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        *,
        cookies: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            cookies=cookies,
            timeout=timeout,
            transport=transport,
        )

    def _headers(self, user_id: Optional[str]) -> Dict[str, str]:
        return {USER_ID_HEADER: user_id} if user_id else {}

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteSyncError(f"{method} {path} failed: {e}") from e

    async def add_favorite(
        self, remote_message_id: str, *, user_id: Optional[str] = None
    ) -> Optional[str]:
        """Create a favorite for a remote message. Returns the remote favorite id."""
        response = await self._request(
            "POST",
            "/favorites",
            json={"messageId": remote_message_id},
            headers=self._headers(user_id),
        )
        if not response.is_success:
            raise RemoteSyncError(
                _error_message(response, f"Failed to sync favorite: {response.status_code}"),
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            data = {}
        favorite = data.get("favorite") if isinstance(data, dict) else None
        remote_id = favorite.get("id") if isinstance(favorite, dict) else None
        logger.debug(f"Remote favorite created for message {remote_message_id}: {remote_id}")
        return str(remote_id) if remote_id is not None else None

    async def remove_favorite(
        self, remote_message_id: str, *, user_id: Optional[str] = None
    ) -> None:
        """Delete the favorite for a remote message. 404 means already gone."""
        response = await self._request(
            "DELETE",
            "/favorites",
            params={"messageId": remote_message_id},
            headers=self._headers(user_id),
        )
        if response.status_code == 404:
            logger.debug(f"Remote favorite for {remote_message_id} already deleted")
            return
        if not response.is_success:
            raise RemoteSyncError(
                _error_message(response, f"Failed to remove favorite: {response.status_code}"),
                status_code=response.status_code,
            )

    async def list_favorites(self, *, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Fetch every remote favorite for the user."""
        response = await self._request("GET", "/favorites", headers=self._headers(user_id))
        if not response.is_success:
            raise RemoteSyncError(
                _error_message(response, f"Failed to fetch favorites: {response.status_code}"),
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as e:
            raise RemoteSyncError(f"Invalid favorites response: {e}") from e
        favorites = data.get("favorites") if isinstance(data, dict) else None
        if not isinstance(favorites, list):
            raise RemoteSyncError("Invalid favorites response: missing 'favorites' list")
        return favorites

    async def check_connection(self) -> bool:
        """Probe the favorites endpoint; any HTTP answer below 500 counts as reachable."""
        try:
            response = await self._client.get("/favorites", timeout=5.0)
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity check failed: {e}")
            return False
        return response.status_code < 500

    async def aclose(self) -> None:
        await self._client.aclose()
