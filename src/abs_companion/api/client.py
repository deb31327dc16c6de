"""HTTP client for the media server's control API."""

import logging
from typing import Any, List, Optional

import httpx
from pydantic import ValidationError

from abs_companion.models.api import ItemDetails, Library
from abs_companion.models.media import MediaDescriptor


logger = logging.getLogger(__name__)


class ControlPlaneError(Exception):
    """Exception raised when a control-plane call fails."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"API error {status_code}: {message}")


# Timeout presets (seconds)
TIMEOUT_DEFAULT = 30.0


class ControlPlaneClient:
    """Async client for item lookups, encode requests and task listing."""

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = TIMEOUT_DEFAULT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the control-plane client.

        Args:
            base_url: Base URL of the server (e.g., http://localhost:13378)
            token: API token, sent as a bearer token
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.headers = {"Authorization": f"Bearer {token}"}
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client with connection pooling."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        context: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Any:
        """Make an API request, mapping every failure to ControlPlaneError."""
        client = await self._get_client()
        try:
            resp = await client.request(method, path, params=params, json=json)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = e.response.text[:200] or str(e)
            logger.error(f"API error during {context}: {status} {detail}")
            raise ControlPlaneError(status, detail) from e
        except httpx.RequestError as e:
            logger.error(f"Connection error during {context}: {e}")
            raise ControlPlaneError(0, f"Connection error: {e}") from e

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            # Action endpoints may answer with plain text
            return resp.text

    async def get_item_details(self, item_id: str) -> ItemDetails:
        """
        Fetch expanded details for an item.

        Raises:
            ControlPlaneError: Request failed or response is unusable
        """
        data = await self._request(
            "GET",
            f"/api/items/{item_id}",
            context=f"get_item_details for item {item_id}",
            params={"expanded": 1},
        )
        if not isinstance(data, dict):
            raise ControlPlaneError(0, f"No data returned for item {item_id}")
        try:
            return ItemDetails.model_validate(data)
        except ValidationError as e:
            raise ControlPlaneError(0, f"Invalid item details for {item_id}: {e}") from e

    async def get_media_descriptor(self, item_id: str) -> Optional[MediaDescriptor]:
        """Descriptor of the item's first audio file, or None if it has none."""
        details = await self.get_item_details(item_id)
        return details.media_descriptor()

    async def start_encoding(
        self,
        item_id: str,
        codec: str,
        bitrate: str,
        channels: str,
    ) -> None:
        """
        Request an M4B encode of an item.

        Args:
            item_id: Library item ID
            codec: Target codec
            bitrate: Target bitrate
            channels: Target channel count
        """
        await self._request(
            "POST",
            f"/api/tools/item/{item_id}/encode-m4b",
            context=f"start_encoding for item {item_id}",
            params={"codec": codec, "bitrate": bitrate, "channels": channels},
            json={},
        )
        logger.info(
            f"Requested M4B encoding for item {item_id} "
            f"with {codec}@{bitrate} {channels}ch"
        )

    async def embed_metadata(self, item_id: str) -> None:
        await self._request(
            "POST",
            f"/api/tools/item/{item_id}/embed-metadata",
            context=f"embed_metadata for item {item_id}",
            json={},
        )
        logger.info(f"Requested metadata embedding for item {item_id}")

    async def list_libraries(self) -> List[Library]:
        data = await self._request("GET", "/api/libraries", context="list_libraries")
        try:
            return [Library.model_validate(lib) for lib in (data or {}).get("libraries") or []]
        except (AttributeError, ValidationError) as e:
            raise ControlPlaneError(0, f"Invalid libraries response: {e}") from e

    async def list_library_items(self, library_id: str) -> List[str]:
        """IDs of all items in a library."""
        data = await self._request(
            "GET",
            f"/api/libraries/{library_id}/items",
            context=f"list_library_items for library {library_id}",
        )
        try:
            results = (data or {}).get("results") or []
            return [item["id"] for item in results if item.get("id")]
        except (AttributeError, KeyError, TypeError) as e:
            raise ControlPlaneError(0, f"Invalid items response for {library_id}: {e}") from e

    async def count_active_jobs(self) -> int:
        """Number of tasks the server currently reports."""
        data = await self._request("GET", "/api/tasks", context="count_active_jobs")
        try:
            return len(data["tasks"])
        except (KeyError, TypeError) as e:
            raise ControlPlaneError(0, f"Invalid tasks response: {e}") from e
