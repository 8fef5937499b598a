import logging
from typing import Any, Dict, Optional

import httpx

from config import settings
from errors import ExternalServiceError
from services.http_client import HTTPClient, get_http_client

logger = logging.getLogger(__name__)


class OpenLibraryService:
    """Search client for the Open Library catalog (``/search.json``)."""

    def __init__(self, http_client: Optional[HTTPClient] = None, search_url: Optional[str] = None,
                 timeout: Optional[float] = None) -> None:
        self._http_client = http_client
        self.search_url = search_url or settings.openlibrary_search_url
        self.timeout = timeout or settings.openlibrary_timeout

    async def _client(self) -> HTTPClient:
        if self._http_client is None:
            self._http_client = await get_http_client()
        return self._http_client

    async def search(self, query: str, limit: Optional[int] = None) -> Dict[str, Any]:
        """Return the raw search payload: ``{"start", "num_found", "docs": [...]}``."""
        params: Dict[str, Any] = {"q": query}
        if limit:
            params["limit"] = limit
        client = await self._client()
        try:
            response = await client.get_with_retry(self.search_url, params=params, timeout=self.timeout)
        except httpx.RequestError as exc:
            logger.error("Open Library unreachable: %s", exc)
            raise ExternalServiceError("Open Library unreachable") from exc
        if response.status_code != 200:
            logger.error("Open Library search returned HTTP %d for %r", response.status_code, query)
            raise ExternalServiceError(f"Open Library search failed with status {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            raise ExternalServiceError("Open Library returned invalid JSON") from exc
        if not isinstance(data, dict) or not isinstance(data.get("docs") or [], list):
            raise ExternalServiceError("Open Library returned an unexpected payload")
        logger.info("Open Library search %r returned %d docs", query, len(data.get("docs") or []))
        return data
