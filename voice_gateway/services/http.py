"""
Shared plumbing for the HTTP service clients.

Every client takes an optional ``httpx.AsyncClient`` so a single connection
pool can be shared (and so tests can inject an ``httpx.MockTransport``).
Non-2xx responses and transport failures surface as ``ServiceError``.
"""

import logging
from typing import Any, Optional

import httpx

from voice_gateway.config.constants import LOGGER_NAME
from voice_gateway.errors import ServiceError

logger = logging.getLogger(LOGGER_NAME)

DEFAULT_HTTP_TIMEOUT = 30.0


class HttpService:
    """Base class for the clients of external productivity services."""

    service_name = "service"

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self._http = http_client or httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT)

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"{self.service_name} request failed: {e}")
            raise ServiceError(f"{self.service_name} unreachable: {e}") from e
        if response.status_code >= 400:
            logger.warning(
                f"{self.service_name} returned HTTP {response.status_code}: {response.text[:200]}"
            )
            raise ServiceError(f"{self.service_name} returned HTTP {response.status_code}")
        return response

    async def _json(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await self._request(method, url, **kwargs)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ServiceError(f"{self.service_name} returned invalid JSON") from e

    async def aclose(self) -> None:
        await self._http.aclose()
