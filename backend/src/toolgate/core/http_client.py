"""HTTP client management for Toolgate.

One pooled ``httpx.AsyncClient`` is shared by the invocation proxy and the
built-in tools for the lifetime of the server.
"""

from typing import Any

import httpx

from .config import Settings
from .logging import get_logger

logger = get_logger(__name__)


class HTTPClientManager:
    """Manages the pooled HTTP client used for outbound calls."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._client: httpx.AsyncClient | None = None
        self._settings = settings
        # Tests pass an httpx.MockTransport here
        self._transport = transport

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client with connection pooling."""
        if self._client is None:
            logger.debug("Creating new HTTP client with connection pooling")
            timeout = self._settings.proxy_timeout_seconds
            self._client = httpx.AsyncClient(
                transport=self._transport,
                limits=httpx.Limits(
                    max_keepalive_connections=self._settings.http_max_keepalive_connections,
                    max_connections=self._settings.http_max_connections,
                    keepalive_expiry=30.0,
                ),
                timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
                # Plugin endpoints are registered URLs, never follow them elsewhere
                follow_redirects=False,
                headers={"User-Agent": f"{self._settings.app_name}/{self._settings.version}"},
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            logger.debug("Closing HTTP client")
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> httpx.AsyncClient:
        return await self.get_client()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> Any:
        await self.close()
