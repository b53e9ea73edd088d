"""GeckoTerminal lookups exposed as built-in tools.

Thin GET wrappers over the public GeckoTerminal v2 API for networks, tokens,
pools, trending pools, pool search and newly created pools.
"""

from typing import Any
from urllib.parse import quote

import httpx

from ..core.exceptions import UpstreamError, UpstreamTimeoutError, UpstreamUnreachableError
from ..core.http_client import HTTPClientManager
from ..core.logging import get_logger
from .builtin import BuiltinTool

logger = get_logger(__name__)

GECKO_TERMINAL_BASE_URL = "https://api.geckoterminal.com/api/v2"
POOL_INCLUDES = "base_token,quote_token,dex"

_PAGE = {"type": "integer", "minimum": 1, "maximum": 10, "default": 1}
_NETWORK_AND_ADDRESS = {
    "type": "object",
    "properties": {
        "network": {"type": "string", "minLength": 1},
        "address": {"type": "string", "minLength": 1},
    },
    "required": ["network", "address"],
}


def _segment(value: str) -> str:
    return quote(value.strip().strip("/"), safe="")


class GeckoTerminalTools:
    """Built-in GeckoTerminal tools sharing the server's HTTP client."""

    def __init__(self, http: HTTPClientManager, base_url: str = GECKO_TERMINAL_BASE_URL, timeout: float = 10.0):
        self._http = http
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}/{path}"
        logger.debug("GeckoTerminal request", extra={"url": url})
        client = await self._http.get_client()
        try:
            response = await client.get(url, params=params, timeout=self.timeout, headers={"Accept": "application/json"})
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException:
            raise UpstreamTimeoutError(url, self.timeout) from None
        except httpx.HTTPStatusError as e:
            raise UpstreamError(url, f"status {e.response.status_code}", upstream_status=e.response.status_code) from e
        except httpx.TransportError as e:
            raise UpstreamUnreachableError(url, type(e).__name__) from e
        except ValueError:
            raise UpstreamError(url, "response body is not JSON") from None

    async def get_networks(self, arguments: dict[str, Any]) -> Any:
        page = arguments.get("page", 1)
        return {"networks": await self._get_json("networks", {"page": page})}

    async def get_token(self, arguments: dict[str, Any]) -> Any:
        path = f"networks/{_segment(arguments['network'])}/tokens/{_segment(arguments['address'])}"
        return {"token": await self._get_json(path)}

    async def get_pool(self, arguments: dict[str, Any]) -> Any:
        path = f"networks/{_segment(arguments['network'])}/pools/{_segment(arguments['address'])}"
        return {"pool": await self._get_json(path)}

    async def get_trending_pools(self, arguments: dict[str, Any]) -> Any:
        params = {
            "page": arguments.get("page", 1),
            "duration": arguments.get("duration", "24h"),
            "include": POOL_INCLUDES,
        }
        body = await self._get_json(f"networks/{_segment(arguments['network'])}/trending_pools", params)
        limit = arguments.get("limit", 10)
        if isinstance(body, dict) and isinstance(body.get("data"), list):
            body = {**body, "data": body["data"][:limit]}
        return {"pools": body}

    async def search_pools(self, arguments: dict[str, Any]) -> Any:
        params: dict[str, Any] = {
            "query": arguments["query"],
            "page": arguments.get("page", 1),
            "include": POOL_INCLUDES,
        }
        network = (arguments.get("network") or "").strip()
        if network:
            params["network"] = network
        return {"pools": await self._get_json("search/pools", params)}

    async def get_new_pools(self, arguments: dict[str, Any]) -> Any:
        params = {"page": arguments.get("page", 1), "include": POOL_INCLUDES}
        return {"pools": await self._get_json(f"networks/{_segment(arguments['network'])}/new_pools", params)}

    def tools(self) -> list[BuiltinTool]:
        return [
            BuiltinTool(
                name="get_gecko_networks",
                description="List available networks from GeckoTerminal",
                input_schema={"type": "object", "properties": {"page": _PAGE}},
                handler=self.get_networks,
            ),
            BuiltinTool(
                name="get_gecko_token",
                description="Fetch token info from GeckoTerminal",
                input_schema=_NETWORK_AND_ADDRESS,
                handler=self.get_token,
            ),
            BuiltinTool(
                name="get_gecko_pool",
                description="Fetch pool info from GeckoTerminal",
                input_schema=_NETWORK_AND_ADDRESS,
                handler=self.get_pool,
            ),
            BuiltinTool(
                name="get_trending_pools",
                description="Fetch trending DEX pools from GeckoTerminal",
                input_schema={
                    "type": "object",
                    "properties": {
                        "network": {"type": "string", "minLength": 1},
                        "limit": {"type": "integer", "minimum": 1, "maximum": 20, "default": 10},
                        "page": _PAGE,
                        "duration": {"type": "string", "enum": ["5m", "1h", "6h", "24h"], "default": "24h"},
                    },
                    "required": ["network"],
                },
                handler=self.get_trending_pools,
            ),
            BuiltinTool(
                name="search_pools",
                description="Search for DEX pools on GeckoTerminal",
                input_schema={
                    "type": "object",
                    "properties": {
                        "query": {"type": "string", "minLength": 1},
                        "network": {"type": "string"},
                        "page": _PAGE,
                    },
                    "required": ["query"],
                },
                handler=self.search_pools,
            ),
            BuiltinTool(
                name="get_new_pools",
                description="Fetch newest DEX pools from GeckoTerminal",
                input_schema={
                    "type": "object",
                    "properties": {"network": {"type": "string", "minLength": 1}, "page": _PAGE},
                    "required": ["network"],
                },
                handler=self.get_new_pools,
            ),
        ]
