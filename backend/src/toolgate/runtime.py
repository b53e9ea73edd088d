"""Process-wide object graph shared by the HTTP and stdio transports."""

from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from .auth.api_key import ApiKeyAuthenticator
from .core.config import Settings
from .core.database import close_db, create_engine, create_session_factory, init_db
from .core.http_client import HTTPClientManager
from .core.logging import get_logger
from .core.rate_limiting import RateLimitService
from .mcp.dispatcher import ToolDispatcher
from .plugins.proxy import InvocationProxy
from .plugins.registry import PluginRegistry
from .tools import build_builtin_toolset

logger = get_logger(__name__)


@dataclass
class Runtime:
    settings: Settings
    engine: AsyncEngine
    http: HTTPClientManager
    registry: PluginRegistry
    dispatcher: ToolDispatcher
    rate_limiter: RateLimitService
    authenticator: ApiKeyAuthenticator

    async def start(self) -> None:
        await init_db(self.engine)

    async def close(self) -> None:
        await self.http.close()
        await self.rate_limiter.close()
        await close_db(self.engine)


def build_runtime(settings: Settings, http_transport: httpx.AsyncBaseTransport | None = None) -> Runtime:
    """Wire the registry, proxy, built-ins and dispatcher from settings."""
    engine = create_engine(settings)
    http = HTTPClientManager(settings, transport=http_transport)
    registry = PluginRegistry(create_session_factory(engine), settings)
    proxy = InvocationProxy(http, settings.proxy_timeout_seconds)
    dispatcher = ToolDispatcher(registry, proxy, build_builtin_toolset(settings, http), settings)
    logger.debug("Runtime assembled", extra={"builtin_tools": len(dispatcher.builtins)})
    return Runtime(
        settings=settings,
        engine=engine,
        http=http,
        registry=registry,
        dispatcher=dispatcher,
        rate_limiter=RateLimitService(settings),
        authenticator=ApiKeyAuthenticator(settings),
    )
