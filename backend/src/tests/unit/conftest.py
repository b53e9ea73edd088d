"""
Shared pytest fixtures and path setup for unit tests.
"""

import json
import os
import sys
from pathlib import Path

# Set environment defaults BEFORE any toolgate imports so Settings never picks
# up a developer's .env or a production database. These are test-only values.
os.environ.setdefault("TOOLGATE_ENVIRONMENT", "test")
os.environ.setdefault("TOOLGATE_DATABASE_URL", "sqlite+aiosqlite:///./toolgate-test.db")
os.environ.setdefault("TOOLGATE_LOG_LEVEL", "DEBUG")
os.environ.setdefault("TOOLGATE_REDIS_URL", "")

# Add backend/src to sys.path so toolgate.* imports work when running pytest from repo root.
PROJECT_SRC = Path(__file__).resolve().parents[2]
if str(PROJECT_SRC) not in sys.path:
    sys.path.insert(0, str(PROJECT_SRC))

import httpx
import pytest
import pytest_asyncio

from toolgate.core.config import Settings
from toolgate.core.database import create_engine, create_session_factory, init_db
from toolgate.core.http_client import HTTPClientManager
from toolgate.plugins.registry import PluginRegistry

ECHO_ENDPOINT = "https://plugins.example.com/echo"


@pytest.fixture
def make_settings(tmp_path):
    """Factory for Settings backed by a throwaway SQLite file."""

    def _make(**overrides) -> Settings:
        values = {
            "database_url": f"sqlite+aiosqlite:///{tmp_path / 'toolgate.db'}",
            "environment": "test",
            "auth_enabled": False,
            "rate_limit_enabled": False,
            "redis_url": None,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def registry(settings):
    """A PluginRegistry over a fresh, initialized database."""
    engine = create_engine(settings)
    await init_db(engine)
    try:
        yield PluginRegistry(create_session_factory(engine), settings)
    finally:
        await engine.dispose()


def echo_handler(request: httpx.Request) -> httpx.Response:
    """Upstream stand-in that echoes the payload it received."""
    return httpx.Response(200, json={"received": json.loads(request.content)})


@pytest.fixture
def echo_transport() -> httpx.MockTransport:
    return httpx.MockTransport(echo_handler)


@pytest_asyncio.fixture
async def http_manager(settings, echo_transport):
    manager = HTTPClientManager(settings, transport=echo_transport)
    try:
        yield manager
    finally:
        await manager.close()
