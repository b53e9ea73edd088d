"""Configuration management for Toolgate.

Uses Pydantic Settings for type-safe, environment-based configuration.
"""

from typing import Annotated

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Load environment variables from .env file
load_dotenv(override=False)


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # App configuration
    app_name: str = Field("toolgate", alias="TOOLGATE_APP_NAME")
    version: str = Field("0.1.0", alias="TOOLGATE_APP_VERSION")
    debug: bool = Field(False, alias="TOOLGATE_DEBUG")
    environment: str = Field("development", alias="TOOLGATE_ENVIRONMENT")

    # Transport configuration
    transport: str = Field("http", alias="TOOLGATE_TRANSPORT")
    api_v1_prefix: str = "/api/v1"
    api_host: str = Field("127.0.0.1", alias="TOOLGATE_API_HOST")
    api_port: int = Field(8000, alias="TOOLGATE_API_PORT")
    max_request_bytes: int = Field(1024 * 1024, alias="TOOLGATE_MAX_REQUEST_BYTES")

    # Protocol
    protocol_version: str = Field("2024-11-05", alias="TOOLGATE_PROTOCOL_VERSION")
    strict_initialization: bool = Field(False, alias="TOOLGATE_STRICT_INITIALIZATION")

    # Database configuration
    database_url: str = Field("sqlite+aiosqlite:///./toolgate.db", alias="TOOLGATE_DATABASE_URL")
    database_echo: bool = Field(False, alias="TOOLGATE_DATABASE_ECHO")
    database_pool_size: int = 10
    database_max_overflow: int = 20

    # Authentication. Keys authenticate the channel only, tenancy travels in the context.
    auth_enabled: bool = Field(True, alias="TOOLGATE_AUTH_ENABLED")
    api_keys: Annotated[list[str], NoDecode] = Field(default_factory=list, alias="TOOLGATE_API_KEYS")
    admin_api_keys: Annotated[list[str], NoDecode] = Field(default_factory=list, alias="TOOLGATE_ADMIN_API_KEYS")
    api_key_header: str = Field("x-api-key", alias="TOOLGATE_API_KEY_HEADER")

    # Context carriers on networked transports
    context_type_header: str = Field("x-context-type", alias="TOOLGATE_CONTEXT_TYPE_HEADER")
    context_id_header: str = Field("x-context-id", alias="TOOLGATE_CONTEXT_ID_HEADER")

    # Rate limiting (fixed window)
    rate_limit_enabled: bool = Field(True, alias="TOOLGATE_RATE_LIMIT_ENABLED")
    rate_limit_requests: int = Field(60, alias="TOOLGATE_RATE_LIMIT_REQUESTS")
    rate_limit_window_seconds: int = Field(60, alias="TOOLGATE_RATE_LIMIT_WINDOW_SECONDS")
    # Set TOOLGATE_REDIS_URL to share counters across processes; omit for in-memory.
    redis_url: str | None = Field(None, alias="TOOLGATE_REDIS_URL")

    # Invocation proxy
    proxy_timeout_seconds: float = Field(15.0, alias="TOOLGATE_PROXY_TIMEOUT_SECONDS")
    fqn_cache_ttl_seconds: float = Field(30.0, alias="TOOLGATE_FQN_CACHE_TTL_SECONDS")
    allow_insecure_endpoints: bool = Field(False, alias="TOOLGATE_ALLOW_INSECURE_ENDPOINTS")
    http_max_connections: int = Field(100, alias="TOOLGATE_HTTP_MAX_CONNECTIONS")
    http_max_keepalive_connections: int = Field(20, alias="TOOLGATE_HTTP_MAX_KEEPALIVE_CONNECTIONS")

    # Built-in tools
    builtin_tools_enabled: bool = Field(True, alias="TOOLGATE_BUILTIN_TOOLS_ENABLED")
    builtin_timeout_seconds: float = Field(10.0, alias="TOOLGATE_BUILTIN_TIMEOUT_SECONDS")

    # Logging configuration
    log_level: str = Field("INFO", alias="TOOLGATE_LOG_LEVEL")
    log_format: str = Field("text", alias="TOOLGATE_LOG_FORMAT")

    @property
    def redis_enabled(self) -> bool:
        """Whether Redis should back the rate limiter, based on TOOLGATE_REDIS_URL being set."""
        return bool(self.redis_url)

    @field_validator("transport")
    @classmethod
    def validate_transport(cls, v: str) -> str:
        """Validate transport selection."""
        valid_transports = ["http", "stdio"]
        if v.lower() not in valid_transports:
            raise ValueError(f"Transport must be one of: {valid_transports}")
        return v.lower()

    @field_validator("api_keys", "admin_api_keys", mode="before")
    @classmethod
    def validate_key_list(cls, v: str | list | None) -> list:
        """Parse API keys from a comma-separated string or list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [key.strip() for key in v.split(",") if key.strip()]
        if isinstance(v, list):
            return [str(key).strip() for key in v if str(key).strip()]
        return []

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["text", "json"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of: {valid_formats}")
        return v.lower()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment setting."""
        valid_environments = ["development", "test", "staging", "production"]
        if v.lower() not in valid_environments:
            raise ValueError(f"Environment must be one of: {valid_environments}")
        return v.lower()

    @field_validator("rate_limit_requests", "rate_limit_window_seconds")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Rate limit ceiling and window must be positive."""
        if v <= 0:
            raise ValueError("Rate limit values must be positive")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        populate_by_name=True,
        extra="ignore",  # Ignore extra environment variables instead of forbidding them
    )


def get_settings() -> Settings:
    """Build a fresh settings instance from the environment."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance - will be created when first accessed
settings = None


def get_settings_instance() -> Settings:
    """Get the global settings instance, creating it if necessary."""
    global settings  # noqa: PLW0603
    if settings is None:
        settings = get_settings()
    return settings
