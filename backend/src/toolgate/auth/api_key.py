"""Shared-secret authentication of the channel.

API keys say nothing about tenancy; the caller's context travels separately.
Keys listed in ``TOOLGATE_ADMIN_API_KEYS`` additionally carry the
administrative role used for enablement and unregistration of plugins the
caller does not own.
"""

import hashlib
import hmac
from dataclasses import dataclass

from ..core.config import Settings
from ..core.exceptions import AuthenticationError
from ..core.logging import get_logger
from .context import Context

logger = get_logger(__name__)


def key_fingerprint(api_key: str) -> str:
    """Stable, non-reversible identifier for a key, safe to log and use as a bucket key."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class Principal:
    """Authenticated caller of a transport."""

    channel: str
    is_admin: bool = False

    def rate_limit_key(self, context: Context | None) -> str:
        """Bucket key: the channel, narrowed by context when one is present."""
        if context is None:
            return self.channel
        return f"{self.channel}|{context.key}"


STDIO_PRINCIPAL = Principal(channel="stdio")


def _matches_any(presented: str, candidates: list[str]) -> bool:
    # Compare against every key so timing does not reveal which one matched
    matched = False
    for candidate in candidates:
        if hmac.compare_digest(presented.encode("utf-8"), candidate.encode("utf-8")):
            matched = True
    return matched


class ApiKeyAuthenticator:
    """Validates the API key presented on a networked request."""

    def __init__(self, settings: Settings):
        self.enabled = settings.auth_enabled
        self.api_keys = list(settings.api_keys)
        self.admin_keys = list(settings.admin_api_keys)

    def authenticate(self, presented: str | None) -> Principal:
        """Return the principal for ``presented``, or raise ``AuthenticationError``."""
        if presented:
            is_admin = _matches_any(presented, self.admin_keys)
            if is_admin or _matches_any(presented, self.api_keys):
                return Principal(channel=f"api:{key_fingerprint(presented)}", is_admin=is_admin)
            if self.enabled:
                logger.warning("Rejected request with unknown API key", extra={"key_fingerprint": key_fingerprint(presented)})
                raise AuthenticationError()

        if self.enabled:
            raise AuthenticationError()
        return Principal(channel="api:anonymous")
