"""Invocation proxy for externally hosted tools.

The proxy builds the outbound payload itself: the caller's resolved context is
injected next to the arguments, never read from them. Calls are bounded by a
total timeout and never retried here.
"""

import asyncio
import time
from typing import Any

import httpx

from ..auth.context import Context
from ..core.exceptions import UpstreamError, UpstreamTimeoutError, UpstreamUnreachableError
from ..core.http_client import HTTPClientManager
from ..core.logging import LoggerMixin

MAX_LOGGED_BODY = 512


class InvocationProxy(LoggerMixin):
    """POSTs tool invocations to plugin endpoints and maps transport failures."""

    def __init__(self, http: HTTPClientManager, default_timeout: float):
        self._http = http
        self.default_timeout = default_timeout

    @staticmethod
    def build_payload(context: Context, arguments: dict[str, Any]) -> dict[str, Any]:
        """Outbound body. Context-looking keys inside ``arguments`` stay plain data."""
        return {
            "context_type": context.type.value,
            "context_id": str(context.id),
            "arguments": arguments,
        }

    async def invoke(
        self,
        endpoint_url: str,
        context: Context,
        arguments: dict[str, Any],
        timeout: float | None = None,
    ) -> Any:
        """Call ``endpoint_url`` and return its decoded JSON body.

        Raises:
            UpstreamTimeoutError: if no complete response arrives within ``timeout``.
            UpstreamUnreachableError: on DNS, connection or TLS failures.
            UpstreamError: on a non-2xx status or a body that is not JSON.

        """
        timeout = timeout or self.default_timeout
        payload = self.build_payload(context, arguments)
        client = await self._http.get_client()
        started = time.perf_counter()

        try:
            # wait_for bounds the whole exchange; httpx timeouts are per phase
            response = await asyncio.wait_for(
                client.post(endpoint_url, json=payload, timeout=timeout),
                timeout=timeout,
            )
        except (TimeoutError, httpx.TimeoutException):
            self.logger.warning("Upstream call timed out", extra={"endpoint_url": endpoint_url, "timeout": timeout})
            raise UpstreamTimeoutError(endpoint_url, timeout) from None
        except httpx.TransportError as e:
            self.logger.warning(
                "Upstream unreachable", extra={"endpoint_url": endpoint_url, "error": f"{type(e).__name__}: {e}"}
            )
            raise UpstreamUnreachableError(endpoint_url, type(e).__name__) from e
        except httpx.HTTPError as e:
            self.logger.warning("Upstream call failed", extra={"endpoint_url": endpoint_url, "error": str(e)})
            raise UpstreamError(endpoint_url, type(e).__name__) from e
        except asyncio.CancelledError:
            self.logger.info("Upstream call cancelled", extra={"endpoint_url": endpoint_url})
            raise

        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
        if not response.is_success:
            self.logger.warning(
                "Upstream returned error status",
                extra={
                    "endpoint_url": endpoint_url,
                    "status_code": response.status_code,
                    "body": response.text[:MAX_LOGGED_BODY],
                    "elapsed_ms": elapsed_ms,
                },
            )
            raise UpstreamError(endpoint_url, f"status {response.status_code}", upstream_status=response.status_code)

        try:
            result = response.json()
        except ValueError:
            raise UpstreamError(endpoint_url, "response body is not JSON", upstream_status=response.status_code) from None

        self.logger.debug("Upstream call completed", extra={"endpoint_url": endpoint_url, "elapsed_ms": elapsed_ms})
        return result
