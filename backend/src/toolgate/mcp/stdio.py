"""Line-delimited JSON-RPC over stdin/stdout.

Each line is one request. Requests are served concurrently; responses are
written whole, one per line, in completion order. The caller context comes
from the optional top-level ``context_type``/``context_id`` fields. Nothing
but protocol frames is ever written to stdout.
"""

import asyncio
import json
import sys
from collections.abc import Callable
from typing import Any

from ..auth.api_key import STDIO_PRINCIPAL
from ..auth.context import resolve_from_payload
from ..core import exceptions as exc
from ..core.exceptions import ToolgateException
from ..core.logging import get_logger
from ..core.rate_limiting import RateLimitService
from ..schemas.mcp import rpc_error
from .dispatcher import ProtocolSession, ToolDispatcher, error_from_exception

logger = get_logger(__name__)


class StdioServer:
    """Serves one protocol session over a pair of byte streams."""

    def __init__(
        self,
        dispatcher: ToolDispatcher,
        rate_limiter: RateLimitService,
        session: ProtocolSession | None = None,
    ):
        self.dispatcher = dispatcher
        self.rate_limiter = rate_limiter
        self.session = session or dispatcher.new_session()
        self._write_lock = asyncio.Lock()

    async def handle_line(self, line: str) -> dict[str, Any] | None:
        """Turn one input line into its response frame (None for notifications)."""
        line = line.strip()
        if not line:
            return None
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            return rpc_error(None, exc.PARSE_ERROR, "Parse error")
        if not isinstance(message, dict):
            return rpc_error(None, exc.INVALID_REQUEST, "Invalid request")

        request_id = message.get("id")
        try:
            context = resolve_from_payload(message)
            await self.rate_limiter.enforce(STDIO_PRINCIPAL.rate_limit_key(context))
        except ToolgateException as e:
            if "id" not in message:
                return None
            return error_from_exception(request_id, e)

        return await self.dispatcher.handle(self.session, message, context)

    async def _respond(self, line: str, write: Callable[[str], None]) -> None:
        try:
            response = await self.handle_line(line)
        except Exception:
            logger.exception("Unhandled error while serving stdio request")
            response = rpc_error(None, exc.INTERNAL_ERROR, "Internal error")
        if response is None:
            return
        frame = json.dumps(response, ensure_ascii=False, default=str)
        async with self._write_lock:
            write(frame + "\n")

    async def serve(self, reader: asyncio.StreamReader, write: Callable[[str], None]) -> None:
        """Read requests until EOF, then wait for in-flight ones to finish."""
        pending: set[asyncio.Task] = set()
        while True:
            try:
                raw = await reader.readline()
            except ValueError:
                # Line exceeded the reader limit; the oversized data was discarded
                async with self._write_lock:
                    write(json.dumps(rpc_error(None, exc.INVALID_REQUEST, "Request too large")) + "\n")
                continue
            if not raw:
                break
            task = asyncio.create_task(self._respond(raw.decode("utf-8", errors="replace"), write))
            pending.add(task)
            task.add_done_callback(pending.discard)

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("stdin closed, stdio session finished")


async def open_stdin_reader(limit: int) -> asyncio.StreamReader:
    """Wrap the process stdin in an asyncio stream reader."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=limit)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    return reader


def write_stdout(frame: str) -> None:
    sys.stdout.write(frame)
    sys.stdout.flush()


async def run_stdio(settings) -> None:
    """Serve the protocol on this process's stdin/stdout until EOF."""
    from ..runtime import build_runtime

    runtime = build_runtime(settings)
    await runtime.start()
    try:
        server = StdioServer(runtime.dispatcher, runtime.rate_limiter)
        reader = await open_stdin_reader(settings.max_request_bytes)
        logger.info("Serving tool protocol on stdio", extra={"strict": server.session.strict})
        await server.serve(reader, write_stdout)
    finally:
        await runtime.close()
