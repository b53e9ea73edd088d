"""Toolgate server entrypoint.

Serves the tool protocol over HTTP (uvicorn) or over stdin/stdout, as
selected by ``TOOLGATE_TRANSPORT`` or ``--transport``.
"""

import argparse
import asyncio
import sys

import uvicorn

from .core.config import get_settings_instance
from .core.logging import get_logger, setup_logging
from .mcp.stdio import run_stdio

logger = get_logger(__name__)


def main() -> None:
    """Start the server on the configured transport."""
    settings = get_settings_instance()

    parser = argparse.ArgumentParser(
        description="Toolgate tool registry and JSON-RPC dispatch server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  toolgate                      # HTTP on TOOLGATE_API_HOST:TOOLGATE_API_PORT
  toolgate --transport stdio    # line-delimited JSON-RPC on stdin/stdout
""",
    )
    parser.add_argument("--transport", choices=["http", "stdio"], default=settings.transport)
    parser.add_argument("--host", default=settings.api_host)
    parser.add_argument("--port", type=int, default=settings.api_port)
    args = parser.parse_args()

    if args.transport == "stdio":
        # stdout carries protocol frames only
        setup_logging(stream=sys.stderr)
        try:
            asyncio.run(run_stdio(settings))
        except KeyboardInterrupt:
            pass
        except Exception as e:
            logger.error("Stdio server failed: %s", e, exc_info=True)
            sys.exit(1)
        return

    setup_logging()
    logger.info(
        "Server entrypoint starting",
        extra={"version": settings.version, "environment": settings.environment, "port": args.port},
    )
    uvicorn.run("toolgate.main:create_app", factory=True, host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
