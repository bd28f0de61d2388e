# Observability APM MCP Server
# File: transports/stdio_server.py
# Version: v1

"""STDIO entrypoint for the Observability APM MCP server.

This is the script behind the ``observability-apm-mcp`` console command.

It:

- loads configuration from the environment,
- builds the APM context (clients and catalog cache),
- registers the APM tools on a FastMCP server, and
- runs the built-in stdio transport.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

from mcp.server.fastmcp import FastMCP

from ..config import ApmConfig
from ..context import ApmContext
from ..tools import tasks

logger = logging.getLogger(__name__)

SERVER_NAME = "observability-apm-mcp"


def configure_logging(level: str) -> None:
    # stdout carries the MCP protocol, so logs go to stderr.
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_server(config: Optional[ApmConfig] = None) -> FastMCP:
    """Create a FastMCP server with every APM tool registered."""
    cfg = config or ApmConfig.from_env()
    ctx = ApmContext.from_config(cfg)

    mcp = FastMCP(SERVER_NAME)
    tasks.register_tools(mcp, ctx)
    logger.info(
        "Registered APM tools (mock_mode=%s, topology_index=%s)",
        cfg.mock_mode,
        cfg.topology_index,
    )
    return mcp


def main() -> None:
    """Synchronous entrypoint for console_scripts."""
    cfg = ApmConfig.from_env()
    configure_logging(cfg.log_level)

    mcp = build_server(cfg)

    # Let FastMCP handle stdio + event loop setup.
    mcp.run()


if __name__ == "__main__":
    main()
