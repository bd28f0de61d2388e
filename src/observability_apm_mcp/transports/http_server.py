# Observability APM MCP Server
# File: transports/http_server.py
# Version: v1

"""Streamable HTTP entrypoint for the Observability APM MCP server."""

from __future__ import annotations

from ..config import ApmConfig
from .stdio_server import build_server, configure_logging


def main() -> None:
    """Entry point for the ``observability-apm-mcp-http`` console command."""
    cfg = ApmConfig.from_env()
    configure_logging(cfg.log_level)

    mcp = build_server(cfg)
    mcp.run(transport="streamable-http")


if __name__ == "__main__":
    main()
