# Observability APM MCP Server
# File: transports/__init__.py
# Version: v1

"""Entry points that run the MCP server over a concrete transport."""
