# Observability APM MCP Server
# File: tools/__init__.py
# Version: v1

"""MCP tool definitions for the Observability APM MCP Server."""

from __future__ import annotations

from .tasks import register_tools

__all__ = ["register_tools"]
