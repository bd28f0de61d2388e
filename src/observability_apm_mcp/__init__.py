# Observability APM MCP Server
# File: __init__.py
# Version: v1

"""Top-level package for the Observability APM MCP Server."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

__all__ = ["__version__"]


def _resolve_version() -> str:
    """Resolve installed distribution version.

    Falls back to the source version when the package is imported from a
    checkout without installed metadata.
    """
    try:
        return version("observability-apm-mcp")
    except PackageNotFoundError:
        return "0.1.0"


__version__ = _resolve_version()
