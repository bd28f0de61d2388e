# Observability APM MCP Server
# File: queries/__init__.py
# Version: v1

"""Query string builders (PPL for topology, PromQL for metrics)."""

from . import ppl, promql

__all__ = ["ppl", "promql"]
