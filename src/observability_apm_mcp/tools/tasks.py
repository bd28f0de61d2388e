# Observability APM MCP Server
# File: tools/tasks.py
# Version: v1
#
# NOTE: This module is the single place where we define the logic exposed
# as MCP tools. The transports build an ApmContext and call
# `register_tools(server, ctx)` to wire these up.

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..catalog_cache import (
    CachedDatabase,
    CachedDataSource,
    CatalogNotFoundError,
)
from ..context import ApmContext
from ..operations import ApmOperation, UnknownOperationError, execute_operation
from ..queries import promql

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _make_error(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Small, LLM-friendly error shape."""
    err: Dict[str, Any] = {"code": code, "message": message}
    if details:
        err["details"] = details
    return err


def _ppl_params(
    start_time: Any,
    end_time: Any,
    max_results: Optional[int] = None,
    query_index: Optional[str] = None,
    key_attributes: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    params: Dict[str, Any] = {"startTime": start_time, "endTime": end_time}
    if max_results is not None:
        params["maxResults"] = max_results
    if query_index:
        params["queryIndex"] = query_index
    if key_attributes:
        params["keyAttributes"] = key_attributes
    return params


def _service_key_attributes(name: str, environment: Optional[str]) -> Dict[str, str]:
    attrs = {"name": name}
    if environment:
        attrs["environment"] = environment
    return attrs


def _elapsed_ms(t0: float) -> int:
    return int((time.time() - t0) * 1000)


# ---------------------------------------------------------------------------
# Service topology
# ---------------------------------------------------------------------------


async def list_services(
    ctx: ApmContext,
    start_time: Any,
    end_time: Any,
    max_results: Optional[int] = None,
    query_index: Optional[str] = None,
) -> Dict[str, Any]:
    return await execute_operation(
        ctx,
        ApmOperation.LIST_SERVICES,
        _ppl_params(start_time, end_time, max_results, query_index),
    )


async def get_service(
    ctx: ApmContext,
    name: str,
    start_time: Any,
    end_time: Any,
    environment: Optional[str] = None,
    query_index: Optional[str] = None,
) -> Dict[str, Any]:
    return await execute_operation(
        ctx,
        ApmOperation.GET_SERVICE,
        _ppl_params(
            start_time,
            end_time,
            query_index=query_index,
            key_attributes=_service_key_attributes(name, environment),
        ),
    )


async def list_service_operations(
    ctx: ApmContext,
    name: str,
    start_time: Any,
    end_time: Any,
    environment: Optional[str] = None,
    max_results: Optional[int] = None,
    query_index: Optional[str] = None,
) -> Dict[str, Any]:
    return await execute_operation(
        ctx,
        ApmOperation.LIST_SERVICE_OPERATIONS,
        _ppl_params(
            start_time,
            end_time,
            max_results,
            query_index,
            _service_key_attributes(name, environment),
        ),
    )


async def list_service_dependencies(
    ctx: ApmContext,
    name: str,
    start_time: Any,
    end_time: Any,
    environment: Optional[str] = None,
    max_results: Optional[int] = None,
    query_index: Optional[str] = None,
) -> Dict[str, Any]:
    return await execute_operation(
        ctx,
        ApmOperation.LIST_SERVICE_DEPENDENCIES,
        _ppl_params(
            start_time,
            end_time,
            max_results,
            query_index,
            _service_key_attributes(name, environment),
        ),
    )


async def get_service_map(
    ctx: ApmContext,
    start_time: Any,
    end_time: Any,
    max_results: Optional[int] = None,
    query_index: Optional[str] = None,
) -> Dict[str, Any]:
    return await execute_operation(
        ctx,
        ApmOperation.GET_SERVICE_MAP,
        _ppl_params(start_time, end_time, max_results, query_index),
    )


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------


async def execute_metric_request(
    ctx: ApmContext,
    query: str,
    start_time: Any,
    end_time: Any,
    step: Optional[str] = None,
) -> Dict[str, Any]:
    return await execute_operation(
        ctx,
        ApmOperation.EXECUTE_METRIC_REQUEST,
        {"query": query, "startTime": start_time, "endTime": end_time, "step": step},
    )


def build_metric_query(
    metric_name: str,
    service_name: str,
    interval: str = "5m",
    environment: Optional[str] = None,
    operation: Optional[str] = None,
    stat: Optional[str] = None,
) -> Dict[str, Any]:
    query = promql.build_metric_query(
        metric_name=metric_name,
        service_name=service_name,
        interval=interval,
        environment=environment,
        operation=operation,
        stat=stat,
    )
    return {
        "query": query,
        "meta": {
            "metric_name": metric_name,
            "service_name": service_name,
            "interval": interval,
            "stat": stat,
        },
    }


# ---------------------------------------------------------------------------
# Generic dispatcher
# ---------------------------------------------------------------------------


async def apm_resources(
    ctx: ApmContext,
    operation: str,
    params: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Run any operation by wire name, answering failures with an error shape."""
    try:
        result = await execute_operation(ctx, operation, params or {})
    except UnknownOperationError as exc:
        logger.error("[APM Resources] Error: %s", exc)
        return {"ok": False, "error": _make_error("UNKNOWN_OPERATION", str(exc))}
    except ValueError as exc:
        logger.error("[APM Resources] Error: %s", exc)
        return {"ok": False, "error": _make_error("INVALID_PARAMS", str(exc))}
    except RuntimeError as exc:
        logger.error("[APM Resources] Error: %s", exc, exc_info=True)
        return {"ok": False, "error": _make_error("BACKEND_ERROR", str(exc))}

    return {"ok": True, "operation": operation, "result": result}


# ---------------------------------------------------------------------------
# Catalog cache
# ---------------------------------------------------------------------------


def catalog_get_data_source(ctx: ApmContext, name: str) -> Dict[str, Any]:
    data_source = ctx.catalog_cache.get_or_create_data_source(name)
    return {"ok": True, "data_source": data_source.to_dict()}


def catalog_get_database(ctx: ApmContext, data_source: str, database: str) -> Dict[str, Any]:
    try:
        db = ctx.catalog_cache.get_database(data_source, database)
    except CatalogNotFoundError as exc:
        return {"ok": False, "error": _make_error("NOT_FOUND", str(exc), {"name": exc.name})}
    return {"ok": True, "database": db.to_dict()}


def catalog_get_table(
    ctx: ApmContext, data_source: str, database: str, table: str
) -> Dict[str, Any]:
    try:
        tbl = ctx.catalog_cache.get_table(data_source, database, table)
    except CatalogNotFoundError as exc:
        return {"ok": False, "error": _make_error("NOT_FOUND", str(exc), {"name": exc.name})}
    return {"ok": True, "table": tbl.to_dict()}


def catalog_upsert_data_source(ctx: ApmContext, data_source: Dict[str, Any]) -> Dict[str, Any]:
    ds = CachedDataSource.from_dict(data_source)
    if not ds.name:
        return {"ok": False, "error": _make_error("INVALID_PARAMS", "Data source name is required.")}
    ctx.catalog_cache.add_or_update_data_source(ds)
    return {"ok": True, "data_source": ds.to_dict()}


def catalog_update_database(
    ctx: ApmContext, data_source: str, database: Dict[str, Any]
) -> Dict[str, Any]:
    db = CachedDatabase.from_dict(database)
    try:
        ctx.catalog_cache.update_database(data_source, db)
    except CatalogNotFoundError as exc:
        return {"ok": False, "error": _make_error("NOT_FOUND", str(exc), {"name": exc.name})}
    return {"ok": True, "database": db.to_dict()}


def catalog_get_accelerations(ctx: ApmContext) -> Dict[str, Any]:
    return {"ok": True, "accelerations": ctx.catalog_cache.get_accelerations_cache().to_dict()}


def catalog_clear(ctx: ApmContext, target: str = "all") -> Dict[str, Any]:
    cleared: List[str] = []
    if target in {"all", "data_sources"}:
        ctx.catalog_cache.clear_data_source_cache()
        cleared.append("data_sources")
    if target in {"all", "accelerations"}:
        ctx.catalog_cache.clear_accelerations_cache()
        cleared.append("accelerations")

    if not cleared:
        return {
            "ok": False,
            "error": _make_error(
                "INVALID_PARAMS",
                f"Unknown cache target '{target}'. Use all, data_sources or accelerations.",
            ),
        }
    logger.info("Cleared catalog cache: %s", ", ".join(cleared))
    return {"ok": True, "cleared": cleared}


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


def _host_of(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    try:
        return urlparse(url).hostname or url
    except ValueError:
        return url


def get_config_info(ctx: ApmContext) -> Dict[str, Any]:
    """Redacted snapshot of the active configuration."""
    cfg = ctx.config
    return {
        "opensearch": {
            "url": cfg.opensearch_url,
            "host": _host_of(cfg.opensearch_url),
            "username_configured": bool(cfg.opensearch_username),
            "password_configured": bool(cfg.opensearch_password),
        },
        "prometheus": {
            "url": cfg.prometheus_url,
            "host": _host_of(cfg.prometheus_url),
            "token_configured": bool(cfg.prometheus_token),
            "connection_id": cfg.prometheus_connection_id,
        },
        "indices": {
            "topology": cfg.topology_index,
            "service_map": cfg.service_map_index,
        },
        "mock_mode": bool(cfg.mock_mode),
        "verify_tls": bool(cfg.verify_tls),
        "limits": {
            "max_results": cfg.max_results,
            "http_timeout_seconds": cfg.http_timeout_seconds,
        },
        "catalog_cache": {
            "storage": "file" if cfg.catalog_cache_dir else "memory",
            "directory": cfg.catalog_cache_dir,
        },
    }


async def _check(name: str, probe: Any) -> Dict[str, Any]:
    t0 = time.time()
    try:
        ok = bool(await probe())
    except Exception as exc:  # noqa: BLE001
        return {
            "name": name,
            "ok": False,
            "error": _make_error("BACKEND_ERROR", str(exc)),
            "elapsed_ms": _elapsed_ms(t0),
        }

    error = None if ok else _make_error("BACKEND_ERROR", f"{name} returned a falsy result.")
    return {"name": name, "ok": ok, "error": error, "elapsed_ms": _elapsed_ms(t0)}


async def diagnostics(ctx: ApmContext) -> Dict[str, Any]:
    started = time.time()

    checks: List[Dict[str, Any]] = [
        {
            "name": "context_init",
            "ok": True,
            "error": None,
            "elapsed_ms": 0,
            "details": {
                "ppl_client": type(ctx.ppl_client).__name__,
                "prometheus_client": type(ctx.prometheus_client).__name__,
                "catalog_storage": type(ctx.catalog_cache.storage).__name__,
            },
        },
        await _check("opensearch_ping", ctx.ppl_client.ping),
        await _check("prometheus_ping", ctx.prometheus_client.ping),
    ]

    t0 = time.time()
    try:
        catalog = ctx.catalog_cache.summary()
        checks.append(
            {"name": "catalog_cache", "ok": True, "error": None, "elapsed_ms": _elapsed_ms(t0)}
        )
    except OSError as exc:
        catalog = None
        checks.append(
            {
                "name": "catalog_cache",
                "ok": False,
                "error": _make_error("STORAGE_ERROR", str(exc)),
                "elapsed_ms": _elapsed_ms(t0),
            }
        )

    return {
        "ok": all(c["ok"] for c in checks),
        "mock_mode": bool(ctx.config.mock_mode),
        "config": get_config_info(ctx),
        "checks": checks,
        "meta": {
            "elapsed_ms": _elapsed_ms(started),
            "catalog_cache": catalog,
            "operations": [op.value for op in ApmOperation],
        },
    }


# ---------------------------------------------------------------------------
# MCP tool registration
# ---------------------------------------------------------------------------


def register_tools(server: Any, ctx: ApmContext) -> None:
    """Register MCP tools on an MCP Server-like instance, bound to ``ctx``."""
    if server is None or not hasattr(server, "tool"):
        raise ValueError(
            "register_tools(server, ctx) expects an MCP Server-like object that exposes a .tool() decorator."
        )

    @server.tool(name="apm_list_services", description="List services observed in a time range.")
    async def mcp_list_services(
        start_time: str,
        end_time: str,
        max_results: Optional[int] = None,
        query_index: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await list_services(ctx, start_time, end_time, max_results, query_index)

    @server.tool(
        name="apm_get_service",
        description="Get key attributes, platform attributes and group-by attributes of one service.",
    )
    async def mcp_get_service(
        name: str,
        start_time: str,
        end_time: str,
        environment: Optional[str] = None,
        query_index: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await get_service(ctx, name, start_time, end_time, environment, query_index)

    @server.tool(
        name="apm_list_service_operations",
        description="List operations of a service with their observation counts.",
    )
    async def mcp_list_service_operations(
        name: str,
        start_time: str,
        end_time: str,
        environment: Optional[str] = None,
        max_results: Optional[int] = None,
        query_index: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await list_service_operations(
            ctx, name, start_time, end_time, environment, max_results, query_index
        )

    @server.tool(
        name="apm_list_service_dependencies",
        description="List downstream dependencies of a service with call counts.",
    )
    async def mcp_list_service_dependencies(
        name: str,
        start_time: str,
        end_time: str,
        environment: Optional[str] = None,
        max_results: Optional[int] = None,
        query_index: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await list_service_dependencies(
            ctx, name, start_time, end_time, environment, max_results, query_index
        )

    @server.tool(
        name="apm_get_service_map",
        description="Build the service topology graph (nodes, edges, group-by attributes).",
    )
    async def mcp_get_service_map(
        start_time: str,
        end_time: str,
        max_results: Optional[int] = None,
        query_index: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await get_service_map(ctx, start_time, end_time, max_results, query_index)

    @server.tool(
        name="apm_execute_metric_request",
        description="Run a PromQL query (range query when step is given) and return the Prometheus response.",
    )
    async def mcp_execute_metric_request(
        query: str,
        start_time: str,
        end_time: str,
        step: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await execute_metric_request(ctx, query, start_time, end_time, step)

    @server.tool(
        name="apm_build_metric_query",
        description="Build a PromQL query for request / error / fault / latency metrics of a service.",
    )
    async def mcp_build_metric_query(
        metric_name: str,
        service_name: str,
        interval: str = "5m",
        environment: Optional[str] = None,
        operation: Optional[str] = None,
        stat: Optional[str] = None,
    ) -> Dict[str, Any]:
        return build_metric_query(metric_name, service_name, interval, environment, operation, stat)

    @server.tool(
        name="apm_resources",
        description="Run an APM operation by name (listServices, getService, ..., executeMetricRequest).",
    )
    async def mcp_apm_resources(
        operation: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return await apm_resources(ctx, operation, params)

    @server.tool(
        name="apm_catalog_get_data_source",
        description="Get a cached data source (an empty placeholder when not cached yet).",
    )
    async def mcp_catalog_get_data_source(name: str) -> Dict[str, Any]:
        return catalog_get_data_source(ctx, name)

    @server.tool(name="apm_catalog_get_database", description="Get a cached database of a data source.")
    async def mcp_catalog_get_database(data_source: str, database: str) -> Dict[str, Any]:
        return catalog_get_database(ctx, data_source, database)

    @server.tool(name="apm_catalog_get_table", description="Get a cached table with its columns.")
    async def mcp_catalog_get_table(data_source: str, database: str, table: str) -> Dict[str, Any]:
        return catalog_get_table(ctx, data_source, database, table)

    @server.tool(
        name="apm_catalog_upsert_data_source",
        description="Add or replace a data source (with its databases) in the catalog cache.",
    )
    async def mcp_catalog_upsert_data_source(data_source: Dict[str, Any]) -> Dict[str, Any]:
        return catalog_upsert_data_source(ctx, data_source)

    @server.tool(
        name="apm_catalog_update_database",
        description="Replace a cached database inside an existing cached data source.",
    )
    async def mcp_catalog_update_database(
        data_source: str, database: Dict[str, Any]
    ) -> Dict[str, Any]:
        return catalog_update_database(ctx, data_source, database)

    @server.tool(name="apm_catalog_get_accelerations", description="Get cached accelerations.")
    async def mcp_catalog_get_accelerations() -> Dict[str, Any]:
        return catalog_get_accelerations(ctx)

    @server.tool(
        name="apm_catalog_clear",
        description="Clear the catalog cache (target: all, data_sources or accelerations).",
    )
    async def mcp_catalog_clear(target: str = "all") -> Dict[str, Any]:
        return catalog_clear(ctx, target)

    @server.tool(
        name="apm_diagnostics",
        description="Run health checks against OpenSearch, Prometheus and the catalog cache.",
    )
    async def mcp_diagnostics() -> Dict[str, Any]:
        return await diagnostics(ctx)

    @server.tool(
        name="apm_get_config_info",
        description="Return the redacted server configuration (no secrets).",
    )
    async def mcp_get_config_info() -> Dict[str, Any]:
        return get_config_info(ctx)
