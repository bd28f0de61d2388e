# Observability APM MCP Server
# File: operations.py
# Version: v1

"""Named APM operations and their handlers.

Callers (the generic ``apm_resources`` tool, dashboards) address operations
by their wire name, e.g. ``listServices``. Each name is an
``ApmOperation`` member bound to one handler in ``HANDLERS``; unknown names
are rejected before any client is touched.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping

from .context import ApmContext
from .queries import ppl

logger = logging.getLogger(__name__)


class ApmOperation(str, Enum):
    LIST_SERVICES = "listServices"
    GET_SERVICE = "getService"
    LIST_SERVICE_OPERATIONS = "listServiceOperations"
    LIST_SERVICE_DEPENDENCIES = "listServiceDependencies"
    GET_SERVICE_MAP = "getServiceMap"
    EXECUTE_METRIC_REQUEST = "executeMetricRequest"


PPL_OPERATIONS = frozenset(
    {
        ApmOperation.LIST_SERVICES,
        ApmOperation.GET_SERVICE,
        ApmOperation.LIST_SERVICE_OPERATIONS,
        ApmOperation.LIST_SERVICE_DEPENDENCIES,
        ApmOperation.GET_SERVICE_MAP,
    }
)


class UnknownOperationError(ValueError):
    def __init__(self, operation: str) -> None:
        self.operation = operation
        valid = ", ".join(op.value for op in ApmOperation)
        super().__init__(f"Unknown operation: {operation}. Valid operations: {valid}")


def parse_operation(operation: str | ApmOperation) -> ApmOperation:
    if isinstance(operation, ApmOperation):
        return operation
    try:
        return ApmOperation(operation)
    except ValueError:
        raise UnknownOperationError(str(operation)) from None


def default_query_index(ctx: ApmContext, operation: ApmOperation) -> str:
    if operation is ApmOperation.GET_SERVICE_MAP:
        return ctx.config.service_map_index
    return ctx.config.topology_index


def _ppl_params(
    ctx: ApmContext, operation: ApmOperation, params: Mapping[str, Any]
) -> ppl.PPLQueryParams:
    """Fill in and check the index, then clamp maxResults to the configured cap."""
    p = ppl.PPLQueryParams.from_dict(params)
    if not p.query_index:
        p.query_index = default_query_index(ctx, operation)
        logger.debug("Using default queryIndex '%s' for %s", p.query_index, operation.value)
    if not ppl.validate_query_index(p.query_index):
        raise ValueError(f"Invalid queryIndex '{p.query_index}' for {operation.value}.")

    cap = ctx.config.max_results
    if p.max_results is not None and cap > 0 and p.max_results > cap:
        logger.info(
            "maxResults %s exceeds cap %s for %s; clamping.",
            p.max_results,
            cap,
            operation.value,
        )
        p.max_results = cap
    return p


async def _list_services(ctx: ApmContext, params: Mapping[str, Any]) -> Dict[str, Any]:
    p = _ppl_params(ctx, ApmOperation.LIST_SERVICES, params)
    return await ctx.ppl_client.list_services(p, next_token=params.get("nextToken"))


async def _get_service(ctx: ApmContext, params: Mapping[str, Any]) -> Dict[str, Any]:
    return await ctx.ppl_client.get_service(_ppl_params(ctx, ApmOperation.GET_SERVICE, params))


async def _list_service_operations(
    ctx: ApmContext, params: Mapping[str, Any]
) -> Dict[str, Any]:
    p = _ppl_params(ctx, ApmOperation.LIST_SERVICE_OPERATIONS, params)
    return await ctx.ppl_client.list_service_operations(p)


async def _list_service_dependencies(
    ctx: ApmContext, params: Mapping[str, Any]
) -> Dict[str, Any]:
    p = _ppl_params(ctx, ApmOperation.LIST_SERVICE_DEPENDENCIES, params)
    return await ctx.ppl_client.list_service_dependencies(p)


async def _get_service_map(ctx: ApmContext, params: Mapping[str, Any]) -> Dict[str, Any]:
    p = _ppl_params(ctx, ApmOperation.GET_SERVICE_MAP, params)
    return await ctx.ppl_client.get_service_map(p)


async def _execute_metric_request(
    ctx: ApmContext, params: Mapping[str, Any]
) -> Dict[str, Any]:
    query = params.get("query")
    if not query:
        raise ValueError("executeMetricRequest requires a 'query' parameter.")

    start_time = params.get("startTime", params.get("start_time"))
    end_time = params.get("endTime", params.get("end_time"))
    if start_time is None or end_time is None:
        raise ValueError("executeMetricRequest requires 'startTime' and 'endTime'.")

    return await ctx.prometheus_client.execute_metric_request(
        query=str(query),
        start_time=start_time,
        end_time=end_time,
        step=params.get("step"),
    )


Handler = Callable[[ApmContext, Mapping[str, Any]], Awaitable[Dict[str, Any]]]

HANDLERS: Dict[ApmOperation, Handler] = {
    ApmOperation.LIST_SERVICES: _list_services,
    ApmOperation.GET_SERVICE: _get_service,
    ApmOperation.LIST_SERVICE_OPERATIONS: _list_service_operations,
    ApmOperation.LIST_SERVICE_DEPENDENCIES: _list_service_dependencies,
    ApmOperation.GET_SERVICE_MAP: _get_service_map,
    ApmOperation.EXECUTE_METRIC_REQUEST: _execute_metric_request,
}


async def execute_operation(
    ctx: ApmContext,
    operation: str | ApmOperation,
    params: Mapping[str, Any] | None = None,
) -> Dict[str, Any]:
    """Dispatch ``operation`` to its handler."""
    op = parse_operation(operation)
    logger.info("[APM Resources] Operation: %s", op.value)
    logger.debug("[APM Resources] Params: %s", params)
    return await HANDLERS[op](ctx, dict(params or {}))
