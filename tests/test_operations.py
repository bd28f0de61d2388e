# Observability APM MCP Server
# File: tests/test_operations.py
# Version: v1

import pytest

from observability_apm_mcp.config import ApmConfig
from observability_apm_mcp.context import ApmContext
from observability_apm_mcp.mock import MockPPLClient, MockPrometheusClient
from observability_apm_mcp.operations import (
    HANDLERS,
    ApmOperation,
    UnknownOperationError,
    execute_operation,
    parse_operation,
)


def _mock_context(**overrides) -> ApmContext:
    values = dict(
        opensearch_url=None,
        opensearch_username=None,
        opensearch_password=None,
        prometheus_url=None,
        prometheus_token=None,
        mock_mode=True,
    )
    values.update(overrides)
    return ApmContext.from_config(ApmConfig(**values))


def test_every_operation_has_a_handler() -> None:
    assert set(HANDLERS) == set(ApmOperation)


def test_parse_operation() -> None:
    assert parse_operation("getServiceMap") is ApmOperation.GET_SERVICE_MAP
    assert parse_operation(ApmOperation.GET_SERVICE) is ApmOperation.GET_SERVICE
    with pytest.raises(UnknownOperationError) as exc:
        parse_operation("dropIndex")
    assert "Unknown operation: dropIndex" in str(exc.value)
    assert "listServices" in str(exc.value)


def test_mock_context_uses_mock_clients() -> None:
    ctx = _mock_context()
    assert isinstance(ctx.ppl_client, MockPPLClient)
    assert isinstance(ctx.prometheus_client, MockPrometheusClient)


@pytest.mark.asyncio
async def test_list_services_injects_default_index() -> None:
    ctx = _mock_context(topology_index="apm-topology")
    out = await execute_operation(
        ctx, "listServices", {"startTime": "2024-01-01T00:00:00Z", "endTime": "2024-01-02T00:00:00Z"}
    )

    assert ctx.ppl_client.queries[-1].startswith("source=apm-topology ")
    names = [s["KeyAttributes"]["Name"] for s in out["ServiceSummaries"]]
    assert names == ["frontend", "checkout", "payment", "email"]
    assert out["TotalCount"] == 4
    assert out["NextToken"] is None


@pytest.mark.asyncio
async def test_service_map_uses_service_map_index() -> None:
    ctx = _mock_context(topology_index="apm-topology", service_map_index="apm-map")
    out = await execute_operation(ctx, ApmOperation.GET_SERVICE_MAP, {})

    assert ctx.ppl_client.queries[-1].startswith("source=apm-map ")
    assert len(out["Nodes"]) == 4
    assert len(out["Edges"]) == 3


@pytest.mark.asyncio
async def test_explicit_index_and_max_results_cap() -> None:
    ctx = _mock_context(max_results=5)
    await execute_operation(
        ctx,
        "listServiceOperations",
        {"queryIndex": "custom-idx", "maxResults": 100, "keyAttributes": {"name": "checkout"}},
    )

    query = ctx.ppl_client.queries[-1]
    assert query.startswith("source=custom-idx ")
    assert "| where service.keyAttributes.name = 'checkout'" in query
    assert "| head 5 |" in query


@pytest.mark.asyncio
async def test_operations_and_dependencies_from_mock() -> None:
    ctx = _mock_context()

    ops = await execute_operation(ctx, "listServiceOperations", {"keyAttributes": {"name": "checkout"}})
    assert ops["Operations"] == [
        {"Name": "POST /checkout", "Count": 2},
        {"Name": "GET /cart", "Count": 1},
    ]

    deps = await execute_operation(
        ctx, "listServiceDependencies", {"keyAttributes": {"name": "checkout"}}
    )
    assert deps["Dependencies"][0] == {
        "DependencyName": "payment",
        "Environment": "ec2:payment-asg",
        "CallCount": 2,
    }


@pytest.mark.asyncio
async def test_get_service_from_mock() -> None:
    ctx = _mock_context()
    out = await execute_operation(ctx, "getService", {"keyAttributes": {"name": "checkout"}})
    assert out["Service"]["KeyAttributes"]["Name"] == "checkout"
    assert out["Service"]["AttributeMaps"][0]["EKS.Cluster"] == "demo-cluster"


@pytest.mark.asyncio
async def test_execute_metric_request_validation() -> None:
    ctx = _mock_context()

    with pytest.raises(ValueError, match="'query'"):
        await execute_operation(ctx, "executeMetricRequest", {"startTime": 1, "endTime": 2})

    with pytest.raises(ValueError, match="startTime"):
        await execute_operation(ctx, "executeMetricRequest", {"query": "up"})

    out = await execute_operation(
        ctx, "executeMetricRequest", {"query": "up", "startTime": 1, "endTime": 2, "step": "60s"}
    )
    assert out["data"]["resultType"] == "matrix"
    assert ctx.prometheus_client.queries == ["up"]


@pytest.mark.asyncio
async def test_unknown_operation_does_not_touch_clients() -> None:
    ctx = _mock_context()
    with pytest.raises(UnknownOperationError):
        await execute_operation(ctx, "deleteEverything", {})
    assert ctx.ppl_client.queries == []


@pytest.mark.asyncio
@pytest.mark.parametrize("index", ["idx | fields password", "Upper", "   "])
async def test_invalid_query_index_is_rejected(index) -> None:
    ctx = _mock_context()
    with pytest.raises(ValueError, match="Invalid queryIndex"):
        await execute_operation(ctx, "listServices", {"queryIndex": index})
    assert ctx.ppl_client.queries == []


@pytest.mark.asyncio
async def test_invalid_configured_index_is_rejected() -> None:
    ctx = _mock_context(service_map_index="bad index")
    with pytest.raises(ValueError, match="Invalid queryIndex 'bad index'"):
        await execute_operation(ctx, "getServiceMap", {})
