# Observability APM MCP Server
# File: mock.py
# Version: v1

"""In-memory stand-ins for the APM backends.

Activated when APM_MOCK_MODE is truthy. The mock PPL client answers
``execute_query`` with canned frames picked from the query's projection,
so every transform still runs exactly as it would against a real cluster.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

from .client import PPLClient, PrometheusClient
from .models import DataFrame, Field
from .queries import ppl

logger = logging.getLogger(__name__)

_BASE_TS = 1704067200


def _frame(columns: Dict[str, List[Any]]) -> DataFrame:
    size = max((len(v) for v in columns.values()), default=0)
    return DataFrame(
        fields=[Field(name=name, values=list(values)) for name, values in columns.items()],
        size=size,
        meta={"mock": True},
    )


def _svc(name: str, environment: str) -> Dict[str, str]:
    return {"name": name, "environment": environment, "type": "Service"}


_FRONTEND = _svc("frontend", "eks:demo-cluster/default")
_CHECKOUT = _svc("checkout", "eks:demo-cluster/default")
_PAYMENT = _svc("payment", "ec2:payment-asg")
_EMAIL = _svc("email", "lambda:default")


def _mock_frames() -> Dict[str, DataFrame]:
    return {
        ppl.LIST_SERVICES_FIELDS: _frame(
            {
                "serviceName": ["frontend", "checkout", "checkout", "payment", "email"],
                "EnvironmentType": [
                    "eks:demo-cluster/default",
                    "eks:demo-cluster/default",
                    "eks:demo-cluster/default",
                    "ec2:payment-asg",
                    "lambda:default",
                ],
                "PlatformType": ["AWS::EKS", "AWS::EKS", "AWS::EKS", "AWS::EC2", "AWS::Lambda"],
                "timestamp": [_BASE_TS + i * 60 for i in range(5)],
            }
        ),
        ppl.GET_SERVICE_FIELDS: _frame(
            {
                "service.keyAttributes": [_CHECKOUT],
                "service.groupByAttributes": [
                    {"telemetry": {"sdk": {"language": "python"}}}
                ],
            }
        ),
        ppl.LIST_OPERATIONS_FIELDS: _frame(
            {
                "operation.name": ["POST /checkout", "GET /cart", "POST /checkout"],
                "@timestamp": [_BASE_TS, _BASE_TS + 60, _BASE_TS + 120],
                "timestamp": [_BASE_TS, _BASE_TS + 60, _BASE_TS + 120],
            }
        ),
        ppl.LIST_DEPENDENCIES_FIELDS: _frame(
            {
                "operation.remoteService.keyAttributes": [_PAYMENT, _EMAIL, _PAYMENT],
                "@timestamp": [_BASE_TS, _BASE_TS + 60, _BASE_TS + 120],
                "timestamp": [_BASE_TS, _BASE_TS + 60, _BASE_TS + 120],
            }
        ),
        ppl.SERVICE_MAP_FIELDS: _frame(
            {
                "service.keyAttributes": [_FRONTEND, _CHECKOUT, _CHECKOUT],
                "remoteService.keyAttributes": [_CHECKOUT, _PAYMENT, _EMAIL],
                "service.groupByAttributes": [
                    {"telemetry": {"sdk": {"language": "nodejs"}}},
                    {"telemetry": {"sdk": {"language": "python"}}},
                    {"telemetry": {"sdk": {"language": "python"}}},
                ],
                "remoteService.groupByAttributes": [
                    {"telemetry": {"sdk": {"language": "python"}}},
                    {"telemetry": {"sdk": {"language": "java"}}},
                    {},
                ],
            }
        ),
    }


class MockPPLClient(PPLClient):
    """PPLClient whose queries never leave the process."""

    def __init__(self, config: Any = None) -> None:
        super().__init__(config=config, auth=None)  # type: ignore[arg-type]
        self._frames = _mock_frames()
        self.queries: List[str] = []

    async def ping(self) -> bool:
        return True

    async def execute_query(self, query: str) -> DataFrame:
        self.queries.append(query)
        for fields, frame in self._frames.items():
            if query.endswith(f"| fields {fields}"):
                logger.debug("Mock PPL frame for projection '%s'.", fields)
                return frame
        return DataFrame.empty(meta={"mock": True, "query": query})


class MockPrometheusClient(PrometheusClient):
    """PrometheusClient returning a small synthetic matrix."""

    def __init__(self, config: Any = None) -> None:
        super().__init__(config=config, auth=None)  # type: ignore[arg-type]
        self.queries: List[str] = []

    async def ping(self) -> bool:
        return True

    async def execute_metric_request(
        self,
        query: str,
        start_time: Union[str, int, float],
        end_time: Union[str, int, float],
        step: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.queries.append(query)

        if step:
            values = [[_BASE_TS + i * 60, str(0.5 + i * 0.1)] for i in range(5)]
            return {
                "status": "success",
                "data": {
                    "resultType": "matrix",
                    "result": [{"metric": {"__name__": "mock"}, "values": values}],
                },
            }

        return {
            "status": "success",
            "data": {
                "resultType": "vector",
                "result": [{"metric": {"__name__": "mock"}, "value": [_BASE_TS, "0.5"]}],
            },
        }
