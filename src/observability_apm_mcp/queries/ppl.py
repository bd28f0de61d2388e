# Observability APM MCP Server
# File: queries/ppl.py
# Version: v1

"""PPL query builders for the APM topology index.

Every builder returns a single-line query of the shape::

    source=<index> | where timestamp ... | dedup hashCode
      | where eventType = 'ServiceOperationDetail'
      | where service.keyAttributes.<k> = '<v>' ... | head <n> | fields ...

Values are interpolated as-is; callers own any escaping.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

EVENT_TYPE = "ServiceOperationDetail"

LIST_SERVICES_FIELDS = "serviceName, EnvironmentType, PlatformType, timestamp"
GET_SERVICE_FIELDS = "service.keyAttributes, service.groupByAttributes"
LIST_OPERATIONS_FIELDS = "operation.name, @timestamp, timestamp"
LIST_DEPENDENCIES_FIELDS = "operation.remoteService.keyAttributes, @timestamp, timestamp"
SERVICE_MAP_FIELDS = (
    "service.keyAttributes, remoteService.keyAttributes, "
    "service.groupByAttributes, remoteService.groupByAttributes"
)

_INDEX_PATTERN = re.compile(r"^[a-z0-9_.*-]+$")

Timestamp = Union[str, int, float]


@dataclass
class PPLQueryParams:
    """Parameters shared by all PPL builders."""

    query_index: str
    start_time: Optional[Timestamp] = None
    end_time: Optional[Timestamp] = None
    max_results: Optional[int] = None
    key_attributes: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PPLQueryParams":
        """Accept both snake_case and the camelCase keys used by the dashboards."""

        def pick(*names: str) -> Any:
            for name in names:
                if payload.get(name) is not None:
                    return payload[name]
            return None

        max_results = pick("max_results", "maxResults")
        return cls(
            query_index=str(pick("query_index", "queryIndex") or ""),
            start_time=pick("start_time", "startTime"),
            end_time=pick("end_time", "endTime"),
            max_results=int(max_results) if max_results is not None else None,
            key_attributes=dict(pick("key_attributes", "keyAttributes") or {}),
        )


ParamsLike = Union[PPLQueryParams, Mapping[str, Any]]


def coerce_params(params: ParamsLike) -> PPLQueryParams:
    if isinstance(params, PPLQueryParams):
        return params
    return PPLQueryParams.from_dict(params)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def build_time_filter_clause_iso(start_time: Timestamp, end_time: Timestamp) -> str:
    """Filter on a string ``timestamp`` field holding ISO-8601 values."""
    return f" | where timestamp >= '{start_time}' AND timestamp <= '{end_time}'"


def build_time_filter_clause_epoch(start_time: Timestamp, end_time: Timestamp) -> str:
    """Filter on a numeric ``timestamp`` field holding epoch seconds."""
    return f" | where timestamp >= {start_time} AND timestamp <= {end_time}"


def build_time_filter_clause(
    start_time: Optional[Timestamp],
    end_time: Optional[Timestamp],
) -> str:
    """Pick the epoch variant for numeric bounds, the ISO variant otherwise.

    Returns an empty string when either bound is missing. The bounds are
    not checked against each other.
    """
    if start_time is None or end_time is None or start_time == "" or end_time == "":
        return ""
    if _is_number(start_time) and _is_number(end_time):
        return build_time_filter_clause_epoch(start_time, end_time)
    return build_time_filter_clause_iso(start_time, end_time)


def _build(params: ParamsLike, fields: str) -> str:
    p = coerce_params(params)

    query = f"source={p.query_index}"
    query += build_time_filter_clause(p.start_time, p.end_time)
    query += " | dedup hashCode"
    query += f" | where eventType = '{EVENT_TYPE}'"

    for key, value in (p.key_attributes or {}).items():
        query += f" | where service.keyAttributes.{key} = '{value}'"

    if p.max_results is not None:
        query += f" | head {int(p.max_results)}"

    query += f" | fields {fields}"
    return query


def build_list_services_query(params: ParamsLike) -> str:
    return _build(params, LIST_SERVICES_FIELDS)


def build_get_service_query(params: ParamsLike) -> str:
    return _build(params, GET_SERVICE_FIELDS)


def build_list_service_operations_query(params: ParamsLike) -> str:
    return _build(params, LIST_OPERATIONS_FIELDS)


def build_list_service_dependencies_query(params: ParamsLike) -> str:
    return _build(params, LIST_DEPENDENCIES_FIELDS)


def build_get_service_map_query(params: ParamsLike) -> str:
    return _build(params, SERVICE_MAP_FIELDS)


def validate_query_index(query_index: str) -> bool:
    """Basic sanity check for an index name or pattern."""
    if not query_index or not query_index.strip():
        return False
    return bool(_INDEX_PATTERN.match(query_index))
