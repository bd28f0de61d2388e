# Observability APM MCP Server
# File: transform.py
# Version: v1

"""Turn column-oriented PPL results into APM response objects.

Everything here is best effort: malformed or missing values degrade to
empty lists, ``None`` or the ``generic`` platform instead of raising, so a
partially populated index still renders. Nothing in this module validates
its input.
"""

from __future__ import annotations

import math
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .models import DataFrame, TimeRange

SERVICE_TYPE = "Service"
NODE_TYPE = "AWS::CloudWatch::Service"

# Epoch values above this are taken to be milliseconds.
_EPOCH_MS_THRESHOLD = 10_000_000_000

PLATFORM_TYPES = {
    "eks": "AWS::EKS",
    "ec2": "AWS::EC2",
    "ecs": "AWS::ECS",
    "lambda": "AWS::Lambda",
    "generic": "Generic",
}

FrameLike = Union[DataFrame, Mapping[str, Any]]
Row = Dict[str, Any]


def _as_frame(frame: FrameLike) -> DataFrame:
    if isinstance(frame, DataFrame):
        return frame
    if isinstance(frame, Mapping):
        if "datarows" in frame:
            return DataFrame.from_jdbc(frame)
        return DataFrame.from_dict(frame)
    return DataFrame.empty()


def _lookup(row: Any, path: str) -> Any:
    """Resolve a dotted path against flat dotted columns or nested objects.

    ``operation.remoteService.keyAttributes.name`` matches a column literally
    named so, a column ``operation.remoteService.keyAttributes`` holding
    ``{"name": ...}``, a nested ``{"operation": {...}}`` object, or any mix.
    """
    if not isinstance(row, Mapping):
        return None
    if path in row:
        return row[path]

    parts = path.split(".")
    for i in range(len(parts) - 1, 0, -1):
        prefix = ".".join(parts[:i])
        if prefix in row:
            found = _lookup(row[prefix], ".".join(parts[i:]))
            if found is not None:
                return found
    return None


def _first_row(rows: List[Row]) -> Optional[Row]:
    return rows[0] if rows else None


# ---------------------------------------------------------------------------
# Generic helpers
# ---------------------------------------------------------------------------


def transpose_data_frame(frame: FrameLike) -> List[Row]:
    """Convert a column-oriented frame into one dict per row."""
    df = _as_frame(frame)
    if not df.fields or not df.size:
        return []

    rows: List[Row] = []
    for index in range(df.size):
        row: Row = {}
        for f in df.fields:
            row[f.name] = f.values[index] if index < len(f.values) else None
        rows.append(row)
    return rows


def _to_epoch_seconds(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        if value > _EPOCH_MS_THRESHOLD:
            return int(value // 1000)
        return int(value)

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            # Some indices store "yyyy-MM-dd HH:mm:ss" without a zone.
            try:
                parsed = datetime.strptime(text, "%Y-%m-%d %H:%M:%S")
            except ValueError:
                return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return int(parsed.timestamp())
    except (OverflowError, OSError, ValueError):
        return None


def extract_time_range(timestamps: Iterable[Any]) -> TimeRange:
    """Min/max of the given timestamps in epoch seconds.

    With nothing usable, both bounds fall back to the current time.
    """
    seconds = [s for s in (_to_epoch_seconds(t) for t in timestamps or []) if s is not None]
    if not seconds:
        now = int(time.time())
        return TimeRange(start=now, end=now)
    return TimeRange(start=min(seconds), end=max(seconds))


def parse_environment_type(environment: Any) -> Dict[str, str]:
    """Split ``platform:detail`` into a platform attribute dict."""
    if not isinstance(environment, str) or ":" not in environment:
        return {"platform": "generic"}

    platform, detail = environment.split(":", 1)
    platform = platform.strip().lower()

    if platform == "eks":
        cluster, sep, namespace = detail.partition("/")
        if not cluster or not sep or not namespace:
            return {"platform": "generic"}
        return {"platform": "eks", "cluster": cluster, "namespace": namespace}

    if platform == "ec2":
        if not detail or detail == "default":
            return {"platform": "ec2"}
        return {"platform": "ec2", "autoScalingGroup": detail}

    if platform == "ecs":
        if not detail:
            return {"platform": "generic"}
        return {"platform": "ecs", "cluster": detail}

    if platform == "lambda":
        return {"platform": "lambda"}

    return {"platform": "generic"}


def build_attribute_maps(
    platform_type: str,
    parsed_env: Mapping[str, str],
    entity_name: Optional[str] = None,
) -> List[Dict[str, str]]:
    """Platform specific attributes, wrapped in a one element list."""
    attrs: Dict[str, str] = {"PlatformType": platform_type}
    platform = parsed_env.get("platform")

    if platform == "eks":
        if parsed_env.get("cluster"):
            attrs["EKS.Cluster"] = parsed_env["cluster"]
        if parsed_env.get("namespace"):
            attrs["K8s.Namespace"] = parsed_env["namespace"]
        if entity_name:
            attrs["K8s.Workload"] = entity_name
    elif platform == "ec2":
        if parsed_env.get("autoScalingGroup"):
            attrs["EC2.AutoScalingGroup"] = parsed_env["autoScalingGroup"]
    elif platform == "ecs":
        if parsed_env.get("cluster"):
            attrs["ECS.Cluster"] = parsed_env["cluster"]
    elif platform == "lambda":
        if entity_name:
            attrs["Lambda.Function.Name"] = entity_name

    return [attrs]


def _flatten(prefix: str, value: Any, out: Dict[str, List[Any]]) -> None:
    if isinstance(value, Mapping):
        for key, child in value.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            _flatten(path, child, out)
        return

    if not prefix or value is None:
        return

    bucket = out.setdefault(prefix, [])
    if value not in bucket:
        bucket.append(value)


def _sorted_values(values: List[Any]) -> List[Any]:
    try:
        return sorted(values)
    except TypeError:
        return sorted(values, key=str)


def build_available_group_by_attributes(objects: Iterable[Any]) -> Dict[str, List[Any]]:
    """Map every dotted leaf path to its sorted, de-duplicated values."""
    collected: Dict[str, List[Any]] = {}
    for obj in objects or []:
        if isinstance(obj, Mapping):
            _flatten("", obj, collected)
    return {path: _sorted_values(values) for path, values in collected.items()}


def _platform_type_for(parsed_env: Mapping[str, str], declared: Any = None) -> str:
    if isinstance(declared, str) and declared:
        return declared
    return PLATFORM_TYPES.get(parsed_env.get("platform", "generic"), "Generic")


def _key_attributes(name: Any, environment: Any, type_: Any = None) -> Dict[str, Any]:
    return {
        "Type": type_ or SERVICE_TYPE,
        "Name": name,
        "Environment": environment,
    }


# ---------------------------------------------------------------------------
# Response transforms
# ---------------------------------------------------------------------------


def transform_list_services_response(frame: FrameLike) -> Dict[str, Any]:
    rows = transpose_data_frame(frame)

    summaries: List[Dict[str, Any]] = []
    seen: set[Tuple[Any, Any]] = set()

    for row in rows:
        name = row.get("serviceName")
        if name is None or name == "" or not isinstance(name, (str, int, float)):
            continue

        environment = row.get("EnvironmentType")
        if not isinstance(environment, str) or not environment:
            environment = "-"
        key = (name, environment)
        if key in seen:
            continue
        seen.add(key)

        parsed = parse_environment_type(environment)
        platform_type = _platform_type_for(parsed, row.get("PlatformType"))
        summaries.append(
            {
                "KeyAttributes": _key_attributes(name, environment),
                "AttributeMaps": build_attribute_maps(platform_type, parsed, name),
            }
        )

    time_range = extract_time_range(row.get("timestamp") for row in rows)
    return {
        "ServiceSummaries": summaries,
        "StartTime": time_range.start,
        "EndTime": time_range.end,
    }


def transform_get_service_response(frame: FrameLike) -> Dict[str, Any]:
    row = _first_row(transpose_data_frame(frame))
    if row is None:
        return {"Service": None}

    key_attrs = _lookup(row, "service.keyAttributes")
    if not isinstance(key_attrs, Mapping):
        key_attrs = {}
    group_by = _lookup(row, "service.groupByAttributes")
    if not isinstance(group_by, Mapping):
        group_by = {}

    name = key_attrs.get("name")
    environment = key_attrs.get("environment")
    parsed = parse_environment_type(environment)

    return {
        "Service": {
            "KeyAttributes": _key_attributes(name, environment, key_attrs.get("type")),
            "AttributeMaps": build_attribute_maps(_platform_type_for(parsed), parsed, name),
            "GroupByAttributes": dict(group_by),
        }
    }


def _count_by(rows: Iterable[Row], path: str) -> Dict[Any, List[Row]]:
    groups: Dict[Any, List[Row]] = {}
    for row in rows:
        value = _lookup(row, path)
        if value is None or value == "" or not isinstance(value, (str, int, float)):
            continue
        groups.setdefault(value, []).append(row)
    return groups


def transform_list_service_operations_response(frame: FrameLike) -> Dict[str, Any]:
    groups = _count_by(transpose_data_frame(frame), "operation.name")
    operations = [
        {"Name": name, "Count": len(members)} for name, members in groups.items()
    ]
    return {"Operations": operations}


def transform_list_service_dependencies_response(frame: FrameLike) -> Dict[str, Any]:
    groups = _count_by(
        transpose_data_frame(frame), "operation.remoteService.keyAttributes.name"
    )

    dependencies: List[Dict[str, Any]] = []
    for name, members in groups.items():
        environment = _lookup(members[0], "operation.remoteService.keyAttributes.environment")
        dependencies.append(
            {
                "DependencyName": name,
                "Environment": environment,
                "CallCount": len(members),
            }
        )
    return {"Dependencies": dependencies}


def _node_id(name: Any, environment: Any) -> str:
    return f"{name}::{environment if environment is not None else '-'}"


def _make_node(key_attrs: Mapping[str, Any]) -> Dict[str, Any]:
    name = key_attrs.get("name")
    environment = key_attrs.get("environment")
    parsed = parse_environment_type(environment)
    return {
        "NodeId": _node_id(name, environment),
        "Name": name,
        "Type": NODE_TYPE,
        "KeyAttributes": _key_attributes(name, environment, key_attrs.get("type")),
        "AttributeMaps": build_attribute_maps(_platform_type_for(parsed), parsed, name),
    }


def transform_get_service_map_response(frame: FrameLike) -> Dict[str, Any]:
    rows = transpose_data_frame(frame)

    nodes: Dict[str, Dict[str, Any]] = {}
    edges: List[Dict[str, Any]] = []
    group_by_objects: List[Any] = []

    for row in rows:
        endpoint_ids: List[Optional[str]] = []
        for side in ("service", "remoteService"):
            key_attrs = _lookup(row, f"{side}.keyAttributes")
            if isinstance(key_attrs, Mapping) and key_attrs.get("name"):
                node_id = _node_id(key_attrs.get("name"), key_attrs.get("environment"))
                if node_id not in nodes:
                    nodes[node_id] = _make_node(key_attrs)
                endpoint_ids.append(node_id)
            else:
                endpoint_ids.append(None)

            group_by_objects.append(_lookup(row, f"{side}.groupByAttributes"))

        source_id, destination_id = endpoint_ids
        if source_id and destination_id:
            edges.append(
                {
                    "EdgeId": f"{source_id}->{destination_id}",
                    "SourceNodeId": source_id,
                    "DestinationNodeId": destination_id,
                }
            )

    return {
        "Nodes": list(nodes.values()),
        "Edges": edges,
        "AvailableGroupByAttributes": build_available_group_by_attributes(group_by_objects),
    }
