# Observability APM MCP Server
# File: queries/promql.py
# Version: v1

"""PromQL builders for the APM request / error / fault / latency metrics."""

from __future__ import annotations

import re
from enum import Enum
from typing import Mapping, Optional, Union

LATENCY_METRIC = "latency_seconds"
RATE_METRICS = frozenset({"error", "fault", "request"})

_PERCENTILE = re.compile(r"^p(\d{2})$")


class MetricStat(str, Enum):
    SUM = "Sum"
    AVERAGE = "Average"


StatLike = Union[MetricStat, str, None]


def _stat_value(stat: StatLike) -> Optional[str]:
    if isinstance(stat, MetricStat):
        return stat.value
    return stat


def build_filters(filters: Mapping[str, str]) -> str:
    """Render ``{k1="v1",k2="v2"}`` in mapping order; ``""`` when empty."""
    if not filters:
        return ""
    labels = ",".join(f'{key}="{value}"' for key, value in filters.items())
    return "{" + labels + "}"


def build_rate_query(
    metric: str,
    filter_expr: str,
    interval: str,
    stat: StatLike = None,
) -> str:
    """``rate(...)`` wrapped in ``sum``/``avg``; other stats leave it bare."""
    base = f"rate({metric}{filter_expr}[{interval}])"

    value = _stat_value(stat)
    if value == MetricStat.SUM.value:
        return f"sum({base})"
    if value == MetricStat.AVERAGE.value:
        return f"avg({base})"
    return base


def build_latency_query(filter_expr: str, interval: str, stat: StatLike = None) -> str:
    """Percentile (``pNN``) from the histogram, else mean latency."""
    value = _stat_value(stat)
    match = _PERCENTILE.match(value) if isinstance(value, str) else None
    if match:
        quantile = f"0.{match.group(1)}"
        return (
            f"histogram_quantile({quantile}, "
            f"rate({LATENCY_METRIC}_bucket{filter_expr}[{interval}]))"
        )

    return (
        f"rate({LATENCY_METRIC}_sum{filter_expr}[{interval}]) / "
        f"rate({LATENCY_METRIC}_count{filter_expr}[{interval}])"
    )


def build_query(
    metric_name: str,
    filters: Mapping[str, str],
    interval: str,
    stat: StatLike = None,
) -> str:
    filter_expr = build_filters(filters)

    if metric_name in RATE_METRICS:
        return build_rate_query(metric_name, filter_expr, interval, stat)
    if metric_name == "latency":
        return build_latency_query(filter_expr, interval, stat)
    return f"{metric_name}{filter_expr}"


def build_metric_query(
    metric_name: str,
    service_name: str,
    interval: str,
    environment: Optional[str] = None,
    operation: Optional[str] = None,
    stat: StatLike = None,
) -> str:
    """Convenience wrapper filtering by service, environment and operation."""
    filters = {"serviceName": service_name}
    if environment:
        filters["environment"] = environment
    if operation:
        filters["operation"] = operation

    return build_query(metric_name, filters, interval, stat)
