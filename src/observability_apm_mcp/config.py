# Observability APM MCP Server
# File: config.py
# Version: v1

"""Configuration loading for the Observability APM MCP Server."""

from __future__ import annotations

from dataclasses import dataclass
import os

DEFAULT_TOPOLOGY_INDEX = "otel-apm-service-map"
DEFAULT_SERVICE_MAP_INDEX = "otel-apm-service-map"
DEFAULT_PROMETHEUS_CONNECTION_ID = "my-prom"


def _parse_bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean-like environment variable.

    Accepts 1/0, true/false, yes/no, on/off (case-insensitive).
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _parse_int_env(
    name: str,
    default: int,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int:
    """Parse an int environment variable with clamping and safe fallback."""
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        value = int(default)
    else:
        try:
            value = int(str(raw).strip())
        except ValueError:
            value = int(default)

    if min_value is not None and value < min_value:
        value = min_value
    if max_value is not None and value > max_value:
        value = max_value

    return value


def _parse_str_env(name: str, default: str | None = None) -> str | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


@dataclass
class ApmConfig:
    """Connection and behaviour settings for the APM tools.

    OpenSearch serves the PPL topology queries, Prometheus serves the
    metric queries. Either may be left unset; the matching tools then fail
    with a configuration error while the rest keep working.
    """

    opensearch_url: str | None
    opensearch_username: str | None
    opensearch_password: str | None
    prometheus_url: str | None
    prometheus_token: str | None
    mock_mode: bool

    topology_index: str = DEFAULT_TOPOLOGY_INDEX
    service_map_index: str = DEFAULT_SERVICE_MAP_INDEX
    prometheus_connection_id: str = DEFAULT_PROMETHEUS_CONNECTION_ID

    verify_tls: bool = True
    http_timeout_seconds: int = 30

    # Upper bound applied to caller supplied maxResults.
    max_results: int = 1000

    # File-backed catalog cache directory; in-memory storage when None.
    catalog_cache_dir: str | None = None

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ApmConfig":
        """Create configuration from environment variables."""
        return cls(
            opensearch_url=_parse_str_env("APM_OPENSEARCH_URL"),
            opensearch_username=_parse_str_env("APM_OPENSEARCH_USERNAME"),
            opensearch_password=_parse_str_env("APM_OPENSEARCH_PASSWORD"),
            prometheus_url=_parse_str_env("APM_PROMETHEUS_URL"),
            prometheus_token=_parse_str_env("APM_PROMETHEUS_TOKEN"),
            mock_mode=_parse_bool_env("APM_MOCK_MODE", default=False),
            topology_index=_parse_str_env("APM_TOPOLOGY_INDEX", DEFAULT_TOPOLOGY_INDEX),
            service_map_index=_parse_str_env(
                "APM_SERVICE_MAP_INDEX", DEFAULT_SERVICE_MAP_INDEX
            ),
            prometheus_connection_id=_parse_str_env(
                "APM_PROMETHEUS_CONNECTION_ID", DEFAULT_PROMETHEUS_CONNECTION_ID
            ),
            verify_tls=_parse_bool_env("APM_VERIFY_TLS", default=True),
            http_timeout_seconds=_parse_int_env(
                "APM_HTTP_TIMEOUT", default=30, min_value=1, max_value=600
            ),
            max_results=_parse_int_env(
                "APM_MAX_RESULTS", default=1000, min_value=1, max_value=100000
            ),
            catalog_cache_dir=_parse_str_env("APM_CATALOG_CACHE_DIR"),
            log_level=(_parse_str_env("APM_LOG_LEVEL", "INFO") or "INFO").upper(),
        )
