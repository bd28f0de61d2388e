# Observability APM MCP Server
# File: client.py
# Version: v1
"""HTTP clients for the APM backends.

Implements:

- PPLClient: runs PPL queries through the OpenSearch ``_plugins/_ppl``
  endpoint and turns the results into APM response objects.
- PrometheusClient: runs PromQL through the Prometheus HTTP API and
  returns the native Prometheus JSON.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import httpx
from httpx import HTTPStatusError, RequestError

from . import transform
from .auth import AuthProvider
from .config import ApmConfig
from .models import DataFrame
from .queries import ppl, promql

logger = logging.getLogger(__name__)

# Errors that mean "nothing to show yet" rather than a broken backend.
_EMPTY_RESULT_MARKERS = ("index_not_found_exception", "Unauthorized", "no such index")


def _is_empty_result_error(status: int, body: str) -> bool:
    if status in (401, 403):
        return True
    return any(marker in (body or "") for marker in _EMPTY_RESULT_MARKERS)


@dataclass
class PPLClient:
    """Service topology queries against the OpenSearch PPL endpoint."""

    config: ApmConfig
    auth: AuthProvider
    transport: Optional[httpx.AsyncBaseTransport] = field(default=None, repr=False)

    # ------------------------------------------------------------------
    # Basic health
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        """Return True when the cluster root endpoint answers."""
        if not self.config.opensearch_url:
            return False

        url = self.config.opensearch_url.rstrip("/") + "/"
        async with self._http_client() as http_client:
            try:
                response = await http_client.get(url, headers=self._headers())
            except RequestError as exc:
                logger.warning("OpenSearch ping to '%s' failed: %s", url, exc)
                return False
        return response.status_code < 400

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=float(self.config.http_timeout_seconds),
            verify=self.config.verify_tls,
            transport=self.transport,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        headers.update(self.auth.headers())
        return headers

    # ------------------------------------------------------------------
    # Raw execution
    # ------------------------------------------------------------------

    async def execute_query(self, query: str) -> DataFrame:
        """Run a PPL query and return the result as a column-oriented frame.

        Missing indices and authorization failures are logged and answered
        with an empty frame; every other failure raises RuntimeError.
        """
        if not self.config.opensearch_url:
            raise RuntimeError(
                "APM_OPENSEARCH_URL is not set. "
                "Please configure it before running PPL queries."
            )

        url = self.config.opensearch_url.rstrip("/") + "/_plugins/_ppl"
        logger.debug("PPL query: %s", query)

        async with self._http_client() as http_client:
            try:
                response = await http_client.post(
                    url, headers=self._headers(), json={"query": query}
                )
            except RequestError as exc:
                raise RuntimeError(
                    f"Error calling OpenSearch PPL endpoint at '{url}': {exc}"
                ) from exc

            try:
                response.raise_for_status()
            except HTTPStatusError as exc:
                status = response.status_code
                body_preview = response.text[:500]
                if _is_empty_result_error(status, body_preview):
                    logger.warning(
                        "PPL query returned HTTP %s; index may not exist or the "
                        "user lacks permissions. Returning empty result.",
                        status,
                    )
                    return DataFrame.empty(meta={"query": query, "status": status})

                logger.error("PPL query failed (HTTP %s): %s", status, body_preview)
                raise RuntimeError(
                    "Failed to run PPL query against "
                    f"'{url}' (HTTP {status}). "
                    f"Response snippet: {body_preview}"
                ) from exc

        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise RuntimeError(
                f"OpenSearch PPL endpoint at '{url}' returned a non-JSON body."
            ) from exc

        if not isinstance(data, dict):
            raise RuntimeError(
                "Unexpected PPL response: "
                f"expected JSON object, got {type(data).__name__}."
            )

        frame = DataFrame.from_jdbc(data)
        frame.meta = dict(frame.meta or {}, query=query)
        logger.info("PPL query returned %d rows.", frame.size)
        return frame

    # ------------------------------------------------------------------
    # APM operations
    # ------------------------------------------------------------------

    async def get_service(self, params: ppl.ParamsLike) -> Dict[str, Any]:
        p = ppl.coerce_params(params)
        logger.info("[getService] keyAttributes=%s", p.key_attributes)

        query = ppl.build_get_service_query(p)
        logger.info("[getService] PPL query: %s", query)

        frame = await self.execute_query(query)
        return transform.transform_get_service_response(frame)

    async def list_service_operations(self, params: ppl.ParamsLike) -> Dict[str, Any]:
        p = ppl.coerce_params(params)
        logger.info("[listServiceOperations] keyAttributes=%s", p.key_attributes)

        query = ppl.build_list_service_operations_query(p)
        logger.info("[listServiceOperations] PPL query: %s", query)

        frame = await self.execute_query(query)
        return transform.transform_list_service_operations_response(frame)

    async def list_service_dependencies(self, params: ppl.ParamsLike) -> Dict[str, Any]:
        p = ppl.coerce_params(params)
        logger.info("[listServiceDependencies] keyAttributes=%s", p.key_attributes)

        query = ppl.build_list_service_dependencies_query(p)
        logger.info("[listServiceDependencies] PPL query: %s", query)

        frame = await self.execute_query(query)
        return transform.transform_list_service_dependencies_response(frame)

    async def get_service_map(self, params: ppl.ParamsLike) -> Dict[str, Any]:
        p = ppl.coerce_params(params)
        logger.info("[getServiceMap] time range: %s - %s", p.start_time, p.end_time)

        query = ppl.build_get_service_map_query(p)
        logger.info("[getServiceMap] PPL query: %s", query)

        frame = await self.execute_query(query)
        return transform.transform_get_service_map_response(frame)

    async def list_services(
        self,
        params: ppl.ParamsLike,
        next_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        p = ppl.coerce_params(params)
        logger.info("[listServices] time range: %s - %s", p.start_time, p.end_time)

        query = ppl.build_list_services_query(p)
        logger.info("[listServices] PPL query: %s", query)

        frame = await self.execute_query(query)
        out = transform.transform_list_services_response(frame)
        out["TotalCount"] = len(out["ServiceSummaries"])
        out["NextToken"] = next_token
        return out


Timestamp = Union[str, int, float]


@dataclass
class PrometheusClient:
    """PromQL queries against the Prometheus HTTP API."""

    config: ApmConfig
    auth: AuthProvider
    transport: Optional[httpx.AsyncBaseTransport] = field(default=None, repr=False)

    async def ping(self) -> bool:
        """Return True when Prometheus reports itself ready."""
        if not self.config.prometheus_url:
            return False

        url = self.config.prometheus_url.rstrip("/") + "/-/ready"
        async with self._http_client() as http_client:
            try:
                response = await http_client.get(url, headers=self.auth.headers())
            except RequestError as exc:
                logger.warning("Prometheus ping to '%s' failed: %s", url, exc)
                return False
        return response.status_code < 400

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=float(self.config.http_timeout_seconds),
            verify=self.config.verify_tls,
            transport=self.transport,
        )

    async def execute_metric_request(
        self,
        query: str,
        start_time: Timestamp,
        end_time: Timestamp,
        step: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Run a PromQL expression and return the native Prometheus response.

        With a ``step`` this is a range query over [start_time, end_time];
        without one it is an instant query evaluated at ``end_time``.
        """
        if not self.config.prometheus_url:
            raise RuntimeError(
                "APM_PROMETHEUS_URL is not set. "
                "Please configure it before running metric queries."
            )

        logger.info("[executeMetricRequest] PromQL query: %s", query)
        logger.info(
            "[executeMetricRequest] Time range: %s - %s, step: %s",
            start_time,
            end_time,
            step,
        )

        base_url = self.config.prometheus_url.rstrip("/")
        if step:
            url = f"{base_url}/api/v1/query_range"
            params: Dict[str, Any] = {
                "query": query,
                "start": start_time,
                "end": end_time,
                "step": step,
            }
        else:
            url = f"{base_url}/api/v1/query"
            params = {"query": query, "time": end_time}

        headers = {"Accept": "application/json"}
        headers.update(self.auth.headers())

        async with self._http_client() as http_client:
            try:
                response = await http_client.get(url, headers=headers, params=params)
            except RequestError as exc:
                raise RuntimeError(
                    f"Error calling Prometheus API at '{url}': {exc}"
                ) from exc

            try:
                response.raise_for_status()
            except HTTPStatusError as exc:
                status = response.status_code
                body_preview = response.text[:500]
                logger.error(
                    "[executeMetricRequest] PromQL query failed (HTTP %s)", status
                )
                raise RuntimeError(
                    "Failed to run PromQL query against "
                    f"'{url}' (HTTP {status}). "
                    f"Response snippet: {body_preview}"
                ) from exc

        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise RuntimeError(
                f"Prometheus API at '{url}' returned a non-JSON body."
            ) from exc

        logger.info("[executeMetricRequest] PromQL query executed successfully")
        return data

    @staticmethod
    def build_metric_query(
        metric_name: str,
        service_name: str,
        interval: str,
        environment: Optional[str] = None,
        operation: Optional[str] = None,
        stat: Optional[str] = None,
    ) -> str:
        return promql.build_metric_query(
            metric_name=metric_name,
            service_name=service_name,
            interval=interval,
            environment=environment,
            operation=operation,
            stat=stat,
        )
