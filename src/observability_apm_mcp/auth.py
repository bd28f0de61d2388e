# Observability APM MCP Server
# File: auth.py
# Version: v1

"""Authorization headers for the OpenSearch and Prometheus backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional
import base64

from .config import ApmConfig


@dataclass
class AuthProvider:
    """Builds an ``Authorization`` header for one backend.

    OpenSearch clusters with the security plugin expect HTTP Basic
    credentials; Prometheus deployments behind a proxy usually take a
    bearer token. When nothing is configured no header is sent.
    """

    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None

    @classmethod
    def for_opensearch(cls, config: ApmConfig) -> "AuthProvider":
        return cls(username=config.opensearch_username, password=config.opensearch_password)

    @classmethod
    def for_prometheus(cls, config: ApmConfig) -> "AuthProvider":
        return cls(token=config.prometheus_token)

    @property
    def configured(self) -> bool:
        return bool(self.token or self.username)

    def headers(self) -> Dict[str, str]:
        """Return the auth header (possibly empty) to merge into a request."""
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}

        if self.username:
            raw_credentials = f"{self.username}:{self.password or ''}"
            basic_token = base64.b64encode(raw_credentials.encode("utf-8")).decode("ascii")
            return {"Authorization": f"Basic {basic_token}"}

        return {}
