# Observability APM MCP Server
# File: context.py
# Version: v1

"""Explicitly constructed dependencies shared by the MCP tools."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .auth import AuthProvider
from .catalog_cache import CatalogCacheManager, FileStorage, MemoryStorage
from .client import PPLClient, PrometheusClient
from .config import ApmConfig

logger = logging.getLogger(__name__)


@dataclass
class ApmContext:
    """Everything an APM operation needs, passed in rather than looked up."""

    config: ApmConfig
    ppl_client: PPLClient
    prometheus_client: PrometheusClient
    catalog_cache: CatalogCacheManager

    @classmethod
    def from_config(cls, config: Optional[ApmConfig] = None) -> "ApmContext":
        """Build clients and catalog storage from configuration.

        In mock mode the in-process mock clients are used instead of HTTP.
        """
        cfg = config or ApmConfig.from_env()

        if cfg.catalog_cache_dir:
            storage = FileStorage(cfg.catalog_cache_dir)
        else:
            storage = MemoryStorage()
        catalog_cache = CatalogCacheManager(storage)

        if cfg.mock_mode:
            from .mock import MockPPLClient, MockPrometheusClient

            logger.info("APM_MOCK_MODE is set; using in-process mock clients.")
            return cls(
                config=cfg,
                ppl_client=MockPPLClient(config=cfg),
                prometheus_client=MockPrometheusClient(config=cfg),
                catalog_cache=catalog_cache,
            )

        return cls(
            config=cfg,
            ppl_client=PPLClient(config=cfg, auth=AuthProvider.for_opensearch(cfg)),
            prometheus_client=PrometheusClient(
                config=cfg, auth=AuthProvider.for_prometheus(cfg)
            ),
            catalog_cache=catalog_cache,
        )
