"""Datasource adapter interfaces and registry."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol

from ..schemas.kairosdb import DatapointsRequest, DatapointsResponse, TagsRequest


class KairosAdapter(Protocol):
    """Protocol for KairosDB transports.

    Implementations send wire requests to a KairosDB server and return
    validated responses. Failures are raised as ``DispatchError``.
    """

    async def query_datapoints(self, request: DatapointsRequest) -> DatapointsResponse:
        """Run a batch datapoints query; result order matches request order."""
        raise NotImplementedError

    async def query_tags(self, request: TagsRequest) -> DatapointsResponse:
        """Return tag names and values recorded for the given metrics."""
        raise NotImplementedError

    async def metric_names(self, prefix: Optional[str] = None) -> List[str]:
        """List metric names, optionally filtered by prefix on the server."""
        raise NotImplementedError

    async def version(self) -> str:
        """Return the server version string."""
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release transport resources."""
        raise NotImplementedError


_adapters: Dict[str, KairosAdapter] = {}


def register_adapter(source_id: str, adapter: KairosAdapter) -> None:
    """Register an adapter instance under a logical `source_id`."""
    _adapters[source_id] = adapter


def get_adapter(source_id: str) -> KairosAdapter:
    """Retrieve a registered adapter by `source_id`."""
    return _adapters[source_id]


def get_available_source_ids() -> List[str]:
    """Get list of registered adapter source_ids."""
    return list(_adapters.keys())


def log_adapter_status() -> None:
    """Log which KairosDB datasources are configured."""
    logger = logging.getLogger(__name__)

    if not _adapters:
        logger.warning(
            "No KairosDB datasources configured. Set KAIROS_QUERY_CONFIG to a "
            "JSON config file listing at least one datasource."
        )
        return
    logger.info(
        "KairosDB datasources configured: %s",
        ", ".join(
            f"'{source_id}' ({getattr(adapter, 'endpoint', type(adapter).__name__)})"
            for source_id, adapter in _adapters.items()
        ),
    )


def reset_adapters() -> None:
    """Test-only helper to clear registered adapters.

    This is used by functional tests to ensure a clean environment when
    asserting behaviors that depend on adapter presence/absence.
    """
    _adapters.clear()
