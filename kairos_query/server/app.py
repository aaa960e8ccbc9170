"""Application runtime shared by the HTTP server and the CLI.

The server owns one :class:`~kairos_query.datasource.KairosDBDataSource` per
configured KairosDB instance, registers its adapter in the adapter registry,
and closes the adapters on shutdown.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from ..adapters import get_adapter, get_available_source_ids, register_adapter
from ..adapters.kairosdb import KairosDBAdapter
from ..config.models import AppConfig, DataSourceConfig
from ..datasource import KairosDBDataSource

logger = logging.getLogger(__name__)


class QueryServer:
    """Async runtime holding the configured datasources."""

    def __init__(self) -> None:
        """Create a new server instance with stopped state."""
        self._started: bool = False
        self._datasources: Dict[str, KairosDBDataSource] = {}
        self._default: Optional[str] = None

    def add_datasource(
        self,
        source_id: str,
        settings: DataSourceConfig,
        adapter: Optional[KairosDBAdapter] = None,
    ) -> KairosDBDataSource:
        """Create (or reuse) the adapter for ``source_id`` and wrap it."""
        if adapter is None:
            adapter = KairosDBAdapter(
                settings.endpoint,
                settings.api_key,
                settings.timeout_seconds,
                max_retries=settings.max_retries,
                backoff_initial_ms=settings.backoff_initial_ms,
                backoff_multiplier=settings.backoff_multiplier,
            )
        register_adapter(source_id, adapter)
        datasource = KairosDBDataSource(get_adapter(source_id), settings)
        self._datasources[source_id] = datasource
        if self._default is None:
            self._default = source_id
        return datasource

    def configure(self, cfg: AppConfig) -> List[str]:
        """Register every datasource of ``cfg``; returns their ids."""
        for source_id, settings in cfg.datasources.items():
            self.add_datasource(source_id, settings)
        if cfg.default_source_id():
            self._default = cfg.default_source_id()
        return list(cfg.datasources)

    def source_ids(self) -> List[str]:
        return list(self._datasources)

    def datasource(self, source_id: Optional[str] = None) -> KairosDBDataSource:
        """Return the datasource for ``source_id``, or the default one.

        Raises
        ------
        KeyError
            When no such datasource is configured.
        """
        key = source_id or self._default
        if key is None or key not in self._datasources:
            raise KeyError(source_id or "default")
        return self._datasources[key]

    async def start(self) -> None:
        """Start the server runtime. Idempotent."""
        if self._started:
            logger.debug("server.start no-op: already started")
            return
        self._started = True
        logger.info("server.started", extra={"datasources": self.source_ids()})

    async def stop(self) -> None:
        """Close every registered adapter. Idempotent."""
        if not self._started:
            logger.debug("server.stop no-op: not started")
            return
        for source_id in get_available_source_ids():
            try:
                await get_adapter(source_id).aclose()
            except (RuntimeError, OSError) as exc:  # pragma: no cover
                logger.warning(
                    "server.adapter.close_failed",
                    extra={"source_id": source_id, "error": str(exc)},
                )
        self._started = False
        logger.info("server.stopped")
