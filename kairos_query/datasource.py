"""KairosDB datasource facade.

Ties the pure request and response pipeline to an adapter:

``migrate -> validate -> snap interval -> materialize -> dispatch -> reshape``

Besides panel queries the datasource answers metric name and tag lookups
and dashboard variable queries.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .adapters import KairosAdapter
from .config.models import DataSourceConfig
from .domain.models import QueryError, QueryResult, Target
from .domain.utils.units import format_interval, snap_to_interval
from .errors import DispatchError
from .request.builder import build_datapoints_request, materialize
from .request.migration import migrate
from .request.validation import validate_targets
from .response.reshaper import reshape
from .schemas.kairosdb import TagsRequest
from .templating.variable_query import VariableQueryExecutor, parse_variable_query
from .templating.variables import TemplateRenderer
from .utils.cache import Cache

logger = logging.getLogger(__name__)

TAG_LOOKBACK_MS = 24 * 60 * 60 * 1000


class TimeRange(BaseModel):
    """Absolute query range in epoch milliseconds."""

    model_config = ConfigDict(populate_by_name=True)

    from_ms: int = Field(..., alias="from")
    to_ms: Optional[int] = Field(None, alias="to")


class QueryOptions(BaseModel):
    """One panel query execution.

    Attributes
    ----------
    targets: List[Any]
        Targets as :class:`Target` models or stored editor JSON in any
        schema generation.
    range: Optional[TimeRange]
        Absolute time range; without one nothing is queried.
    interval: str
        Panel display interval, e.g. ``"30s"``.
    scoped_vars: Dict[str, Any]
        Dashboard variables, scalar or multi-valued.
    """

    model_config = ConfigDict(populate_by_name=True)

    targets: List[Any] = Field(default_factory=list)
    range: Optional[TimeRange] = None
    interval: str = "1m"
    scoped_vars: Dict[str, Any] = Field(default_factory=dict, alias="scopedVars")


class ConnectionStatus(BaseModel):
    status: str
    message: str


def parse_search_query(query: Optional[str]) -> Tuple[bool, str]:
    """Split a metric search into (prefix mode, search term).

    >>> parse_search_query("^sys")
    (True, 'sys')
    >>> parse_search_query(" cpu ")
    (False, 'cpu')
    """
    term = (query or "").strip()
    if term.startswith("^"):
        return True, term[1:]
    return False, term


def migrate_targets(raw_targets: List[Any]) -> List[Target]:
    """Migrate stored targets, dropping any that cannot be read."""
    targets: List[Target] = []
    for position, raw in enumerate(raw_targets):
        if not isinstance(raw, (Target, Mapping)):
            logger.warning(
                "datasource.target.skipped",
                extra={"position": position, "type": type(raw).__name__},
            )
            continue
        try:
            targets.append(migrate(raw))
        except ValidationError as exc:
            logger.warning(
                "datasource.target.invalid",
                extra={"position": position, "errors": exc.error_count()},
            )
    return targets


class KairosDBDataSource:
    """Query entry point for one configured KairosDB server.

    Parameters
    ----------
    adapter: KairosAdapter
        Transport used for every server call.
    settings: DataSourceConfig
        Datasource options (interval snapping, scalar policy, lookups).
    renderer: Optional[TemplateRenderer]
        Templating collaborator for alias interpolation.
    """

    def __init__(
        self,
        adapter: KairosAdapter,
        settings: DataSourceConfig,
        renderer: Optional[TemplateRenderer] = None,
    ) -> None:
        self._adapter = adapter
        self._settings = settings
        self._renderer = renderer
        ttl = settings.metric_names_cache_ttl_seconds or None
        self._metric_names_cache: Cache[Tuple[str, Tuple[str, ...]], List[str]] = Cache(
            maxsize=256, ttl=ttl
        )
        self._api_cache: Cache[str, List[str]] = Cache(maxsize=64, ttl=ttl)
        self._variables = VariableQueryExecutor(self)

    @property
    def settings(self) -> DataSourceConfig:
        return self._settings

    def _display_interval(self, interval: str) -> str:
        snap_list = self._settings.snap_to_intervals
        if not snap_list:
            return interval
        snapped = format_interval(*snap_to_interval(interval, snap_list))
        if snapped != interval:
            logger.debug(
                "datasource.interval.snapped",
                extra={"requested": interval, "snapped": snapped},
            )
        return snapped

    async def query(self, options: Union[QueryOptions, Mapping[str, Any]]) -> QueryResult:
        """Execute a panel query.

        Returns
        -------
        QueryResult
            Emitted series, or an error for a failed dispatch. No range,
            no target with a metric name, or no results yield empty data.

        Raises
        ------
        TargetValidationError
            When a target violates the scalar-aggregator policy.
        """
        if not isinstance(options, QueryOptions):
            options = QueryOptions.model_validate(options)
        if options.range is None:
            return QueryResult()

        targets = migrate_targets(options.targets)
        validate_targets(targets, self._settings.enforce_scalar_setting)
        targets = [t for t in targets if t.metric_name and not t.hide]
        if not targets:
            return QueryResult()

        interval = self._display_interval(options.interval)
        batch = materialize(targets, interval, options.scoped_vars)
        if not batch.queries:
            return QueryResult()

        request = build_datapoints_request(batch, options.range.from_ms, options.range.to_ms)
        logger.info(
            "datasource.query.dispatch",
            extra={"targets": len(targets), "queries": len(batch.queries), "interval": interval},
        )
        try:
            response = await self._adapter.query_datapoints(request)
        except DispatchError as exc:
            logger.warning(
                "datasource.query.failed",
                extra={"status": exc.status, "error": exc.message},
            )
            return QueryResult(error=QueryError(message=exc.message, status=exc.status))

        series = reshape(response, batch.index_map, options.scoped_vars, self._renderer)
        return QueryResult(data=series)

    async def metric_names(self, query: str = "") -> List[str]:
        """Metric names matching ``query``; ``^term`` restricts to a prefix.

        Names ending in an ignored suffix are removed. Lookup failures
        yield ``[]``.
        """
        suffixes = tuple(self._settings.ignored_suffixes())
        cache_key = (query or "", suffixes)
        cached = self._metric_names_cache.get(cache_key)
        if cached is not None:
            return cached

        prefix_mode, term = parse_search_query(query)
        server_prefix = term if prefix_mode and len(term) >= 2 else None
        api_key = f"prefix:{server_prefix}" if server_prefix else "all"
        try:
            raw = self._api_cache.get(api_key)
            if raw is None:
                raw = await self._adapter.metric_names(server_prefix)
                self._api_cache.set(api_key, raw)
        except DispatchError as exc:
            logger.warning("datasource.metric_names.failed", extra={"error": exc.message})
            return []

        names = [m for m in raw if not any(m.endswith(s) for s in suffixes)]
        if term:
            needle = term.lower()
            if prefix_mode:
                names = [m for m in names if m.lower().startswith(needle)]
            else:
                names = [m for m in names if needle in m.lower()]
        names = names[: self._settings.autocomplete_max_metrics]
        self._metric_names_cache.set(cache_key, names)
        return names

    async def metric_tags(
        self, metric: str, filters: Optional[Mapping[str, List[str]]] = None
    ) -> Dict[str, List[str]]:
        """Tag names and values recorded for ``metric`` over the last day.

        ``filters`` restricts the lookup to series carrying those tag values.
        Failures yield ``{}``.
        """
        if not metric:
            return {}
        now = int(time.time() * 1000)
        wire: Dict[str, Any] = {"name": metric}
        if filters:
            wire["tags"] = {k: list(v) for k, v in filters.items() if v}
        request = TagsRequest(
            start_absolute=now - TAG_LOOKBACK_MS, end_absolute=now, metrics=[wire]
        )
        try:
            response = await self._adapter.query_tags(request)
        except DispatchError as exc:
            logger.warning(
                "datasource.metric_tags.failed",
                extra={"metric": metric, "error": exc.message},
            )
            return {}
        if not response.queries or not response.queries[0].results:
            return {}
        return dict(response.queries[0].results[0].tags)

    async def metric_find_query(
        self, query: str, scoped_vars: Optional[Mapping[str, Any]] = None
    ) -> List[Dict[str, str]]:
        """Answer a dashboard variable query.

        Text that is not a variable query function is used as a metric
        name filter.
        """
        parsed = parse_variable_query(query)
        if parsed is not None:
            return await self._variables.execute(parsed, scoped_vars)
        return [{"text": m, "value": m} for m in await self.metric_names(query)]

    async def test_connection(self) -> ConnectionStatus:
        """Check that the server answers ``/api/v1/version``."""
        try:
            version = await self._adapter.version()
        except DispatchError as exc:
            return ConnectionStatus(status="error", message=exc.message)
        return ConnectionStatus(
            status="success",
            message=f"Successfully connected to KairosDB version {version}",
        )
