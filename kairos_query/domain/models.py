"""Query and result models for KairosDB panels.

Targets arrive from the dashboard editor as camelCase JSON; every model
accepts those aliases as well as the snake_case field names. Models on the
request side describe what the user authored, models on the result side are
what the reshaper emits for rendering.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils.units import parse_unit, unit_to_ms

_MODEL_CONFIG = ConfigDict(populate_by_name=True, extra="ignore")


class ParameterKind(str, Enum):
    """Closed set of aggregator parameter kinds.

    Unknown or legacy kind names (``number``, empty) are read as ``literal``.
    """

    LITERAL = "any"
    SAMPLING = "sampling"
    SAMPLING_UNIT = "sampling_unit"
    ENUM = "enum"
    ALIGNMENT = "alignment"

    @classmethod
    def coerce(cls, raw: Any) -> "ParameterKind":
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw))
        except ValueError:
            return cls.LITERAL


class AggregatorParameter(BaseModel):
    """One parameter of an aggregator.

    Attributes
    ----------
    name: str
        Wire key (``value``/``unit`` for sampling kinds, e.g. ``factor``).
    type: ParameterKind
        Kind driving how the value is materialized.
    value: Any
        Stored value; may contain template variables.
    text: Optional[str]
        Display label used by the editor.
    """

    model_config = _MODEL_CONFIG

    name: str
    type: ParameterKind = ParameterKind.LITERAL
    value: Any = None
    text: Optional[str] = None

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_kind(cls, v: Any) -> ParameterKind:
        return ParameterKind.coerce(v)


class AutoValueSwitch(BaseModel):
    """Auto-sampling switch of an aggregator.

    When enabled, parameters whose kind is listed in ``dependent_parameters``
    take their value from the panel's display interval.
    """

    model_config = _MODEL_CONFIG

    enabled: bool = False
    dependent_parameters: List[ParameterKind] = Field(
        default_factory=list, alias="dependentParameters"
    )

    @field_validator("dependent_parameters", mode="before")
    @classmethod
    def _coerce_kinds(cls, v: Any) -> List[ParameterKind]:
        if not v:
            return []
        kinds = []
        for item in v:
            raw = item.get("type") if isinstance(item, dict) else item
            kinds.append(ParameterKind.coerce(raw))
        return kinds


class AggregatorSpec(BaseModel):
    """Aggregator as authored in a target."""

    model_config = _MODEL_CONFIG

    name: str
    parameters: List[AggregatorParameter] = Field(default_factory=list)
    auto_value_switch: Optional[AutoValueSwitch] = Field(
        default=None, alias="autoValueSwitch"
    )

    def parameter(self, name: str) -> Optional[AggregatorParameter]:
        """Return the first parameter called ``name``, if any."""
        for param in self.parameters:
            if param.name == name:
                return param
        return None


class GroupByTime(BaseModel):
    """Time grouping: bucket width plus optional number of groups.

    ``range_size`` is the editor's name for the KairosDB ``group_count``.
    """

    model_config = _MODEL_CONFIG

    value: Union[int, float] = 1
    unit: str = "minutes"
    range_size: Optional[int] = None


class GroupByValue(BaseModel):
    """Value grouping by fixed-size value ranges."""

    model_config = _MODEL_CONFIG

    range_size: Union[int, float]


class GroupBy(BaseModel):
    """Group-by directives of a target."""

    model_config = _MODEL_CONFIG

    tags: List[str] = Field(default_factory=list)
    time: Optional[GroupByTime] = None
    value: Optional[GroupByValue] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _none_tags(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("time", "value", mode="before")
    @classmethod
    def _empty_clause(cls, v: Any) -> Any:
        # The editor stores cleared clauses as empty lists or objects
        if isinstance(v, (list, dict)) and not v:
            return None
        return v


class Target(BaseModel):
    """User-authored panel query.

    Attributes
    ----------
    metric_name: str
        Metric name template, may reference variables.
    alias: str
        Series name template; may reference variables and
        ``$_tag_group_<tag>`` group variables.
    tags: Dict[str, List[str]]
        Tag filters; values may reference variables.
    group_by: GroupBy
        Tag, time and value grouping directives.
    aggregators: List[AggregatorSpec]
        Aggregator pipeline in execution order.
    ref_id: str
        Panel reference id used to route emitted series.
    hide: bool
        Hidden targets are not queried.
    override_scalar: bool
        Exempts the target from the site scalar-aggregator policy.
    """

    model_config = _MODEL_CONFIG

    metric_name: str = Field("", alias="metricName")
    alias: str = ""
    tags: Dict[str, List[str]] = Field(default_factory=dict)
    group_by: GroupBy = Field(default_factory=GroupBy, alias="groupBy")
    aggregators: List[AggregatorSpec] = Field(default_factory=list)
    ref_id: str = Field("A", alias="refId")
    hide: bool = False
    override_scalar: bool = Field(False, alias="overrideScalar")

    @field_validator("metric_name", "alias", mode="before")
    @classmethod
    def _none_string(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, v: Any) -> Dict[str, List[str]]:
        if not v:
            return {}
        normalized: Dict[str, List[str]] = {}
        for key, values in v.items():
            if values is None:
                normalized[key] = []
            elif isinstance(values, (list, tuple)):
                normalized[key] = [str(x) for x in values]
            else:
                normalized[key] = [str(values)]
        return normalized

    @field_validator("group_by", mode="before")
    @classmethod
    def _none_group_by(cls, v: Any) -> Any:
        return GroupBy() if v is None else v

    @field_validator("aggregators", mode="before")
    @classmethod
    def _none_aggregators(cls, v: Any) -> Any:
        return [] if v is None else v


class DisplayInterval(BaseModel):
    """Panel display interval, e.g. ``{"value": 30, "unit": "seconds"}``."""

    value: Union[int, float]
    unit: str


BindingSet = Dict[str, str]
"""Scalar bindings chosen for one expansion of a template."""

ScopedBindings = Dict[str, Any]
"""Caller bindings: name to scalar, list of values, or ``{text, value}``."""


class ResolvedAggregator(BaseModel):
    """Aggregator with every parameter materialized to its wire value."""

    name: str
    sampling: Optional[Dict[str, Any]] = None
    params: Dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {"name": self.name}
        wire.update(self.params)
        if self.sampling:
            wire["sampling"] = dict(self.sampling)
        return wire

    def sampling_interval_ms(self) -> Optional[int]:
        """Sampling width in milliseconds, or None without usable sampling."""
        if not self.sampling:
            return None
        unit = parse_unit(self.sampling.get("unit"))
        try:
            value = float(self.sampling.get("value"))
        except (TypeError, ValueError):
            return None
        if unit is None or value <= 0:
            return None
        return int(round(value * unit_to_ms(unit)))


class ExpandedQuery(BaseModel):
    """One concrete wire query produced from a target expansion.

    Attributes
    ----------
    metric_name: str
        Concrete metric name with variables substituted.
    tags: Dict[str, List[str]]
        Resolved tag filters, multi-values flattened.
    aggregators: List[ResolvedAggregator]
        Materialized aggregator pipeline.
    group_by: List[Dict[str, Any]]
        KairosDB ``group_by`` clauses.
    source_target: Target
        Target this query was expanded from.
    binding_set: BindingSet
        Scalar variable choices used for this expansion.
    """

    metric_name: str
    tags: Dict[str, List[str]] = Field(default_factory=dict)
    aggregators: List[ResolvedAggregator] = Field(default_factory=list)
    group_by: List[Dict[str, Any]] = Field(default_factory=list)
    source_target: Target
    binding_set: BindingSet = Field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {"name": self.metric_name}
        if self.tags:
            wire["tags"] = {k: list(v) for k, v in self.tags.items()}
        if self.aggregators:
            wire["aggregators"] = [a.to_wire() for a in self.aggregators]
        if self.group_by:
            wire["group_by"] = [dict(g) for g in self.group_by]
        return wire

    def sampling_interval_ms(self) -> Optional[int]:
        """First sampling width found in the aggregator pipeline."""
        for agg in self.aggregators:
            width = agg.sampling_interval_ms()
            if width is not None:
                return width
        return None


class QueryIndexEntry(BaseModel):
    """Binding of one batch position to the query sent there."""

    position: int
    query: ExpandedQuery


class QueryIndexMap:
    """Ordered, read-only mapping from batch position to ExpandedQuery.

    Position is the only correlation key between request and response;
    two entries may carry the same metric name.
    """

    def __init__(self, queries: Sequence[ExpandedQuery]) -> None:
        self._entries = tuple(
            QueryIndexEntry(position=i, query=q) for i, q in enumerate(queries)
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, position: int) -> ExpandedQuery:
        return self._entries[position].query

    def __iter__(self) -> Iterator[QueryIndexEntry]:
        return iter(self._entries)

    def get(self, position: int) -> Optional[ExpandedQuery]:
        if 0 <= position < len(self._entries):
            return self._entries[position].query
        return None

    @property
    def queries(self) -> List[ExpandedQuery]:
        return [e.query for e in self._entries]


class MaterializedBatch(BaseModel):
    """Outcome of materializing a list of targets."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    queries: List[ExpandedQuery]
    index_map: QueryIndexMap


class TimeSeries(BaseModel):
    """Scalar series: parallel time and value arrays."""

    kind: str = "timeseries"
    name: str
    ref_id: str
    times: List[int] = Field(default_factory=list)
    values: List[float] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)


class HeatmapCell(BaseModel):
    """One sparse heatmap cell for a (timestamp, bin) pair."""

    x_min: int
    x_max: int
    y_min: float
    y_max: float
    count: float


class HeatmapSeries(BaseModel):
    """Histogram series rendered as sparse heatmap cells."""

    kind: str = "heatmap"
    name: str
    ref_id: str
    interval_ms: int
    cells: List[HeatmapCell] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)


EmittedSeries = Union[TimeSeries, HeatmapSeries]


class QueryError(BaseModel):
    """User-visible dispatch failure."""

    message: str
    status: Optional[int] = None


class QueryResult(BaseModel):
    """Datasource response: emitted series plus an optional error.

    An empty ``data`` list without ``error`` means the query legitimately
    returned nothing.
    """

    data: List[EmittedSeries] = Field(default_factory=list)
    error: Optional[QueryError] = None
