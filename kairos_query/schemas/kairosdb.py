"""
KairosDB REST API Schemas

Pydantic models for the KairosDB endpoints this package talks to:

- ``POST /api/v1/datapoints/query``
- ``POST /api/v1/datapoints/query/tags``
- ``GET /api/v1/metricnames``
- ``GET /api/v1/version``

Response models ignore unknown fields and tolerate missing ones so that a
partially malformed response degrades to fewer series instead of a failure.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_LENIENT = ConfigDict(extra="allow", populate_by_name=True)


class GroupByName(str, Enum):
    """Names of KairosDB grouping clauses"""

    TAG = "tag"
    TIME = "time"
    VALUE = "value"
    TYPE = "type"


# Requests


class DatapointsRequest(BaseModel):
    """Batch body of ``/api/v1/datapoints/query``"""

    start_absolute: int = Field(..., description="Range start, epoch ms")
    end_absolute: Optional[int] = Field(None, description="Range end, epoch ms")
    metrics: List[Dict[str, Any]] = Field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class TagsRequest(BaseModel):
    """Body of ``/api/v1/datapoints/query/tags``"""

    start_absolute: int
    end_absolute: Optional[int] = None
    metrics: List[Dict[str, Any]]

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


# Responses


class GroupByResult(BaseModel):
    """Grouping metadata attached to one result group"""

    model_config = _LENIENT

    name: str = ""
    tags: Optional[List[str]] = None
    group: Dict[str, Any] = Field(default_factory=dict)
    group_count: Optional[int] = None


class ResultGroup(BaseModel):
    """One series returned by KairosDB for a query position"""

    model_config = _LENIENT

    name: str = ""
    group_by: List[GroupByResult] = Field(default_factory=list)
    tags: Dict[str, List[str]] = Field(default_factory=dict)
    values: List[Any] = Field(default_factory=list)

    @field_validator("group_by", "values", mode="before")
    @classmethod
    def _none_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("tags", mode="before")
    @classmethod
    def _none_tags(cls, v: Any) -> Any:
        if not v:
            return {}
        return {
            k: [str(x) for x in vals] if isinstance(vals, list) else [str(vals)]
            for k, vals in v.items()
        }


class QueryResultSet(BaseModel):
    """Results for one position of the batch"""

    model_config = _LENIENT

    sample_size: int = 0
    results: List[ResultGroup] = Field(default_factory=list)

    @field_validator("results", mode="before")
    @classmethod
    def _none_results(cls, v: Any) -> Any:
        return [] if v is None else v


class DatapointsResponse(BaseModel):
    """Response of ``/api/v1/datapoints/query`` and ``.../query/tags``"""

    model_config = _LENIENT

    queries: List[QueryResultSet] = Field(default_factory=list)

    @field_validator("queries", mode="before")
    @classmethod
    def _none_queries(cls, v: Any) -> Any:
        return [] if v is None else v


class MetricNamesResponse(BaseModel):
    """Response of ``/api/v1/metricnames``"""

    model_config = _LENIENT

    results: List[str] = Field(default_factory=list)


class VersionResponse(BaseModel):
    """Response of ``/api/v1/version``"""

    model_config = _LENIENT

    version: str = ""


class ErrorBody(BaseModel):
    """Error body returned by KairosDB on 4xx/5xx"""

    model_config = _LENIENT

    errors: List[str] = Field(default_factory=list)
