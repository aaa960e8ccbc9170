"""Config models and loader.

This module defines Pydantic models for file- and environment-based
configuration. JSON parsing prefers `orjson` when available for speed and
lower memory usage, but falls back to the Python standard library's `json`
module so that `orjson` stays optional.
"""

from __future__ import annotations

import json as _json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

try:
    import orjson as _orjson_mod  # type: ignore[assignment]
except ImportError:  # pragma: no cover - optional dependency
    _orjson_mod = None  # type: ignore[assignment]
    _loads_orjson: Optional[Callable[[bytes], Any]] = None
else:

    def _loads_orjson(buf: bytes) -> Any:
        loader = getattr(_orjson_mod, "loads")  # type: ignore[assignment]
        return loader(buf)


from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..domain.utils.units import DEFAULT_SNAP_INTERVALS


class DataSourceConfig(BaseModel):
    """Configuration for a single KairosDB datasource.

    Attributes
    ----------
    endpoint: str
        Base URL of the KairosDB REST API.
    api_key: Optional[str]
        Optional bearer token sent to KairosDB (or a proxy in front of it).
    timeout_seconds: int
        HTTP request timeout in seconds for adapter operations.
    snap_to_intervals: Optional[str]
        Comma-separated list of allowed display intervals (e.g. ``1m,5m,1h``).
        The panel interval is rounded up to the nearest entry; an empty
        string disables snapping.
    enforce_scalar_setting: bool
        Reject visible targets without a scalar aggregator unless the target
        sets ``overrideScalar``.
    metric_suffixes_to_ignore: str
        Comma-separated metric name suffixes hidden from metric name lookups.
    """

    endpoint: str = Field(..., description="KairosDB base URL")
    api_key: Optional[str] = Field(None, description="Authentication token")
    timeout_seconds: int = Field(30, ge=1)
    max_retries: int = Field(1, ge=0, description="Number of retry attempts")
    backoff_initial_ms: int = Field(
        200, ge=0, description="Initial backoff in milliseconds"
    )
    backoff_multiplier: float = Field(
        2.0, ge=1.0, description="Backoff multiplier per attempt"
    )
    snap_to_intervals: Optional[str] = Field(
        DEFAULT_SNAP_INTERVALS, description="Allowed display intervals"
    )
    enforce_scalar_setting: bool = Field(
        False, description="Require a scalar aggregator on every visible target"
    )
    metric_suffixes_to_ignore: str = Field(
        "_1h,_1d", description="Metric name suffixes hidden from lookups"
    )
    autocomplete_max_metrics: int = Field(
        1000, ge=1, description="Maximum metric names returned by a lookup"
    )
    metric_names_cache_ttl_seconds: int = Field(
        300, ge=0, description="Lifetime of cached metric name lists"
    )

    @field_validator("endpoint")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def ignored_suffixes(self) -> List[str]:
        return [s.strip() for s in self.metric_suffixes_to_ignore.split(",") if s.strip()]


class AppConfig(BaseModel):
    """Top-level application configuration.

    Attributes
    ----------
    datasources: Dict[str, DataSourceConfig]
        Mapping from logical `source_id` to connection settings.
    default_datasource: Optional[str]
        Datasource used when a request does not name one. Defaults to the
        first configured datasource.
    """

    datasources: Dict[str, DataSourceConfig] = Field(default_factory=dict)
    default_datasource: Optional[str] = None

    @staticmethod
    def load(path: Path) -> "AppConfig":
        """Load application config from a JSON file."""
        raw = path.read_bytes()
        if _loads_orjson is not None:
            data = _loads_orjson(raw)
        else:
            data = _json.loads(raw.decode("utf-8"))
        return AppConfig.model_validate(data)

    def default_source_id(self) -> Optional[str]:
        if self.default_datasource:
            return self.default_datasource
        return next(iter(self.datasources), None)


class EnvSettings(BaseSettings):
    """Environment-driven settings and .env support.

    Attributes
    ----------
    log_level: str
        Logging level name (e.g., "DEBUG", "INFO"). Defaults to "INFO".
    config: Optional[str]
        Path to the JSON :class:`AppConfig` file.
    http_token: Optional[str]
        Bearer token required on ``/api`` routes; unset disables auth.
    cors_origins: str
        Comma-separated allowed CORS origins; empty disables CORS.
    """

    model_config = SettingsConfigDict(env_file=".env", env_prefix="KAIROS_QUERY_")

    log_level: str = Field("INFO")
    config: Optional[str] = Field(None, description="Path to the JSON config file")
    http_token: Optional[str] = Field(None, description="Bearer token for /api routes")
    cors_origins: str = Field("", description="Comma-separated CORS origins")

    def cors_origin_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
