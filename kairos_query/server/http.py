"""HTTP server exposing KairosDB panel queries via FastAPI.

Endpoints are a thin transport over :class:`~kairos_query.datasource.KairosDBDataSource`.
Authentication and CORS are configurable via environment variables
(``KAIROS_QUERY_HTTP_TOKEN``, ``KAIROS_QUERY_CORS_ORIGINS``).
"""

from __future__ import annotations

import importlib
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from .. import __query_protocol_version__, __version__
from ..adapters import log_adapter_status
from ..config.models import AppConfig, EnvSettings
from ..datasource import ConnectionStatus, KairosDBDataSource, QueryOptions
from ..domain.models import QueryResult
from ..errors import TargetValidationError
from ..observability import setup_logging
from ..utils.correlation import get_request_id, new_request_id, set_request_id
from .app import QueryServer

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):  # pylint: disable=too-few-public-methods
    """Assign a correlation id to every request and log its outcome."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        req_id = new_request_id(request.headers.get("x-correlation-id"))
        set_request_id(req_id)
        response = await call_next(request)
        response.headers["x-correlation-id"] = req_id
        if request.url.path.startswith("/api"):
            logger.info(
                "http.request.completed",
                extra={
                    "req_id": req_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": round((time.time() - start_time) * 1000, 1),
                },
            )
        return response


class HealthResponse(BaseModel):
    """Simple health/readiness response model."""

    status: str


class ErrorResponse(BaseModel):
    """Structured JSON error response for HTTP endpoints.

    Fields
    ------
    detail: str
        Human-readable explanation of the error.
    error_type: str
        Machine-readable error classification.
    available_options: list[str] | None
        Optional list of valid options when the error is about an invalid
        input value (e.g., unknown datasource id).
    """

    detail: str = Field(..., description="Human-readable error detail")
    error_type: str = Field(..., description="Machine-readable error type")
    available_options: Optional[List[str]] = Field(
        default=None, description="Optional list of valid alternative options"
    )


class QueryRequest(QueryOptions):
    """Body of ``POST /api/query``."""

    datasource: Optional[str] = Field(None, description="Configured datasource id")


class VariableRequest(BaseModel):
    """Body of ``POST /api/variable``."""

    model_config = ConfigDict(populate_by_name=True)

    datasource: Optional[str] = None
    query: str
    scoped_vars: Dict[str, Any] = Field(default_factory=dict, alias="scopedVars")


class VariableResponse(BaseModel):
    options: List[Dict[str, str]]


class MetricsResponse(BaseModel):
    metrics: List[str]


class InfoResponse(BaseModel):
    version: str
    query_protocol_version: str
    datasources: List[str]


def _load_fastapi():
    """Dynamically import FastAPI pieces."""
    fastapi_mod = importlib.import_module("fastapi")
    cors_mod = importlib.import_module("fastapi.middleware.cors")
    exc_mod = importlib.import_module("fastapi.exceptions")
    resp_mod = importlib.import_module("fastapi.responses")
    st_exc_mod = importlib.import_module("starlette.exceptions")
    return {
        "fastapi_cls": getattr(fastapi_mod, "FastAPI"),
        "depends": getattr(fastapi_mod, "Depends"),
        "header": getattr(fastapi_mod, "Header"),
        "http_exc": getattr(fastapi_mod, "HTTPException"),
        "status": getattr(fastapi_mod, "status"),
        "cors_mw": getattr(cors_mod, "CORSMiddleware"),
        "validation_exc": getattr(exc_mod, "RequestValidationError"),
        "json_response": getattr(resp_mod, "JSONResponse"),
        "starlette_http_exc": getattr(st_exc_mod, "HTTPException"),
    }


def _apply_cors(app: Any, cors_middleware_cls: Any, settings: EnvSettings) -> None:
    """Enable CORS if KAIROS_QUERY_CORS_ORIGINS is set."""
    allow_origins = settings.cors_origin_list()
    if allow_origins:
        app.add_middleware(
            cors_middleware_cls,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )


def _get_expected_token() -> Optional[str]:
    """Return expected bearer token from environment, or ``None`` if disabled.

    Environment variable: ``KAIROS_QUERY_HTTP_TOKEN``.
    """
    token = EnvSettings().http_token
    return token if token else None


def _make_auth_dependency(header: Any, http_exc: Any, status_mod: Any):
    """Return a dependency function that enforces optional bearer token."""

    def _auth_dependency(authorization: Optional[str] = header(default=None)) -> None:
        expected = _get_expected_token()
        if expected is None:
            return
        if not authorization or not authorization.startswith("Bearer "):
            raise http_exc(status_code=status_mod.HTTP_401_UNAUTHORIZED)
        token = authorization.split(" ", 1)[1]
        if token != expected:
            raise http_exc(status_code=status_mod.HTTP_403_FORBIDDEN)

    return _auth_dependency


def _resolve(server: QueryServer, source_id: Optional[str], http_exc: Any) -> KairosDBDataSource:
    try:
        return server.datasource(source_id)
    except KeyError:
        err = ErrorResponse(
            detail=f"Unknown datasource: {source_id or '(default)'}",
            error_type="unknown_datasource",
            available_options=server.source_ids(),
        )
        raise http_exc(status_code=404, detail=err.model_dump())


def _register_health(app: Any, server: QueryServer) -> None:
    """Register health and readiness endpoints."""

    @app.get("/health", response_model=HealthResponse, summary="Liveness probe")
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/ready", response_model=HealthResponse, summary="Readiness probe")
    async def ready() -> HealthResponse:
        if not server.source_ids():
            return HealthResponse(status="not_configured")
        return HealthResponse(status="ready")

    @app.get("/api/info", response_model=InfoResponse, summary="Server information")
    async def info() -> InfoResponse:
        return InfoResponse(
            version=__version__,
            query_protocol_version=__query_protocol_version__,
            datasources=server.source_ids(),
        )


def _register_query(app: Any, server: QueryServer, depends: Any, http_exc: Any, auth_dep: Any) -> None:
    """Register the query, variable, metric lookup and connection test routes."""

    @app.post(
        "/api/query",
        response_model=QueryResult,
        dependencies=[depends(auth_dep)],
        summary="Run a panel query",
    )
    async def api_query(req: QueryRequest) -> QueryResult:
        datasource = _resolve(server, req.datasource, http_exc)
        try:
            return await datasource.query(req)
        except TargetValidationError as exc:
            err = ErrorResponse(detail=exc.reason, error_type="target_validation_error")
            raise http_exc(status_code=400, detail=err.model_dump())

    @app.post(
        "/api/variable",
        response_model=VariableResponse,
        dependencies=[depends(auth_dep)],
        summary="Resolve a dashboard variable query",
    )
    async def api_variable(req: VariableRequest) -> VariableResponse:
        datasource = _resolve(server, req.datasource, http_exc)
        options = await datasource.metric_find_query(req.query, req.scoped_vars)
        return VariableResponse(options=options)

    @app.get(
        "/api/metrics",
        response_model=MetricsResponse,
        dependencies=[depends(auth_dep)],
        summary="Search metric names",
    )
    async def api_metrics(q: str = "", datasource: Optional[str] = None) -> MetricsResponse:
        ds = _resolve(server, datasource, http_exc)
        return MetricsResponse(metrics=await ds.metric_names(q))

    @app.get(
        "/api/test",
        response_model=ConnectionStatus,
        dependencies=[depends(auth_dep)],
        summary="Check connectivity to KairosDB",
    )
    async def api_test(datasource: Optional[str] = None) -> ConnectionStatus:
        return await _resolve(server, datasource, http_exc).test_connection()


def _configure_from_env(server: QueryServer, settings: EnvSettings) -> None:
    cfg_path = Path(settings.config) if settings.config else None
    if cfg_path is None:
        log_adapter_status()
        return
    if not cfg_path.exists():
        logger.warning("config.not_found", extra={"path": str(cfg_path)})
        return
    try:
        cfg = AppConfig.load(cfg_path)
    except (OSError, ValueError, ValidationError) as exc:
        logger.error("config.load_failed", extra={"path": str(cfg_path), "error": str(exc)})
        return
    initialized = server.configure(cfg)
    logger.info("config.loaded", extra={"path": str(cfg_path), "datasources": initialized})
    log_adapter_status()


def create_app(server: Optional[QueryServer] = None):
    """Create and configure the FastAPI application.

    Parameters
    ----------
    server: Optional[QueryServer]
        Pre-configured runtime (used by tests). When omitted, datasources
        are loaded from the file named by ``KAIROS_QUERY_CONFIG``.
    """
    settings = EnvSettings()
    # Respect prior logging configuration from CLI; otherwise use env setting
    if not logging.getLogger().hasHandlers():
        setup_logging(settings.log_level)
    parts = _load_fastapi()
    if server is None:
        server = QueryServer()
        _configure_from_env(server, settings)

    @asynccontextmanager
    async def lifespan(_app: Any):
        logger.info("http.startup")
        await server.start()
        try:
            yield
        finally:
            logger.info("http.shutdown")
            await server.stop()

    app = parts["fastapi_cls"](
        title="KairosDB Query Server", version=__version__, lifespan=lifespan
    )
    jr = parts["json_response"]

    @app.exception_handler(parts["validation_exc"])
    async def validation_exception_handler(_request: Any, exc: Exception):  # noqa: D401
        err = ErrorResponse(detail=str(exc), error_type="validation_error")
        return jr(status_code=400, content={"detail": err.model_dump()})

    @app.exception_handler(parts["starlette_http_exc"])
    async def http_exception_handler(_request: Any, exc: Any):  # noqa: D401
        # Pass through existing HTTP errors but ensure structured payload
        detail = getattr(exc, "detail", "")
        if isinstance(detail, dict) and {"detail", "error_type"} <= detail.keys():
            payload = {"detail": detail}
        else:
            payload = {
                "detail": ErrorResponse(
                    detail=str(detail) or "HTTP error", error_type="http_error"
                ).model_dump()
            }
        return jr(status_code=exc.status_code, content=payload)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Any, exc: Exception):  # noqa: D401
        # Avoid leaking internals; log server-side, return generic error
        logger.error("http.unhandled_exception", exc_info=exc, extra={"req_id": get_request_id()})
        err = ErrorResponse(
            detail="Internal error. See server logs for request id.",
            error_type="internal_server_error",
        )
        return jr(status_code=500, content={"detail": err.model_dump()})

    _ = (validation_exception_handler, http_exception_handler, unhandled_exception_handler)

    app.add_middleware(RequestLoggingMiddleware)
    _apply_cors(app, parts["cors_mw"], settings)
    auth_dep = _make_auth_dependency(parts["header"], parts["http_exc"], parts["status"])
    _register_health(app, server)
    _register_query(app, server, parts["depends"], parts["http_exc"], auth_dep)
    return app
