"""KairosDB REST adapter.

This adapter owns the transport concerns of talking to a KairosDB server
(base URL, headers, timeouts, retries) and exposes typed operations that
return validated Pydantic models. Every failure reaching the caller is a
:class:`~kairos_query.errors.DispatchError` carrying a user-facing message.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..errors import DispatchError, status_message
from ..schemas.kairosdb import (
    DatapointsRequest,
    DatapointsResponse,
    MetricNamesResponse,
    TagsRequest,
    VersionResponse,
)
from ..utils.correlation import get_request_id

logger = logging.getLogger(__name__)

DATAPOINTS_PATH = "/api/v1/datapoints/query"
TAGS_PATH = "/api/v1/datapoints/query/tags"
METRIC_NAMES_PATH = "/api/v1/metricnames"
VERSION_PATH = "/api/v1/version"

_RETRY_STATUSES = (429, 502, 503)


def _body_of(response: Any) -> Any:
    try:
        return response.json()
    except ValueError:
        text = getattr(response, "text", "") or ""
        return text if len(text) <= 500 else text[:500] + "..."


class KairosDBAdapter:
    """Async client for the KairosDB REST API.

    Parameters
    ----------
    endpoint: str
        Base URL of the KairosDB server (e.g., "http://localhost:8080").
    api_key: Optional[str]
        Optional bearer token for a proxy in front of KairosDB.
    timeout: int
        Request timeout in seconds for all HTTP operations.

    Attributes
    ----------
    _client: httpx.AsyncClient
        Shared async client configured with base URL, timeout, and headers.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: Optional[str] = None,
        timeout: int = 30,
        *,
        max_retries: int = 1,
        backoff_initial_ms: int = 200,
        backoff_multiplier: float = 2.0,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=endpoint, timeout=timeout, headers=self._headers(api_key)
        )
        self._endpoint = endpoint
        self._max_retries = max(0, int(max_retries))
        self._backoff_initial_ms = max(0, int(backoff_initial_ms))
        self._backoff_multiplier = max(1.0, float(backoff_multiplier))
        self._timeout_seconds = timeout
        logger.info(
            "kairosdb.adapter.init",
            extra={"endpoint": endpoint, "timeout_seconds": timeout},
        )

    @property
    def endpoint(self) -> str:
        return self._endpoint

    def inject_http_client_for_testing(self, client: Any) -> None:
        """Replace underlying HTTP client (testing only).

        This allows unit tests to provide a mock compatible with ``post()``
        and ``get()``.
        """
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _headers(api_key: Optional[str]) -> dict:
        """Build default headers.

        Parameters
        ----------
        api_key: Optional[str]
            Bearer token to attach as an Authorization header.

        Returns
        -------
        dict
            A dictionary of HTTP headers suitable for JSON requests.
        """
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def _delay(self, attempt: int) -> float:
        return (self._backoff_initial_ms / 1000.0) * (self._backoff_multiplier**attempt)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send a request and return the parsed JSON body.

        Connection errors, read timeouts and 429/502/503 responses are
        retried up to ``max_retries`` times with exponential backoff.

        Raises
        ------
        DispatchError
            On transport errors, non-2xx responses, or a non-JSON body.
        """
        logger.debug(
            "kairosdb.http.request",
            extra={"req_id": get_request_id(), "method": method, "path": path},
        )
        attempt = 0
        while True:
            try:
                if method == "POST":
                    resp = await self._client.post(path, json=payload)
                elif params:
                    resp = await self._client.get(path, params=params)
                else:
                    resp = await self._client.get(path)
                resp.raise_for_status()
                break
            except (httpx.ReadTimeout, httpx.ConnectError) as exc:
                logger.warning(
                    "kairosdb.http.transport_error",
                    extra={
                        "path": path,
                        "attempt": attempt + 1,
                        "max_retries": self._max_retries,
                        "timeout_seconds": self._timeout_seconds,
                        "error": type(exc).__name__,
                    },
                )
                if attempt >= self._max_retries:
                    raise DispatchError(status_message(None)) from exc
                await asyncio.sleep(self._delay(attempt))
                attempt += 1
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if status in _RETRY_STATUSES and attempt < self._max_retries:
                    await asyncio.sleep(self._delay(attempt))
                    attempt += 1
                    continue
                body = _body_of(exc.response)
                logger.error(
                    "kairosdb.http.status_error",
                    extra={
                        "req_id": get_request_id(),
                        "path": path,
                        "status": status,
                        "body_preview": str(body)[:500],
                    },
                )
                raise DispatchError(status_message(status, body), status, body) from exc
            except httpx.HTTPError as exc:
                logger.error(
                    "kairosdb.http.error",
                    extra={"req_id": get_request_id(), "path": path, "error": str(exc)},
                )
                raise DispatchError(status_message(None)) from exc

        try:
            data = resp.json()
        except ValueError as exc:
            raise DispatchError(
                "KairosDB returned a response that is not valid JSON.",
                resp.status_code,
            ) from exc
        logger.debug(
            "kairosdb.http.response",
            extra={"req_id": get_request_id(), "path": path, "status_code": resp.status_code},
        )
        return data

    async def _post_json(self, path: str, payload: Dict[str, Any]) -> Any:
        return await self._request("POST", path, payload=payload)

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("GET", path, params=params)

    @staticmethod
    def _validate(model: Any, data: Any, path: str) -> Any:
        try:
            return model.model_validate(data or {})
        except ValidationError as exc:
            logger.error(
                "kairosdb.response.invalid",
                extra={"path": path, "errors": exc.error_count()},
            )
            raise DispatchError(
                f"KairosDB returned an unexpected response from {path}."
            ) from exc

    async def query_datapoints(self, request: DatapointsRequest) -> DatapointsResponse:
        """Send a batch datapoints query.

        Parameters
        ----------
        request: DatapointsRequest
            Batch body; ``metrics`` order is preserved in the response.

        Returns
        -------
        DatapointsResponse
            One result set per metric, in request order.
        """
        data = await self._post_json(DATAPOINTS_PATH, request.to_wire())
        return self._validate(DatapointsResponse, data, DATAPOINTS_PATH)

    async def query_tags(self, request: TagsRequest) -> DatapointsResponse:
        """Query the tag names and values recorded for metrics."""
        data = await self._post_json(TAGS_PATH, request.to_wire())
        return self._validate(DatapointsResponse, data, TAGS_PATH)

    async def metric_names(self, prefix: Optional[str] = None) -> List[str]:
        """List metric names, optionally restricted server-side by prefix."""
        params = {"prefix": prefix} if prefix else None
        data = await self._get_json(METRIC_NAMES_PATH, params)
        return list(self._validate(MetricNamesResponse, data, METRIC_NAMES_PATH).results)

    async def version(self) -> str:
        data = await self._get_json(VERSION_PATH)
        return self._validate(VersionResponse, data, VERSION_PATH).version
