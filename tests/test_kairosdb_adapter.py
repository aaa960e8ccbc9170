"""Adapter tests with mocked HTTP.

These tests validate that the KairosDBAdapter serializes requests, parses
responses and maps failures to dispatch errors without a live KairosDB.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx
import pytest

from kairos_query.adapters.kairosdb import KairosDBAdapter
from kairos_query.errors import DispatchError
from kairos_query.schemas.kairosdb import DatapointsRequest, TagsRequest


class _MockResponse:
    """Minimal response object exposing raise_for_status/json methods."""

    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = "" if payload is None else str(payload)

    def raise_for_status(self) -> None:
        """Raise like httpx for non-2xx statuses."""
        if self.status_code >= 400:
            request = httpx.Request("GET", "http://kairos")
            raise httpx.HTTPStatusError(
                f"HTTP {self.status_code}", request=request, response=self  # type: ignore[arg-type]
            )

    def json(self) -> Any:
        """Return the preconfigured JSON payload."""
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class _MockClient:
    """Tiny mock of httpx.AsyncClient replaying queued responses."""

    def __init__(self, *responses: Any) -> None:
        self._responses = list(responses)
        self.calls: List[Dict[str, Any]] = []

    def _next(self) -> _MockResponse:
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def post(self, path: str, json: Dict[str, Any]) -> _MockResponse:
        """Record the request and return the next response."""
        self.calls.append({"method": "POST", "path": path, "json": json})
        return self._next()

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> _MockResponse:
        """Record the request and return the next response."""
        self.calls.append({"method": "GET", "path": path, "params": params})
        return self._next()

    async def aclose(self) -> None:
        """No-op async close for API parity with httpx.AsyncClient."""
        return None


def _adapter(client: _MockClient, max_retries: int = 1) -> KairosDBAdapter:
    adapter = KairosDBAdapter("http://kairos", max_retries=max_retries, backoff_initial_ms=0)
    adapter.inject_http_client_for_testing(client)
    return adapter


@pytest.mark.asyncio
async def test_query_datapoints_round_trip() -> None:
    """The batch body is posted and the response parsed in order."""
    client = _MockClient(
        _MockResponse(
            {
                "queries": [
                    {"sample_size": 2, "results": [{"name": "a", "values": [[1, 2]]}]},
                    {"sample_size": 0, "results": []},
                ]
            }
        )
    )
    adapter = _adapter(client)
    request = DatapointsRequest(start_absolute=1, metrics=[{"name": "a"}, {"name": "b"}])
    resp = await adapter.query_datapoints(request)
    assert client.calls[0]["path"] == "/api/v1/datapoints/query"
    assert client.calls[0]["json"] == {
        "start_absolute": 1,
        "metrics": [{"name": "a"}, {"name": "b"}],
    }
    assert len(resp.queries) == 2
    assert resp.queries[0].results[0].values == [[1, 2]]


@pytest.mark.asyncio
async def test_query_tags_path() -> None:
    """Tag lookups use the tags endpoint."""
    client = _MockClient(
        _MockResponse({"queries": [{"results": [{"name": "m", "tags": {"host": ["a"]}}]}]})
    )
    resp = await _adapter(client).query_tags(
        TagsRequest(start_absolute=1, metrics=[{"name": "m"}])
    )
    assert client.calls[0]["path"] == "/api/v1/datapoints/query/tags"
    assert resp.queries[0].results[0].tags == {"host": ["a"]}


@pytest.mark.asyncio
async def test_metric_names_and_version() -> None:
    """GET endpoints pass the prefix only when given."""
    client = _MockClient(_MockResponse({"results": ["cpu", "mem"]}))
    adapter = _adapter(client)
    assert await adapter.metric_names("cp") == ["cpu", "mem"]
    assert client.calls[0] == {
        "method": "GET",
        "path": "/api/v1/metricnames",
        "params": {"prefix": "cp"},
    }
    await adapter.metric_names()
    assert client.calls[1]["params"] is None

    adapter.inject_http_client_for_testing(_MockClient(_MockResponse({"version": "KairosDB 1.3.0"})))
    assert await adapter.version() == "KairosDB 1.3.0"


@pytest.mark.asyncio
async def test_bad_request_surfaces_kairosdb_errors() -> None:
    """A 400 becomes a dispatch error carrying the KairosDB message."""
    client = _MockClient(_MockResponse({"errors": ["query.metric[0] invalid"]}, 400))
    with pytest.raises(DispatchError) as exc_info:
        await _adapter(client).query_datapoints(DatapointsRequest(start_absolute=1))
    assert exc_info.value.status == 400
    assert "query.metric[0] invalid" in exc_info.value.message
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_retryable_status_is_retried() -> None:
    """A 503 followed by success returns the successful payload."""
    client = _MockClient(_MockResponse({"errors": []}, 503), _MockResponse({"version": "1"}))
    assert await _adapter(client).version() == "1"
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_retries_exhausted_on_gateway_error() -> None:
    """Persistent 502s end in a gateway message after max retries."""
    client = _MockClient(_MockResponse(None, 502))
    with pytest.raises(DispatchError) as exc_info:
        await _adapter(client, max_retries=2).version()
    assert exc_info.value.status == 502
    assert "502 Bad Gateway" in exc_info.value.message
    assert len(client.calls) == 3


@pytest.mark.asyncio
async def test_connection_error_maps_to_cannot_connect() -> None:
    """Transport failures produce the connectivity message."""
    client = _MockClient(httpx.ConnectError("refused"))
    with pytest.raises(DispatchError) as exc_info:
        await _adapter(client, max_retries=0).metric_names()
    assert exc_info.value.status is None
    assert exc_info.value.message.startswith("Cannot connect to KairosDB")


@pytest.mark.asyncio
async def test_non_json_body_is_rejected() -> None:
    """A 200 response without JSON is a dispatch error."""
    client = _MockClient(_MockResponse(None, 200))
    with pytest.raises(DispatchError, match="not valid JSON"):
        await _adapter(client).version()


@pytest.mark.asyncio
async def test_unexpected_shape_is_rejected() -> None:
    """A body that does not validate is a dispatch error."""
    client = _MockClient(_MockResponse({"results": "not-a-list"}))
    with pytest.raises(DispatchError, match="unexpected response"):
        await _adapter(client).metric_names()


def test_headers_include_bearer_token() -> None:
    """The api key is sent as a bearer token."""
    headers = KairosDBAdapter._headers("secret")
    assert headers["Authorization"] == "Bearer secret"
    assert "Authorization" not in KairosDBAdapter._headers(None)
