"""Test HTTP endpoint functionality."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from kairos_query.config.models import DataSourceConfig
from kairos_query.server.app import QueryServer
from kairos_query.server.http import create_app

from fakes import FakeAdapter, echo_response

QUERY = {
    "targets": [{"metricName": "cpu.usage", "refId": "A", "alias": "cpu"}],
    "range": {"from": 1000, "to": 2000},
    "interval": "1m",
}


@pytest.fixture
def adapter():
    """Fake KairosDB transport shared by the app and the assertions."""
    return FakeAdapter(
        datapoints=echo_response,
        tags={"host": ["web01", "web02"]},
        names=["cpu.usage", "mem.used"],
        version="1.3.0",
    )


@pytest.fixture
def server(adapter):
    """Server runtime with one configured datasource."""
    srv = QueryServer()
    srv.add_datasource("prod", DataSourceConfig(endpoint="http://kairos"), adapter=adapter)
    return srv


@pytest.fixture
def client(server):
    """Create a test client for the FastAPI app."""
    with patch.dict(os.environ, {}, clear=True):
        app = create_app(server)
    return TestClient(app)


def test_health_endpoint_no_auth(client):
    """Test that /health endpoint works without authentication."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_ready_reports_configuration(client):
    """/ready reflects whether any datasource is configured."""
    assert client.get("/ready").json() == {"status": "ready"}
    with patch.dict(os.environ, {}, clear=True):
        empty = TestClient(create_app(QueryServer()))
    assert empty.get("/ready").json() == {"status": "not_configured"}


def test_info_lists_datasources(client):
    """/api/info exposes versions and datasource ids."""
    body = client.get("/api/info").json()
    assert body["datasources"] == ["prod"]
    assert body["version"]


def test_query_endpoint_returns_series(client, adapter):
    """A panel query returns emitted series."""
    response = client.post("/api/query", json=QUERY)
    assert response.status_code == 200
    body = response.json()
    assert body["error"] is None
    assert body["data"][0]["name"] == "cpu"
    assert body["data"][0]["ref_id"] == "A"
    assert body["data"][0]["kind"] == "timeseries"
    assert adapter.requests[0]["metrics"][0]["name"] == "cpu.usage"
    assert response.headers["x-correlation-id"]


def test_query_endpoint_reports_dispatch_error(client, adapter):
    """Dispatch failures come back as a 200 with an error message."""
    from kairos_query.errors import DispatchError

    adapter.error = DispatchError("Cannot connect to KairosDB.")
    body = client.post("/api/query", json=QUERY).json()
    assert body["data"] == []
    assert body["error"]["message"] == "Cannot connect to KairosDB."


def test_query_endpoint_validation_policy(adapter):
    """Scalar policy violations are returned as 400."""
    srv = QueryServer()
    srv.add_datasource(
        "strict",
        DataSourceConfig(endpoint="http://kairos", enforce_scalar_setting=True),
        adapter=adapter,
    )
    with patch.dict(os.environ, {}, clear=True):
        strict = TestClient(create_app(srv))
    response = strict.post("/api/query", json=QUERY)
    assert response.status_code == 400
    assert response.json()["detail"]["error_type"] == "target_validation_error"


def test_unknown_datasource(client):
    """Unknown datasource ids list the valid ones."""
    response = client.post("/api/query", json={**QUERY, "datasource": "nope"})
    assert response.status_code == 404
    detail = response.json()["detail"]
    assert detail["error_type"] == "unknown_datasource"
    assert detail["available_options"] == ["prod"]


def test_malformed_body_is_400(client):
    """Request validation errors use the structured error payload."""
    response = client.post("/api/query", json={"targets": "not-a-list"})
    assert response.status_code == 400
    assert response.json()["detail"]["error_type"] == "validation_error"


def test_variable_endpoint(client):
    """Variable queries return text/value options."""
    response = client.post("/api/variable", json={"query": "tag_values(cpu.usage, host)"})
    assert response.status_code == 200
    assert response.json() == {
        "options": [
            {"text": "web01", "value": "web01"},
            {"text": "web02", "value": "web02"},
        ]
    }


def test_metrics_endpoint(client):
    """Metric search filters names."""
    response = client.get("/api/metrics", params={"q": "mem"})
    assert response.json() == {"metrics": ["mem.used"]}


def test_connection_test_endpoint(client):
    """/api/test reports connectivity."""
    body = client.get("/api/test").json()
    assert body == {
        "status": "success",
        "message": "Successfully connected to KairosDB version 1.3.0",
    }


def test_protected_endpoint_requires_auth(client):
    """/api routes require the bearer token when one is configured."""
    with patch.dict(os.environ, {"KAIROS_QUERY_HTTP_TOKEN": "test-token"}):
        assert client.post("/api/query", json=QUERY).status_code == 401
        wrong = client.post(
            "/api/query", json=QUERY, headers={"Authorization": "Bearer nope"}
        )
        assert wrong.status_code == 403
        ok = client.post(
            "/api/query", json=QUERY, headers={"Authorization": "Bearer test-token"}
        )
        assert ok.status_code == 200
        # Probes stay open
        assert client.get("/health").status_code == 200
