"""
Tests for the KairosDB datasource facade.
"""

from __future__ import annotations

import pytest

from kairos_query.config.models import DataSourceConfig
from kairos_query.datasource import KairosDBDataSource, QueryOptions, parse_search_query
from kairos_query.errors import DispatchError, TargetValidationError

from fakes import FakeAdapter, echo_response

RANGE = {"from": 1_000, "to": 2_000}


def _datasource(adapter: FakeAdapter, **settings) -> KairosDBDataSource:
    return KairosDBDataSource(adapter, DataSourceConfig(endpoint="http://kairos", **settings))


# ============================================================================
# Panel queries
# ============================================================================


@pytest.mark.asyncio
async def test_query_end_to_end():
    """Targets are materialized, dispatched and reshaped."""
    adapter = FakeAdapter(datapoints=echo_response)
    ds = _datasource(adapter)
    result = await ds.query(
        {
            "targets": [{"metricName": "loc/$loc/temp", "alias": "$loc", "refId": "A"}],
            "range": RANGE,
            "interval": "1m",
            "scopedVars": {"loc": ["Attic", "Office"]},
        }
    )
    assert result.error is None
    assert [s.name for s in result.data] == ["Attic", "Office"]
    assert adapter.requests[0]["start_absolute"] == 1_000
    assert adapter.requests[0]["end_absolute"] == 2_000


@pytest.mark.asyncio
async def test_query_snaps_display_interval():
    """Auto-sampled aggregators use the snapped interval."""
    adapter = FakeAdapter(datapoints=echo_response)
    ds = _datasource(adapter, snap_to_intervals="1m,5m,1h")
    await ds.query(
        QueryOptions.model_validate(
            {
                "targets": [
                    {
                        "metricName": "cpu",
                        "aggregators": [
                            {
                                "name": "avg",
                                "parameters": [
                                    {"name": "value", "type": "sampling", "value": 1},
                                    {"name": "unit", "type": "sampling_unit", "value": "minutes"},
                                ],
                                "autoValueSwitch": {
                                    "enabled": True,
                                    "dependentParameters": ["sampling", "sampling_unit"],
                                },
                            }
                        ],
                    }
                ],
                "range": RANGE,
                "interval": "2m",
            }
        )
    )
    sampling = adapter.requests[0]["metrics"][0]["aggregators"][0]["sampling"]
    assert sampling == {"value": 5, "unit": "minutes"}


@pytest.mark.asyncio
async def test_query_without_range_or_targets_is_empty():
    """Nothing is dispatched without a range or a queryable target."""
    adapter = FakeAdapter(datapoints=echo_response)
    ds = _datasource(adapter)
    assert (await ds.query({"targets": [{"metricName": "x"}]})).data == []
    result = await ds.query(
        {"targets": [{"metricName": ""}, {"metricName": "y", "hide": True}], "range": RANGE}
    )
    assert result.data == [] and result.error is None
    assert adapter.requests == []


@pytest.mark.asyncio
async def test_query_dispatch_failure_is_reported():
    """A failed dispatch becomes an error, distinct from empty data."""
    adapter = FakeAdapter()
    adapter.error = DispatchError("KairosDB server internal error (500).", 500)
    result = await _datasource(adapter).query(
        {"targets": [{"metricName": "x"}], "range": RANGE}
    )
    assert result.data == []
    assert result.error is not None
    assert result.error.status == 500


@pytest.mark.asyncio
async def test_query_enforces_scalar_policy():
    """Policy violations are raised before anything is sent."""
    adapter = FakeAdapter(datapoints=echo_response)
    ds = _datasource(adapter, enforce_scalar_setting=True)
    with pytest.raises(TargetValidationError):
        await ds.query({"targets": [{"metricName": "x", "refId": "Z"}], "range": RANGE})
    assert adapter.requests == []


@pytest.mark.asyncio
async def test_query_migrates_legacy_targets():
    """Stored legacy targets are converted before materialization."""
    adapter = FakeAdapter(datapoints=echo_response)
    result = await _datasource(adapter).query(
        {"targets": [{"metric": "legacy.metric", "refId": "L"}], "range": RANGE}
    )
    assert adapter.requests[0]["metrics"] == [{"name": "legacy.metric"}]
    assert result.data[0].ref_id == "L"


@pytest.mark.asyncio
async def test_query_skips_unreadable_targets():
    """Targets that are not objects are dropped and the rest still run."""
    adapter = FakeAdapter(datapoints=echo_response)
    result = await _datasource(adapter).query(
        {
            "targets": ["garbage", 42, None, {"metricName": "ok.metric", "refId": "A"}],
            "range": RANGE,
        }
    )
    assert result.error is None
    assert adapter.requests[0]["metrics"] == [{"name": "ok.metric"}]
    assert [s.ref_id for s in result.data] == ["A"]


# ============================================================================
# Metric name lookups
# ============================================================================


def test_parse_search_query():
    """A caret selects prefix mode."""
    assert parse_search_query("^sys") == (True, "sys")
    assert parse_search_query("cpu") == (False, "cpu")
    assert parse_search_query(None) == (False, "")


@pytest.mark.asyncio
async def test_metric_names_filters_suffixes_and_terms():
    """Ignored suffixes are hidden and the term is matched anywhere."""
    adapter = FakeAdapter(names=["cpu.user", "cpu.user_1h", "sys.cpu", "mem"])
    ds = _datasource(adapter)
    assert await ds.metric_names("CPU") == ["cpu.user", "sys.cpu"]
    assert adapter.name_prefixes == [None]


@pytest.mark.asyncio
async def test_metric_names_prefix_mode_uses_server_prefix():
    """Prefix searches of two or more characters go to the server."""
    adapter = FakeAdapter(names=["sys.cpu", "sys.mem", "cpu.sys"])
    ds = _datasource(adapter)
    assert await ds.metric_names("^sys") == ["sys.cpu", "sys.mem"]
    assert await ds.metric_names("^s") == ["sys.cpu", "sys.mem"]
    assert adapter.name_prefixes == ["sys", None]


@pytest.mark.asyncio
async def test_metric_names_are_cached_and_truncated():
    """Repeated lookups hit the cache; results are capped."""
    adapter = FakeAdapter(names=[f"m{i}" for i in range(5)])
    ds = _datasource(adapter, autocomplete_max_metrics=3)
    assert await ds.metric_names() == ["m0", "m1", "m2"]
    assert await ds.metric_names() == ["m0", "m1", "m2"]
    assert await ds.metric_names("m") == ["m0", "m1", "m2"]
    assert adapter.name_prefixes == [None]


@pytest.mark.asyncio
async def test_metric_names_failure_yields_empty_list():
    """Lookup failures are not raised."""
    adapter = FakeAdapter()
    adapter.error = DispatchError("down")
    assert await _datasource(adapter).metric_names("x") == []


# ============================================================================
# Tags, variables and connectivity
# ============================================================================


@pytest.mark.asyncio
async def test_metric_tags_sends_filters():
    """Tag lookups carry the optional filters."""
    adapter = FakeAdapter(tags={"host": ["a", "b"]})
    tags = await _datasource(adapter).metric_tags("cpu", {"dc": ["eu"], "empty": []})
    assert tags == {"host": ["a", "b"]}
    assert adapter.tag_requests[0]["metrics"] == [{"name": "cpu", "tags": {"dc": ["eu"]}}]


@pytest.mark.asyncio
async def test_metric_find_query_falls_back_to_metric_search():
    """Plain text is treated as a metric name filter."""
    adapter = FakeAdapter(names=["cpu", "mem"])
    options = await _datasource(adapter).metric_find_query("me")
    assert options == [{"text": "mem", "value": "mem"}]


@pytest.mark.asyncio
async def test_connection_status():
    """Connectivity checks report the server version or the error."""
    adapter = FakeAdapter(version="1.3.0")
    ds = _datasource(adapter)
    status = await ds.test_connection()
    assert status.status == "success"
    assert status.message == "Successfully connected to KairosDB version 1.3.0"

    adapter.error = DispatchError("Cannot connect to KairosDB.")
    status = await ds.test_connection()
    assert status.status == "error"
    assert status.message == "Cannot connect to KairosDB."
