"""
Tests for the aggregator catalog and parameter materialization.
"""

from kairos_query.domain.models import AggregatorSpec, ParameterKind
from kairos_query.request.aggregators import (
    available_aggregators,
    create_aggregator,
    get_definition,
    is_scalar,
    requires_sampling,
)
from kairos_query.request.parameters import alignment_flags, materialize


def _avg(enabled: bool, value="1", unit="minutes") -> AggregatorSpec:
    return AggregatorSpec.model_validate(
        {
            "name": "avg",
            "parameters": [
                {"name": "value", "type": "sampling", "value": value},
                {"name": "unit", "type": "sampling_unit", "value": unit},
            ],
            "autoValueSwitch": {
                "enabled": enabled,
                "dependentParameters": ["sampling", "sampling_unit"],
            },
        }
    )


# ============================================================================
# Catalog
# ============================================================================


def test_catalog_lists_known_aggregators():
    """Catalog names are sorted and include range and scalar aggregators."""
    names = available_aggregators()
    assert names == sorted(names, key=str.lower)
    for name in ("avg", "max", "merge", "percentile", "scale", "filter"):
        assert name in names


def test_range_aggregators_require_sampling():
    """Range aggregators take sampling; pointwise ones do not."""
    assert requires_sampling("avg") is True
    assert requires_sampling("percentile") is True
    assert requires_sampling("scale") is False
    assert requires_sampling("nope") is False


def test_merge_is_not_scalar():
    """Histogram merge keeps bins, every other catalog entry is scalar."""
    assert is_scalar("merge") is False
    assert is_scalar("avg") is True
    assert is_scalar("unknown") is False


def test_create_aggregator_defaults():
    """Range aggregators come with sampling defaults and auto-sampling on."""
    agg = create_aggregator("percentile")
    kinds = {p.name: p.type for p in agg.parameters}
    assert kinds == {
        "percentile": ParameterKind.LITERAL,
        "value": ParameterKind.SAMPLING,
        "unit": ParameterKind.SAMPLING_UNIT,
    }
    assert agg.auto_value_switch is not None
    assert agg.auto_value_switch.enabled is True
    assert get_definition("percentile").samples is True


def test_create_unknown_aggregator_has_no_parameters():
    """Unknown aggregators are created bare."""
    agg = create_aggregator("custom_thing")
    assert agg.name == "custom_thing"
    assert agg.parameters == []
    assert agg.auto_value_switch is None


# ============================================================================
# Parameter materialization
# ============================================================================


def test_auto_sampling_disabled_is_stable_across_intervals():
    """Without auto-sampling the stored literal wins for any interval."""
    agg = _avg(enabled=False, value="10", unit="seconds")
    first = materialize(agg, "30s")
    second = materialize(agg, "1h")
    assert first == second
    assert first.sampling == {"value": 10, "unit": "seconds"}


def test_auto_sampling_enabled_follows_display_interval():
    """With auto-sampling the display interval overrides stored values."""
    agg = _avg(enabled=True, value="10", unit="seconds")
    assert materialize(agg, "30s").sampling == {"value": 30, "unit": "seconds"}
    assert materialize(agg, "2h").sampling == {"value": 2, "unit": "hours"}
    assert materialize(agg, {"value": 5, "unit": "minutes"}).sampling == {
        "value": 5,
        "unit": "minutes",
    }


def test_unparseable_interval_falls_back_to_one_minute():
    """A broken display interval never fails materialization."""
    resolved = materialize(_avg(enabled=True), "not-an-interval")
    assert resolved.sampling == {"value": 1, "unit": "minutes"}


def test_non_numeric_sampling_value_is_dropped():
    """A non-numeric width is omitted instead of raising."""
    resolved = materialize(_avg(enabled=False, value="abc"), "1m")
    assert resolved.sampling == {"unit": "minutes"}


def test_literal_parameters_are_interpolated_and_coerced():
    """Literal values accept variables and numeric strings become numbers."""
    agg = AggregatorSpec.model_validate(
        {"name": "scale", "parameters": [{"name": "factor", "type": "any", "value": "$f"}]}
    )
    resolved = materialize(agg, "1m", {"f": "2.5"})
    assert resolved.params == {"factor": 2.5}
    assert resolved.sampling is None
    assert resolved.to_wire() == {"name": "scale", "factor": 2.5}


def test_empty_parameters_are_omitted():
    """Parameters empty after resolution are left out of the request."""
    agg = AggregatorSpec.model_validate(
        {
            "name": "scale",
            "parameters": [
                {"name": "factor", "type": "any", "value": ""},
                {"name": "offset", "type": "any", "value": None},
                {"name": "label", "type": "any", "value": "$unset_empty"},
                {"name": "kept", "type": "any", "value": "3"},
            ],
        }
    )
    resolved = materialize(agg, "1m", {"unset_empty": ""})
    assert resolved.params == {"kept": 3}
    wire = resolved.to_wire()
    for key in ("factor", "offset", "label"):
        assert key not in resolved.params
        assert key not in wire
    assert wire == {"name": "scale", "kept": 3}


def test_alignment_expands_to_flags():
    """Alignment choices become align_* flags on the wire."""
    assert alignment_flags("NONE") == {}
    assert alignment_flags("SAMPLING") == {"align_sampling": True}
    assert alignment_flags("START_TIME") == {"align_start_time": True}
    assert alignment_flags("PERIOD") == {"align_end_time": True}
    assert alignment_flags("sideways") == {}


def test_wire_shape_for_range_aggregator():
    """Resolved range aggregators carry sampling and alignment flags."""
    agg = AggregatorSpec.model_validate(
        {
            "name": "max",
            "parameters": [
                {"name": "sampling", "type": "alignment", "value": "SAMPLING"},
                {"name": "value", "type": "sampling", "value": "5"},
                {"name": "unit", "type": "sampling_unit", "value": "m"},
            ],
        }
    )
    wire = materialize(agg, "1m").to_wire()
    assert wire == {
        "name": "max",
        "align_sampling": True,
        "sampling": {"value": 5, "unit": "minutes"},
    }
    assert materialize(agg, "1m").sampling_interval_ms() == 300_000


def test_enum_parameters_pass_through():
    """Enum values are forwarded as strings."""
    agg = create_aggregator("filter")
    resolved = materialize(agg, "1m")
    assert resolved.params == {
        "filter_op": "GT",
        "threshold": 0,
        "filter_indeterminate_inclusion": "keep",
    }
