"""
Tests for the scalar-aggregator site policy.
"""

import pytest

from kairos_query.domain.models import Target
from kairos_query.errors import TargetValidationError
from kairos_query.request.validation import validate_target, validate_targets


def _target(*aggregators: str, **extra) -> Target:
    body = {"metricName": "m", "refId": "A", "aggregators": [{"name": a} for a in aggregators]}
    body.update(extra)
    return Target.model_validate(body)


def test_policy_off_accepts_anything():
    """Nothing is rejected when enforcement is disabled."""
    validate_target(_target(), enforce_scalar=False)
    validate_target(_target("merge"), enforce_scalar=False)


def test_scalar_aggregator_satisfies_policy():
    """One scalar aggregator in the pipeline is enough."""
    validate_target(_target("merge", "avg"), enforce_scalar=True)


def test_missing_scalar_aggregator_is_rejected():
    """Targets without a scalar aggregator fail with a readable reason."""
    with pytest.raises(TargetValidationError) as exc_info:
        validate_target(_target("merge"), enforce_scalar=True)
    assert exc_info.value.ref_id == "A"
    assert "Query A" in exc_info.value.reason
    assert "avg" in exc_info.value.reason


def test_override_hidden_and_empty_targets_are_exempt():
    """Overridden, hidden and metric-less targets skip the check."""
    validate_target(_target(overrideScalar=True), enforce_scalar=True)
    validate_target(_target(hide=True), enforce_scalar=True)
    validate_target(_target(metricName=""), enforce_scalar=True)


def test_validate_targets_raises_first_violation():
    """The first offending target is reported."""
    targets = [_target("avg"), _target(refId="B"), _target(refId="C")]
    with pytest.raises(TargetValidationError) as exc_info:
        validate_targets(targets, enforce_scalar=True)
    assert exc_info.value.ref_id == "B"
