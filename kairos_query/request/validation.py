"""Site policy checks run before any target is materialized."""

from __future__ import annotations

import logging
from typing import Sequence

from ..domain.models import Target
from ..errors import TargetValidationError
from .aggregators import SCALAR_AGGREGATOR_NAMES, is_scalar

logger = logging.getLogger(__name__)


def validate_target(target: Target, enforce_scalar: bool) -> None:
    """Reject ``target`` when it violates the scalar-aggregator policy.

    With ``enforce_scalar`` on, a visible target that queries a metric and
    is not marked ``override_scalar`` must contain at least one aggregator
    that reduces values to a scalar series.

    Raises
    ------
    TargetValidationError
        With a message naming the target and the accepted aggregators.
    """
    if not enforce_scalar or target.override_scalar or target.hide:
        return
    if not target.metric_name:
        return
    if any(is_scalar(agg.name) for agg in target.aggregators):
        return
    reason = (
        f"Query {target.ref_id} must use a scalar aggregator "
        f"({', '.join(sorted(SCALAR_AGGREGATOR_NAMES))}) or enable "
        "'override scalar' for this query."
    )
    logger.info(
        "validation.scalar_required",
        extra={"ref_id": target.ref_id, "metric": target.metric_name},
    )
    raise TargetValidationError(reason, ref_id=target.ref_id)


def validate_targets(targets: Sequence[Target], enforce_scalar: bool) -> None:
    """Validate every target; the first violation is raised."""
    for target in targets:
        validate_target(target, enforce_scalar)
