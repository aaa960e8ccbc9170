"""Request side: aggregator catalog, parameter materialization, batch building."""

from .builder import build_datapoints_request, materialize
from .migration import migrate, needs_migration
from .validation import validate_targets

__all__ = [
    "build_datapoints_request",
    "materialize",
    "migrate",
    "needs_migration",
    "validate_targets",
]
