"""
Shared helpers for the query domain.

Modules
-------
units
    KairosDB sampling units, dashboard interval parsing, and snapping of
    display intervals to a configured list of allowed intervals.
values
    Extraction of scalar values from KairosDB datapoints.
"""

__all__ = []
