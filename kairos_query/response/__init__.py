"""Response side: batch reshaping and histogram conversion."""

from .histogram import compute_bin_max, convert
from .reshaper import reshape

__all__ = ["compute_bin_max", "convert", "reshape"]
