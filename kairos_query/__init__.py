"""KairosDB panel query materialization and response reshaping."""

from .__version__ import __query_protocol_version__, __version__

__all__ = ["__version__", "__query_protocol_version__"]
