"""
Version information for kairos-query.

The package version is read from pyproject.toml via importlib.metadata so the
project metadata stays the single source of truth.
"""

try:
    from importlib.metadata import version

    __version__ = version("kairos-query")
except Exception:
    # Not installed: read pyproject.toml next to the package
    import tomllib
    from pathlib import Path

    try:
        pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
        with open(pyproject_path, "rb") as f:
            pyproject = tomllib.load(f)
            __version__ = pyproject["project"]["version"]
    except Exception:
        __version__ = "0.0.0-dev"

# Wire protocol version advertised by the HTTP surface
__query_protocol_version__ = "1.0.0"
