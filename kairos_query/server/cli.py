"""Command-line interface for running panel queries or the HTTP server.

Usage
-----
    python -m kairos_query.server.cli --config config.json --query panel.json
    python -m kairos_query.server.cli --config config.json --variable "tag_names(cpu)"
    python -m kairos_query.server.cli --http --port 8080

A query file holds the body accepted by ``POST /api/query``: ``targets``,
``range`` (``from``/``to`` epoch milliseconds), ``interval`` and
``scopedVars``. Emitted series are printed to stdout as JSON.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from ..config.models import AppConfig
from ..errors import KairosQueryError
from ..observability import setup_logging
from .app import QueryServer
from .http import create_app


def _init_from_config(config_path: Path) -> QueryServer:
    """Build a server runtime from a JSON config file.

    Parameters
    ----------
    config_path: Path
        Filesystem path to the JSON configuration file.
    """
    server = QueryServer()
    server.configure(AppConfig.load(config_path))
    return server


async def _run_query(
    server: QueryServer, query_path: Path, source_id: Optional[str]
) -> Dict[str, Any]:
    body = json.loads(query_path.read_text(encoding="utf-8"))
    await server.start()
    try:
        result = await server.datasource(source_id).query(body)
    finally:
        await server.stop()
    return result.model_dump(mode="json")


async def _run_variable(
    server: QueryServer, query: str, source_id: Optional[str]
) -> Any:
    await server.start()
    try:
        return await server.datasource(source_id).metric_find_query(query)
    finally:
        await server.stop()


def main() -> None:
    """CLI entrypoint.

    Provides two modes:
    - one-shot query (``--query`` or ``--variable``) using --config
    - HTTP mode with FastAPI when --http is specified
    """
    parser = argparse.ArgumentParser(description="KairosDB query CLI")
    parser.add_argument("--config", help="Path to JSON app config")
    parser.add_argument("--datasource", help="Datasource id (default: first configured)")
    parser.add_argument("--query", help="Path to a JSON panel query to run")
    parser.add_argument("--variable", help="Variable query to resolve, e.g. tag_names(cpu)")
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
        help="Logging level (overrides environment)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (once sets DEBUG)",
    )
    parser.add_argument("--http", action="store_true", help="Run HTTP server")
    parser.add_argument(
        "--host", default="127.0.0.1", help="HTTP bind host (default 127.0.0.1)"
    )
    parser.add_argument("--port", type=int, default=8080, help="HTTP port")
    args = parser.parse_args()

    # Determine effective log level
    env_level = os.environ.get("KAIROS_QUERY_LOG_LEVEL", "WARNING").upper()
    effective_level = args.log_level or ("DEBUG" if args.verbose > 0 else env_level)
    # Apply early so subsequent imports use configured level
    setup_logging(effective_level)

    if args.http:
        # Lazy import uvicorn only for HTTP mode
        import importlib

        uvicorn = importlib.import_module("uvicorn")
        if args.config:
            os.environ["KAIROS_QUERY_CONFIG"] = args.config
        app = create_app()
        uvicorn.run(
            app,
            host=args.host,
            port=args.port,  # type: ignore[attr-defined]
            log_level=effective_level.lower(),
        )
        return

    if not args.config:
        parser.error("--config is required unless --http is used")
    if not (args.query or args.variable):
        parser.error("one of --query or --variable is required")

    server = _init_from_config(Path(args.config))
    try:
        if args.query:
            output = asyncio.run(_run_query(server, Path(args.query), args.datasource))
        else:
            output = asyncio.run(_run_variable(server, args.variable, args.datasource))
    except KeyError as exc:
        parser.error(f"unknown datasource {exc}")
    except KairosQueryError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)
    json.dump(output, sys.stdout, indent=2)
    sys.stdout.write("\n")


if __name__ == "__main__":
    main()
