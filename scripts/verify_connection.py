#!/usr/bin/env python3
"""
Connection Verification Script

This script verifies that every KairosDB datasource in the configuration
answers its version endpoint and lists at least one metric name.

Usage:
    python scripts/verify_connection.py [config.json]

Expected output:
    - Connection successful: Prints KairosDB version and a sample metric
    - Connection failed: Prints the user-facing error for troubleshooting
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

try:
    from kairos_query.adapters.kairosdb import KairosDBAdapter
    from kairos_query.config.models import AppConfig, DataSourceConfig
    from kairos_query.errors import DispatchError
except ImportError as e:
    print(f"Critical Import Error: {e}")
    print("   Ensure you are running from project root; dependencies installed.")
    sys.exit(1)

logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def verify_single_source(source_id: str, source_config: DataSourceConfig) -> bool:
    """Verify a single datasource connection."""
    logger.info("-" * 50)
    logger.info(f"Verifying datasource: {source_id} ({source_config.endpoint})")

    adapter = KairosDBAdapter(
        endpoint=source_config.endpoint,
        api_key=source_config.api_key,
        timeout=source_config.timeout_seconds,
        max_retries=source_config.max_retries,
        backoff_initial_ms=source_config.backoff_initial_ms,
        backoff_multiplier=source_config.backoff_multiplier,
    )
    try:
        version = await adapter.version()
        names = await adapter.metric_names()
    except DispatchError as e:
        logger.error(f"Failed to connect to KairosDB '{source_id}'")
        logger.error(f"   Error: {e.message}")
        logger.info("   1. Verify KairosDB is running/accessible")
        logger.info("   2. Check the endpoint URL in the config file")
        return False
    finally:
        await adapter.aclose()

    logger.info("CONNECTION SUCCESSFUL")
    logger.info(f"  KairosDB version: {version}")
    logger.info(f"  Metric names: {len(names)}")
    if names:
        logger.info(f"  Sample: {names[0]}")
    return True


async def verify_connection(config_path: Path) -> bool:
    """
    Verify connection to all configured KairosDB datasources.
    """
    logger.info(f"Loading configuration from {config_path}...")
    if not config_path.exists():
        logger.error(f"Configuration file not found: {config_path}")
        return False

    config = AppConfig.load(config_path)
    if not config.datasources:
        logger.warning("No datasources configured.")
        logger.info("   Add entries to the 'datasources' block of the config file")
        return True

    logger.info(f"Configuration loaded: {len(config.datasources)} datasource(s) found")
    results = [
        await verify_single_source(source_id, source_config)
        for source_id, source_config in config.datasources.items()
    ]
    logger.info("-" * 50)
    if all(results):
        logger.info("All datasources answered.")
    else:
        logger.error("Some datasources failed verification. See logs above.")
    return all(results)


def main():
    """Main entry point."""
    config_path = Path(sys.argv[1] if len(sys.argv) > 1 else "config.json")
    success = asyncio.run(verify_connection(config_path))
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
