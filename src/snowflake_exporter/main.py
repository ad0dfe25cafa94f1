"""
Main entry point for the Snowflake Prometheus exporter.

Usage:
    snowflake-exporter                         # Serve on EXPORTER_PORT (default 9090)
    snowflake-exporter --port 9100             # Custom port
    snowflake-exporter --env-file ./prod.env   # Load variables from a file first
"""

import argparse
import sys
from typing import List, Optional

import uvicorn
from prometheus_client import CollectorRegistry

from .api.app import create_app
from .collector import SnowflakeMetricsCollector
from .config.settings import get_settings
from .env_loader import load_env
from .utils.logger import get_logger, setup_logging

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Expose Snowflake account usage as Prometheus metrics"
    )
    parser.add_argument('--host', help='Listen address (default: EXPORTER_HOST or 0.0.0.0)')
    parser.add_argument('--port', type=int, help='Listen port (default: EXPORTER_PORT or 9090)')
    parser.add_argument('--log-level', help='Logging level (default: LOG_LEVEL or INFO)')
    parser.add_argument('--log-file', help='Also log to this rotating file')
    parser.add_argument('--env-file', default='.env', help='Environment file to load first')
    parser.add_argument('--config', default='config/exporter.json', help='JSON settings file')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Run the exporter until interrupted. Returns the process exit code."""
    args = parse_args(argv)
    load_env(args.env_file)

    try:
        settings = get_settings(args.config)
    except ValueError as e:
        setup_logging(log_level=args.log_level or "INFO")
        logger.error(f"Invalid configuration: {e}")
        return 1

    log_level = (args.log_level or settings.app.log_level).upper()
    setup_logging(log_level=log_level, log_file=args.log_file or settings.app.log_file)

    dsn = settings.get_dsn()
    if not dsn:
        logger.error("Snowflake connection is not configured (set SNOWFLAKE_DSN or SNOWFLAKE_* variables)")
        return 1

    try:
        collector = SnowflakeMetricsCollector.from_dsn(dsn)
    except ConnectionError as e:
        logger.error(f"Failed to create Snowflake metrics collector: {e}")
        return 1

    registry = CollectorRegistry()
    registry.register(collector)

    app = create_app(
        registry,
        collector=collector,
        metrics_path=settings.exporter.metrics_path,
        title=settings.app.name,
        version=settings.app.version,
    )

    host = args.host or settings.exporter.host
    port = args.port or settings.exporter.port
    logger.info(f"Starting Snowflake Prometheus Exporter on {host}:{port}")

    try:
        uvicorn.run(app, host=host, port=port, log_config=None)
    finally:
        collector.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
