"""
Snowflake Prometheus Exporter

Publishes Snowflake warehouse credit usage and database storage as
Prometheus gauges, querying ACCOUNT_USAGE views on every scrape.
"""

__version__ = "1.0.0"

from .collector import (
    DEFAULT_CATALOG,
    DEFAULT_QUERIES,
    MetricDescriptor,
    Observation,
    QuerySpec,
    RowDecodeError,
    SnowflakeMetricsCollector,
    decode_labeled_value,
)
from .config.settings import Settings, SnowflakeSettings, build_dsn, get_settings, parse_dsn
from .connectors.snowflake_client import QueryExecutionError, SnowflakeClient
from .utils.logger import get_logger, setup_logging

__all__ = [
    "DEFAULT_CATALOG",
    "DEFAULT_QUERIES",
    "MetricDescriptor",
    "Observation",
    "QueryExecutionError",
    "QuerySpec",
    "RowDecodeError",
    "Settings",
    "SnowflakeClient",
    "SnowflakeMetricsCollector",
    "SnowflakeSettings",
    "build_dsn",
    "decode_labeled_value",
    "get_logger",
    "get_settings",
    "parse_dsn",
    "setup_logging",
]
