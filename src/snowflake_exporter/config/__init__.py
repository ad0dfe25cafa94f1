"""
Configuration management package for the Snowflake exporter.

This package handles settings loading from JSON files and environment
variables, and converts between settings and connection DSNs.
"""

from .settings import (
    AppConfig,
    ExporterConfig,
    Settings,
    SnowflakeSettings,
    build_dsn,
    get_settings,
    parse_dsn,
    reload_settings,
)

__all__ = [
    'AppConfig',
    'ExporterConfig',
    'Settings',
    'SnowflakeSettings',
    'build_dsn',
    'get_settings',
    'parse_dsn',
    'reload_settings',
]
