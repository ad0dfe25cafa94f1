"""
Snowflake connection management components.

This module provides the connection handle the metrics collector
queries Snowflake through.
"""

from .snowflake_client import QueryExecutionError, SnowflakeClient

__all__ = [
    'QueryExecutionError',
    'SnowflakeClient',
]
