"""
Pytest configuration and fixtures for the Snowflake exporter tests.

Provides a scripted stand-in for the Snowflake connection handle, sample
settings, and a mock of the connector's connection/cursor pair.
"""

import re
import sys
import threading
import time
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple
from unittest.mock import Mock

import pytest

# Add src to Python path for testing
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from snowflake_exporter.config.settings import SnowflakeSettings  # noqa: E402
from snowflake_exporter.connectors.snowflake_client import QueryExecutionError  # noqa: E402


class FailAfter:
    """Scripted result that yields some rows, then fails mid-fetch."""

    def __init__(self, rows: Sequence[Tuple[Any, ...]], error: str):
        self.rows = list(rows)
        self.error = error


class FakeWarehouse:
    """
    Connection handle that answers queries from a script.

    Each expectation pairs a regex searched in the SQL text with either a
    list of rows, an exception to raise at execute time, or ``FailAfter``.
    Unmatched queries fail like a missing table would.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.expectations: List[Tuple[re.Pattern, Any]] = []
        self.events: List[Tuple[str, str, str]] = []
        self._events_lock = threading.Lock()
        self.healthy = True

    def expect(self, pattern: str, result: Any) -> 'FakeWarehouse':
        self.expectations.append((re.compile(pattern, re.IGNORECASE), result))
        return self

    def _record(self, kind: str, sql: str):
        with self._events_lock:
            self.events.append((threading.current_thread().name, kind, sql))

    def _lookup(self, sql: str) -> Optional[Any]:
        for pattern, result in self.expectations:
            if pattern.search(sql):
                return result
        return QueryExecutionError("Object does not exist or not authorized")

    def iter_query(self, sql: str):
        self._record('start', sql)
        try:
            result = self._lookup(sql)
            if self.delay:
                time.sleep(self.delay)
            if isinstance(result, Exception):
                raise result
            if isinstance(result, FailAfter):
                yield from result.rows
                raise QueryExecutionError(result.error)
            yield from result
        finally:
            self._record('end', sql)

    def test_connection(self) -> bool:
        self._record('start', HEALTH_SQL)
        self._record('end', HEALTH_SQL)
        return self.healthy

    def close(self):
        self._record('close', '')


HEALTH_SQL = "SELECT 1 AS test"


CREDITS_SQL = r"SELECT warehouse_name, SUM\(credits_used\) AS total_credits"
STORAGE_SQL = r"SELECT database_name, storage_bytes"


@pytest.fixture
def fake_warehouse():
    """Scripted warehouse with no expectations."""
    return FakeWarehouse()


@pytest.fixture
def scripted_warehouse():
    """Warehouse answering both default queries with two rows each."""
    return (
        FakeWarehouse()
        .expect(CREDITS_SQL, [("COMPUTE_WH", 10.5), ("REPORTING_WH", 5.2)])
        .expect(STORAGE_SQL, [("PROD_DB", 1024000), ("DEV_DB", 512000)])
    )


@pytest.fixture
def snowflake_settings():
    """Password-authenticated Snowflake settings."""
    return SnowflakeSettings(
        account="xy12345.eu-west-1",
        user="exporter",
        password="s3cret",
        warehouse="MONITORING_WH",
        database="SNOWFLAKE",
        schema_name="ACCOUNT_USAGE",
        retry_delay_base=0.1,
    )


@pytest.fixture
def mock_snowflake_connection():
    """Create a mock Snowflake connection with an empty result cursor."""
    mock_conn = Mock()
    mock_cursor = Mock()

    mock_cursor.execute.return_value = None
    mock_cursor.fetchmany.return_value = []
    mock_cursor.description = []

    mock_conn.cursor.return_value = mock_cursor
    mock_conn.is_closed.return_value = False
    mock_conn.session_id = 4242

    return mock_conn


@pytest.fixture
def clean_env(monkeypatch):
    """Remove exporter and Snowflake variables from the environment."""
    for name in [
        'SNOWFLAKE_DSN', 'SNOWFLAKE_ACCOUNT', 'SNOWFLAKE_USER', 'SNOWFLAKE_USERNAME',
        'SNOWFLAKE_PASSWORD', 'SNOWFLAKE_WAREHOUSE', 'SNOWFLAKE_DATABASE',
        'SNOWFLAKE_SCHEMA', 'SNOWFLAKE_ROLE', 'SNOWFLAKE_AUTHENTICATOR',
        'SNOWFLAKE_PRIVATE_KEY_FILE', 'SNOWFLAKE_PRIVATE_KEY_PASSPHRASE',
        'SNOWFLAKE_QUERY_TIMEOUT', 'EXPORTER_HOST', 'EXPORTER_PORT', 'LOG_LEVEL',
    ]:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch
