"""
Snowflake Client - Connection handle with secure credential handling.

This module provides the connection handle the collector queries through.
The client is lazy: building it validates settings and loads credentials,
while the session itself is opened on first use. Supports both password
and JWT (private key) authentication methods.
"""

import time
from pathlib import Path
from typing import Optional, Dict, Any, Iterator, Tuple

import snowflake.connector
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import load_pem_private_key
from snowflake.connector import SnowflakeConnection
from snowflake.connector.errors import Error

from ..config.settings import SnowflakeSettings
from ..utils.logger import get_logger

logger = get_logger(__name__)


class QueryExecutionError(Exception):
    """Raised when a query fails to execute or its results cannot be fetched."""
    pass


class SnowflakeClient:
    """
    Snowflake connection handle used by the metrics collector.

    Features:
    - Secure credential management from settings
    - Support for both password and JWT (private key) authentication
    - Lazy session creation, one login attempt per query
    - Exponential login backoff for explicit ``connect()`` calls
    - Streaming query execution in fetch batches
    - Connection health probing
    """

    def __init__(self, settings: SnowflakeSettings, fetch_batch_size: int = 10000):
        """
        Initialize Snowflake client with configuration.

        Args:
            settings: Snowflake connection settings
            fetch_batch_size: Number of rows fetched per round-trip

        Raises:
            ConnectionError: If the private key for JWT auth cannot be loaded
        """
        self.settings = settings
        self.fetch_batch_size = fetch_batch_size
        self._connection: Optional[SnowflakeConnection] = None
        self._private_key: Optional[bytes] = None

        if self._is_jwt_auth():
            try:
                self._load_private_key()
            except (OSError, ValueError) as e:
                raise ConnectionError(f"Failed to load private key: {e}") from e

        self._connection_params = self._build_connection_params()

    def _is_jwt_auth(self) -> bool:
        """Check if JWT authentication is configured."""
        return bool(
            self.settings.authenticator and
            self.settings.authenticator.upper() == 'SNOWFLAKE_JWT' and
            self.settings.private_key_path
        )

    def _load_private_key(self):
        """Load and parse the private key for JWT authentication."""
        key_path = Path(self.settings.private_key_path)
        if not key_path.exists():
            raise FileNotFoundError(f"Private key file not found: {key_path}")

        with open(key_path, 'rb') as key_file:
            private_key_data = key_file.read()

        passphrase = None
        if self.settings.private_key_passphrase:
            passphrase = self.settings.private_key_passphrase.encode()

        private_key_obj = load_pem_private_key(private_key_data, password=passphrase)

        # Snowflake expects DER-encoded PKCS8
        self._private_key = private_key_obj.private_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption()
        )

        logger.info("Private key loaded successfully for JWT authentication")

    def _build_connection_params(self) -> Dict[str, Any]:
        """Build connection parameters from settings."""
        params = {
            'account': self.settings.account,
            'user': self.settings.user,
            'warehouse': self.settings.warehouse,
            'database': self.settings.database,
            'schema': self.settings.schema_name,
            'client_session_keep_alive': True,
            'network_timeout': self.settings.network_timeout,
            'login_timeout': self.settings.login_timeout,
        }

        if self.settings.role:
            params['role'] = self.settings.role

        if self._is_jwt_auth():
            params['authenticator'] = 'SNOWFLAKE_JWT'
            params['private_key'] = self._private_key
        elif self.settings.authenticator:
            params['authenticator'] = self.settings.authenticator
            if self.settings.password:
                params['password'] = self.settings.password
        elif self.settings.password:
            params['password'] = self.settings.password
        else:
            logger.warning("No password provided and JWT auth not configured")

        return params

    @property
    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.is_closed()

    def connect(self, retry_attempts: Optional[int] = None) -> SnowflakeConnection:
        """
        Establish connection to Snowflake with retry logic.

        Args:
            retry_attempts: Number of login attempts (default: from settings)

        Returns:
            Active Snowflake connection

        Raises:
            ConnectionError: If connection fails after all retry attempts
        """
        retry_attempts = retry_attempts or self.settings.connect_retry_attempts
        last_error = None

        for attempt in range(retry_attempts):
            try:
                logger.info(f"Attempting Snowflake connection (attempt {attempt + 1}/{retry_attempts})")
                self._connection = snowflake.connector.connect(**self._connection_params)
                logger.info("Successfully connected to Snowflake")
                return self._connection

            except Error as e:
                last_error = e
                if attempt < retry_attempts - 1:
                    wait_time = (2 ** attempt) * self.settings.retry_delay_base
                    logger.warning(
                        f"Connection attempt {attempt + 1} failed: {e}. "
                        f"Retrying in {wait_time} seconds..."
                    )
                    time.sleep(wait_time)
                else:
                    logger.error(f"All connection attempts failed. Last error: {e}")

        raise ConnectionError(
            f"Failed to connect to Snowflake after {retry_attempts} attempts: {last_error}"
        )

    def _get_connection(self) -> SnowflakeConnection:
        # Single attempt; the next scrape retries
        if not self.is_connected:
            return self.connect(retry_attempts=1)
        return self._connection

    def iter_query(self, query: str) -> Iterator[Tuple[Any, ...]]:
        """
        Execute a query and stream its result rows.

        Rows are fetched in batches of ``fetch_batch_size``; the cursor is
        closed once the generator is exhausted or closed.

        Args:
            query: SQL query to execute

        Yields:
            Result rows as tuples

        Raises:
            QueryExecutionError: If connecting, executing or fetching fails
        """
        try:
            connection = self._get_connection()
        except (ConnectionError, Error) as e:
            raise QueryExecutionError(str(e)) from e

        try:
            cursor = connection.cursor()
        except Error as e:
            self._connection = None
            raise QueryExecutionError(f"Failed to open cursor: {e}") from e

        try:
            try:
                if self.settings.query_timeout:
                    cursor.execute(query, timeout=self.settings.query_timeout)
                else:
                    cursor.execute(query)
            except Error as e:
                raise QueryExecutionError(f"Query execution failed: {e}") from e

            rows_fetched = 0
            while True:
                try:
                    batch = cursor.fetchmany(size=self.fetch_batch_size)
                except Error as e:
                    raise QueryExecutionError(
                        f"Fetching results failed after {rows_fetched} rows: {e}"
                    ) from e
                if not batch:
                    break
                rows_fetched += len(batch)
                for row in batch:
                    yield tuple(row)

            logger.debug(f"Query executed successfully, returned {rows_fetched} rows")
        finally:
            cursor.close()

    def test_connection(self) -> bool:
        """
        Test connection health by executing a simple query.

        Returns:
            True if connection is healthy, False otherwise
        """
        try:
            result = list(self.iter_query("SELECT 1 AS test"))
            return len(result) == 1 and result[0][0] == 1
        except QueryExecutionError as e:
            logger.warning(f"Connection health check failed: {e}")
            return False

    def get_connection_info(self) -> Dict[str, Any]:
        """Describe the configured connection without credentials."""
        info = {
            'account': self.settings.account,
            'user': self.settings.user,
            'warehouse': self.settings.warehouse,
            'database': self.settings.database,
            'schema': self.settings.schema_name,
            'role': self.settings.role,
            'is_connected': self.is_connected,
        }
        if self.is_connected:
            info['session_id'] = self._connection.session_id
        return info

    def close(self):
        """Close the connection if open."""
        if self.is_connected:
            try:
                self._connection.close()
                logger.info("Snowflake connection closed")
            except Error as e:
                logger.warning(f"Error closing connection: {e}")
        self._connection = None
