"""
Settings and configuration management for the Snowflake exporter.

This module provides centralized configuration loading with validation
using Pydantic models, environment variable overrides, and helpers to
build and parse the connection DSN handed to the collector.
"""

import json
import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Any
from urllib.parse import parse_qsl, quote, unquote, urlencode

from pydantic import BaseModel, Field, ValidationError, field_validator


class AppConfig(BaseModel):
    """Application configuration."""
    name: str = Field(default="Snowflake Prometheus Exporter")
    version: str = Field(default="1.0.0")
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()


class ExporterConfig(BaseModel):
    """HTTP listener configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=9090, ge=1, le=65535)
    metrics_path: str = Field(default="/metrics")

    @field_validator('metrics_path')
    @classmethod
    def validate_metrics_path(cls, v):
        if not v.startswith('/'):
            raise ValueError("metrics_path must start with '/'")
        return v


class SnowflakeSettings(BaseModel):
    """Snowflake settings for the client and the collector."""
    account: str
    user: str
    password: Optional[str] = None
    warehouse: str
    database: str
    schema_name: str
    role: Optional[str] = None
    private_key_path: Optional[str] = None
    private_key_passphrase: Optional[str] = None
    authenticator: Optional[str] = None

    # Connection settings
    network_timeout: int = Field(default=60, ge=10)
    login_timeout: int = Field(default=60, ge=10)
    query_timeout: Optional[int] = Field(default=None, ge=1)
    retry_delay_base: float = Field(default=1.0, ge=0.1)
    connect_retry_attempts: int = Field(default=3, ge=1)

    @field_validator('account', 'user', 'warehouse', 'database', 'schema_name')
    @classmethod
    def validate_required_fields(cls, v):
        if not v or not v.strip():
            raise ValueError("Required Snowflake connection field cannot be empty")
        return v.strip()


class Settings(BaseModel):
    """Main settings configuration."""
    app: AppConfig = Field(default_factory=AppConfig)
    exporter: ExporterConfig = Field(default_factory=ExporterConfig)
    snowflake: Optional[SnowflakeSettings] = None
    dsn: Optional[str] = None

    def get_dsn(self) -> Optional[str]:
        """DSN to build the collector from, explicit DSN first."""
        if self.dsn:
            return self.dsn
        if self.snowflake:
            return build_dsn(self.snowflake)
        return None


# Optional DSN query parameters and the settings fields they map to
_DSN_OPTIONS = (
    'role',
    'authenticator',
    'private_key_path',
    'private_key_passphrase',
    'query_timeout',
    'network_timeout',
    'login_timeout',
)


def build_dsn(settings: SnowflakeSettings) -> str:
    """
    Build a DSN string from Snowflake settings.

    Format: ``user:password@account/database/schema/warehouse[?options]``,
    with user and password percent-encoded.
    """
    credentials = quote(settings.user, safe='')
    if settings.password:
        credentials += ':' + quote(settings.password, safe='')

    dsn = (
        f"{credentials}@{settings.account}/{settings.database}/"
        f"{settings.schema_name}/{settings.warehouse}"
    )

    options = {}
    for key in _DSN_OPTIONS:
        value = getattr(settings, key)
        if value is not None and value != SnowflakeSettings.model_fields[key].default:
            options[key] = value
    if options:
        dsn += '?' + urlencode(options)
    return dsn


def parse_dsn(dsn: str) -> SnowflakeSettings:
    """
    Parse a DSN string produced by :func:`build_dsn`.

    Raises:
        ValueError: If the DSN is malformed or fails settings validation
    """
    if not dsn or not dsn.strip():
        raise ValueError("DSN cannot be empty")

    location, _, query = dsn.strip().partition('?')
    credentials, sep, path = location.rpartition('@')
    if not sep or not credentials:
        raise ValueError("DSN must be of the form user:password@account/database/schema/warehouse")

    user, _, password = credentials.partition(':')
    parts = path.split('/')
    if len(parts) != 4 or not all(parts):
        raise ValueError(
            f"DSN path must contain account/database/schema/warehouse, got '{path}'"
        )
    account, database, schema_name, warehouse = parts

    params: Dict[str, Any] = {
        'account': account,
        'user': unquote(user),
        'password': unquote(password) or None,
        'warehouse': warehouse,
        'database': database,
        'schema_name': schema_name,
    }

    for key, value in parse_qsl(query, keep_blank_values=False):
        if key not in _DSN_OPTIONS:
            raise ValueError(f"Unknown DSN option '{key}'")
        params[key] = value

    try:
        return SnowflakeSettings(**params)
    except ValidationError as e:
        raise ValueError(f"Invalid Snowflake configuration: {e}") from e


def load_json_config(file_path: Path) -> Dict:
    """Load configuration from JSON file with environment variable substitution."""
    if not file_path.exists():
        return {}

    with open(file_path, 'r') as f:
        content = f.read()

    # Replace environment variables in format ${VAR_NAME}
    def replace_env_var(match):
        var_name = match.group(1)
        return os.getenv(var_name, match.group(0))

    content = re.sub(r'\$\{([^}]+)\}', replace_env_var, content)

    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {file_path}: {e}")


def load_snowflake_config(json_config: Optional[Dict] = None) -> Optional[SnowflakeSettings]:
    """Load Snowflake connection settings, environment taking precedence over JSON."""
    env_mapping = {
        'account': ('SNOWFLAKE_ACCOUNT',),
        'user': ('SNOWFLAKE_USERNAME', 'SNOWFLAKE_USER'),
        'password': ('SNOWFLAKE_PASSWORD',),
        'warehouse': ('SNOWFLAKE_WAREHOUSE',),
        'database': ('SNOWFLAKE_DATABASE',),
        'schema_name': ('SNOWFLAKE_SCHEMA',),
        'role': ('SNOWFLAKE_ROLE',),
        'private_key_path': ('SNOWFLAKE_PRIVATE_KEY_FILE',),
        'private_key_passphrase': ('SNOWFLAKE_PRIVATE_KEY_PASSPHRASE',),
        'authenticator': ('SNOWFLAKE_AUTHENTICATOR',),
        'query_timeout': ('SNOWFLAKE_QUERY_TIMEOUT',),
    }

    env_config = {}
    for key, env_vars in env_mapping.items():
        for env_var in env_vars:
            value = os.getenv(env_var)
            if value:
                env_config[key] = value
                break

    connection_config = dict((json_config or {}).get('connection', {}))
    connection_config.update(env_config)

    if not connection_config:
        return None

    try:
        return SnowflakeSettings(**connection_config)
    except ValidationError as e:
        raise ValueError(f"Invalid Snowflake configuration: {e}") from e


@lru_cache()
def get_settings(config_path: str = "config/exporter.json") -> Settings:
    """Get application settings (cached)."""
    config_data = load_json_config(Path(config_path))
    snowflake_data = {'connection': config_data.pop('connection', {})}

    settings = Settings(**config_data)

    if os.getenv("LOG_LEVEL"):
        settings.app.log_level = os.getenv("LOG_LEVEL").upper()

    if os.getenv("EXPORTER_HOST"):
        settings.exporter.host = os.getenv("EXPORTER_HOST")

    if os.getenv("EXPORTER_PORT"):
        settings.exporter.port = int(os.getenv("EXPORTER_PORT"))

    if os.getenv("SNOWFLAKE_DSN"):
        settings.dsn = os.getenv("SNOWFLAKE_DSN")
    else:
        settings.snowflake = load_snowflake_config(snowflake_data)

    return settings


def reload_settings() -> Settings:
    """Force reload of settings (clears cache)."""
    get_settings.cache_clear()
    return get_settings()
