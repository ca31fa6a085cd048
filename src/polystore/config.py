"""Environment-variable-based configuration."""

import os
from pathlib import Path

from polystore.errors import ConfigurationError
from polystore.models.config import ConnectionConfig, SQLiteConfig, parse_database_url


def get_database_url() -> str | None:
    """Return the connection URL from POLYSTORE_DATABASE_URL, if set."""
    return os.environ.get("POLYSTORE_DATABASE_URL") or None


def get_db_path() -> Path:
    """Return the SQLite database file path from POLYSTORE_DB_PATH."""
    raw = os.environ.get("POLYSTORE_DB_PATH", "~/.local/share/polystore/polystore.db")
    return Path(raw).expanduser()


def get_pool_size() -> int:
    """Return the pool size for pooled engines from POLYSTORE_POOL_SIZE."""
    raw = os.environ.get("POLYSTORE_POOL_SIZE", "10")
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"POLYSTORE_POOL_SIZE must be an integer, got {raw!r}") from e


def get_log_level() -> str:
    """Return the logging level from POLYSTORE_LOG_LEVEL."""
    return os.environ.get("POLYSTORE_LOG_LEVEL", "WARNING")


def load_config() -> ConnectionConfig:
    """Build a connection config from the environment.

    POLYSTORE_DATABASE_URL selects the engine; without it, a file-backed
    SQLite database at POLYSTORE_DB_PATH is used. Raises ConfigurationError
    for malformed values. Nothing here runs at import time.
    """
    url = get_database_url()
    if url:
        return parse_database_url(url, pool_size=get_pool_size())
    return SQLiteConfig(path=str(get_db_path()))


def check_config() -> tuple[ConnectionConfig | None, ConfigurationError | None]:
    """Like load_config(), but report failure as a value instead of raising."""
    try:
        return load_config(), None
    except ConfigurationError as e:
        return None, e
