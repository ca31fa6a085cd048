"""Connection factory: pick the engine from the config model."""

import logging

from polystore.config import load_config
from polystore.db.backend import Connection
from polystore.db.mongo_backend import MongoConnection
from polystore.db.mysql_backend import MySQLConnection
from polystore.db.postgres_backend import PostgresConnection
from polystore.db.sqlite_backend import SQLiteConnection
from polystore.errors import ConfigurationError
from polystore.models.config import (
    ConnectionConfig,
    MongoConfig,
    MySQLConfig,
    PostgresConfig,
    SQLiteConfig,
)

logger = logging.getLogger(__name__)


def create_connection(config: ConnectionConfig | None = None) -> Connection:
    """Build (but do not connect) the connection for ``config``.

    Without a config, the environment is read via load_config().
    """
    if config is None:
        config = load_config()
    if isinstance(config, SQLiteConfig):
        return SQLiteConnection(config)
    if isinstance(config, MySQLConfig):
        return MySQLConnection(config)
    if isinstance(config, PostgresConfig):
        return PostgresConnection(config)
    if isinstance(config, MongoConfig):
        return MongoConnection(config)
    raise ConfigurationError(f"No connection type for config {type(config).__name__}")


async def open_connection(config: ConnectionConfig | None = None) -> Connection:
    """Build a connection for ``config`` and connect it."""
    conn = create_connection(config)
    logger.debug("Opening %s connection", conn.config.engine)
    await conn.connect()
    return conn
