"""MySQL implementation of the connection contract.

Uses an aiomysql connection pool. Outside a transaction each statement
checks a connection out of the pool and runs in autocommit mode. A
transaction reserves one pooled connection until commit() or rollback()
returns it.

The pool is opened with ``CLIENT.FOUND_ROWS`` so UPDATE reports rows
matched rather than rows changed, the same meaning the other engines use.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import aiomysql
from pymysql.constants import CLIENT

from polystore.db.backend import Row
from polystore.db.sql import ExecResult, SQLConnection, SQLDialect, format_placeholder
from polystore.errors import ConfigurationError, LifecycleError
from polystore.models.config import MySQLConfig

logger = logging.getLogger(__name__)

MYSQL_DIALECT = SQLDialect(
    name="mysql",
    placeholder=format_placeholder,
    quote_char="`",
    # MySQL has no bare OFFSET; this is the documented "all rows" LIMIT
    unbounded_limit="18446744073709551615",
    index_if_not_exists=False,
    drop_index_on_table=True,
)


class MySQLConnection(SQLConnection):
    """Pooled MySQL server connection."""

    dialect = MYSQL_DIALECT

    def __init__(self, config: MySQLConfig) -> None:
        """Initialize with a MySQL config. The pool is created by connect()."""
        if not isinstance(config, MySQLConfig):
            raise ConfigurationError(
                f"MySQLConnection requires MySQLConfig, got {type(config).__name__}"
            )
        super().__init__(config)
        self._pool: aiomysql.Pool | None = None
        self._tx_conn: aiomysql.Connection | None = None

    @property
    def in_transaction(self) -> bool:
        """True while a pooled connection is reserved for a transaction."""
        return self._tx_conn is not None

    async def _connect(self) -> None:
        config = self._config
        if not config.database:
            raise ConfigurationError("MySQL config requires 'database'")

        kwargs: dict[str, Any] = {
            "host": config.host,
            "port": config.port,
            "db": config.database,
            "autocommit": True,
            "client_flag": CLIENT.FOUND_ROWS,
            "cursorclass": aiomysql.DictCursor,
        }
        if config.user is not None:
            kwargs["user"] = config.user
        if config.password is not None:
            kwargs["password"] = config.password

        self._pool = await aiomysql.create_pool(minsize=1, maxsize=config.pool_size, **kwargs)
        logger.info(
            "Opened MySQL pool to %s:%s/%s (max %d)",
            config.host,
            config.port,
            config.database,
            config.pool_size,
        )

    async def _disconnect(self) -> None:
        if self._pool is not None:
            self._pool.close()
            await self._pool.wait_closed()
            self._pool = None

    @asynccontextmanager
    async def _cursor(self) -> AsyncIterator[aiomysql.DictCursor]:
        """Cursor on the transaction's connection, or on one borrowed from the pool."""
        if self._tx_conn is not None:
            async with self._tx_conn.cursor() as cur:
                yield cur
            return
        async with self._get_pool().acquire() as conn, conn.cursor() as cur:
            yield cur

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        logger.debug("mysql: %s", sql)
        async with self._cursor() as cur:
            # None (not an empty tuple) keeps literal % signs in raw SQL intact
            await cur.execute(sql, tuple(params) or None)
            rows = await cur.fetchall()
        return [dict(row) for row in rows]

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> ExecResult:
        logger.debug("mysql: %s", sql)
        async with self._cursor() as cur:
            await cur.execute(sql, tuple(params) or None)
            return ExecResult(rowcount=cur.rowcount, lastrowid=cur.lastrowid)

    async def _begin(self) -> None:
        pool = self._get_pool()
        conn = await pool.acquire()
        try:
            await conn.begin()
        except BaseException:
            pool.release(conn)
            raise
        self._tx_conn = conn

    async def _commit(self) -> None:
        conn = self._take_tx_conn()
        try:
            await conn.commit()
        finally:
            self._get_pool().release(conn)

    async def _rollback(self) -> None:
        conn = self._take_tx_conn()
        try:
            await conn.rollback()
        finally:
            self._get_pool().release(conn)

    def _take_tx_conn(self) -> aiomysql.Connection:
        """Clear the transaction slot and hand back its connection."""
        conn = self._tx_conn
        if conn is None:
            raise LifecycleError("no transaction in progress")
        self._tx_conn = None
        return conn

    def _get_pool(self) -> aiomysql.Pool:
        if self._pool is None:
            raise LifecycleError("MySQL pool is not open")
        return self._pool
