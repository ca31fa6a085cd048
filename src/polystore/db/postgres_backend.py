"""PostgreSQL implementation of the connection contract.

Uses an asyncpg connection pool and native ``$N`` placeholders. INSERT
carries ``RETURNING *`` so the generated id comes back with the statement.
Each call outside a transaction acquires a pooled connection and releases
it after; a transaction holds one connection until commit() or rollback().
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import asyncpg

from polystore.db.sql import ExecResult, SQLConnection, SQLDialect, numbered_placeholder
from polystore.errors import ConfigurationError, LifecycleError
from polystore.models.config import PostgresConfig

if TYPE_CHECKING:
    from asyncpg.transaction import Transaction

    from polystore.db.backend import Row

logger = logging.getLogger(__name__)

POSTGRES_DIALECT = SQLDialect(
    name="postgresql",
    placeholder=numbered_placeholder,
    quote_char='"',
    supports_returning=True,
)


def _parse_rowcount(status: str | None) -> int:
    """Parse affected row count from an asyncpg status string.

    Examples: "INSERT 0 1" → 1, "UPDATE 3" → 3, "DELETE 0" → 0.
    """
    if not status:
        return -1
    parts = status.split()
    if len(parts) >= 2:
        try:
            return int(parts[-1])
        except ValueError:
            pass
    return -1


class PostgresConnection(SQLConnection):
    """Pooled PostgreSQL server connection."""

    dialect = POSTGRES_DIALECT

    def __init__(self, config: PostgresConfig) -> None:
        """Initialize with a PostgreSQL config. The pool is created by connect()."""
        if not isinstance(config, PostgresConfig):
            raise ConfigurationError(
                f"PostgresConnection requires PostgresConfig, got {type(config).__name__}"
            )
        super().__init__(config)
        self._pool: asyncpg.Pool | None = None
        self._tx_conn: asyncpg.Connection | None = None
        self._tx: Transaction | None = None

    @property
    def in_transaction(self) -> bool:
        """True while a pooled connection is reserved for a transaction."""
        return self._tx_conn is not None

    async def _connect(self) -> None:
        config = self._config
        if not config.dsn and not config.database:
            raise ConfigurationError("PostgreSQL config requires 'dsn' or 'database'")
        if config.min_pool_size > config.pool_size:
            raise ConfigurationError(
                f"min_pool_size ({config.min_pool_size}) exceeds pool_size ({config.pool_size})"
            )

        if config.dsn:
            self._pool = await asyncpg.create_pool(
                config.dsn, min_size=config.min_pool_size, max_size=config.pool_size
            )
        else:
            self._pool = await asyncpg.create_pool(
                host=config.host,
                port=config.port,
                user=config.user,
                password=config.password,
                database=config.database,
                min_size=config.min_pool_size,
                max_size=config.pool_size,
            )
        logger.info(
            "Opened PostgreSQL pool (database=%s, max %d)", config.database, config.pool_size
        )

    async def _disconnect(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        """The transaction's connection, or one borrowed from the pool."""
        if self._tx_conn is not None:
            yield self._tx_conn
            return
        async with self._get_pool().acquire() as conn:
            yield conn

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        logger.debug("postgresql: %s", sql)
        async with self._connection() as conn:
            records = await conn.fetch(sql, *params)
        return [dict(record) for record in records]

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> ExecResult:
        logger.debug("postgresql: %s", sql)
        async with self._connection() as conn:
            status = await conn.execute(sql, *params)
        return ExecResult(rowcount=_parse_rowcount(status))

    async def _begin(self) -> None:
        pool = self._get_pool()
        conn = await pool.acquire()
        try:
            tx = conn.transaction()
            await tx.start()
        except BaseException:
            await pool.release(conn)
            raise
        self._tx_conn = conn
        self._tx = tx

    async def _commit(self) -> None:
        conn, tx = self._take_tx()
        try:
            await tx.commit()
        finally:
            await self._get_pool().release(conn)

    async def _rollback(self) -> None:
        conn, tx = self._take_tx()
        try:
            await tx.rollback()
        finally:
            await self._get_pool().release(conn)

    def _take_tx(self) -> tuple[asyncpg.Connection, Transaction]:
        """Clear the transaction slot and hand back its connection and transaction."""
        conn, tx = self._tx_conn, self._tx
        if conn is None or tx is None:
            raise LifecycleError("no transaction in progress")
        self._tx_conn = None
        self._tx = None
        return conn, tx

    def _get_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise LifecycleError("PostgreSQL pool is not open")
        return self._pool
