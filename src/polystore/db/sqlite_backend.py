"""SQLite implementation of the connection contract.

One aiosqlite connection, no pool. The connection runs in autocommit mode
(``isolation_level=None``) so every statement outside a transaction is
durable immediately; ``begin_transaction()`` issues an explicit ``BEGIN``
and flips a flag on that single handle.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import aiosqlite

from polystore.db.backend import Row
from polystore.db.sql import ExecResult, SQLConnection, SQLDialect, qmark_placeholder
from polystore.errors import ConfigurationError, LifecycleError
from polystore.models.config import SQLiteConfig

logger = logging.getLogger(__name__)

SQLITE_DIALECT = SQLDialect(
    name="sqlite",
    placeholder=qmark_placeholder,
    quote_char='"',
    unbounded_limit="-1",
)


class SQLiteConnection(SQLConnection):
    """Embedded SQLite database, file-backed or in memory."""

    dialect = SQLITE_DIALECT

    def __init__(self, config: SQLiteConfig | None = None) -> None:
        """Initialize with a SQLite config (defaults to an in-memory database)."""
        config = config if config is not None else SQLiteConfig()
        if not isinstance(config, SQLiteConfig):
            raise ConfigurationError(
                f"SQLiteConnection requires SQLiteConfig, got {type(config).__name__}"
            )
        super().__init__(config)
        self._conn: aiosqlite.Connection | None = None
        self._in_transaction = False

    @property
    def in_transaction(self) -> bool:
        """True between begin_transaction() and commit()/rollback()."""
        return self._in_transaction

    async def _connect(self) -> None:
        db_path = self._config.path
        if not db_path:
            raise ConfigurationError("SQLite path must not be empty (use ':memory:')")

        in_memory = db_path == ":memory:"
        # file: URIs (e.g. file:name?mode=memory&cache=shared) go to SQLite as-is
        is_uri = db_path.startswith("file:")
        if not in_memory and not is_uri:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(db_path, isolation_level=None, uri=is_uri)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            # WAL mode for better concurrent read performance
            await conn.execute("PRAGMA journal_mode=WAL")
        self._conn = conn
        logger.info("Opened SQLite database at %s", db_path)

    async def _disconnect(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
        self._in_transaction = False

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        logger.debug("sqlite: %s", sql)
        async with self._db.execute(sql, tuple(params)) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> ExecResult:
        logger.debug("sqlite: %s", sql)
        async with self._db.execute(sql, tuple(params)) as cursor:
            return ExecResult(rowcount=cursor.rowcount, lastrowid=cursor.lastrowid)

    async def _begin(self) -> None:
        await self._db.execute("BEGIN")
        self._in_transaction = True

    async def _commit(self) -> None:
        # A failed COMMIT leaves the transaction open, so the flag stays set
        # and the caller can still roll back.
        await self._db.execute("COMMIT")
        self._in_transaction = False

    async def _rollback(self) -> None:
        try:
            await self._db.execute("ROLLBACK")
        finally:
            self._in_transaction = False

    @property
    def _db(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise LifecycleError("SQLite connection is not open")
        return self._conn
