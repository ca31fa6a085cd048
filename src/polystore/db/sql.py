"""Shared relational behavior for the SQL engines.

Statements are built by pure functions parametrized by an ``SQLDialect``
(placeholder token, identifier quoting, RETURNING support). ``SQLConnection``
implements the whole CRUD/DDL surface on top of two engine hooks,
``_fetch()`` and ``_execute()``, plus the engine's transaction hooks.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NamedTuple

from polystore.db.backend import Connection, Row
from polystore.db.criteria import ByCriteria, ById, Criteria, Selector, to_selector
from polystore.errors import LifecycleError
from polystore.models.options import FindOptions, IndexOptions

if TYPE_CHECKING:
    from polystore.models.config import ConnectionConfig

logger = logging.getLogger(__name__)

Statement = tuple[str, list[Any]]

PRIMARY_KEY = "id"


def qmark_placeholder(_index: int) -> str:
    """SQLite style: ``?``."""
    return "?"


def format_placeholder(_index: int) -> str:
    """DB-API ``format`` style used by the MySQL driver: ``%s``."""
    return "%s"


def numbered_placeholder(index: int) -> str:
    """PostgreSQL style: ``$1, $2, ...``."""
    return f"${index}"


@dataclass(frozen=True)
class SQLDialect:
    """What differs between the SQL engines at the statement level."""

    name: str
    placeholder: Callable[[int], str]
    quote_char: str = '"'
    supports_returning: bool = False
    # LIMIT value meaning "no limit", for engines that reject a bare OFFSET
    unbounded_limit: str | None = None
    index_if_not_exists: bool = True
    drop_index_on_table: bool = False

    def quote(self, identifier: str) -> str:
        """Quote an identifier, doubling any embedded quote character."""
        q = self.quote_char
        return f"{q}{identifier.replace(q, q + q)}{q}"


class ExecResult(NamedTuple):
    """Outcome of a statement that returns no rows."""

    rowcount: int
    lastrowid: Any = None


# -- Statement builders --


def selector_criteria(selector: Selector) -> Criteria:
    """Equality criteria for a selector; ``ById`` targets the ``id`` column."""
    if isinstance(selector, ById):
        return {PRIMARY_KEY: selector.id}
    return selector.criteria


def build_where(dialect: SQLDialect, criteria: Criteria, start: int = 1) -> Statement:
    """AND-combined equality predicates. Placeholders are numbered from ``start``.

    A ``None`` value matches SQL NULL. Empty criteria produce no WHERE clause.
    """
    clauses: list[str] = []
    params: list[Any] = []
    index = start
    for column, value in criteria.items():
        if value is None:
            clauses.append(f"{dialect.quote(column)} IS NULL")
            continue
        clauses.append(f"{dialect.quote(column)} = {dialect.placeholder(index)}")
        params.append(value)
        index += 1
    if not clauses:
        return "", []
    return " WHERE " + " AND ".join(clauses), params


def build_insert(dialect: SQLDialect, table: str, row: Mapping[str, Any]) -> Statement:
    """INSERT with columns in the row's iteration order."""
    if not row:
        raise ValueError("insert requires at least one column")
    columns = ", ".join(dialect.quote(c) for c in row)
    placeholders = ", ".join(dialect.placeholder(i) for i in range(1, len(row) + 1))
    sql = f"INSERT INTO {dialect.quote(table)} ({columns}) VALUES ({placeholders})"
    if dialect.supports_returning:
        sql += " RETURNING *"
    return sql, list(row.values())


def build_update(
    dialect: SQLDialect, table: str, selector: Selector, updates: Mapping[str, Any]
) -> Statement:
    """UPDATE every row matching the selector. SET params come first."""
    if not updates:
        raise ValueError("update requires at least one column to set")
    set_clause = ", ".join(
        f"{dialect.quote(c)} = {dialect.placeholder(i)}" for i, c in enumerate(updates, start=1)
    )
    where, where_params = _selector_where(dialect, selector, start=len(updates) + 1)
    sql = f"UPDATE {dialect.quote(table)} SET {set_clause}{where}"
    return sql, [*updates.values(), *where_params]


def build_delete(dialect: SQLDialect, table: str, selector: Selector) -> Statement:
    """DELETE every row matching the selector."""
    where, params = _selector_where(dialect, selector)
    return f"DELETE FROM {dialect.quote(table)}{where}", params


def build_select(
    dialect: SQLDialect, table: str, criteria: Criteria, options: FindOptions
) -> Statement:
    """SELECT * with WHERE, ORDER BY, LIMIT and OFFSET."""
    where, params = build_where(dialect, criteria)
    sql = f"SELECT * FROM {dialect.quote(table)}{where}"
    if options.sort:
        order = ", ".join(
            f"{dialect.quote(column)} {'ASC' if direction == 1 else 'DESC'}"
            for column, direction in options.sort.items()
        )
        sql += f" ORDER BY {order}"
    # limit/offset are validated ints, safe to inline
    if options.limit is not None:
        sql += f" LIMIT {options.limit}"
    elif options.offset and dialect.unbounded_limit is not None:
        sql += f" LIMIT {dialect.unbounded_limit}"
    if options.offset:
        sql += f" OFFSET {options.offset}"
    return sql, params


def build_count(dialect: SQLDialect, table: str, criteria: Criteria) -> Statement:
    """COUNT(*) over the same WHERE as build_select(), ignoring paging."""
    where, params = build_where(dialect, criteria)
    return f"SELECT COUNT(*) AS count FROM {dialect.quote(table)}{where}", params


def build_create_table(dialect: SQLDialect, table: str, schema: Mapping[str, Any]) -> str:
    """CREATE TABLE IF NOT EXISTS from a column -> native type mapping."""
    if not schema:
        raise ValueError("create_table requires at least one column")
    columns = ", ".join(f"{dialect.quote(name)} {type_}" for name, type_ in schema.items())
    return f"CREATE TABLE IF NOT EXISTS {dialect.quote(table)} ({columns})"


def build_drop_table(dialect: SQLDialect, table: str) -> str:
    """DROP TABLE IF EXISTS."""
    return f"DROP TABLE IF EXISTS {dialect.quote(table)}"


def build_create_index(
    dialect: SQLDialect, table: str, columns: Sequence[str], options: IndexOptions
) -> tuple[str, str]:
    """CREATE [UNIQUE] INDEX. Returns ``(sql, index_name)``."""
    if not columns:
        raise ValueError("create_index requires at least one column")
    name = options.index_name(table, list(columns))
    unique = "UNIQUE " if options.unique else ""
    exists = "IF NOT EXISTS " if dialect.index_if_not_exists else ""
    cols = ", ".join(dialect.quote(c) for c in columns)
    sql = f"CREATE {unique}INDEX {exists}{dialect.quote(name)} ON {dialect.quote(table)} ({cols})"
    return sql, name


def build_drop_index(dialect: SQLDialect, table: str, name: str) -> str:
    """DROP INDEX, scoped to the table where the engine requires it."""
    if dialect.drop_index_on_table:
        return f"DROP INDEX {dialect.quote(name)} ON {dialect.quote(table)}"
    return f"DROP INDEX IF EXISTS {dialect.quote(name)}"


def _selector_where(dialect: SQLDialect, selector: Selector, start: int = 1) -> Statement:
    criteria = selector_criteria(selector)
    if isinstance(selector, ByCriteria) and not criteria:
        raise ValueError("empty criteria would match every row; pass explicit criteria")
    return build_where(dialect, criteria, start=start)


# -- Connection --


class SQLConnection(Connection):
    """CRUD, schema and transaction guards shared by the SQL engines.

    Subclasses set ``dialect`` and implement ``_fetch()``, ``_execute()``,
    ``in_transaction`` and the ``_begin()`` / ``_commit()`` / ``_rollback()``
    hooks.
    """

    _abstract = True
    dialect: SQLDialect

    def __init__(self, config: ConnectionConfig) -> None:
        super().__init__(config)
        # Held from the slot check through the engine call
        self._tx_lock = asyncio.Lock()

    # -- Engine hooks --

    async def _fetch(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        self._not_implemented("_fetch")

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> ExecResult:
        self._not_implemented("_execute")

    async def _begin(self) -> None:
        self._not_implemented("_begin")

    async def _commit(self) -> None:
        self._not_implemented("_commit")

    async def _rollback(self) -> None:
        self._not_implemented("_rollback")

    # -- Raw SQL --

    async def query(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        """Run raw SQL in the engine's own placeholder style and return its rows.

        Statements that produce no rows return an empty list.
        """
        self._require_connected("query")
        return await self._fetch(sql, params)

    # -- CRUD --

    async def insert(self, table: str, row: Mapping[str, Any]) -> Any:
        """Insert one row and return its generated id.

        Engines with RETURNING report the inserted row's ``id`` (the whole
        row if the table has no ``id`` column); the others report the
        driver's last-insert id.
        """
        self._require_connected("insert")
        sql, params = build_insert(self.dialect, table, row)
        if self.dialect.supports_returning:
            rows = await self._fetch(sql, params)
            returned = rows[0]
            return returned[PRIMARY_KEY] if PRIMARY_KEY in returned else returned
        result = await self._execute(sql, params)
        return result.lastrowid

    async def update(
        self, table: str, id_or_criteria: Selector | Criteria | Any, updates: Mapping[str, Any]
    ) -> int:
        """Update all matching rows; returns how many matched."""
        self._require_connected("update")
        sql, params = build_update(self.dialect, table, to_selector(id_or_criteria), updates)
        result = await self._execute(sql, params)
        return result.rowcount

    async def delete(self, table: str, id_or_criteria: Selector | Criteria | Any) -> int:
        """Delete all matching rows; returns how many were removed."""
        self._require_connected("delete")
        sql, params = build_delete(self.dialect, table, to_selector(id_or_criteria))
        result = await self._execute(sql, params)
        return result.rowcount

    async def find_by_id(self, table: str, id: Any) -> Row | None:
        self._require_connected("find_by_id")
        sql, params = build_select(self.dialect, table, {PRIMARY_KEY: id}, FindOptions(limit=1))
        rows = await self._fetch(sql, params)
        return rows[0] if rows else None

    async def find_by(self, table: str, column: str, value: Any) -> list[Row]:
        self._require_connected("find_by")
        sql, params = build_select(self.dialect, table, {column: value}, FindOptions())
        return await self._fetch(sql, params)

    async def find_all(
        self,
        table: str,
        criteria: Criteria | None = None,
        options: FindOptions | Mapping[str, Any] | None = None,
    ) -> list[Row]:
        self._require_connected("find_all")
        sql, params = build_select(
            self.dialect, table, criteria or {}, FindOptions.coerce(options)
        )
        return await self._fetch(sql, params)

    async def find_one(
        self,
        table: str,
        criteria: Criteria | None = None,
        options: FindOptions | Mapping[str, Any] | None = None,
    ) -> Row | None:
        self._require_connected("find_one")
        opts = FindOptions.coerce(options).model_copy(update={"limit": 1})
        rows = await self.find_all(table, criteria, opts)
        return rows[0] if rows else None

    async def count(self, table: str, criteria: Criteria | None = None) -> int:
        self._require_connected("count")
        sql, params = build_count(self.dialect, table, criteria or {})
        rows = await self._fetch(sql, params)
        return int(rows[0]["count"]) if rows else 0

    # -- Schema --

    async def create_table(self, table: str, schema: Mapping[str, Any]) -> None:
        self._require_connected("create_table")
        await self._execute(build_create_table(self.dialect, table, schema))

    async def drop_table(self, table: str) -> None:
        self._require_connected("drop_table")
        await self._execute(build_drop_table(self.dialect, table))

    async def create_index(
        self,
        table: str,
        columns: Sequence[Any],
        options: IndexOptions | Mapping[str, Any] | None = None,
    ) -> str:
        self._require_connected("create_index")
        sql, name = build_create_index(self.dialect, table, columns, IndexOptions.coerce(options))
        await self._execute(sql)
        return name

    async def drop_index(self, table: str, name: str) -> None:
        self._require_connected("drop_index")
        await self._execute(build_drop_index(self.dialect, table, name))

    # -- Transactions --

    async def begin_transaction(self) -> None:
        """Start a transaction. Fails if one is already active."""
        self._require_connected("begin_transaction")
        async with self._tx_lock:
            if self.in_transaction:
                raise LifecycleError("transaction already in progress")
            await self._begin()
        logger.debug("%s: transaction started", self.dialect.name)

    async def commit(self) -> None:
        """Commit the active transaction. Fails if none is active."""
        self._require_connected("commit")
        async with self._tx_lock:
            if not self.in_transaction:
                raise LifecycleError("no transaction in progress")
            await self._commit()
        logger.debug("%s: transaction committed", self.dialect.name)

    async def rollback(self) -> None:
        """Roll back the active transaction. Fails if none is active."""
        self._require_connected("rollback")
        async with self._tx_lock:
            if not self.in_transaction:
                raise LifecycleError("no transaction in progress")
            await self._rollback()
        logger.debug("%s: transaction rolled back", self.dialect.name)
