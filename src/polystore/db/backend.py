"""Connection contract — one async surface over every storage engine.

Application code programs against ``DataStore``. Each engine (SQLite,
MySQL, PostgreSQL, MongoDB) subclasses ``Connection`` and overrides the
operations it supports. Dialect and driver differences stay inside the
engine's module.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, NoReturn, Protocol, runtime_checkable

from polystore.errors import ContractViolation, LifecycleError

if TYPE_CHECKING:
    from polystore.db.criteria import Criteria, Selector
    from polystore.models.config import ConnectionConfig
    from polystore.models.options import FindOptions, IndexOptions

logger = logging.getLogger(__name__)

Row = dict[str, Any]


@runtime_checkable
class DataStore(Protocol):
    """Async CRUD, schema and transaction surface shared by all engines."""

    async def connect(self) -> None:
        """Open the engine connection or pool. No-op when already connected."""
        ...

    async def disconnect(self) -> None:
        """Release the connection or pool. No-op when already disconnected."""
        ...

    async def insert(self, table: str, row: Mapping[str, Any]) -> Any:
        """Insert one row and return the engine-generated id."""
        ...

    async def update(
        self, table: str, id_or_criteria: Selector | Criteria | Any, updates: Mapping[str, Any]
    ) -> int:
        """Update every matching row. Returns the affected count (0 is valid)."""
        ...

    async def delete(self, table: str, id_or_criteria: Selector | Criteria | Any) -> int:
        """Delete every matching row. Returns the affected count (0 is valid)."""
        ...

    async def find_by_id(self, table: str, id: Any) -> Row | None:
        """Fetch the row with the given primary key, or None."""
        ...

    async def find_by(self, table: str, column: str, value: Any) -> list[Row]:
        """Fetch all rows where ``column`` equals ``value``."""
        ...

    async def find_all(
        self,
        table: str,
        criteria: Criteria | None = None,
        options: FindOptions | Mapping[str, Any] | None = None,
    ) -> list[Row]:
        """Fetch rows matching all criteria, with optional limit/offset/sort."""
        ...

    async def find_one(
        self,
        table: str,
        criteria: Criteria | None = None,
        options: FindOptions | Mapping[str, Any] | None = None,
    ) -> Row | None:
        """find_all() with the limit forced to 1; the first row or None."""
        ...

    async def count(self, table: str, criteria: Criteria | None = None) -> int:
        """Count rows matching all criteria."""
        ...

    async def create_table(self, table: str, schema: Mapping[str, Any]) -> None:
        """Create a table (or collection) if it does not exist."""
        ...

    async def drop_table(self, table: str) -> None:
        """Drop a table (or collection) if it exists."""
        ...

    async def create_index(
        self,
        table: str,
        columns: Sequence[Any],
        options: IndexOptions | Mapping[str, Any] | None = None,
    ) -> str:
        """Create an index and return its name."""
        ...

    async def drop_index(self, table: str, name: str) -> None:
        """Drop the named index."""
        ...

    async def begin_transaction(self) -> None:
        """Start the single transaction this connection may hold."""
        ...

    async def commit(self) -> None:
        """Commit the active transaction."""
        ...

    async def rollback(self) -> None:
        """Roll back the active transaction."""
        ...


class Connection:
    """Base class for engine connections.

    Holds the engine config and the connected/disconnected state. Every
    operation of the surface raises ``ContractViolation`` unless the
    engine subclass overrides it. Abstract bases (``Connection``,
    ``SQLConnection``) cannot be instantiated.
    """

    # Set in the class body of each base that must not be instantiated directly
    _abstract = True

    def __new__(cls, *args: Any, **kwargs: Any) -> Connection:
        """Refuse direct instantiation of abstract bases."""
        if cls.__dict__.get("_abstract", False):
            raise ContractViolation(
                cls.__name__, "__init__", f"{cls.__name__} is abstract and must be subclassed"
            )
        return super().__new__(cls)

    def __init__(self, config: ConnectionConfig) -> None:
        """Initialize with an engine config. Does not touch the engine."""
        self._config = config
        self._connected = False
        # One connect()/disconnect() at a time
        self._lifecycle_lock = asyncio.Lock()

    @property
    def config(self) -> ConnectionConfig:
        """The (immutable) config this connection was built with."""
        return self._config

    @property
    def is_connected(self) -> bool:
        """True between connect() and disconnect()."""
        return self._connected

    @property
    def in_transaction(self) -> bool:
        """True while a transaction is active. Engines with transactions override."""
        return False

    # -- Lifecycle --

    async def connect(self) -> None:
        """Open the engine connection or pool. No-op when already connected."""
        async with self._lifecycle_lock:
            if self._connected:
                return
            await self._connect()
            self._connected = True
        logger.info("%s connected", type(self).__name__)

    async def disconnect(self) -> None:
        """Release the engine. An open transaction is rolled back first."""
        async with self._lifecycle_lock:
            if not self._connected:
                return
            try:
                if self.in_transaction:
                    logger.warning(
                        "%r disconnecting with an open transaction; rolling back", self
                    )
                    await self.rollback()
            finally:
                await self._disconnect()
                self._connected = False
        logger.info("%s disconnected", type(self).__name__)

    async def __aenter__(self) -> Connection:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Connection]:
        """Run a block in a transaction: commit on success, roll back on error."""
        await self.begin_transaction()
        try:
            yield self
        except BaseException:
            await self.rollback()
            raise
        await self.commit()

    async def _connect(self) -> None:
        self._not_implemented("_connect")

    async def _disconnect(self) -> None:
        self._not_implemented("_disconnect")

    # -- Raw pass-throughs --

    async def query(self, sql: str, params: Sequence[Any] = ()) -> Any:
        """Run raw SQL. Only relational engines provide this."""
        self._not_implemented("query")

    async def command(self, command: Mapping[str, Any]) -> Any:
        """Run a native database command. Only the document engine provides this."""
        self._not_implemented("command")

    # -- CRUD --

    async def insert(self, table: str, row: Mapping[str, Any]) -> Any:
        self._not_implemented("insert")

    async def update(
        self, table: str, id_or_criteria: Selector | Criteria | Any, updates: Mapping[str, Any]
    ) -> int:
        self._not_implemented("update")

    async def delete(self, table: str, id_or_criteria: Selector | Criteria | Any) -> int:
        self._not_implemented("delete")

    async def find_by_id(self, table: str, id: Any) -> Row | None:
        self._not_implemented("find_by_id")

    async def find_by(self, table: str, column: str, value: Any) -> list[Row]:
        self._not_implemented("find_by")

    async def find_all(
        self,
        table: str,
        criteria: Criteria | None = None,
        options: FindOptions | Mapping[str, Any] | None = None,
    ) -> list[Row]:
        self._not_implemented("find_all")

    async def find_one(
        self,
        table: str,
        criteria: Criteria | None = None,
        options: FindOptions | Mapping[str, Any] | None = None,
    ) -> Row | None:
        self._not_implemented("find_one")

    async def count(self, table: str, criteria: Criteria | None = None) -> int:
        self._not_implemented("count")

    # -- Schema --

    async def create_table(self, table: str, schema: Mapping[str, Any]) -> None:
        self._not_implemented("create_table")

    async def drop_table(self, table: str) -> None:
        self._not_implemented("drop_table")

    async def create_index(
        self,
        table: str,
        columns: Sequence[Any],
        options: IndexOptions | Mapping[str, Any] | None = None,
    ) -> str:
        self._not_implemented("create_index")

    async def drop_index(self, table: str, name: str) -> None:
        self._not_implemented("drop_index")

    # -- Transactions --

    async def begin_transaction(self) -> None:
        self._not_implemented("begin_transaction")

    async def commit(self) -> None:
        self._not_implemented("commit")

    async def rollback(self) -> None:
        self._not_implemented("rollback")

    # -- Helpers --

    def _require_connected(self, operation: str) -> None:
        """Raise LifecycleError unless connect() has completed."""
        if not self._connected:
            raise LifecycleError(
                f"{type(self).__name__}.{operation} called while disconnected; call connect() first"
            )

    def _not_implemented(self, method_name: str) -> NoReturn:
        raise ContractViolation(type(self).__name__, method_name)

    def __repr__(self) -> str:
        state = "connected" if self._connected else "disconnected"
        return f"<{type(self).__name__} {state}>"
