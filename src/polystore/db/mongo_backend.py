"""MongoDB implementation of the connection contract.

Tables map to collections and rows to documents. Criteria mappings are
used directly as filter documents; a bare id is coerced to ``ObjectId``
when it looks like one. Transactions need a client session, which this
connection does not manage, so the transaction calls always fail with
``UnsupportedOperation``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

import pymongo.errors
from bson import ObjectId
from pymongo import ASCENDING, AsyncMongoClient

from polystore.db.backend import Connection, Row
from polystore.db.criteria import ByCriteria, ById, Criteria, Selector, to_selector
from polystore.errors import ConfigurationError, LifecycleError, UnsupportedOperation
from polystore.models.config import MongoConfig
from polystore.models.options import FindOptions, IndexOptions

if TYPE_CHECKING:
    from pymongo.asynchronous.collection import AsyncCollection
    from pymongo.asynchronous.database import AsyncDatabase

logger = logging.getLogger(__name__)

_NO_TRANSACTIONS = "MongoDB transactions require a client session; use a session-aware adapter"


def coerce_id(value: Any) -> Any:
    """Return ``value`` as an ObjectId when it is one in string form."""
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def selector_filter(selector: Selector) -> dict[str, Any]:
    """Filter document for a selector."""
    if isinstance(selector, ById):
        return {"_id": coerce_id(selector.id)}
    return dict(selector.criteria)


class MongoConnection(Connection):
    """MongoDB database reached through pymongo's async client."""

    def __init__(self, config: MongoConfig | None = None) -> None:
        """Initialize with a MongoDB config. The client is created by connect()."""
        config = config if config is not None else MongoConfig()
        if not isinstance(config, MongoConfig):
            raise ConfigurationError(
                f"MongoConnection requires MongoConfig, got {type(config).__name__}"
            )
        super().__init__(config)
        self._client: AsyncMongoClient[Row] | None = None
        self._db: AsyncDatabase[Row] | None = None

    async def _connect(self) -> None:
        config = self._config
        if not config.uri or not config.database:
            raise ConfigurationError("MongoDB config requires 'uri' and 'database'")
        try:
            client: AsyncMongoClient[Row] = AsyncMongoClient(config.uri)
        except pymongo.errors.ConfigurationError as e:
            raise ConfigurationError(f"Invalid MongoDB URI: {e}") from e

        try:
            await client.admin.command("ping")
        except BaseException:
            await client.close()
            raise
        self._client = client
        self._db = client[config.database]
        logger.info("Connected to MongoDB database %s", config.database)

    async def _disconnect(self) -> None:
        if self._client is not None:
            await self._client.close()
        self._client = None
        self._db = None

    def get_collection(self, table: str) -> AsyncCollection[Row]:
        """Return the native collection handle for ``table``."""
        self._require_connected("get_collection")
        return self._database[table]

    async def command(self, command: Mapping[str, Any]) -> Any:
        """Run a database command document, e.g. ``{"ping": 1}``."""
        self._require_connected("command")
        return await self._database.command(dict(command))

    # -- CRUD --

    async def insert(self, table: str, row: Mapping[str, Any]) -> Any:
        """Insert a document and return its ``_id``. The caller's mapping is not modified."""
        self._require_connected("insert")
        result = await self._database[table].insert_one(dict(row))
        return result.inserted_id

    async def update(
        self, table: str, id_or_criteria: Selector | Criteria | Any, updates: Mapping[str, Any]
    ) -> int:
        """``$set`` the updates on every matching document; returns the match count."""
        self._require_connected("update")
        if not updates:
            raise ValueError("update requires at least one field to set")
        filter_ = self._write_filter(to_selector(id_or_criteria))
        result = await self._database[table].update_many(filter_, {"$set": dict(updates)})
        return result.matched_count

    async def delete(self, table: str, id_or_criteria: Selector | Criteria | Any) -> int:
        """Delete every matching document; returns the deleted count."""
        self._require_connected("delete")
        filter_ = self._write_filter(to_selector(id_or_criteria))
        result = await self._database[table].delete_many(filter_)
        return result.deleted_count

    async def find_by_id(self, table: str, id: Any) -> Row | None:
        self._require_connected("find_by_id")
        return await self._database[table].find_one({"_id": coerce_id(id)})

    async def find_by(self, table: str, column: str, value: Any) -> list[Row]:
        self._require_connected("find_by")
        return await self._database[table].find({column: value}).to_list(length=None)

    async def find_all(
        self,
        table: str,
        criteria: Criteria | None = None,
        options: FindOptions | Mapping[str, Any] | None = None,
    ) -> list[Row]:
        self._require_connected("find_all")
        opts = FindOptions.coerce(options)
        cursor = self._database[table].find(dict(criteria or {}))
        if opts.sort:
            cursor = cursor.sort(list(opts.sort.items()))
        if opts.offset:
            cursor = cursor.skip(opts.offset)
        if opts.limit is not None:
            cursor = cursor.limit(opts.limit)
        return await cursor.to_list(length=None)

    async def find_one(
        self,
        table: str,
        criteria: Criteria | None = None,
        options: FindOptions | Mapping[str, Any] | None = None,
    ) -> Row | None:
        self._require_connected("find_one")
        opts = FindOptions.coerce(options).model_copy(update={"limit": 1})
        docs = await self.find_all(table, criteria, opts)
        return docs[0] if docs else None

    async def count(self, table: str, criteria: Criteria | None = None) -> int:
        self._require_connected("count")
        return await self._database[table].count_documents(dict(criteria or {}))

    # -- Schema --

    async def create_table(self, table: str, schema: Mapping[str, Any] | None = None) -> None:
        """Create a collection if it does not exist.

        ``schema`` is passed as native collection options (``validator``,
        ``capped``, ...), not column types.
        """
        self._require_connected("create_table")
        db = self._database
        if table in await db.list_collection_names():
            return
        await db.create_collection(table, **dict(schema or {}))

    async def drop_table(self, table: str) -> None:
        self._require_connected("drop_table")
        await self._database.drop_collection(table)

    async def create_index(
        self,
        table: str,
        columns: Sequence[Any],
        options: IndexOptions | Mapping[str, Any] | None = None,
    ) -> str:
        """Create an index from field names or native ``(field, direction)`` pairs.

        Returns the index name MongoDB reports.
        """
        self._require_connected("create_index")
        if not columns:
            raise ValueError("create_index requires at least one field")
        opts = IndexOptions.coerce(options)
        keys = [(c, ASCENDING) if isinstance(c, str) else tuple(c) for c in columns]
        kwargs: dict[str, Any] = {"unique": opts.unique}
        if opts.name:
            kwargs["name"] = opts.name
        return await self._database[table].create_index(keys, **kwargs)

    async def drop_index(self, table: str, name: str) -> None:
        self._require_connected("drop_index")
        await self._database[table].drop_index(name)

    # -- Transactions --

    async def begin_transaction(self) -> None:
        self._require_connected("begin_transaction")
        raise UnsupportedOperation(type(self).__name__, "begin_transaction", _NO_TRANSACTIONS)

    async def commit(self) -> None:
        self._require_connected("commit")
        raise UnsupportedOperation(type(self).__name__, "commit", _NO_TRANSACTIONS)

    async def rollback(self) -> None:
        self._require_connected("rollback")
        raise UnsupportedOperation(type(self).__name__, "rollback", _NO_TRANSACTIONS)

    # -- Helpers --

    @staticmethod
    def _write_filter(selector: Selector) -> dict[str, Any]:
        if isinstance(selector, ByCriteria) and not selector.criteria:
            raise ValueError("empty criteria would match every document; pass explicit criteria")
        return selector_filter(selector)

    @property
    def _database(self) -> AsyncDatabase[Row]:
        if self._db is None:
            raise LifecycleError("MongoDB client is not open")
        return self._db
