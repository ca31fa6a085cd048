"""Shared test fixtures and engine fakes."""

import asyncio
import itertools
from unittest.mock import AsyncMock

import aiomysql
import asyncpg
import pytest
import pytest_asyncio
from bson import ObjectId

from polystore.db import mongo_backend
from polystore.db.mongo_backend import MongoConnection
from polystore.db.mysql_backend import MySQLConnection
from polystore.db.postgres_backend import PostgresConnection
from polystore.db.sqlite_backend import SQLiteConnection
from polystore.models.config import MongoConfig, MySQLConfig, PostgresConfig, SQLiteConfig

USERS_SCHEMA = {
    "id": "INTEGER PRIMARY KEY AUTOINCREMENT",
    "email": "TEXT NOT NULL",
    "name": "TEXT",
    "age": "INTEGER",
}


@pytest_asyncio.fixture
async def sqlite_db():
    """Connected in-memory SQLite connection."""
    conn = SQLiteConnection(SQLiteConfig(path=":memory:"))
    await conn.connect()
    yield conn
    await conn.disconnect()


@pytest_asyncio.fixture
async def users(sqlite_db):
    """SQLite connection with an empty ``users`` table."""
    await sqlite_db.create_table("users", USERS_SCHEMA)
    return sqlite_db


# -- Pooled SQL fakes --


class _Acquire:
    """Stand-in for a driver's pool-acquire object: awaitable and async context manager."""

    def __init__(self, pool):
        self._pool = pool
        self._conn = None

    def __await__(self):
        return self._checkout().__await__()

    async def _checkout(self):
        # A real pool suspends while handing out a connection
        await asyncio.sleep(0)
        return self._pool.checkout()

    async def __aenter__(self):
        await asyncio.sleep(0)
        self._conn = self._pool.checkout()
        return self._conn

    async def __aexit__(self, *exc):
        await self._pool.checkin(self._conn)
        return False


class _FakePool:
    """Records statements and serves canned results in order.

    Each queued result is a dict with any of ``rows``, ``rowcount``,
    ``lastrowid`` (MySQL) or ``status`` (PostgreSQL).
    """

    def __init__(self):
        self.statements: list[tuple[str, tuple]] = []
        self.results: list[dict] = []
        self.acquired = 0
        self.released: list[object] = []
        self.closed = False
        self._ids = itertools.count(1)

    def queue(self, **result):
        self.results.append(result)

    def next_result(self) -> dict:
        return self.results.pop(0) if self.results else {}

    def checkout(self):
        self.acquired += 1
        return self.make_connection(next(self._ids))

    async def checkin(self, conn):
        self.released.append(conn)

    @property
    def outstanding(self) -> int:
        return self.acquired - len(self.released)

    def acquire(self):
        return _Acquire(self)


class FakeMySQLCursor:
    def __init__(self, conn):
        self._conn = conn
        self._rows: list[dict] = []
        self.rowcount = -1
        self.lastrowid = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, sql, args=None):
        self._conn.pool.statements.append((sql, args))
        result = self._conn.pool.next_result()
        self._rows = result.get("rows", [])
        self.rowcount = result.get("rowcount", len(self._rows))
        self.lastrowid = result.get("lastrowid")

    async def fetchall(self):
        return tuple(self._rows)


class FakeMySQLConnection:
    def __init__(self, pool, ident):
        self.pool = pool
        self.ident = ident
        self.begin = AsyncMock()
        self.commit = AsyncMock()
        self.rollback = AsyncMock()

    def cursor(self):
        return FakeMySQLCursor(self)


class FakeMySQLPool(_FakePool):
    """aiomysql.Pool stand-in; release() is synchronous like aiomysql's."""

    def make_connection(self, ident):
        return FakeMySQLConnection(self, ident)

    def release(self, conn):
        self.released.append(conn)

    async def checkin(self, conn):
        self.release(conn)

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass


class FakePgTransaction:
    def __init__(self):
        self.start = AsyncMock()
        self.commit = AsyncMock()
        self.rollback = AsyncMock()


class FakePgConnection:
    def __init__(self, pool, ident):
        self.pool = pool
        self.ident = ident
        self.tx = FakePgTransaction()

    def transaction(self):
        return self.tx

    async def fetch(self, sql, *args):
        self.pool.statements.append((sql, args))
        return self.pool.next_result().get("rows", [])

    async def execute(self, sql, *args):
        self.pool.statements.append((sql, args))
        return self.pool.next_result().get("status", "")


class FakePgPool(_FakePool):
    """asyncpg.Pool stand-in; release() and close() are coroutines like asyncpg's."""

    def make_connection(self, ident):
        return FakePgConnection(self, ident)

    async def release(self, conn):
        self.released.append(conn)

    async def close(self):
        self.closed = True


@pytest.fixture
def mysql_pool(monkeypatch):
    """Fake aiomysql pool installed behind aiomysql.create_pool."""
    pool = FakeMySQLPool()
    monkeypatch.setattr(aiomysql, "create_pool", AsyncMock(return_value=pool))
    return pool


@pytest_asyncio.fixture
async def mysql_db(mysql_pool):
    conn = MySQLConnection(MySQLConfig(user="app", password="secret", database="app"))
    await conn.connect()
    yield conn
    await conn.disconnect()


@pytest.fixture
def pg_pool(monkeypatch):
    """Fake asyncpg pool installed behind asyncpg.create_pool."""
    pool = FakePgPool()
    monkeypatch.setattr(asyncpg, "create_pool", AsyncMock(return_value=pool))
    return pool


@pytest_asyncio.fixture
async def pg_db(pg_pool):
    conn = PostgresConnection(PostgresConfig(dsn="postgresql://app@localhost/app"))
    await conn.connect()
    yield conn
    await conn.disconnect()


# -- Document store fake --


def _matches(doc: dict, filter_: dict) -> bool:
    return all(doc.get(k) == v for k, v in filter_.items())


class FakeInsertOneResult:
    def __init__(self, inserted_id):
        self.inserted_id = inserted_id


class FakeUpdateResult:
    def __init__(self, matched_count):
        self.matched_count = matched_count


class FakeDeleteResult:
    def __init__(self, deleted_count):
        self.deleted_count = deleted_count


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs
        self.sort_spec = None
        self.skip_n = 0
        self.limit_n = 0

    def sort(self, spec):
        self.sort_spec = spec
        for field, direction in reversed(spec):
            self._docs.sort(key=lambda d: d.get(field), reverse=direction == -1)
        return self

    def skip(self, n):
        self.skip_n = n
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    async def to_list(self, length=None):
        docs = self._docs[self.skip_n :]
        if self.limit_n:
            docs = docs[: self.limit_n]
        return [dict(d) for d in docs]


class FakeCollection:
    """Equality-filter subset of AsyncCollection, backed by a list."""

    def __init__(self):
        self.docs: list[dict] = []
        self.indexes: dict[str, tuple] = {}

    async def insert_one(self, doc):
        doc.setdefault("_id", ObjectId())
        self.docs.append(doc)
        return FakeInsertOneResult(doc["_id"])

    def find(self, filter_):
        return FakeCursor([d for d in self.docs if _matches(d, filter_)])

    async def find_one(self, filter_):
        for d in self.docs:
            if _matches(d, filter_):
                return dict(d)
        return None

    async def update_many(self, filter_, update):
        matched = [d for d in self.docs if _matches(d, filter_)]
        for d in matched:
            d.update(update["$set"])
        return FakeUpdateResult(len(matched))

    async def delete_many(self, filter_):
        before = len(self.docs)
        self.docs = [d for d in self.docs if not _matches(d, filter_)]
        return FakeDeleteResult(before - len(self.docs))

    async def count_documents(self, filter_):
        return sum(1 for d in self.docs if _matches(d, filter_))

    async def create_index(self, keys, **kwargs):
        name = kwargs.get("name") or "_".join(f"{f}_{d}" for f, d in keys)
        self.indexes[name] = (keys, kwargs)
        return name

    async def drop_index(self, name):
        del self.indexes[name]


class FakeDatabase:
    def __init__(self):
        self.collections: dict[str, FakeCollection] = {}
        self.command = AsyncMock(return_value={"ok": 1.0})
        self.created: list[tuple[str, dict]] = []

    def __getitem__(self, name):
        return self.collections.setdefault(name, FakeCollection())

    async def list_collection_names(self):
        return list(self.collections)

    async def create_collection(self, name, **options):
        self.created.append((name, options))
        return self[name]

    async def drop_collection(self, name):
        self.collections.pop(name, None)


class FakeMongoClient:
    def __init__(self, uri, **kwargs):
        self.uri = uri
        self.admin = FakeDatabase()
        self.databases: dict[str, FakeDatabase] = {}
        self.close = AsyncMock()

    def __getitem__(self, name):
        return self.databases.setdefault(name, FakeDatabase())


@pytest.fixture
def mongo_client(monkeypatch):
    """Install a FakeMongoClient factory and expose the created clients."""
    created: list[FakeMongoClient] = []

    def factory(uri, **kwargs):
        client = FakeMongoClient(uri, **kwargs)
        created.append(client)
        return client

    monkeypatch.setattr(mongo_backend, "AsyncMongoClient", factory)
    return created


@pytest_asyncio.fixture
async def mongo_db(mongo_client):
    conn = MongoConnection(MongoConfig(uri="mongodb://localhost:27017", database="app"))
    await conn.connect()
    yield conn
    await conn.disconnect()
