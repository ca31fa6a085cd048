"""Unified async data access over SQLite, MySQL, PostgreSQL and MongoDB."""

from polystore.db.backend import Connection, DataStore, Row
from polystore.db.connection import create_connection, open_connection
from polystore.db.criteria import ByCriteria, ById
from polystore.db.mongo_backend import MongoConnection
from polystore.db.mysql_backend import MySQLConnection
from polystore.db.postgres_backend import PostgresConnection
from polystore.db.sqlite_backend import SQLiteConnection

__all__ = [
    "ByCriteria",
    "ById",
    "Connection",
    "DataStore",
    "MongoConnection",
    "MySQLConnection",
    "PostgresConnection",
    "Row",
    "SQLiteConnection",
    "create_connection",
    "open_connection",
]
