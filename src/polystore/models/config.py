"""Connection configuration models, one per engine."""

from typing import Literal
from urllib.parse import parse_qs, unquote, urlsplit

from pydantic import BaseModel, ConfigDict, Field

from polystore.errors import ConfigurationError


class _EngineConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class SQLiteConfig(_EngineConfig):
    """Embedded SQLite database, a file path or ``:memory:``."""

    engine: Literal["sqlite"] = "sqlite"
    path: str = ":memory:"


class MySQLConfig(_EngineConfig):
    """Pooled MySQL server connection."""

    engine: Literal["mysql"] = "mysql"
    host: str = "localhost"
    port: int = Field(default=3306, ge=1, le=65535)
    user: str | None = None
    password: str | None = Field(default=None, repr=False)
    database: str | None = None
    pool_size: int = Field(default=10, ge=1)


class PostgresConfig(_EngineConfig):
    """Pooled PostgreSQL server connection.

    ``dsn`` takes precedence over the individual fields when set.
    """

    engine: Literal["postgresql"] = "postgresql"
    dsn: str | None = Field(default=None, repr=False)
    host: str = "localhost"
    port: int = Field(default=5432, ge=1, le=65535)
    user: str | None = None
    password: str | None = Field(default=None, repr=False)
    database: str | None = None
    min_pool_size: int = Field(default=1, ge=0)
    pool_size: int = Field(default=10, ge=1)


class MongoConfig(_EngineConfig):
    """MongoDB deployment reachable at ``uri``."""

    engine: Literal["mongodb"] = "mongodb"
    uri: str = Field(default="mongodb://localhost:27017", repr=False)
    database: str = "test"


ConnectionConfig = SQLiteConfig | MySQLConfig | PostgresConfig | MongoConfig


def parse_database_url(url: str, *, pool_size: int = 10) -> ConnectionConfig:
    """Parse a database URL into the matching config model.

    Supported schemes: ``sqlite``, ``mysql``, ``postgresql``/``postgres``,
    ``mongodb``/``mongodb+srv``. A driver suffix (``mysql+aiomysql://``,
    ``postgresql+asyncpg://``) is ignored; ``mongodb+srv`` URLs are kept
    intact for the client to resolve.
    """
    parts = urlsplit(url)
    scheme = parts.scheme.split("+", 1)[0]
    try:
        if scheme == "sqlite":
            # sqlite:///relative.db, sqlite:////abs/path.db, sqlite://:memory:
            path = parts.netloc if parts.netloc == ":memory:" else parts.path[1:]
            return SQLiteConfig(path=path or ":memory:")
        if scheme == "mysql":
            return MySQLConfig(
                host=parts.hostname or "localhost",
                port=parts.port or 3306,
                user=unquote(parts.username) if parts.username else None,
                password=unquote(parts.password) if parts.password else None,
                database=parts.path.lstrip("/") or None,
                pool_size=pool_size,
            )
        if scheme in ("postgresql", "postgres"):
            dsn = url.replace(parts.scheme + "://", "postgresql://", 1)
            return PostgresConfig(
                dsn=dsn,
                database=parts.path.lstrip("/") or None,
                pool_size=pool_size,
            )
        if scheme == "mongodb":
            database = parts.path.lstrip("/")
            if not database:
                database = parse_qs(parts.query).get("authSource", ["test"])[0]
            return MongoConfig(uri=url, database=database)
    except ValueError as e:
        # pydantic's ValidationError and urlsplit's bad-port error are both ValueErrors
        raise ConfigurationError(f"Invalid database URL: {_redact(url)} ({e})") from e
    raise ConfigurationError(f"Unsupported database URL scheme: {parts.scheme!r}")


def _redact(url: str) -> str:
    """Hide the password portion of a URL for error messages."""
    parts = urlsplit(url)
    if parts.password:
        return url.replace(f":{parts.password}@", ":***@", 1)
    return url

