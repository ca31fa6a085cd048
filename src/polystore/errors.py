"""Exception types raised by polystore connections.

Driver exceptions (``sqlite3.Error``, ``pymysql.err.MySQLError``,
``asyncpg.PostgresError``, ``pymongo.errors.PyMongoError``) are not wrapped:
they reach the caller exactly as the driver raised them.
"""


class PolystoreError(Exception):
    """Base class for errors raised by polystore itself."""


class ContractViolation(PolystoreError, NotImplementedError):
    """An operation was called on a connection type that does not implement it."""

    def __init__(self, class_name: str, method_name: str, detail: str | None = None) -> None:
        """Build the message from the concrete class and the missing method."""
        self.class_name = class_name
        self.method_name = method_name
        message = f"{class_name}.{method_name} is not implemented"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class UnsupportedOperation(ContractViolation):
    """An engine deliberately does not provide an operation."""


class LifecycleError(PolystoreError, RuntimeError):
    """Operation called in the wrong connection or transaction state."""


class ConfigurationError(PolystoreError, ValueError):
    """Connection parameters are missing or invalid."""
