"""
Exception classes for query execution and result mapping.

Errors fall into four groups:

- configuration errors, raised at the call that breaks the contract
- driver errors, wrapped into `QueryError` with the original cause kept
- mapping errors, raised while converting result rows
- result-state errors, raised when a result is read before it exists
"""
import re
import sqlite3

import psycopg
import sqlalchemy.exc

# Message fragments of errors that usually go away on a fresh connection
_TRANSIENT_MESSAGES = {
    'tls': [r'ssl', r'tls'],
    'dropped': [r'connection.*(closed|reset|refused|lost|terminated|broken)',
                r'server closed', r'eof detected', r'broken pipe'],
    'timeout': [r'time(d )?out'],
    'network': [r'could not connect', r'no route to host',
                r'(network|host).*(unreachable|down|error)'],
    'capacity': [r'database.*unavailable', r'too many connections', r'connection pool'],
}

_TRANSIENT = re.compile('|'.join(p for group in _TRANSIENT_MESSAGES.values() for p in group),
                        re.IGNORECASE)


def is_retryable_error(exc: BaseException) -> bool:
    """Whether `exc` looks transient (network drop, timeout, server busy)."""
    return _TRANSIENT.search(str(exc)) is not None


class DatabaseError(Exception):
    """Base class for all dbquery errors.
    """


class ConfigurationError(DatabaseError):
    """Invalid use of the API, detected at the offending call.
    """


class ConnectionFailure(DatabaseError):
    """No connection could be obtained from the source."""


class QueryError(DatabaseError):
    """Driver error raised while preparing, executing or fetching a statement.

    The SQL text (or the query name when one was set) is kept on `sql`.
    """

    def __init__(self, message: str, sql: str | None = None) -> None:
        super().__init__(message)
        self.sql = sql


class IntegrityViolationError(QueryError):
    """A statement broke a key, unique, not-null or check constraint."""


class MappingError(DatabaseError):
    """Result column could not be mapped onto the target type.
    """


class TypeConversionError(MappingError):
    """A type handler rejected a value."""


class ResultStateError(DatabaseError):
    """A result accessor was used before the matching execute call.
    """


class TransactionError(DatabaseError):
    """Transactional callback failed and the transaction was rolled back.
    """


DriverError = (
    psycopg.Error,
    sqlite3.Error,
    )

DbConnectionError = (
    psycopg.OperationalError,
    psycopg.InterfaceError,
    sqlite3.OperationalError,
    sqlite3.InterfaceError,
    sqlalchemy.exc.OperationalError,
    sqlalchemy.exc.InterfaceError,
    ConnectionFailure,
    )

IntegrityError = (
    psycopg.IntegrityError,
    sqlite3.IntegrityError,
    IntegrityViolationError,
    )

UniqueViolation = (
    psycopg.errors.UniqueViolation,
    sqlite3.IntegrityError,
    IntegrityViolationError,
    )


def wrap_driver_error(err: BaseException, action: str, sql: str | None = None) -> QueryError:
    """Translate a driver exception into a `QueryError`.

    Constraint violations become `IntegrityViolationError`. The caller raises
    the result with `from err` so the driver error stays on `__cause__`.
    """
    message = f'Error {action}'
    if sql:
        message += f' for query:\n{sql}'
    message += f'\n{err}'
    if isinstance(err, IntegrityError):
        return IntegrityViolationError(message, sql=sql)
    return QueryError(message, sql=sql)
