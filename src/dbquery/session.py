"""
Session: the entry point that owns a connection source and query defaults.

A Session holds:
1. The connection source connections are borrowed from
2. The type handler registry used by every query it creates
3. Query defaults from DatabaseOptions (case sensitivity, column mappings,
   generated keys and strict mapping)

Examples
    session = Session(drivername='sqlite', database='app.db')
    people = session.create_query('select * from person').execute_and_fetch(Person)
"""
import logging
from collections.abc import Callable, Mapping
from typing import Any, Self, TypeVar

from dbquery.connection import ConnectionWrapper
from dbquery.exceptions import DatabaseError, DriverError, TransactionError
from dbquery.exceptions import wrap_driver_error
from dbquery.handlers import TypeHandlerRegistry
from dbquery.options import DatabaseOptions
from dbquery.query import Query
from dbquery.source import ConnectionSource, EngineConnectionSource
from dbquery.strategy import IsolationLevel
from dbquery.transaction import Transaction

__all__ = ['Session']

logger = logging.getLogger(__name__)

T = TypeVar('T')


class Session:
    """Creates connection scopes, queries and transactions.

    Args:
        config: DatabaseOptions, a mapping of options or a ConnectionSource
        source: Borrow connections from this source instead of an engine
            built from the options
        registry: Type handler registry; a registry with the default
            handlers is created when omitted
        **kwargs: Option overrides
    """

    def __init__(self, config: DatabaseOptions | Mapping[str, Any] | ConnectionSource | None = None, /, *,
                 source: ConnectionSource | None = None,
                 registry: TypeHandlerRegistry | None = None, **kwargs: Any) -> None:
        if isinstance(config, ConnectionSource):
            config, source = None, config
        if source is not None:
            kwargs = {'drivername': source.dialect, 'validate': False, **kwargs}
            self.options = DatabaseOptions.from_config(config or {}, **kwargs)
            self.source = source
        else:
            self.options = DatabaseOptions.from_config(config, **kwargs)
            self.source = EngineConnectionSource(self.options)
        self.registry = registry or TypeHandlerRegistry()
        logger.debug(f'Created session for {self.options.drivername}')

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def __repr__(self) -> str:
        return f'Session({self.dialect}, source={self.source!r})'

    @property
    def dialect(self) -> str:
        return self.source.dialect

    def open(self, source: ConnectionSource | None = None) -> ConnectionWrapper:
        """Open a connection scope with auto-commit on.

        The caller closes it, best as a context manager.
        """
        return ConnectionWrapper(self, source or self.source)

    def create_query(self, sql: str, return_generated_keys: bool | None = None,
                     column_names: list[str] | tuple[str, ...] | None = None) -> Query:
        """Create a query on its own connection.

        The connection closes after the first call that consumes the query:
        an update, scalar, batch or eager fetch, or closing a lazy result.
        """
        connection = ConnectionWrapper(self, self.source, auto_close=True)
        try:
            return connection.create_query(sql, return_generated_keys=return_generated_keys,
                                           column_names=column_names)
        except Exception:
            connection.close()
            raise

    def begin_transaction(self, isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED,
                          source: ConnectionSource | None = None) -> ConnectionWrapper:
        """Open a connection scope with a transaction started.

        End it with `commit()` or `rollback()`; both close the connection by
        default.
        """
        connection = ConnectionWrapper(self, source or self.source)
        try:
            connection.begin(isolation_level)
        except DriverError as err:
            connection.close()
            raise wrap_driver_error(err, 'starting transaction') from err
        return connection

    def run_in_transaction(self, fn: Callable[[ConnectionWrapper, Any], T], argument: Any = None,
                           isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED) -> T:
        """Run `fn(connection, argument)` in a transaction and return its result.

        Commits when `fn` returns normally.

        Raises
            TransactionError: `fn` raised; the transaction was rolled back
        """
        connection = self.begin_transaction(isolation_level)
        try:
            result = fn(connection, argument)
        except Exception as err:
            connection.rollback()
            raise TransactionError(
                f'An error occurred while running in transaction. Transaction is rolled back: {err}'
            ) from err
        connection.commit()
        return result

    def with_connection(self, fn: Callable[[ConnectionWrapper, Any], T], argument: Any = None) -> T:
        """Run `fn(connection, argument)` on a connection that is always closed after.
        """
        with self.open() as connection:
            try:
                return fn(connection, argument)
            except DatabaseError:
                raise
            except Exception as err:
                raise DatabaseError(f'An error occurred while running with connection: {err}') from err

    def transaction(self, isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED) -> Transaction:
        """Transaction context manager."""
        return Transaction(self, isolation_level)

    def close(self) -> None:
        """Dispose the connection source."""
        self.source.dispose()
