"""
Connection scope: one borrowed DBAPI connection and its open statements.

The ConnectionWrapper:
1. Acquires a connection from a ConnectionSource and turns auto-commit on
2. Creates queries bound to the connection
3. Tracks every open statement so close() can release them
4. Records update counts, batch counts and generated keys
5. Rolls back on failure or close, restoring the original auto-commit
   setting before the connection goes back to its source
"""
import logging
from typing import TYPE_CHECKING, Any, Self

from dbquery.exceptions import DriverError, QueryError, ResultStateError
from dbquery.exceptions import wrap_driver_error
from dbquery.strategy import IsolationLevel, get_strategy

if TYPE_CHECKING:
    from dbquery.query import Query
    from dbquery.session import Session
    from dbquery.source import ConnectionSource
    from dbquery.statement import PreparedStatement

__all__ = ['ConnectionWrapper']

logger = logging.getLogger(__name__)


class ConnectionWrapper:
    """Wraps a DBAPI connection to track statements, results and timing.

    Args:
        session: Session providing type handlers and query defaults
        source: Where the connection is acquired from and released to
        auto_close: Close after the first query result is consumed
    """

    def __init__(self, session: 'Session', source: 'ConnectionSource',
                 auto_close: bool = False) -> None:
        self.session = session
        self.source = source
        self.auto_close = auto_close
        self.strategy = get_strategy(source.dialect)
        self.rollback_on_exception = True
        self.rollback_on_close = True
        self.dbapi_connection: Any = None
        self.driver_connection: Any = None
        self.calls = 0
        self.time = 0
        self._original_autocommit = True
        self._statements: dict['PreparedStatement', None] = {}
        self._result: int | None = None
        self._batch_result: list[int] | None = None
        self._keys: list[Any] | None = None
        self.can_get_keys = False
        self._open()

    def __enter__(self) -> Self:
        """Support for context manager protocol
        """
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        """Release the connection when exiting the context manager
        """
        self.close()

    def __repr__(self) -> str:
        state = 'closed' if self.closed else 'open'
        return f'ConnectionWrapper({self.dialect}, {state}, auto_close={self.auto_close})'

    def _open(self) -> None:
        self.dbapi_connection = self.source.acquire()
        self.driver_connection = getattr(self.dbapi_connection, 'driver_connection', self.dbapi_connection)
        self._original_autocommit = self.strategy.get_autocommit(self.driver_connection)
        self.strategy.enable_autocommit(self.driver_connection)
        logger.debug(f'Opened {self.dialect} connection')

    @property
    def dialect(self) -> str:
        """Return the dialect name ('postgresql' or 'sqlite')."""
        return self.strategy.dialect_name

    @property
    def closed(self) -> bool:
        return self.dbapi_connection is None

    @property
    def autocommit(self) -> bool:
        return self.strategy.get_autocommit(self.driver_connection)

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    def begin(self, isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED) -> Self:
        """Turn auto-commit off and fix the isolation level.
        """
        self.strategy.disable_autocommit(self.driver_connection)
        self.strategy.set_isolation_level(self.driver_connection, isolation_level)
        logger.debug(f'Transaction started with isolation level {isolation_level.value}')
        return self

    def create_query(self, sql: str, return_generated_keys: bool | None = None,
                     column_names: list[str] | tuple[str, ...] | None = None) -> 'Query':
        """Create a query bound to this connection.

        Args:
            sql: SQL text with `:name` parameters
            return_generated_keys: Fetch generated keys; session default when None
            column_names: Fetch generated keys of these columns only

        Returns
            Query
        """
        from dbquery.query import Query

        if self.closed:
            self._open()
        return Query(self, sql, return_generated_keys=return_generated_keys,
                     column_names=column_names)

    def create_query_with_params(self, sql: str, *params: Any) -> 'Query':
        """Create a query and bind `params` to `:p1`, `:p2`, ...
        """
        query = self.create_query(sql)
        try:
            return query.with_params(*params)
        except Exception:
            query.close()
            raise

    def register_statement(self, statement: 'PreparedStatement') -> None:
        self._statements[statement] = None

    def remove_statement(self, statement: 'PreparedStatement') -> None:
        self._statements.pop(statement, None)

    @property
    def statement_count(self) -> int:
        return len(self._statements)

    @property
    def result(self) -> int:
        """Affected rows of the last executed update."""
        if self._result is None:
            raise ResultStateError('It is required to call execute_update() before result is available')
        return self._result

    @result.setter
    def result(self, value: int) -> None:
        self._result = value

    @property
    def batch_result(self) -> list[int]:
        """Affected rows per entry of the last executed batch."""
        if self._batch_result is None:
            raise ResultStateError('It is required to call execute_batch() before batch_result is available')
        return self._batch_result

    @batch_result.setter
    def batch_result(self, value: list[int]) -> None:
        self._batch_result = value

    def set_keys(self, keys: list[Any] | None, can_get_keys: bool) -> None:
        self._keys = keys
        self.can_get_keys = can_get_keys

    def get_keys(self, type_: Any = None) -> list[Any]:
        """Generated keys of the last update or batch.

        Args:
            type_: Convert every key through the type handler for this type

        Raises
            ResultStateError: key retrieval was not enabled on the query
        """
        if not self.can_get_keys:
            raise ResultStateError(
                'Keys were not fetched from database. Please set return_generated_keys '
                'in create_query() to fetch generated keys'
            )
        keys = list(self._keys or [])
        if type_ is None:
            return keys
        handler = self.session.registry.get_handler(type_)
        return [handler.convert(key) for key in keys]

    def get_key(self, type_: Any = None) -> Any:
        """First generated key, or None when nothing was generated."""
        keys = self.get_keys(type_)
        return keys[0] if keys else None

    def on_exception(self) -> None:
        """Roll back after a failed execution when rollback_on_exception is set."""
        if self.rollback_on_exception:
            self.rollback(close_connection=self.auto_close)

    def commit(self, close_connection: bool = True) -> 'Session':
        """Commit the current transaction.

        Returns
            Session that created this connection
        """
        try:
            self.driver_connection.commit()
            logger.debug('Transaction committed')
        except DriverError as err:
            raise wrap_driver_error(err, 'committing transaction') from err
        finally:
            if close_connection:
                self.close_connection()
        return self.session

    def rollback(self, close_connection: bool = True) -> 'Session':
        """Roll back the current transaction. A failing rollback is logged.

        Returns
            Session that created this connection
        """
        if self.closed:
            return self.session
        try:
            self.driver_connection.rollback()
            logger.warning('Transaction rolled back')
        except Exception as err:
            logger.warning(f'Could not roll back transaction: {err}')
        if close_connection:
            self.close_connection()
        return self.session

    def close(self) -> None:
        """Close tracked statements, roll back an open transaction, release.

        Safe to call repeatedly.
        """
        if self.closed:
            return

        self._close_statements()
        try:
            if self.rollback_on_close and not self.autocommit:
                self.rollback(close_connection=False)
        except Exception as err:
            logger.warning(f'Could not read auto-commit state: {err}')
        self.close_connection()

    def _close_statements(self) -> None:
        statements = list(self._statements)
        self._statements.clear()
        for statement in statements:
            try:
                statement.close()
            except Exception as err:
                logger.warning(f'Could not close statement: {err}')

    def close_connection(self) -> None:
        """Restore the original auto-commit setting and release the connection.
        """
        if self.closed:
            return
        self._close_statements()
        connection, self.dbapi_connection = self.dbapi_connection, None
        driver_connection, self.driver_connection = self.driver_connection, None
        try:
            self.strategy.set_autocommit(driver_connection, self._original_autocommit)
        except Exception as err:
            logger.warning(f'Could not reset auto-commit: {err}')
        try:
            self.source.release(connection)
        except DriverError as err:
            raise QueryError(f'Could not close connection: {err}') from err
        finally:
            logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s (avg: {self.time/max(1,self.calls):.3f}s per query)')
