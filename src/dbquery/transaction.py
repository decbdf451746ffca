"""
Transaction scope as a context manager.
"""
import logging
from typing import TYPE_CHECKING, Any, Self

from dbquery.strategy import IsolationLevel

if TYPE_CHECKING:
    from dbquery.connection import ConnectionWrapper
    from dbquery.query import Query
    from dbquery.session import Session

logger = logging.getLogger(__name__)


class Transaction:
    """Context manager for running multiple queries in a transaction.

    Every Transaction borrows its own connection, so transactions opened
    from different threads never share state. The block commits on normal
    exit and rolls back when it raises; either way the connection goes
    back to its source with its original auto-commit setting.

    Examples
        with session.transaction() as tx:
            tx.create_query('delete from person where id = :id').add_parameter('id', 1).execute_update()
            tx.create_query('update audit set n = n + 1').execute_update()
    """

    def __init__(self, session: 'Session',
                 isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED) -> None:
        self.session = session
        self.isolation_level = isolation_level
        self.connection: 'ConnectionWrapper | None' = None

    def __enter__(self) -> Self:
        self.connection = self.session.begin_transaction(self.isolation_level)
        logger.debug(f'Started transaction for connection {id(self.connection)}')
        return self

    def __exit__(self, exc_type: type | None, value: Exception | None, traceback: Any | None) -> None:
        connection, self.connection = self.connection, None
        if exc_type is not None:
            logger.warning(f'Rolling back the current transaction: {value}')
            connection.rollback()
            return
        connection.commit()
        logger.debug(f'Committed transaction for connection {id(connection)}')

    def create_query(self, sql: str, return_generated_keys: bool | None = None,
                     column_names: list[str] | tuple[str, ...] | None = None) -> 'Query':
        """Create a query inside the transaction."""
        return self.connection.create_query(sql, return_generated_keys=return_generated_keys,
                                            column_names=column_names)

    def create_query_with_params(self, sql: str, *params: Any) -> 'Query':
        return self.connection.create_query_with_params(sql, *params)
