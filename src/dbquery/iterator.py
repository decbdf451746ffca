"""
Lazy, forward-only iteration over a live result cursor.

Iterator states:

    OPEN --has_next--> POSITIONED --next--> OPEN
    OPEN --has_next (no row)--> EXHAUSTED --close--> CLOSED

The cursor is released when the rows run out, when a row fails to convert
or when the caller closes the iterable early. The owning connection is
closed as well only when auto-close was requested.
"""
import logging
from collections.abc import Callable
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Generic, Self, TypeVar

from dbquery.exceptions import DriverError, ResultStateError, wrap_driver_error

if TYPE_CHECKING:
    from dbquery.connection import ConnectionWrapper
    from dbquery.statement import PreparedStatement
    from dbquery.types import Column

logger = logging.getLogger(__name__)

T = TypeVar('T')


class IteratorState(Enum):
    OPEN = auto()
    POSITIONED = auto()
    EXHAUSTED = auto()
    CLOSED = auto()


class ResultSetIterator(Generic[T]):
    """Single-pass iterator that materializes one row per advance.

    `has_next` may be called any number of times; the cursor is advanced at
    most once per row handed out.
    """

    def __init__(self, iterable: 'ResultSetIterable[T]') -> None:
        self._iterable = iterable
        self._state = IteratorState.OPEN
        self._next: T | None = None

    @property
    def state(self) -> IteratorState:
        if self._iterable.closed:
            return IteratorState.CLOSED
        return self._state

    def has_next(self) -> bool:
        if self._state is IteratorState.POSITIONED:
            return True
        if self._state is not IteratorState.OPEN or self._iterable.released:
            return False

        try:
            raw = self._iterable.cursor.fetchone()
        except DriverError as err:
            self._iterable.release()
            raise wrap_driver_error(err, 'fetching row', self._iterable.sql) from err

        if raw is None:
            self._state = IteratorState.EXHAUSTED
            self._iterable.release()
            return False

        try:
            self._next = self._iterable.handler(raw)
        except Exception:
            self._iterable.release()
            raise
        self._state = IteratorState.POSITIONED
        return True

    def __next__(self) -> T:
        if not self.has_next():
            raise StopIteration
        item, self._next = self._next, None
        self._state = IteratorState.OPEN
        return item

    def __iter__(self) -> Self:
        return self


class ResultSetIterable(Generic[T]):
    """Result cursor plus its row conversion.

    Iterate once. Use as a context manager, or call `close`, when iteration
    may stop before the rows run out.
    """

    def __init__(self, statement: 'PreparedStatement', cursor: Any,
                 columns: 'list[Column]', handler: Callable[[tuple], T],
                 connection: 'ConnectionWrapper', auto_close_connection: bool = False,
                 sql: str | None = None) -> None:
        self.statement = statement
        self.cursor = cursor
        self.columns = columns
        self.handler = handler
        self.connection = connection
        self.auto_close_connection = auto_close_connection
        self.sql = sql
        self.closed = False
        self.released = False
        self._iterator: ResultSetIterator[T] | None = None

    def __iter__(self) -> ResultSetIterator[T]:
        if self._iterator is not None:
            raise ResultStateError('Result set can only be iterated once')
        self._iterator = ResultSetIterator(self)
        return self._iterator

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def release(self) -> None:
        """Release the cursor and, with auto-close, the connection.

        Runs at most once; a failing cursor close is logged.
        """
        if self.released:
            return
        self.released = True
        try:
            self.statement.close_cursor(self.cursor)
        except Exception as err:
            logger.warning(f'Could not close result cursor: {err}')
        finally:
            if self.auto_close_connection:
                self.connection.close()

    def close(self) -> None:
        """Close the result set. Safe to call repeatedly."""
        self.closed = True
        self.release()
