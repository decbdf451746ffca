"""
Prepared statement over a DBAPI connection.

DBAPI has no separate prepare step, so a PreparedStatement keeps the SQL
text for the current binding together with the positional values and runs
them on a fresh cursor per execution. Result cursors handed out for
queries are tracked and closed with the statement.
"""
import logging
import time
from enum import Enum, auto
from functools import wraps
from typing import TYPE_CHECKING, Any

from dbquery.exceptions import ConfigurationError
from dbquery.sql import ParsedStatement

if TYPE_CHECKING:
    from dbquery.connection import ConnectionWrapper

logger = logging.getLogger(__name__)

_UNBOUND = object()


class KeyMode(Enum):
    """How a statement reports generated keys."""
    NONE = auto()
    ALL = auto()
    COLUMNS = auto()


def dumpsql(func):
    """Decorator for logging SQL, parameters and execution time."""
    @wraps(func)
    def wrapper(self, *args: Any, **kwargs: Any):
        start = time.time()
        logger.debug(f'SQL:\n{self.sql}\nargs: {self.describe_parameters()}')
        try:
            return func(self, *args, **kwargs)
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{self.sql}\nargs: {self.describe_parameters()}')
            raise
        finally:
            elapsed = time.time() - start
            self.connection.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


class PreparedStatement:
    """One statement per query object, re-bound before every execution.

    Key modes are fixed at creation: plain, all generated keys, or the keys
    of an explicit column list.
    """

    def __init__(self, connection: 'ConnectionWrapper', key_mode: KeyMode = KeyMode.NONE,
                 column_names: tuple[str, ...] | None = None) -> None:
        self.connection = connection
        self.strategy = connection.strategy
        self.key_mode = key_mode
        self.column_names = column_names
        self.sql = ''
        self.generated_keys: list[Any] = []
        self.closed = False
        self._parsed: ParsedStatement | None = None
        self._values: list[Any] = []
        self._batch: list[tuple] = []
        self._cursors: list[Any] = []

    def prepare(self, parsed: ParsedStatement) -> None:
        """Set the SQL for the next execution and reset all slots."""
        if self.closed:
            raise ConfigurationError('Statement is closed')
        if parsed is not self._parsed:
            self._parsed = parsed
            self.sql = parsed.sql
            if self.key_mode is not KeyMode.NONE:
                self.sql = self.strategy.build_generated_keys_sql(
                    parsed.sql, self.column_names if self.key_mode is KeyMode.COLUMNS else None)
        self._values = [_UNBOUND] * parsed.param_count

    def set_parameter(self, index: int, value: Any) -> None:
        """Set the value of a 1-based positional slot."""
        self._values[index - 1] = value

    def parameters(self) -> tuple:
        """Return bound values, failing on any slot left unbound."""
        missing = sorted({self._parsed.names[i] for i, v in enumerate(self._values) if v is _UNBOUND})
        if missing:
            raise ConfigurationError(f'No value bound for parameters {missing}')
        return tuple(self._values)

    def describe_parameters(self) -> tuple:
        return tuple(None if v is _UNBOUND else v for v in self._values)

    @property
    def batch_size(self) -> int:
        return len(self._batch)

    def _open_cursor(self) -> Any:
        return self.connection.dbapi_connection.cursor()

    def _run(self, cursor: Any, params: tuple) -> tuple[int, list[Any]]:
        cursor.execute(self.sql, params)
        if self.key_mode is not KeyMode.NONE:
            return self.strategy.fetch_generated_keys(cursor, self.sql)
        if cursor.description is not None:
            return len(cursor.fetchall()), []
        return cursor.rowcount, []

    @dumpsql
    def execute_update(self) -> int:
        """Execute once and return the affected row count.

        Generated keys, when requested, are left on `generated_keys`.
        """
        params = self.parameters()
        cursor = self._open_cursor()
        try:
            count, self.generated_keys = self._run(cursor, params)
            return count
        finally:
            cursor.close()

    @dumpsql
    def execute_query(self) -> Any:
        """Execute and return the open result cursor.

        The cursor stays tracked by this statement until `close_cursor`.
        """
        params = self.parameters()
        cursor = self._open_cursor()
        try:
            cursor.execute(self.sql, params)
        except Exception:
            cursor.close()
            raise
        self._cursors.append(cursor)
        return cursor

    def close_cursor(self, cursor: Any) -> None:
        """Close a result cursor unless `close` already did."""
        if cursor in self._cursors:
            self._cursors.remove(cursor)
            cursor.close()

    def add_batch(self) -> None:
        """Append the current bindings as one batch entry."""
        self._batch.append(self.parameters())

    @dumpsql
    def execute_batch(self) -> list[int]:
        """Run every batched entry and return per-entry affected row counts.

        Entries run one at a time on a single cursor so counts and generated
        keys are exact for each entry.
        """
        batch, self._batch = self._batch, []
        counts = []
        keys = []
        if not batch:
            self.generated_keys = keys
            return counts

        logger.debug(f'Executing batch of {len(batch)} entries')
        cursor = self._open_cursor()
        try:
            for params in batch:
                count, entry_keys = self._run(cursor, params)
                counts.append(count)
                keys.extend(entry_keys)
        finally:
            cursor.close()
        self.generated_keys = keys
        return counts

    def close(self) -> None:
        """Close every result cursor still open. Safe to call repeatedly."""
        if self.closed:
            return
        self.closed = True
        self._batch.clear()
        cursors, self._cursors = self._cursors, []
        for cursor in cursors:
            try:
                cursor.close()
            except Exception as err:
                logger.warning(f'Could not close cursor: {err}')
