"""
Query objects: named parameters in, rows, objects or scalars out.

A Query is created from a ConnectionWrapper. It parses its SQL once,
collects named parameters, builds and re-binds a single prepared statement
per execution, and hands result sets to the mapping layer either eagerly
or through a lazy iterable.
"""
import logging
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Self

from dbquery.binder import ParameterBinder
from dbquery.exceptions import ConfigurationError, DriverError, ResultStateError
from dbquery.exceptions import wrap_driver_error
from dbquery.iterator import ResultSetIterable
from dbquery.mapping import ColumnMappings, ResultSetHandlerFactory
from dbquery.sql import parse_sql
from dbquery.statement import KeyMode, PreparedStatement
from dbquery.table import LazyTable, Row, Table
from dbquery.types import columns_from_cursor_description

if TYPE_CHECKING:
    from dbquery.connection import ConnectionWrapper

__all__ = ['Query']

logger = logging.getLogger(__name__)


class Query:
    """Parameterized SQL bound to one connection scope.

    Args:
        connection: Owning connection scope
        sql: SQL text with `:name` parameters
        return_generated_keys: Fetch generated keys after updates; the
            session default applies when None
        column_names: Fetch generated keys of these columns only
    """

    def __init__(self, connection: 'ConnectionWrapper', sql: str,
                 return_generated_keys: bool | None = None,
                 column_names: list[str] | tuple[str, ...] | None = None) -> None:
        self.connection = connection
        self.session = connection.session
        self.registry = self.session.registry
        options = self.session.options

        self.parsed = parse_sql(sql, connection.strategy.get_placeholder_style())
        self.binder = ParameterBinder(self.parsed, self.registry)

        if column_names:
            self.key_mode = KeyMode.COLUMNS
            self.column_names = tuple(column_names)
        else:
            if return_generated_keys is None:
                return_generated_keys = options.return_generated_keys
            self.key_mode = KeyMode.ALL if return_generated_keys else KeyMode.NONE
            self.column_names = None

        self.name: str | None = None
        self.case_sensitive = options.default_case_sensitive
        self.auto_derive_column_names = options.auto_derive_column_names
        self.strict_mapping = options.throw_on_mapping_failure
        self.column_mappings: dict[str, str] = {}
        self._max_batch_records = 0
        self.current_batch_records = 0
        self._statement: PreparedStatement | None = None

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def __repr__(self) -> str:
        return f'Query({self.name or self.parsed.sql!r})'

    @property
    def parameter_names(self) -> list[str]:
        return list(self.parsed.param_map)

    #
    # parameters
    #

    def add_parameter(self, name: str, value: Any, type_: Any = None) -> Self:
        """Bind a value to a named parameter.

        None binds SQL NULL. A list, tuple or set binds one slot per element
        unless `type_` is given.

        Raises
            ConfigurationError: `name` does not appear in the SQL
        """
        self.binder.add(name, value, type_)
        return self

    def add_null_parameter(self, name: str) -> Self:
        self.binder.add_null(name)
        return self

    def add_parameters(self, name: str, *values: Any, type_: Any = None) -> Self:
        """Bind several values to one named parameter, e.g. for `IN (:ids)`."""
        self.binder.add_array(name, values, type_)
        return self

    def with_params(self, *values: Any) -> Self:
        """Bind positional values to the parameters `:p1`, `:p2`, ..."""
        for i, value in enumerate(values, 1):
            self.add_parameter(f'p{i}', value)
        return self

    def bind(self, obj: Any) -> Self:
        """Bind every attribute of `obj` (or key of a mapping) named in the SQL."""
        if isinstance(obj, Mapping):
            for name, value in obj.items():
                if name in self.parsed.param_map:
                    self.add_parameter(name, value)
            return self

        for name in self.parsed.param_map:
            if hasattr(obj, name):
                self.add_parameter(name, getattr(obj, name))
        return self

    #
    # query settings
    #

    def set_name(self, name: str) -> Self:
        self.name = name
        return self

    def set_case_sensitive(self, case_sensitive: bool) -> Self:
        self.case_sensitive = case_sensitive
        return self

    def set_auto_derive_column_names(self, auto_derive: bool) -> Self:
        self.auto_derive_column_names = auto_derive
        return self

    def throw_on_mapping_failure(self, strict: bool) -> Self:
        """Fail on unmapped columns (True) or skip them (False)."""
        self.strict_mapping = strict
        return self

    def set_column_mappings(self, mappings: Mapping[str, str]) -> Self:
        self.column_mappings = dict(mappings)
        return self

    def add_column_mapping(self, column: str, path: str) -> Self:
        """Map a result column onto a member, `a.b` for a nested member."""
        self.column_mappings[column] = path
        return self

    @property
    def max_batch_records(self) -> int:
        return self._max_batch_records

    @max_batch_records.setter
    def max_batch_records(self, value: int) -> None:
        if value < 0:
            raise ConfigurationError(f'max_batch_records should be a nonnegative value, got {value}')
        self._max_batch_records = value

    def set_max_batch_records(self, value: int) -> Self:
        """Flush the batch implicitly after every `value` entries, never when 0."""
        self.max_batch_records = value
        return self

    @property
    def is_explicit_execute_batch_required(self) -> bool:
        """Whether batched entries are waiting for `execute_batch`."""
        return self._statement is not None and self._statement.batch_size > 0

    #
    # execution
    #

    @property
    def _label(self) -> str:
        if self.name:
            return self.name
        if self._statement is not None and self._statement.sql:
            return self._statement.sql
        return self.parsed.sql

    def _build_statement(self, allow_arrays: bool = True) -> PreparedStatement:
        if self.connection.closed:
            raise ResultStateError('Cannot execute query: its connection is closed')
        if self._statement is None or self._statement.closed:
            self._statement = PreparedStatement(self.connection, self.key_mode, self.column_names)
            self.connection.register_statement(self._statement)
        # pending batch entries are bound to the unexpanded SQL
        allow_arrays = allow_arrays and self._statement.batch_size == 0
        self.binder.bind(self._statement, allow_arrays=allow_arrays)
        return self._statement

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        """Run the exception hook and wrap driver errors."""
        try:
            yield
        except DriverError as err:
            self.connection.on_exception()
            raise wrap_driver_error(err, action, self._label) from err

    def _close_connection_if_necessary(self) -> None:
        if self.connection.auto_close:
            self.connection.close()

    def _record_keys(self, statement: PreparedStatement) -> None:
        if self.key_mode is KeyMode.NONE:
            self.connection.set_keys(None, False)
        else:
            self.connection.set_keys(list(statement.generated_keys), True)

    def execute_update(self) -> 'ConnectionWrapper':
        """Execute a statement that returns no rows.

        The affected row count is kept on the connection's `result`, generated
        keys, when enabled, on `get_key`/`get_keys`.

        Returns
            The owning ConnectionWrapper, for chaining
        """
        try:
            statement = self._build_statement()
            with self._guard('executing update'):
                self.connection.result = statement.execute_update()
            self._record_keys(statement)
            return self.connection
        finally:
            self._close_connection_if_necessary()

    def execute_scalar(self, type_: Any = None) -> Any:
        """Return the first column of the first row, None for no rows.

        Args:
            type_: Convert the value through the handler for this type
        """
        try:
            statement = self._build_statement()
            with self._guard('executing scalar query'):
                cursor = statement.execute_query()
                try:
                    row = cursor.fetchone()
                finally:
                    statement.close_cursor(cursor)
            value = row[0] if row else None
            return self.registry.get_handler(type_ if type_ is not None else object).convert(value)
        finally:
            self._close_connection_if_necessary()

    def execute_scalar_list(self, type_: Any = None) -> list[Any]:
        """Return the first column of every row."""
        handler = self.registry.get_handler(type_ if type_ is not None else object)
        return self.execute_and_fetch(row_handler=lambda row: handler.convert(row[0]))

    def _handler_factory(self, target: Any, row_handler: Callable[[Row], Any] | None) -> ResultSetHandlerFactory:
        return ResultSetHandlerFactory(
            target,
            registry=self.registry,
            row_handler=row_handler,
            case_sensitive=self.case_sensitive,
            column_mappings=ColumnMappings(
                self.session.options.default_column_mappings,
                self.column_mappings,
                case_sensitive=self.case_sensitive,
            ),
            auto_derive=self.auto_derive_column_names,
            strict=self.strict_mapping,
        )

    def execute_and_fetch_lazy(self, target: Any = None, *,
                               row_handler: Callable[[Row], Any] | None = None) -> ResultSetIterable:
        """Execute and stream rows converted to `target`.

        Close the returned iterable (or use it as a context manager) when
        iteration may stop early. With an auto-closing connection the
        connection closes together with the iterable.

        Args:
            target: Class to map rows onto; a scalar type for one-column
                results, `dict` for dicts, None for `Row` objects
            row_handler: Callable receiving each `Row`; wins over `target`
        """
        try:
            statement = self._build_statement()
            with self._guard('executing query'):
                cursor = statement.execute_query()
        except Exception:
            self._close_connection_if_necessary()
            raise

        try:
            columns = columns_from_cursor_description(cursor, self.connection.dialect)
            handler = self._handler_factory(target, row_handler).new_handler(columns)
        except Exception:
            statement.close_cursor(cursor)
            self._close_connection_if_necessary()
            raise

        return ResultSetIterable(
            statement, cursor, columns, handler, self.connection,
            auto_close_connection=self.connection.auto_close,
            sql=self._label,
        )

    def execute_and_fetch(self, target: Any = None, *,
                          row_handler: Callable[[Row], Any] | None = None) -> list[Any]:
        """Execute and return every row converted to `target`.
        """
        with self.execute_and_fetch_lazy(target, row_handler=row_handler) as rows:
            return list(rows)

    def execute_and_fetch_first(self, target: Any = None, *,
                                row_handler: Callable[[Row], Any] | None = None) -> Any:
        """Execute and return the first converted row, or None."""
        with self.execute_and_fetch_lazy(target, row_handler=row_handler) as rows:
            return next(iter(rows), None)

    def execute_and_fetch_table(self) -> Table:
        """Execute and materialize the result as a Table."""
        with self.execute_and_fetch_lazy(Row) as rows:
            return Table(self.name, list(rows), rows.columns,
                         data_loader=self.session.options.data_loader)

    def execute_and_fetch_table_lazy(self) -> LazyTable:
        """Execute and stream the result as a LazyTable."""
        rows = self.execute_and_fetch_lazy(Row)
        return LazyTable(self.name, rows, rows.columns)

    #
    # batches
    #

    def add_to_batch(self) -> Self:
        """Add the current parameters as one batch entry.

        When `max_batch_records` is set, every Nth entry flushes the batch.

        Raises
            ConfigurationError: an array parameter was bound
        """
        statement = self._build_statement(allow_arrays=False)
        statement.add_batch()
        self.current_batch_records += 1
        if self._max_batch_records > 0 and self.current_batch_records % self._max_batch_records == 0:
            logger.debug(f'Flushing batch after {self.current_batch_records} entries')
            self._flush_batch()
        return self

    def add_to_batch_get_keys(self, type_: Any = None) -> list[Any]:
        """Add a batch entry; return the generated keys if that flushed the batch."""
        self.add_to_batch()
        if self.current_batch_records == 0:
            return self.connection.get_keys(type_)
        return []

    def _flush_batch(self) -> list[int]:
        statement = self._statement
        try:
            if statement is None:
                counts = []
            else:
                with self._guard('executing batch'):
                    counts = statement.execute_batch()
        finally:
            self.current_batch_records = 0
        self.connection.batch_result = counts
        if statement is not None:
            self._record_keys(statement)
        return counts

    def execute_batch(self) -> 'ConnectionWrapper':
        """Execute every pending batch entry.

        Per-entry affected row counts are kept on the connection's
        `batch_result`.

        Returns
            The owning ConnectionWrapper, for chaining
        """
        try:
            self._flush_batch()
            return self.connection
        finally:
            self._close_connection_if_necessary()

    def close(self) -> None:
        """Deregister and close the statement. Safe to call repeatedly."""
        statement, self._statement = self._statement, None
        if statement is None:
            return
        self.connection.remove_statement(statement)
        statement.close()
