"""
Generic tabular results: rows addressable by column name or position.
"""
import logging
from collections.abc import Callable, Iterable, Iterator
from typing import TYPE_CHECKING, Any, Self

from dbquery.options import pandas_numpy_data_loader
from dbquery.types import Column

if TYPE_CHECKING:
    import pandas as pd
    from dbquery.handlers import TypeHandlerRegistry
    from dbquery.iterator import ResultSetIterable

logger = logging.getLogger(__name__)


class ColumnIndex:
    """Column name lookup shared by every row of one result set.

    Names are matched exactly when case sensitive, else by lower-cased
    name. The first column wins when names repeat.
    """

    def __init__(self, columns: list[Column], case_sensitive: bool = False) -> None:
        self.columns = columns
        self.names = Column.get_names(columns)
        self.case_sensitive = case_sensitive
        self._exact: dict[str, int] = {}
        self._lower: dict[str, int] = {}
        for i, name in enumerate(self.names):
            self._exact.setdefault(name, i)
            self._lower.setdefault(name.lower(), i)

    def __len__(self) -> int:
        return len(self.names)

    def position(self, key: int | str) -> int:
        """Return the 0-based position of a column name or index."""
        if isinstance(key, int):
            if not -len(self.names) <= key < len(self.names):
                raise IndexError(f'Column index {key} out of range for {len(self.names)} columns')
            return key % len(self.names)
        pos = self._exact.get(key) if self.case_sensitive else self._lower.get(key.lower())
        if pos is None:
            raise KeyError(f"Column '{key}' does not exist in {self.names}")
        return pos


class Row:
    """One result row.

    Values are read by column name or by 0-based position; `get` converts
    through the session's type handlers.
    """

    __slots__ = ('_values', '_index', '_registry')

    def __init__(self, values: tuple, index: ColumnIndex,
                 registry: 'TypeHandlerRegistry | None' = None) -> None:
        self._values = tuple(values)
        self._index = index
        self._registry = registry

    def __getitem__(self, key: int | str) -> Any:
        return self._values[self._index.position(key)]

    def __contains__(self, key: str) -> bool:
        try:
            self._index.position(key)
        except KeyError:
            return False
        return True

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Row):
            return self.as_dict() == other.as_dict()
        if isinstance(other, dict):
            return self.as_dict() == other
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        return f'Row({self.as_dict()!r})'

    def get(self, column: int | str, type_: Any = None) -> Any:
        """Read a column, converted to `type_` when given.

        Args:
            column: Column name or 0-based position
            type_: Target type resolved through the type handler registry
        """
        value = self[column]
        if type_ is None or self._registry is None:
            return value
        return self._registry.get_handler(type_).convert(value)

    def keys(self) -> list[str]:
        return list(self._index.names)

    def values(self) -> tuple:
        return self._values

    def items(self) -> list[tuple[str, Any]]:
        return list(zip(self._index.names, self._values))

    def as_dict(self) -> dict[str, Any]:
        return dict(self.items())


class Table:
    """Fully materialized result set.
    """

    def __init__(self, name: str | None, rows: list[Row], columns: list[Column],
                 data_loader: Callable[..., Any] | None = None) -> None:
        self.name = name
        self.rows = rows
        self.columns = columns
        self.data_loader = data_loader

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Row]:
        return iter(self.rows)

    def __getitem__(self, index: int) -> Row:
        return self.rows[index]

    def __repr__(self) -> str:
        return f'Table(name={self.name!r}, columns={Column.get_names(self.columns)}, rows={len(self.rows)})'

    def as_list(self) -> list[dict[str, Any]]:
        """Rows as a list of column name to value dicts."""
        return [row.as_dict() for row in self.rows]

    def to_dataframe(self, data_loader: Callable[..., Any] | None = None) -> 'pd.DataFrame':
        """Load the rows through a data loader, pandas with NumPy by default.
        """
        loader = data_loader or self.data_loader or pandas_numpy_data_loader
        return loader(self.as_list(), self.columns, table_name=self.name)


class LazyTable:
    """Streaming result set; rows are read on demand and only once.
    """

    def __init__(self, name: str | None, rows: 'ResultSetIterable[Row]',
                 columns: list[Column]) -> None:
        self.name = name
        self._rows = rows
        self.columns = columns

    def rows(self) -> Iterable[Row]:
        return self._rows

    def __iter__(self) -> Iterator[Row]:
        return iter(self._rows)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def close(self) -> None:
        self._rows.close()
