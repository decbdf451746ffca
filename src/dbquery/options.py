import pathlib
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any, Self

import pandas as pd
import pyarrow as pa
from dbquery.exceptions import ConfigurationError
from dbquery.strategy import get_available_dialects, get_strategy_class
from dbquery.strategy import is_supported_dialect
from dbquery.types import Column

__all__ = [
    'DatabaseOptions',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
    'iterdict_data_loader',
]


def _with_column_types(df: pd.DataFrame, columns) -> pd.DataFrame:
    df.attrs['column_types'] = Column.get_column_types_dict(columns)
    return df


def iterdict_data_loader(data, columns, **kwargs) -> list[dict]:
    """Return the rows as a plain list of dicts."""
    return list(data or ())


def pandas_numpy_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """Load rows into a NumPy-backed DataFrame.

    Column order follows the result set, also when there are no rows, and
    `df.attrs['column_types']` describes each column.
    """
    names = Column.get_names(columns)
    df = pd.DataFrame.from_records(list(data), columns=names) if data else pd.DataFrame(columns=names)
    return _with_column_types(df, columns)


def pandas_pyarrow_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """Load rows column-wise through PyArrow into ArrowDtype columns."""
    names = Column.get_names(columns)
    if not data:
        return _with_column_types(pd.DataFrame(columns=names), columns)
    arrays = {name: [row[name] for row in data] for name in names}
    df = pa.table(arrays).to_pandas(types_mapper=pd.ArrowDtype)
    return _with_column_types(df, columns)


def _scriptname() -> str | None:
    if not sys.argv or not sys.argv[0]:
        return None
    return pathlib.Path(sys.argv[0]).stem or None


@dataclass
class DatabaseOptions:
    """Connection settings and the query defaults of a session.

    `drivername` is `postgresql` or `sqlite`. SQLite needs only `database`
    (`:memory:` for a private in-memory database); PostgreSQL also needs
    hostname, username, password, port and timeout.

    Pooling (off by default, every connection is opened and closed):
    - use_pool, pool_max_connections, pool_max_idle_time (seconds before
      a pooled connection is recycled), pool_wait_timeout (seconds to wait
      for a free connection)

    Query defaults, copied onto every query a session creates:
    - default_case_sensitive: Match columns to members case-sensitively
    - default_column_mappings: Column name to member path overrides
    - return_generated_keys: Fetch generated keys after updates
    - throw_on_mapping_failure: Fail on unmapped columns instead of skipping them
    - auto_derive_column_names: Match `some_value` columns to `someValue` members

    `validate=False` skips the per-dialect required option checks, for
    sessions that draw connections from an existing source.
    """
    drivername: str = 'postgresql'
    hostname: str = None
    username: str = None
    password: str = None
    database: str = None
    port: int = 0
    timeout: int = 0
    appname: str = None
    check_connection: bool = True
    data_loader: Callable[..., Any] | None = None
    # pooling
    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30
    # query defaults
    default_case_sensitive: bool = False
    default_column_mappings: dict[str, str] = field(default_factory=dict)
    return_generated_keys: bool = False
    throw_on_mapping_failure: bool = True
    auto_derive_column_names: bool = False
    validate: bool = field(default=True, repr=False)

    def __post_init__(self):
        if not is_supported_dialect(self.drivername):
            available = get_available_dialects()
            raise ConfigurationError(f'drivername {self.drivername!r} is not one of {available}')
        self.appname = self.appname or _scriptname() or 'python_console'
        if self.validate:
            get_strategy_class(self.drivername).validate_options(self)
        if self.data_loader is None:
            self.data_loader = pandas_numpy_data_loader

    @classmethod
    def from_config(cls, config: 'Mapping[str, Any] | DatabaseOptions | None' = None,
                    **kwargs: Any) -> Self:
        """Build options from a mapping or existing options plus keyword overrides.

        Unknown keys raise ConfigurationError.
        """
        if isinstance(config, cls):
            return replace(config, **kwargs) if kwargs else config

        values = {**(config or {}), **kwargs}
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(f'Unknown options: {unknown}')
        return cls(**values)

    @property
    def is_memory_database(self) -> bool:
        return self.drivername == 'sqlite' and self.database in {None, '', ':memory:'}
