"""
Result column descriptions and parameter value cleanup.

Three groups live here:

    Column and columns_from_cursor_description describe the result set of
    an executed cursor, with the Python type each driver type code maps to.

    TypeConverter flattens NumPy, pandas and PyArrow scalars into the plain
    values DBAPI drivers accept; missing markers (NaN, NaT, NA) become None.

    convert_date/convert_datetime/convert_time parse the ISO 8601 text that
    SQLite stores for temporal columns.
"""
import dataclasses
import datetime
import logging
import math
from typing import Any, Self

import dateutil.parser
import numpy as np
import pandas as pd
import pyarrow as pa
from psycopg.postgres import types as pg_types

logger = logging.getLogger(__name__)

_MISSING = (pd.NaT, pd.NA)


def _numpy_to_python(val: np.generic) -> Any:
    if isinstance(val, np.datetime64):
        return None if np.isnat(val) else pd.Timestamp(val).to_pydatetime()
    if isinstance(val, np.floating):
        return None if np.isnan(val) else val.item()
    if isinstance(val, np.bool_ | np.number):
        return val.item()
    return val


class TypeConverter:
    """Normalize a parameter value before it reaches the driver.
    """

    @staticmethod
    def convert_value(value: Any) -> Any:
        if value is None or any(value is marker for marker in _MISSING):
            return None
        if isinstance(value, np.generic):
            return _numpy_to_python(value)
        if isinstance(value, float):
            return None if math.isnan(value) or math.isinf(value) else value
        if isinstance(value, pd.Timestamp):
            return value.to_pydatetime()
        if isinstance(value, pa.Scalar):
            return value.as_py() if value.is_valid else None
        if isinstance(value, pa.Array | pa.ChunkedArray):
            return value.to_pylist()
        return value


# psycopg reports OIDs, sqlite3 reports declared type names (when it reports anything)

_POSTGRES_TYPE_NAMES: dict[type, tuple[str, ...]] = {
    str: ('"char"', 'bpchar', 'varchar', 'text', 'name', 'json', 'uuid'),
    int: ('int2', 'int4', 'int8'),
    float: ('float4', 'float8', 'numeric'),
    bool: ('bool',),
    bytes: ('bytea',),
    dict: ('jsonb',),
    datetime.date: ('date',),
    datetime.time: ('time', 'timetz'),
    datetime.datetime: ('timestamp', 'timestamptz'),
}

postgres_types: dict[int, type] = {
    pg_types.get(name).oid: python_type
    for python_type, names in _POSTGRES_TYPE_NAMES.items()
    for name in names
}

sqlite_types: dict[str, type] = {
    'INT': int, 'INTEGER': int,
    'REAL': float, 'NUMERIC': float,
    'TEXT': str, 'VARCHAR': str,
    'BLOB': bytes,
    'BOOLEAN': bool,
    'DATE': datetime.date,
    'TIME': datetime.time,
    'DATETIME': datetime.datetime, 'TIMESTAMP': datetime.datetime,
}


def resolve_type(db_type: str, type_code: Any) -> type | None:
    """Map a cursor description type code to a Python type.

    Returns
        The Python type, or None when the code is unknown or missing
    """
    if isinstance(type_code, type):
        return type_code
    if db_type == 'postgresql':
        return postgres_types.get(type_code)
    if db_type == 'sqlite' and isinstance(type_code, str):
        base, _, _ = type_code.partition('(')
        return sqlite_types.get(base.strip().upper())
    return None


@dataclasses.dataclass(slots=True)
class Column:
    """One column of a result set; `index` counts from 1."""

    name: str
    index: int
    type_code: Any = None
    python_type: type | None = None
    display_size: int | None = None
    internal_size: int | None = None
    precision: int | None = None
    scale: int | None = None

    @classmethod
    def from_cursor_description(cls, description_item: Any, index: int,
                                connection_type: str) -> Self:
        name, type_code, *sizes = tuple(description_item)[:6]
        return cls(name, index, type_code, resolve_type(connection_type, type_code), *sizes)

    def to_dict(self) -> dict:
        info = dataclasses.asdict(self)
        info['python_type'] = getattr(self.python_type, '__name__', None)
        return info

    @staticmethod
    def get_names(columns: list[Self]) -> list[str]:
        return [col.name for col in columns]

    @staticmethod
    def get_column_types_dict(columns: list[Self]) -> dict[str, dict]:
        """Column name to `to_dict()` description, kept on DataFrame attrs."""
        return {col.name: col.to_dict() for col in columns}


def columns_from_cursor_description(cursor: Any, connection_type: str) -> list[Column]:
    """Describe the current result set of `cursor`; empty for statements without one."""
    description = cursor.description or ()
    return [Column.from_cursor_description(item, position, connection_type)
            for position, item in enumerate(description, start=1)]


def convert_date(val: bytes) -> datetime.date:
    return dateutil.parser.isoparse(val.decode()).date()


def convert_datetime(val: bytes) -> datetime.datetime:
    return dateutil.parser.isoparse(val.decode())


def convert_time(val: bytes) -> datetime.time:
    return dateutil.parser.isoparser().parse_isotime(val.decode())
