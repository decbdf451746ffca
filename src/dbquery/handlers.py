"""
Bidirectional type handlers and their registry.

A TypeHandler writes a Python value into a positional parameter slot and
reads a column value back as its target type. Null always maps to None in
both directions and never raises.

The TypeHandlerRegistry is an explicit object owned by a Session. Lookup
order for a target type:

1. an exact registration
2. an Enum subclass, which gets its own handler on first use
3. the closest registered base class in the MRO
4. the unknown handler, which passes values through
"""
import datetime
import decimal
import enum
import io
import json
import logging
import math
import types
import typing
import uuid
from typing import Any, Generic, TypeVar

import dateutil.parser
import pandas as pd
from dbquery.exceptions import TypeConversionError
from dbquery.types import TypeConverter

__all__ = [
    'Char',
    'TypeHandler',
    'TypeHandlerRegistry',
    'resolve_target_type',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')

_CONVERSION_ERRORS = (TypeError, ValueError, ArithmeticError, KeyError)

_TRUE_STRINGS = {'true', 't', 'yes', 'y', 'on'}
_FALSE_STRINGS = {'false', 'f', 'no', 'n', 'off'}


class Char(str):
    """Single character target type; reads the first character of a column.
    """


def resolve_target_type(hint: Any) -> Any:
    """Reduce a type hint to the class handlers are registered for.

    `int | None` and `Optional[int]` become `int`, `list[int]` becomes
    `list`, `Annotated[int, ...]` becomes `int`. Anything else is
    returned unchanged.
    """
    origin = typing.get_origin(hint)
    if origin is typing.Annotated:
        return resolve_target_type(typing.get_args(hint)[0])
    if origin is typing.Union or origin is types.UnionType:
        args = [arg for arg in typing.get_args(hint) if arg is not type(None)]
        if len(args) == 1:
            return resolve_target_type(args[0])
        return object
    if origin is not None:
        return origin
    return hint


class TypeHandler(Generic[T]):
    """Converter between one Python type and database values.

    Subclasses implement `from_db` and, where the driver cannot bind the
    value as is, `to_db`. Neither is called with None.
    """

    python_type: type = object

    def set_parameter(self, statement: Any, index: int, value: T | None) -> None:
        """Write a value into a 1-based parameter slot of a statement."""
        if value is None:
            statement.set_parameter(index, None)
            return
        try:
            db_value = self.to_db(value)
        except TypeConversionError:
            raise
        except _CONVERSION_ERRORS as err:
            raise TypeConversionError(
                f'Could not bind {value!r} ({type(value).__name__}) as {self.python_type.__name__}: {err}'
            ) from err
        statement.set_parameter(index, db_value)

    def get_result(self, row: Any, column: int | str) -> T | None:
        """Read a column by 1-based index or by name and convert it."""
        value = row[column - 1] if isinstance(column, int) else row[column]
        return self.convert(value)

    def convert(self, value: Any) -> T | None:
        if value is None:
            return None
        try:
            return self.from_db(value)
        except TypeConversionError:
            raise
        except _CONVERSION_ERRORS as err:
            raise TypeConversionError(
                f'Could not convert {value!r} ({type(value).__name__}) to {self.python_type.__name__}: {err}'
            ) from err

    def to_db(self, value: T) -> Any:
        return value

    def from_db(self, value: Any) -> T:
        return value

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.python_type.__name__})'


class ObjectHandler(TypeHandler[Any]):
    """Unknown and `object` targets: normalize NumPy/Pandas values, pass the rest.
    """
    python_type = object

    def to_db(self, value: Any) -> Any:
        return TypeConverter.convert_value(value)


class BooleanHandler(TypeHandler[bool]):
    """Accepts booleans, numbers (0 is False) and 'true'/'false' style strings.
    """
    python_type = bool

    def to_db(self, value: Any) -> bool:
        return self.from_db(value)

    def from_db(self, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, int | float | decimal.Decimal):
            return value != 0
        if isinstance(value, bytes):
            value = value.decode()
        if isinstance(value, str):
            text = value.strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
            return decimal.Decimal(text) != 0
        return bool(TypeConverter.convert_value(value))


class IntegerHandler(TypeHandler[int]):
    python_type = int

    def to_db(self, value: Any) -> int | None:
        value = TypeConverter.convert_value(value)
        return None if value is None else self.from_db(value)

    def from_db(self, value: Any) -> int:
        if isinstance(value, int):
            return int(value)
        if isinstance(value, str):
            value = value.strip()
            try:
                return int(value)
            except ValueError:
                return int(decimal.Decimal(value))
        return int(value)


class FloatHandler(TypeHandler[float]):
    python_type = float

    def to_db(self, value: Any) -> float | None:
        value = TypeConverter.convert_value(value)
        return None if value is None else float(value)

    def from_db(self, value: Any) -> float:
        return float(value)


class DecimalHandler(TypeHandler[decimal.Decimal]):
    python_type = decimal.Decimal

    def from_db(self, value: Any) -> decimal.Decimal:
        if isinstance(value, decimal.Decimal):
            return value
        if isinstance(value, float):
            if math.isnan(value) or math.isinf(value):
                raise ValueError('not a finite number')
            return decimal.Decimal(repr(value))
        return decimal.Decimal(str(value).strip())


class StringHandler(TypeHandler[str]):
    python_type = str

    def to_db(self, value: Any) -> str:
        return self.from_db(value)

    def from_db(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        if isinstance(value, bytes | bytearray | memoryview):
            return bytes(value).decode()
        return str(value)


class CharacterHandler(StringHandler):
    """First character of the column; an empty string reads as None.
    """
    python_type = Char

    def convert(self, value: Any) -> Char | None:
        text = None if value is None else StringHandler.from_db(self, value)
        if not text:
            return None
        return Char(text[0])

    def to_db(self, value: Any) -> str:
        return StringHandler.from_db(self, value)[:1]


class BytesHandler(TypeHandler[bytes]):
    """Raw byte sequence, materialized eagerly.
    """
    python_type = bytes

    def to_db(self, value: Any) -> bytes:
        return self.from_db(value)

    def from_db(self, value: Any) -> bytes:
        if isinstance(value, str):
            return value.encode()
        if isinstance(value, io.IOBase):
            return value.read()
        return bytes(value)


class BytearrayHandler(BytesHandler):
    python_type = bytearray

    def from_db(self, value: Any) -> bytearray:
        return bytearray(BytesHandler.from_db(self, value))


class BinaryStreamHandler(TypeHandler[io.BytesIO]):
    """Binary stream target: the column is exposed as a readable BytesIO.

    Stream parameters are read to the end when bound.
    """
    python_type = io.BytesIO

    def to_db(self, value: Any) -> bytes:
        if isinstance(value, io.IOBase):
            return value.read()
        return bytes(value)

    def from_db(self, value: Any) -> io.BytesIO:
        if isinstance(value, str):
            value = value.encode()
        return io.BytesIO(bytes(value))


class DateHandler(TypeHandler[datetime.date]):
    python_type = datetime.date

    def to_db(self, value: Any) -> datetime.date | None:
        if pd.isna(value):
            return None
        if isinstance(value, datetime.datetime):
            return value.date()
        return self.from_db(value)

    def from_db(self, value: Any) -> datetime.date:
        if isinstance(value, datetime.datetime):
            return value.date()
        if isinstance(value, datetime.date):
            return value
        if isinstance(value, bytes):
            value = value.decode()
        if isinstance(value, str):
            return dateutil.parser.isoparse(value.strip()).date()
        raise TypeError(f'unsupported date value {value!r}')


class TimeHandler(TypeHandler[datetime.time]):
    python_type = datetime.time

    def from_db(self, value: Any) -> datetime.time:
        if isinstance(value, datetime.datetime):
            return value.time()
        if isinstance(value, datetime.time):
            return value
        if isinstance(value, datetime.timedelta):
            return (datetime.datetime.min + value).time()
        if isinstance(value, bytes):
            value = value.decode()
        if isinstance(value, str):
            return dateutil.parser.isoparser().parse_isotime(value.strip())
        raise TypeError(f'unsupported time value {value!r}')


class DateTimeHandler(TypeHandler[datetime.datetime]):
    python_type = datetime.datetime

    def to_db(self, value: Any) -> datetime.datetime | None:
        value = TypeConverter.convert_value(value)
        return None if value is None else self.from_db(value)

    def from_db(self, value: Any) -> datetime.datetime:
        if isinstance(value, pd.Timestamp):
            return value.to_pydatetime()
        if isinstance(value, datetime.datetime):
            return value
        if isinstance(value, datetime.date):
            return datetime.datetime.combine(value, datetime.time())
        if isinstance(value, bytes):
            value = value.decode()
        if isinstance(value, str):
            return dateutil.parser.isoparse(value.strip())
        if isinstance(value, int | float):
            return datetime.datetime.fromtimestamp(value, tz=datetime.UTC)
        raise TypeError(f'unsupported datetime value {value!r}')


class UUIDHandler(TypeHandler[uuid.UUID]):
    python_type = uuid.UUID

    def from_db(self, value: Any) -> uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        if isinstance(value, bytes | bytearray) and len(value) == 16:
            return uuid.UUID(bytes=bytes(value))
        if isinstance(value, bytes):
            value = value.decode()
        return uuid.UUID(str(value).strip())


class JsonHandler(TypeHandler[dict]):
    """Mappings are stored as JSON text.
    """
    python_type = dict

    def to_db(self, value: Any) -> str:
        return json.dumps(value, default=str)

    def from_db(self, value: Any) -> dict:
        if isinstance(value, dict):
            return value
        if isinstance(value, bytes):
            value = value.decode()
        return json.loads(value)


class EnumHandler(TypeHandler[enum.Enum]):
    """Handler bound to one Enum type. Stores the member name.

    Reads accept the member name first, then the member value.
    """

    def __init__(self, enum_type: type[enum.Enum]) -> None:
        self.python_type = enum_type

    def to_db(self, value: Any) -> Any:
        if isinstance(value, self.python_type):
            return value.name
        return self.from_db(value).name

    def from_db(self, value: Any) -> enum.Enum:
        if isinstance(value, self.python_type):
            return value
        if isinstance(value, str):
            try:
                return self.python_type[value]
            except KeyError:
                pass
        try:
            return self.python_type(value)
        except ValueError as err:
            raise TypeConversionError(
                f'{value!r} is not a member of {self.python_type.__name__}'
            ) from err


def _is_enum(type_: Any) -> bool:
    return isinstance(type_, type) and issubclass(type_, enum.Enum)


class TypeHandlerRegistry:
    """Maps target types to their handlers.

    Enum handlers are created on first request and inserted with
    `dict.setdefault`, so concurrent first use of the same Enum always ends
    with one shared instance.
    """

    def __init__(self, register_defaults: bool = True) -> None:
        self._handlers: dict[Any, TypeHandler] = {}
        self.unknown_handler: TypeHandler = ObjectHandler()
        if register_defaults:
            self._register_defaults()

    def _register_defaults(self) -> None:
        self.register(object, self.unknown_handler)
        self.register(bool, BooleanHandler())
        self.register(int, IntegerHandler())
        self.register(float, FloatHandler())
        self.register(decimal.Decimal, DecimalHandler())
        self.register(str, StringHandler())
        self.register(Char, CharacterHandler())
        self.register(bytes, BytesHandler())
        self.register(bytearray, BytearrayHandler())
        self.register(memoryview, BytesHandler())
        stream = BinaryStreamHandler()
        self.register(io.BytesIO, stream)
        self.register(typing.BinaryIO, stream)
        self.register(datetime.date, DateHandler())
        self.register(datetime.time, TimeHandler())
        self.register(datetime.datetime, DateTimeHandler())
        self.register(uuid.UUID, UUIDHandler())
        self.register(dict, JsonHandler())

    def register(self, type_: Any, handler: TypeHandler) -> None:
        """Register (or replace) the handler for a target type."""
        self._handlers[type_] = handler
        logger.debug(f'Registered {handler!r} for {getattr(type_, "__name__", type_)}')

    def has_handler(self, type_: Any) -> bool:
        """Whether the type is a simple value type.

        True for explicit registrations and Enum types, False for anything
        that falls through to the unknown handler.
        """
        type_ = resolve_target_type(type_)
        return (type_ in self._handlers and type_ is not object) or _is_enum(type_)

    def get_handler(self, type_: Any) -> TypeHandler:
        """Return the handler for a target type, never None."""
        type_ = resolve_target_type(type_)
        handler = self._handlers.get(type_)
        if handler is not None:
            return handler

        if _is_enum(type_):
            return self._handlers.setdefault(type_, EnumHandler(type_))

        if isinstance(type_, type):
            for base in type_.__mro__[1:-1]:
                handler = self._handlers.get(base)
                if handler is not None:
                    return handler

        return self.unknown_handler

    def handler_for_value(self, value: Any) -> TypeHandler:
        """Pick the handler used to bind a parameter value."""
        if value is None:
            return self.unknown_handler
        return self.get_handler(type(value))
