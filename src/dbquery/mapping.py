"""
Result set to object mapping.

Target types are described once by a static field table (TypeDescriptor),
either registered explicitly with `register_type` or derived from the
class definition on first use and cached. Each executed result set gets its
own ColumnMappingPlan that pairs columns with member paths, and the plan is
applied to every row.

Target resolution for a result set:

1. a user row handler always wins
2. `Row` (or no target) and `dict` give generic rows
3. a simple type with exactly one column is read as a scalar
4. anything else is mapped as an object graph
"""
import dataclasses
import logging
import typing
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from dbquery.cache import Cache
from dbquery.exceptions import MappingError, TypeConversionError
from dbquery.handlers import TypeHandler, TypeHandlerRegistry, resolve_target_type
from dbquery.table import ColumnIndex, Row
from dbquery.types import Column

__all__ = [
    'ColumnMappingPlan',
    'FieldDescriptor',
    'ResultSetHandlerFactory',
    'TypeDescriptor',
    'describe',
    'register_type',
]

logger = logging.getLogger(__name__)

_REGISTERED: dict[type, 'TypeDescriptor'] = {}
_DESCRIPTOR_CACHE = 'type_descriptors'


def collapse_name(name: str) -> str:
    """Name with word boundaries removed: `another_very_exciting_value` and
    `anotherVeryExcitingValue` both become `anotherveryexcitingvalue`.
    """
    return name.replace('_', '').lower()


@dataclass(frozen=True, slots=True)
class FieldDescriptor:
    """A settable member of a target type."""
    name: str
    type_: Any = Any


class _Node(dict):
    """Values collected for one nested member path."""


class TypeDescriptor:
    """Ahead-of-time field table for one target type.

    Args:
        cls: Target class
        fields: Settable members by name
        factory: Callable building an instance from member values;
            derived from the class kind when omitted
    """

    def __init__(self, cls: type, fields: Mapping[str, FieldDescriptor],
                 factory: Callable[[dict[str, Any]], Any] | None = None) -> None:
        self.cls = cls
        self.fields = dict(fields)
        self._lower = {}
        self._collapsed = {}
        for name, field in self.fields.items():
            self._lower.setdefault(name.lower(), field)
            self._collapsed.setdefault(collapse_name(name), field)
        self._factory = factory or _default_factory(cls)

    def __repr__(self) -> str:
        return f'TypeDescriptor({self.cls.__name__}, fields={list(self.fields)})'

    def find(self, name: str, case_sensitive: bool = False,
             auto_derive: bool = False) -> FieldDescriptor | None:
        field = self.fields.get(name) if case_sensitive else self._lower.get(name.lower())
        if field is None and auto_derive:
            field = self._collapsed.get(collapse_name(name))
        return field

    def create(self, values: dict[str, Any]) -> Any:
        """Build an instance, instantiating nested members from their values."""
        resolved = {}
        for name, value in values.items():
            if isinstance(value, _Node):
                value = describe(self.fields[name].type_).create(value)
            resolved[name] = value
        return self._factory(resolved)


def _default_factory(cls: type) -> Callable[[dict[str, Any]], Any]:
    if dataclasses.is_dataclass(cls):
        init_fields = [f for f in dataclasses.fields(cls) if f.init]
        required = {
            f.name for f in init_fields
            if f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING
        }
        init_names = {f.name for f in init_fields}

        def build_dataclass(values: dict[str, Any]) -> Any:
            kwargs = {name: values.get(name) for name in required}
            kwargs.update((k, v) for k, v in values.items() if k in init_names)
            obj = cls(**kwargs)
            for name, value in values.items():
                if name not in init_names:
                    object.__setattr__(obj, name, value)
            return obj
        return build_dataclass

    if issubclass(cls, tuple) and hasattr(cls, '_fields'):
        defaults = getattr(cls, '_field_defaults', {})

        def build_namedtuple(values: dict[str, Any]) -> Any:
            return cls(**{name: values.get(name, defaults.get(name)) for name in cls._fields})
        return build_namedtuple

    def build_object(values: dict[str, Any]) -> Any:
        obj = cls()
        for name, value in values.items():
            setattr(obj, name, value)
        return obj
    return build_object


def _type_hints(obj: Any) -> dict[str, Any]:
    try:
        return typing.get_type_hints(obj)
    except (NameError, TypeError) as err:
        logger.debug(f'Could not resolve annotations of {obj!r}: {err}')
        return {}


def _derive(cls: type) -> TypeDescriptor:
    """Build a descriptor from the class definition.

    Dataclass fields, NamedTuple fields, annotated attributes along the MRO
    and properties with setters become members. A plain class without any
    of these is instantiated once to read its instance attributes.
    """
    hints = _type_hints(cls)
    fields: dict[str, FieldDescriptor] = {}

    if dataclasses.is_dataclass(cls):
        for f in dataclasses.fields(cls):
            fields[f.name] = FieldDescriptor(f.name, resolve_target_type(hints.get(f.name, Any)))
    elif issubclass(cls, tuple) and hasattr(cls, '_fields'):
        for name in cls._fields:
            fields[name] = FieldDescriptor(name, resolve_target_type(hints.get(name, Any)))
    else:
        for name, hint in hints.items():
            if typing.get_origin(hint) is typing.ClassVar or hint is typing.ClassVar:
                continue
            fields[name] = FieldDescriptor(name, resolve_target_type(hint))
        for klass in reversed(cls.__mro__):
            for name, attr in vars(klass).items():
                if isinstance(attr, property) and attr.fset is not None:
                    hint = _type_hints(attr.fget).get('return', Any)
                    fields[name] = FieldDescriptor(name, resolve_target_type(hint))
        if not fields:
            try:
                instance = cls()
            except TypeError as err:
                raise MappingError(f'Cannot describe {cls.__name__}: {err}') from err
            for name in vars(instance):
                fields[name] = FieldDescriptor(name)

    if not fields:
        raise MappingError(f'{cls.__name__} has no settable members')
    return TypeDescriptor(cls, fields)


def register_type(cls: type, fields: Mapping[str, Any] | None = None,
                  factory: Callable[[dict[str, Any]], Any] | None = None) -> TypeDescriptor:
    """Register the field table of a target type.

    Args:
        cls: Target class
        fields: Member name to member type; derived from the class when omitted
        factory: Callable building an instance from a dict of member values

    Returns
        The registered descriptor
    """
    if fields is None:
        descriptor = _derive(cls)
        if factory is not None:
            descriptor = TypeDescriptor(cls, descriptor.fields, factory)
    else:
        descriptor = TypeDescriptor(
            cls,
            {name: FieldDescriptor(name, resolve_target_type(type_)) for name, type_ in fields.items()},
            factory,
        )
    _REGISTERED[cls] = descriptor
    return descriptor


def unregister_type(cls: type) -> None:
    _REGISTERED.pop(cls, None)


def describe(cls: Any) -> TypeDescriptor:
    """Return the descriptor of a target type, deriving and caching it once."""
    if cls in _REGISTERED:
        return _REGISTERED[cls]
    if not isinstance(cls, type) or cls.__module__ == 'builtins':
        raise MappingError(f'{cls!r} is not a mappable class')

    manager = Cache.get_instance()
    cache = manager.get_cache(_DESCRIPTOR_CACHE, maxsize=256)
    with manager.lock:
        descriptor = cache.get(cls)
    if descriptor is None:
        descriptor = _derive(cls)
        with manager.lock:
            descriptor = cache.setdefault(cls, descriptor)
        logger.debug(f'Derived {descriptor!r}')
    return descriptor


class ColumnMappings:
    """Column name to member path overrides.

    Later mappings take precedence, so query-level overrides are passed
    after session defaults.
    """

    def __init__(self, *mappings: Mapping[str, str] | None, case_sensitive: bool = False) -> None:
        self.case_sensitive = case_sensitive
        self._exact: dict[str, str] = {}
        self._lower: dict[str, str] = {}
        for mapping in mappings:
            for column, path in (mapping or {}).items():
                self._exact[column] = path
                self._lower[column.lower()] = path

    def get(self, column: str) -> str | None:
        if self.case_sensitive:
            return self._exact.get(column)
        return self._lower.get(column.lower())


@dataclass(frozen=True, slots=True)
class _Entry:
    position: int
    column: str
    path: tuple[str, ...]
    handler: TypeHandler


class ColumnMappingPlan:
    """Column to member assignments for one result set and one target type.
    """

    def __init__(self, descriptor: TypeDescriptor, entries: list[_Entry], strict: bool) -> None:
        self.descriptor = descriptor
        self.entries = entries
        self.strict = strict

    def __repr__(self) -> str:
        pairs = ', '.join(f"{e.column}->{'.'.join(e.path)}" for e in self.entries)
        return f'ColumnMappingPlan({self.descriptor.cls.__name__}: {pairs})'

    @classmethod
    def build(cls, descriptor: TypeDescriptor, columns: list[Column],
              registry: TypeHandlerRegistry, *, case_sensitive: bool = False,
              column_mappings: ColumnMappings | None = None, auto_derive: bool = False,
              strict: bool = True) -> 'ColumnMappingPlan':
        """Pair every column with a member path of the target.

        Unmapped columns raise MappingError when strict, else are skipped.
        """
        column_mappings = column_mappings or ColumnMappings(case_sensitive=case_sensitive)
        entries = []
        for column in columns:
            path_text = column_mappings.get(column.name) or column.name
            resolved = _resolve_path(descriptor, path_text.split('.'), registry,
                                     case_sensitive, auto_derive)
            if resolved is None:
                if strict:
                    raise MappingError(
                        f"Could not map column '{column.name}' to any member of {descriptor.cls.__name__}"
                    )
                logger.debug(f"Skipping unmapped column '{column.name}' for {descriptor.cls.__name__}")
                continue
            path, field = resolved
            entries.append(_Entry(column.index - 1, column.name, path, registry.get_handler(field.type_)))
        return cls(descriptor, entries, strict)

    def apply(self, values: tuple) -> Any:
        """Build one target instance from a raw row."""
        tree = _Node()
        for entry in self.entries:
            try:
                value = entry.handler.convert(values[entry.position])
            except TypeConversionError as err:
                if self.strict:
                    raise TypeConversionError(f"Column '{entry.column}': {err}") from err
                logger.debug(f"Skipping column '{entry.column}': {err}")
                continue
            node = tree
            for part in entry.path[:-1]:
                node = node.setdefault(part, _Node())
            node[entry.path[-1]] = value
        return self.descriptor.create(tree)


def _resolve_path(descriptor: TypeDescriptor, parts: list[str], registry: TypeHandlerRegistry,
                  case_sensitive: bool, auto_derive: bool) -> tuple[tuple[str, ...], FieldDescriptor] | None:
    names = []
    current = descriptor
    field = None
    for i, part in enumerate(parts):
        field = current.find(part, case_sensitive, auto_derive)
        if field is None:
            return None
        names.append(field.name)
        if i < len(parts) - 1:
            if registry.has_handler(field.type_):
                return None
            try:
                current = describe(field.type_)
            except MappingError:
                return None
    return tuple(names), field


class ResultSetHandlerFactory:
    """Creates the per-row conversion for a result set.

    `new_handler` is called once per executed result set with its columns
    and returns a callable applied to every raw row.
    """

    def __init__(self, target: Any = None, *, registry: TypeHandlerRegistry,
                 row_handler: Callable[[Row], Any] | None = None,
                 case_sensitive: bool = False,
                 column_mappings: ColumnMappings | None = None,
                 auto_derive: bool = False, strict: bool = True) -> None:
        self.target = target
        self.registry = registry
        self.row_handler = row_handler
        self.case_sensitive = case_sensitive
        self.column_mappings = column_mappings
        self.auto_derive = auto_derive
        self.strict = strict

    def new_handler(self, columns: list[Column]) -> Callable[[tuple], Any]:
        registry = self.registry

        if self.row_handler is not None:
            index = ColumnIndex(columns, self.case_sensitive)
            row_handler = self.row_handler
            return lambda values: row_handler(Row(values, index, registry))

        if self.target is None or self.target is Row:
            index = ColumnIndex(columns, self.case_sensitive)
            return lambda values: Row(values, index, registry)

        if self.target is dict:
            names = Column.get_names(columns)
            return lambda values: dict(zip(names, values))

        if registry.has_handler(self.target):
            if len(columns) != 1:
                raise MappingError(
                    f'Cannot read {len(columns)} columns as scalar {getattr(self.target, "__name__", self.target)}'
                )
            handler = registry.get_handler(self.target)
            return lambda values: handler.convert(values[0])

        plan = ColumnMappingPlan.build(
            describe(resolve_target_type(self.target)), columns, registry,
            case_sensitive=self.case_sensitive,
            column_mappings=self.column_mappings,
            auto_derive=self.auto_derive,
            strict=self.strict,
        )
        logger.debug(f'Built {plan!r}')
        return plan.apply
