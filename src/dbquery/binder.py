"""
Pending named parameters for one statement invocation.

Values are captured as setters when added and written into positional
slots when the statement is built. Array setters widen their placeholder
into one slot per element before binding. All pending setters are dropped
after every build so each execution, or each batch entry, starts clean.
"""
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from dbquery.exceptions import ConfigurationError
from dbquery.handlers import TypeHandler, TypeHandlerRegistry
from dbquery.sql import ParsedStatement

if TYPE_CHECKING:
    from dbquery.statement import PreparedStatement

logger = logging.getLogger(__name__)

ARRAY_TYPES = (list, tuple, set, frozenset)


class ParameterSetter:
    """Binds one named parameter into its positional slots."""

    parameter_count = 1

    def bind(self, statement: 'PreparedStatement', positions: tuple[int, ...]) -> None:
        raise NotImplementedError


class ValueSetter(ParameterSetter):

    def __init__(self, handler: TypeHandler, value: Any) -> None:
        self.handler = handler
        self.value = value

    def bind(self, statement: 'PreparedStatement', positions: tuple[int, ...]) -> None:
        for position in positions:
            self.handler.set_parameter(statement, position, self.value)

    def __repr__(self) -> str:
        return f'ValueSetter({self.value!r})'


class NullSetter(ParameterSetter):
    """Explicit SQL NULL."""

    def bind(self, statement: 'PreparedStatement', positions: tuple[int, ...]) -> None:
        for position in positions:
            statement.set_parameter(position, None)

    def __repr__(self) -> str:
        return 'NullSetter()'


class ArraySetter(ParameterSetter):
    """Multi-valued parameter, one slot per element.

    Every occurrence of the name receives the full list of values. An empty
    array keeps a single slot bound to NULL.
    """

    def __init__(self, handlers: list[TypeHandler], values: list[Any]) -> None:
        self.handlers = handlers
        self.values = values

    @property
    def parameter_count(self) -> int:
        return max(len(self.values), 1)

    def bind(self, statement: 'PreparedStatement', positions: tuple[int, ...]) -> None:
        if not self.values:
            for position in positions:
                statement.set_parameter(position, None)
            return
        width = len(self.values)
        for i, position in enumerate(positions):
            self.handlers[i % width].set_parameter(statement, position, self.values[i % width])

    def __repr__(self) -> str:
        return f'ArraySetter({self.values!r})'


def is_array_value(value: Any) -> bool:
    return isinstance(value, ARRAY_TYPES)


class ParameterBinder:
    """Holds pending named parameter setters for one query object.
    """

    def __init__(self, parsed: ParsedStatement, registry: TypeHandlerRegistry) -> None:
        self.parsed = parsed
        self.registry = registry
        self._pending: dict[str, ParameterSetter] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, name: str) -> bool:
        return name in self._pending

    @property
    def has_arrays(self) -> bool:
        return any(isinstance(setter, ArraySetter) for setter in self._pending.values())

    def _check_declared(self, name: str) -> None:
        if name not in self.parsed.param_map:
            raise ConfigurationError(
                f"Failed to add parameter with name '{name}'. "
                f'No parameter with that name is declared in the sql.'
            )

    def add(self, name: str, value: Any, type_: Any = None) -> None:
        """Record a value for a named parameter.

        None becomes an explicit NULL, a list, tuple or set without an explicit
        type becomes an array parameter.
        """
        self._check_declared(name)
        if value is None:
            self._pending[name] = NullSetter()
        elif type_ is None and is_array_value(value):
            self.add_array(name, value)
        else:
            handler = (self.registry.get_handler(type_) if type_ is not None
                       else self.registry.handler_for_value(value))
            self._pending[name] = ValueSetter(handler, value)

    def add_null(self, name: str) -> None:
        self._check_declared(name)
        self._pending[name] = NullSetter()

    def add_array(self, name: str, values: Iterable[Any], type_: Any = None) -> None:
        self._check_declared(name)
        values = list(values)
        if type_ is not None:
            handlers = [self.registry.get_handler(type_)] * len(values)
        else:
            handlers = [self.registry.handler_for_value(value) for value in values]
        self._pending[name] = ArraySetter(handlers, values)

    def bind(self, statement: 'PreparedStatement', allow_arrays: bool = True) -> ParsedStatement:
        """Write pending values into the statement, then clear them.

        Args:
            statement: Statement receiving the values
            allow_arrays: False while building a batch entry

        Returns
            The effective ParsedStatement, expanded for array parameters
        """
        counts = {
            name: setter.parameter_count
            for name, setter in self._pending.items()
            if isinstance(setter, ArraySetter)
        }
        try:
            if counts and not allow_arrays:
                raise ConfigurationError(
                    f'Array parameters are not allowed in batch mode: {sorted(counts)}'
                )
            parsed = self.parsed.expand(counts)
            statement.prepare(parsed)
            for name, setter in self._pending.items():
                setter.bind(statement, parsed.positions(name))
        finally:
            self._pending.clear()

        if counts:
            logger.debug(f'Expanded array parameters {counts}')
        return parsed
