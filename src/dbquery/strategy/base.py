"""
Base strategy interface for driver-facing behavior.

Each dialect differs only in what the query engine needs from its driver:
the positional placeholder marker, switching auto-commit, fixing an
isolation level and retrieving generated keys. Everything else is dialect
independent and lives outside the strategies.
"""
import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dbquery.options import DatabaseOptions

# dialect name -> strategy class; concrete strategies import this module
_STRATEGY_REGISTRY: dict[str, type['DatabaseStrategy']] = {}

_DML_STATEMENT = re.compile(r'^\s*(insert|update|delete|replace)\b', re.IGNORECASE)
_RETURNING_CLAUSE = re.compile(r'\breturning\b', re.IGNORECASE)


class IsolationLevel(Enum):
    """Transaction isolation levels."""
    READ_UNCOMMITTED = 'READ UNCOMMITTED'
    READ_COMMITTED = 'READ COMMITTED'
    REPEATABLE_READ = 'REPEATABLE READ'
    SERIALIZABLE = 'SERIALIZABLE'


def register_strategy(dialect: str):
    """Class decorator adding a strategy to the registry under `dialect`."""
    def register(strategy_cls: type['DatabaseStrategy']) -> type['DatabaseStrategy']:
        _STRATEGY_REGISTRY[dialect] = strategy_cls
        return strategy_cls
    return register


def is_dml(sql: str) -> bool:
    """True for INSERT, UPDATE, DELETE and REPLACE statements."""
    return _DML_STATEMENT.match(sql) is not None


class DatabaseStrategy(ABC):
    """What the query engine needs to know about one driver.

    Subclasses are stateless and registered with `register_strategy`.
    Methods taking `raw_conn` expect the bare DBAPI connection, not a
    SQLAlchemy proxy.
    """

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        ...

    @abstractmethod
    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Extra `create_engine` arguments (connect args, pool class)."""

    @classmethod
    @abstractmethod
    def get_required_options(cls) -> list[str]:
        """Option fields that must be set (truthy) for this dialect."""

    @classmethod
    def validate_options(cls, options: 'DatabaseOptions') -> None:
        """Raise ConfigurationError naming the first required field left empty."""
        from dbquery.exceptions import ConfigurationError

        missing = [name for name in cls.get_required_options() if not getattr(options, name)]
        if missing:
            raise ConfigurationError(f'{cls.__name__} requires option {missing[0]!r} to be set')

    @abstractmethod
    def configure_connection(self, conn: Any) -> None:
        """Prepare a connection right after it is acquired."""

    @abstractmethod
    def get_autocommit(self, raw_conn: Any) -> bool:
        ...

    @abstractmethod
    def enable_autocommit(self, raw_conn: Any) -> None:
        ...

    @abstractmethod
    def disable_autocommit(self, raw_conn: Any) -> None:
        ...

    def set_autocommit(self, raw_conn: Any, autocommit: bool) -> None:
        (self.enable_autocommit if autocommit else self.disable_autocommit)(raw_conn)

    @abstractmethod
    def set_isolation_level(self, raw_conn: Any, level: IsolationLevel) -> None:
        """Apply `level` to the transaction about to start on `raw_conn`."""

    def get_placeholder_style(self) -> str:
        """Positional marker the driver expects in place of `:name`."""
        return '%s'

    def build_generated_keys_sql(self, sql: str, column_names: tuple[str, ...] | None) -> str:
        """Append `RETURNING` to a DML statement so it yields its keys.

        `column_names` of None returns every column. Statements that are not
        DML, or already carry a RETURNING clause, pass through unchanged.
        """
        if not is_dml(sql) or _RETURNING_CLAUSE.search(sql):
            return sql
        returning = ', '.join(column_names) if column_names else '*'
        return f"{sql.rstrip().rstrip(';')} RETURNING {returning}"

    def fetch_generated_keys(self, cursor: Any, sql: str) -> tuple[int, list[Any]]:
        """Read the keys produced by the statement `cursor` just ran.

        Returns
            (affected row count, first column of each returned row)
        """
        if not cursor.description:
            return cursor.rowcount, []
        keys = [row[0] for row in cursor.fetchall()]
        return len(keys), keys
