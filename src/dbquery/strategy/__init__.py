"""
Dialect strategies, looked up by dialect name.

Importing this package registers the PostgreSQL and SQLite strategies.
"""
from functools import lru_cache
from typing import Any

from dbquery.strategy.base import _STRATEGY_REGISTRY
from dbquery.strategy.base import DatabaseStrategy as DatabaseStrategy
from dbquery.strategy.base import IsolationLevel as IsolationLevel
from dbquery.strategy.base import register_strategy as register_strategy
from dbquery.strategy.postgres import PostgresStrategy as PostgresStrategy
from dbquery.strategy.sqlite import SQLiteStrategy as SQLiteStrategy

# driver module -> dialect name
_DRIVER_MODULES = {'sqlite3': 'sqlite', 'psycopg': 'postgresql'}


def get_strategy_class(dialect: str) -> type[DatabaseStrategy]:
    from dbquery.exceptions import ConfigurationError

    try:
        return _STRATEGY_REGISTRY[dialect]
    except KeyError:
        raise ConfigurationError(
            f'Unsupported dialect: {dialect}. Available: {get_available_dialects()}'
        ) from None


@lru_cache(maxsize=8)
def get_strategy(dialect: str) -> DatabaseStrategy:
    """Shared strategy instance for `dialect`."""
    return get_strategy_class(dialect)()


def get_dialect_name(raw_conn: Any) -> str | None:
    """Dialect of a raw DBAPI connection, judged by its driver package."""
    package, _, _ = type(raw_conn).__module__.partition('.')
    return _DRIVER_MODULES.get(package)


def get_available_dialects() -> list[str]:
    return sorted(_STRATEGY_REGISTRY)


def is_supported_dialect(dialect: str) -> bool:
    return dialect in _STRATEGY_REGISTRY
