"""
PostgreSQL through psycopg 3.

Keys come back through RETURNING, so the base class behavior is used
unchanged. Auto-commit and isolation are plain connection attributes.
"""
import logging
from typing import TYPE_CHECKING, Any

import psycopg
from dbquery.strategy.base import DatabaseStrategy, IsolationLevel
from dbquery.strategy.base import register_strategy

if TYPE_CHECKING:
    from dbquery.options import DatabaseOptions

logger = logging.getLogger(__name__)


@register_strategy('postgresql')
class PostgresStrategy(DatabaseStrategy):
    """psycopg 3 connections."""

    @property
    def dialect_name(self) -> str:
        return 'postgresql'

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Report the application name to the server."""
        return {'connect_args': {'application_name': options.appname}}

    @classmethod
    def get_required_options(cls) -> list[str]:
        """A connect timeout is mandatory for servers."""
        return ['hostname', 'username', 'password', 'database', 'port', 'timeout']

    def configure_connection(self, conn: Any) -> None:
        """Nothing to set up; psycopg adapts Python types itself."""

    def get_autocommit(self, raw_conn: Any) -> bool:
        return raw_conn.autocommit

    def enable_autocommit(self, raw_conn: Any) -> None:
        raw_conn.autocommit = True

    def disable_autocommit(self, raw_conn: Any) -> None:
        raw_conn.autocommit = False

    def set_isolation_level(self, raw_conn: Any, level: IsolationLevel) -> None:
        raw_conn.isolation_level = psycopg.IsolationLevel[level.name]
        logger.debug(f'Next transaction runs at {level.value}')
