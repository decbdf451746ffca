"""
SQLite through the standard library driver.

SQLite uses `?` markers, toggles auto-commit through the connection's
`isolation_level`, and reports generated keys through `lastrowid` unless
explicit key columns are requested (RETURNING, SQLite 3.35+).
"""
import datetime
import decimal
import logging
import re
import sqlite3
import uuid
from typing import TYPE_CHECKING, Any

from dbquery.strategy.base import DatabaseStrategy, IsolationLevel
from dbquery.strategy.base import register_strategy
from dbquery.types import convert_date, convert_datetime, convert_time

if TYPE_CHECKING:
    from dbquery.options import DatabaseOptions

logger = logging.getLogger(__name__)

_INSERT_STATEMENT = re.compile(r'^\s*(insert|replace)\b', re.IGNORECASE)


@register_strategy('sqlite')
class SQLiteStrategy(DatabaseStrategy):
    """sqlite3 connections."""

    @property
    def dialect_name(self) -> str:
        return 'sqlite'

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Parse declared temporal types on read.

        An in-memory database lives as long as its single connection, so it
        is held by a StaticPool and shared across threads.
        """
        from sqlalchemy.pool import StaticPool

        connect_args: dict[str, Any] = {
            'detect_types': sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES
        }
        if options.is_memory_database:
            connect_args['check_same_thread'] = False
            return {'connect_args': connect_args, 'poolclass': StaticPool}
        return {'connect_args': connect_args}

    @classmethod
    def get_required_options(cls) -> list[str]:
        """`:memory:` is a valid database."""
        return ['database']

    def register_type_adapters(self) -> None:
        """Store temporal, Decimal and UUID values as text and parse the
        temporal ones back for columns declared date, datetime, timestamp or time.

        sqlite3 keeps these registrations module-wide.
        """
        sqlite3.register_adapter(datetime.date, lambda v: v.isoformat())
        sqlite3.register_adapter(datetime.datetime, lambda v: v.isoformat(' '))
        sqlite3.register_adapter(datetime.time, lambda v: v.isoformat())
        sqlite3.register_adapter(decimal.Decimal, str)
        sqlite3.register_adapter(uuid.UUID, str)

        sqlite3.register_converter('date', convert_date)
        sqlite3.register_converter('datetime', convert_datetime)
        sqlite3.register_converter('timestamp', convert_datetime)
        sqlite3.register_converter('time', convert_time)

    def configure_connection(self, conn: Any) -> None:
        """Install type adapters and turn on foreign key enforcement."""
        self.register_type_adapters()
        conn.execute('PRAGMA foreign_keys = ON')

    def get_autocommit(self, raw_conn: Any) -> bool:
        return raw_conn.isolation_level is None

    def enable_autocommit(self, raw_conn: Any) -> None:
        raw_conn.isolation_level = None

    def disable_autocommit(self, raw_conn: Any) -> None:
        raw_conn.isolation_level = 'DEFERRED'

    def set_autocommit(self, raw_conn: Any, autocommit: bool) -> None:
        if autocommit:
            self.enable_autocommit(raw_conn)
        elif raw_conn.isolation_level is None:
            self.disable_autocommit(raw_conn)

    def set_isolation_level(self, raw_conn: Any, level: IsolationLevel) -> None:
        """SQLite transactions are serializable; only dirty reads can be allowed.
        """
        read_uncommitted = 1 if level is IsolationLevel.READ_UNCOMMITTED else 0
        raw_conn.execute(f'PRAGMA read_uncommitted = {read_uncommitted}')

    def get_placeholder_style(self) -> str:
        return '?'

    def build_generated_keys_sql(self, sql: str, column_names: tuple[str, ...] | None) -> str:
        """All keys come from lastrowid; explicit columns use RETURNING.
        """
        if column_names is None:
            return sql
        return super().build_generated_keys_sql(sql, column_names)

    def fetch_generated_keys(self, cursor: Any, sql: str) -> tuple[int, list[Any]]:
        """Read RETURNING rows when present, else the rowid of an INSERT.

        lastrowid is left untouched by UPDATE and DELETE, so it is only
        trusted after an INSERT or REPLACE.
        """
        if cursor.description is not None:
            return super().fetch_generated_keys(cursor, sql)
        if _INSERT_STATEMENT.match(sql) and cursor.lastrowid is not None:
            return cursor.rowcount, [cursor.lastrowid]
        return cursor.rowcount, []
