"""Unit tests for dialect strategies.
"""
import sqlite3

import pytest
from dbquery.exceptions import ConfigurationError
from dbquery.strategy import IsolationLevel, PostgresStrategy, SQLiteStrategy
from dbquery.strategy import get_available_dialects, get_dialect_name, get_strategy


class KeyCursor:
    """Cursor stand-in after an INSERT."""

    def __init__(self, rows=None, lastrowid=None, rowcount=1):
        self._rows = rows
        self.description = [('id',)] if rows is not None else None
        self.lastrowid = lastrowid
        self.rowcount = rowcount

    def fetchall(self):
        return self._rows


def test_strategies_are_cached():
    assert get_strategy('sqlite') is get_strategy('sqlite')
    assert set(get_available_dialects()) >= {'sqlite', 'postgresql'}


def test_unknown_dialect():
    with pytest.raises(ConfigurationError, match='Unsupported dialect'):
        get_strategy('oracle')


@pytest.mark.parametrize(('connection_type', 'expected'), [
    ('postgresql', 'postgresql'),
    ('sqlite', 'sqlite'),
    ('unknown', None),
])
def test_dialect_detection(create_simple_mock_connection, connection_type, expected):
    assert get_dialect_name(create_simple_mock_connection(connection_type)) == expected


def test_placeholder_styles():
    assert SQLiteStrategy().get_placeholder_style() == '?'
    assert PostgresStrategy().get_placeholder_style() == '%s'


class TestGeneratedKeysSql:

    def test_postgres_appends_returning(self):
        strategy = PostgresStrategy()
        assert strategy.build_generated_keys_sql('insert into t (a) values (%s);', None) == \
            'insert into t (a) values (%s) RETURNING *'
        assert strategy.build_generated_keys_sql('insert into t (a) values (%s)', ('id', 'code')) == \
            'insert into t (a) values (%s) RETURNING id, code'

    def test_existing_returning_kept(self):
        sql = 'insert into t (a) values (%s) returning id'
        assert PostgresStrategy().build_generated_keys_sql(sql, None) == sql

    def test_select_unchanged(self):
        assert PostgresStrategy().build_generated_keys_sql('select 1', None) == 'select 1'

    def test_sqlite_all_keys_use_lastrowid(self):
        sql = 'insert into t (a) values (?)'
        assert SQLiteStrategy().build_generated_keys_sql(sql, None) == sql
        assert SQLiteStrategy().build_generated_keys_sql(sql, ('id',)) == f'{sql} RETURNING id'


class TestFetchGeneratedKeys:

    def test_returning_rows(self):
        count, keys = PostgresStrategy().fetch_generated_keys(KeyCursor(rows=[(5,), (6,)]), 'insert')
        assert (count, keys) == (2, [5, 6])

    def test_sqlite_lastrowid_after_insert(self):
        count, keys = SQLiteStrategy().fetch_generated_keys(KeyCursor(lastrowid=11), 'INSERT INTO t VALUES (?)')
        assert (count, keys) == (1, [11])

    def test_sqlite_rowid_zero_is_a_key(self):
        count, keys = SQLiteStrategy().fetch_generated_keys(KeyCursor(lastrowid=0), 'insert into t values (?)')
        assert (count, keys) == (1, [0])

    def test_sqlite_lastrowid_ignored_after_update(self):
        cursor = KeyCursor(lastrowid=11, rowcount=3)
        assert SQLiteStrategy().fetch_generated_keys(cursor, 'update t set a = ?') == (3, [])


class TestSQLiteAutocommit:

    @pytest.fixture
    def raw(self):
        conn = sqlite3.connect(':memory:')
        yield conn
        conn.close()

    def test_toggle(self, raw):
        strategy = SQLiteStrategy()
        assert strategy.get_autocommit(raw) is False
        strategy.enable_autocommit(raw)
        assert strategy.get_autocommit(raw) is True
        strategy.disable_autocommit(raw)
        assert raw.isolation_level == 'DEFERRED'

    def test_restore_keeps_original_level(self, raw):
        strategy = SQLiteStrategy()
        raw.isolation_level = 'IMMEDIATE'
        strategy.set_autocommit(raw, False)
        assert raw.isolation_level == 'IMMEDIATE'

    def test_isolation_level(self, raw):
        strategy = SQLiteStrategy()
        strategy.set_isolation_level(raw, IsolationLevel.READ_UNCOMMITTED)
        assert raw.execute('PRAGMA read_uncommitted').fetchone()[0] == 1
        strategy.set_isolation_level(raw, IsolationLevel.SERIALIZABLE)
        assert raw.execute('PRAGMA read_uncommitted').fetchone()[0] == 0

    def test_configure_connection_enables_foreign_keys(self, raw):
        SQLiteStrategy().configure_connection(raw)
        assert raw.execute('PRAGMA foreign_keys').fetchone()[0] == 1
