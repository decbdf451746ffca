"""
Mock cursor and connection utilities for tests that run without a database.

Usage:
    def test_iteration(make_result_set):
        rows = make_result_set([(1,), (2,)])
"""
import sqlite3
from unittest import mock

import pytest
from dbquery.iterator import ResultSetIterable
from dbquery.types import Column


class FakeCursor:
    """Cursor over a fixed list of rows that records fetches and closes.

    Set `fail_at` to raise a driver error on that fetch (0-based).
    """

    def __init__(self, rows, names=('value',), fail_at=None):
        self._rows = list(rows)
        self.description = [(name, None, None, None, None, None, None) for name in names]
        self.fetch_count = 0
        self.close_count = 0
        self.fail_at = fail_at

    def fetchone(self):
        if self.fail_at is not None and self.fetch_count == self.fail_at:
            self.fetch_count += 1
            raise sqlite3.OperationalError('disk I/O error')
        self.fetch_count += 1
        return self._rows.pop(0) if self._rows else None

    def close(self):
        self.close_count += 1


def _create_simple_mock_connection(connection_type='postgresql'):
    """
    Create a simple mock DBAPI connection whose driver module matches the type.

    Args:
        connection_type: Database type ('postgresql', 'sqlite', 'unknown')

    Returns
        Mock connection object that passes dialect detection
    """
    class MockConn:
        def __init__(self):
            pass

    conn = MockConn()
    modules = {'postgresql': 'psycopg', 'sqlite': 'sqlite3', 'unknown': 'unknown_db'}
    conn.__class__.__module__ = modules[connection_type]
    conn.__class__.__qualname__ = 'Connection'
    conn.__class__.__name__ = 'Connection'
    return conn


@pytest.fixture
def create_simple_mock_connection():
    """
    Fixture that provides a factory function to create simple mock connections.

    Example usage:
        def test_connection_detection(create_simple_mock_connection):
            pg_conn = create_simple_mock_connection('postgresql')
    """
    return _create_simple_mock_connection


@pytest.fixture
def make_result_set():
    """Factory building a ResultSetIterable over a FakeCursor.

    The statement and connection are mocks; `statement.close_cursor` closes
    the fake cursor so release can be observed on it.
    """
    def factory(rows, handler=None, auto_close_connection=False, fail_at=None):
        cursor = FakeCursor(rows, fail_at=fail_at)
        statement = mock.Mock()
        statement.close_cursor.side_effect = lambda c: c.close()
        connection = mock.Mock()
        columns = [Column('value', 1)]
        return ResultSetIterable(
            statement, cursor, columns, handler or (lambda raw: raw[0]), connection,
            auto_close_connection=auto_close_connection, sql='select value from t',
        )
    return factory
