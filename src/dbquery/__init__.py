"""
Query execution and object mapping over PostgreSQL and SQLite drivers.

Queries use `:name` parameters and are consumed through a Session:
- session.create_query(sql).add_parameter(...).execute_update()
- session.create_query(sql).execute_and_fetch(Person)
- session.run_in_transaction(fn)
"""
__version__ = '0.1.0'

from dbquery.connection import ConnectionWrapper
from dbquery.exceptions import ConfigurationError, ConnectionFailure
from dbquery.exceptions import DatabaseError, DbConnectionError, IntegrityError
from dbquery.exceptions import IntegrityViolationError, MappingError
from dbquery.exceptions import QueryError, ResultStateError, TransactionError
from dbquery.exceptions import TypeConversionError, UniqueViolation
from dbquery.handlers import Char, TypeHandler, TypeHandlerRegistry
from dbquery.iterator import ResultSetIterable
from dbquery.mapping import register_type, unregister_type
from dbquery.options import DatabaseOptions
from dbquery.query import Query
from dbquery.session import Session
from dbquery.source import ConnectionSource, DbapiConnectionSource
from dbquery.source import EngineConnectionSource
from dbquery.strategy import IsolationLevel
from dbquery.table import LazyTable, Row, Table
from dbquery.transaction import Transaction
from dbquery.types import Column


def connect(config: DatabaseOptions | dict | None = None, **kwargs) -> Session:
    """Create a Session from options or keyword arguments.
    """
    return Session(config, **kwargs)


__all__ = [
    'Char',
    'Column',
    'ConfigurationError',
    'ConnectionFailure',
    'ConnectionSource',
    'ConnectionWrapper',
    'DatabaseError',
    'DatabaseOptions',
    'DbConnectionError',
    'DbapiConnectionSource',
    'EngineConnectionSource',
    'IntegrityError',
    'IntegrityViolationError',
    'IsolationLevel',
    'LazyTable',
    'MappingError',
    'Query',
    'QueryError',
    'ResultSetIterable',
    'ResultStateError',
    'Row',
    'Session',
    'Table',
    'Transaction',
    'TransactionError',
    'TypeConversionError',
    'TypeHandler',
    'TypeHandlerRegistry',
    'UniqueViolation',
    'connect',
    'register_type',
    'unregister_type',
]
