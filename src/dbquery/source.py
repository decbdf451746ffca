"""
Connection sources: where a connection scope borrows its DBAPI connection.

Two sources are provided:
1. `EngineConnectionSource` draws raw DBAPI connections from a SQLAlchemy
   engine kept in a thread-safe registry
2. `DbapiConnectionSource` joins a connection the caller already holds;
   releasing it leaves it open
"""
import atexit
import logging
import threading
import time
from collections.abc import Callable
from functools import wraps
from typing import Any, Protocol, TypeVar, runtime_checkable

import sqlalchemy as sa
from dbquery.exceptions import ConfigurationError, ConnectionFailure
from dbquery.exceptions import DbConnectionError, DriverError, is_retryable_error
from dbquery.options import DatabaseOptions
from dbquery.strategy import get_dialect_name, get_strategy
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

__all__ = [
    'ConnectionSource',
    'EngineConnectionSource',
    'DbapiConnectionSource',
    'check_connection',
    'create_url_from_options',
    'get_engine_for_options',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')
_engine_registry: dict[tuple, Engine] = {}
_engine_registry_lock = threading.RLock()


def create_url_from_options(options: DatabaseOptions,
                            url_creator: Callable[..., sa.URL] = sa.URL.create) -> sa.URL:
    """Build the SQLAlchemy URL for `options`.

    SQLite without a database path opens an in-memory database. PostgreSQL
    goes through psycopg 3, with `timeout` passed as `connect_timeout`.
    """
    match options.drivername:
        case 'sqlite':
            return url_creator(drivername='sqlite', database=options.database or ':memory:')
        case 'postgresql':
            query = {'connect_timeout': str(options.timeout)} if options.timeout else {}
            return url_creator(drivername='postgresql+psycopg', username=options.username,
                               password=options.password, host=options.hostname,
                               port=options.port, database=options.database, query=query)
    raise ConfigurationError(f'No connection URL for driver {options.drivername!r}')


def check_connection(func: Callable[..., T] | None = None, *, max_retries: int = 3,
                     retry_delay: float = 1, retry_errors: type | tuple[type, ...] | None = None,
                     retry_backoff: float = 1.5,
                     sleep_func: Callable[[float], None] = time.sleep) -> Callable[..., T]:
    """Retry a call that fails to reach the database.

    The call runs at most `max_retries` times. The pause before the second
    attempt is `retry_delay` seconds and grows by `retry_backoff` each time.
    Only `retry_errors` are retried. By default those are driver
    connectivity errors plus any driver error whose message looks transient.
    Usable bare or with arguments.
    """
    def decorator(f: Callable[..., T]) -> Callable[..., T]:
        label = getattr(f, '__name__', type(f).__name__)

        def should_retry(err: Exception) -> bool:
            if retry_errors is not None:
                return isinstance(err, retry_errors)
            return isinstance(err, DbConnectionError) or (isinstance(err, DriverError) and is_retryable_error(err))

        @wraps(f)
        def inner(*args: Any, **kwargs: Any) -> T:
            delays = (retry_delay * retry_backoff ** n for n in range(max_retries - 1))
            for attempt in range(1, max_retries + 1):
                try:
                    return f(*args, **kwargs)
                except Exception as err:
                    if not should_retry(err):
                        raise
                    if attempt == max_retries:
                        logger.error(f'Giving up on {label} after {attempt} attempts: {err}')
                        raise
                    pause = next(delays)
                    logger.warning(f'{label} failed ({attempt}/{max_retries}), retrying in {pause:.1f}s: {err}')
                    sleep_func(pause)
            raise ConfigurationError(f'max_retries must be positive, got {max_retries}')

        return inner

    return decorator if func is None else decorator(func)


def _pool_kwargs(use_pool: bool, pool_size: int, pool_recycle: int, pool_timeout: int) -> dict[str, Any]:
    if not use_pool:
        return {'poolclass': NullPool}
    return {
        'pool_size': pool_size,
        'max_overflow': 10,
        'pool_recycle': pool_recycle,
        'pool_timeout': pool_timeout,
        'pool_pre_ping': True,
        'pool_reset_on_return': 'rollback',
    }


def get_engine_for_options(options: DatabaseOptions, use_pool: bool = False,
                           pool_size: int = 5, pool_recycle: int = 300,
                           pool_timeout: int = 30, shared: bool = True,
                           engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Return the engine for `options`, creating it on first use.

    Engines are registered by options and pool settings and reused across
    sessions. In-memory SQLite engines are always private: each one owns its
    database. Dialect engine settings (connect args, a static pool) override
    the generic pool settings; `kwargs` override both.
    """
    shared = shared and not options.is_memory_database
    key = (str(options), use_pool, pool_size, pool_recycle, pool_timeout)

    with _engine_registry_lock:
        if shared and (engine := _engine_registry.get(key)) is not None:
            return engine

        engine_kwargs = {'echo': False, **_pool_kwargs(use_pool, pool_size, pool_recycle, pool_timeout)}
        dialect_kwargs = get_strategy(options.drivername).get_engine_kwargs(options)
        if dialect_kwargs.get('poolclass') not in {None, NullPool}:
            engine_kwargs = {k: v for k, v in engine_kwargs.items()
                             if k not in {'pool_size', 'max_overflow', 'pool_recycle', 'pool_timeout'}}
        engine = engine_factory(create_url_from_options(options), **engine_kwargs | dialect_kwargs | kwargs)

        if shared:
            _engine_registry[key] = engine
        logger.debug(f'New {"shared" if shared else "private"} engine for {options.drivername}')
        return engine


def dispose_all_engines() -> None:
    """Dispose and forget every registered engine."""
    with _engine_registry_lock:
        while _engine_registry:
            _, engine = _engine_registry.popitem()
            engine.dispose()
    logger.debug('Engine registry cleared')


atexit.register(dispose_all_engines)


@runtime_checkable
class ConnectionSource(Protocol):
    """Anything that hands out and takes back DBAPI connections."""

    @property
    def dialect(self) -> str: ...

    def acquire(self) -> Any: ...

    def release(self, connection: Any) -> None: ...

    def dispose(self) -> None: ...


class EngineConnectionSource:
    """Raw DBAPI connections drawn from a SQLAlchemy engine.

    Args:
        options: Connection options; the engine is looked up in (or added
            to) the shared engine registry
        engine: Use this engine instead of creating one
    """

    def __init__(self, options: DatabaseOptions, engine: Engine | None = None) -> None:
        self.options = options
        self.strategy = get_strategy(options.drivername)
        self._shared = engine is None and not options.is_memory_database
        self.engine = engine or get_engine_for_options(
            options,
            use_pool=options.use_pool,
            pool_size=options.pool_max_connections,
            pool_recycle=options.pool_max_idle_time,
            pool_timeout=options.pool_wait_timeout,
        )
        retries = 3 if options.check_connection else 1
        self._connect = check_connection(self.engine.raw_connection, max_retries=retries)

    def __repr__(self) -> str:
        return f'EngineConnectionSource({self.engine.url!r})'

    @property
    def dialect(self) -> str:
        return self.strategy.dialect_name

    def acquire(self) -> Any:
        """Check a connection out of the engine and configure it.

        Raises
            ConnectionFailure: the database could not be reached
        """
        try:
            connection = self._connect()
        except DbConnectionError as err:
            raise ConnectionFailure(f'Could not acquire connection to {self.options.drivername}: {err}') from err
        self.strategy.configure_connection(getattr(connection, 'driver_connection', connection))
        return connection

    def release(self, connection: Any) -> None:
        connection.close()

    def dispose(self) -> None:
        """Dispose the engine unless it is shared through the registry."""
        if not self._shared:
            self.engine.dispose()
            logger.debug(f'Disposed engine for {self.options.drivername}')


class DbapiConnectionSource:
    """Join a DBAPI connection owned by the caller.

    The connection is handed out on every `acquire` and left open on
    `release`; the caller closes it.
    """

    def __init__(self, connection: Any, dialect: str | None = None) -> None:
        dialect = dialect or get_dialect_name(connection)
        if dialect is None:
            raise ConfigurationError(f'Cannot detect dialect of {type(connection).__name__}')
        self.connection = connection
        self.strategy = get_strategy(dialect)

    @property
    def dialect(self) -> str:
        return self.strategy.dialect_name

    def acquire(self) -> Any:
        self.strategy.configure_connection(self.connection)
        return self.connection

    def release(self, connection: Any) -> None:
        pass

    def dispose(self) -> None:
        pass
