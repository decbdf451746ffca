"""
PostgreSQL fixtures backed by a throwaway container.

Tests using them are skipped when no container runtime is available.
"""
import logging

import dbquery
import pytest
from testcontainers.postgres import PostgresContainer

logger = logging.getLogger(__name__)

POSTGRES_OPTIONS = {
    'drivername': 'postgresql',
    'username': 'postgres',
    'password': 'postgres',
    'database': 'test_db',
    'timeout': 30,
}

CREATE_PERSON = """
create table person (
    id serial primary key,
    name varchar(255) not null,
    email varchar(255),
    age integer
)
"""

PEOPLE = [
    ('Alice', 'alice@example.com', 31),
    ('Bob', 'bob@example.com', 42),
    ('Charlie', None, 27),
]


@pytest.fixture(scope='session')
def psql_docker(request):
    """Session-scoped PostgreSQL container using testcontainers.

    Testcontainers assigns a random port, waits for the server and removes
    the container when the session ends.
    """
    try:
        container = PostgresContainer(
            image='postgres:16',
            username=POSTGRES_OPTIONS['username'],
            password=POSTGRES_OPTIONS['password'],
            dbname=POSTGRES_OPTIONS['database'],
        )
        container.start()
    except Exception as err:
        pytest.skip(f'PostgreSQL container unavailable: {err}')

    logger.info(f'PostgreSQL container started at {container.get_container_host_ip()}')

    def finalizer():
        try:
            container.stop()
            logger.info('PostgreSQL container stopped')
        except Exception as e:
            logger.warning(f'Error stopping container: {e}')

    request.addfinalizer(finalizer)
    return container


@pytest.fixture(scope='session')
def postgres_options(psql_docker):
    return dbquery.DatabaseOptions(
        hostname=psql_docker.get_container_host_ip(),
        port=int(psql_docker.get_exposed_port(5432)),
        **POSTGRES_OPTIONS,
    )


@pytest.fixture
def pg_session(postgres_options):
    """Session on the container with a freshly seeded `person` table."""
    session = dbquery.Session(postgres_options)
    session.create_query('drop table if exists person').execute_update()
    session.create_query(CREATE_PERSON).execute_update()
    with session.open() as cn:
        query = cn.create_query('insert into person (name, email, age) values (:name, :email, :age)')
        for name, email, age in PEOPLE:
            query.add_parameter('name', name).add_parameter('email', email).add_parameter('age', age)
            query.add_to_batch()
        query.execute_batch()
    yield session
    session.close()
