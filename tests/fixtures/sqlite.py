"""
SQLite session fixtures.

Every test gets its own in-memory database (in-memory engines are never
shared), seeded with a small `person` table.
"""
import dbquery
import pytest

CREATE_PERSON = """
CREATE TABLE person (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT,
    age INTEGER
)
"""

PEOPLE = [
    ('Alice', 'alice@example.com', 31),
    ('Bob', 'bob@example.com', 42),
    ('Charlie', None, 27),
]


def _seed(session):
    session.create_query(CREATE_PERSON).execute_update()
    with session.open() as cn:
        query = cn.create_query('INSERT INTO person (name, email, age) VALUES (:name, :email, :age)')
        for name, email, age in PEOPLE:
            query.add_parameter('name', name).add_parameter('email', email).add_parameter('age', age)
            query.add_to_batch()
        query.execute_batch()


@pytest.fixture
def sqlite_session():
    """In-memory SQLite session with the `person` table."""
    session = dbquery.Session(drivername='sqlite', database=':memory:')
    _seed(session)
    yield session
    session.close()


@pytest.fixture
def empty_sqlite_session():
    """In-memory SQLite session without tables."""
    session = dbquery.Session(drivername='sqlite', database=':memory:')
    yield session
    session.close()


@pytest.fixture
def sqlite_file_session(tmp_path):
    """File-based SQLite session, for checks across separate connections."""
    session = dbquery.Session(drivername='sqlite', database=str(tmp_path / 'test.db'))
    _seed(session)
    yield session
    session.close()
