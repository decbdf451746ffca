"""
Fetching rows, objects and scalars from SQLite.
"""
import datetime
import enum
from dataclasses import dataclass

import dbquery
import pytest
from dbquery import MappingError, Row


@dataclass
class Person:
    id: int | None = None
    name: str | None = None
    email: str | None = None
    age: int | None = None


@dataclass
class Team:
    id: int | None = None
    label: str | None = None


@dataclass
class Member:
    id: int | None = None
    name: str | None = None
    team: Team | None = None


class Status(enum.Enum):
    ACTIVE = 1
    RETIRED = 2


@dataclass
class Item:
    id: int | None = None
    status: Status | None = None
    payload: bytes | None = None
    active: bool | None = None
    created: datetime.date | None = None


def test_create_insert_select_roundtrip(empty_sqlite_session):
    """Rows come back as objects in insertion order"""
    session = empty_sqlite_session
    session.create_query('create table t (id integer primary key, a_value integer, name text)').execute_update()
    insert = 'insert into t (a_value, name) values (:a_value, :name)'
    session.create_query(insert).add_parameter('a_value', 1).add_parameter('name', 'one').execute_update()
    session.create_query(insert).add_parameter('a_value', 2).add_parameter('name', 'two').execute_update()

    @dataclass
    class Record:
        id: int | None = None
        a_value: int | None = None
        name: str | None = None

    records = session.create_query('select * from t order by id').execute_and_fetch(Record)
    assert records == [Record(1, 1, 'one'), Record(2, 2, 'two')]


def test_fetch_objects(sqlite_session):
    people = sqlite_session.create_query('select * from person order by id').execute_and_fetch(Person)
    assert [p.name for p in people] == ['Alice', 'Bob', 'Charlie']
    assert people[2].email is None
    assert people[0] == Person(1, 'Alice', 'alice@example.com', 31)


def test_column_names_case_insensitive(sqlite_session):
    sql = 'select ID, NAME as Name, Age from person where id = :id'
    person = sqlite_session.create_query(sql).add_parameter('id', 2).execute_and_fetch_first(Person)
    assert person == Person(2, 'Bob', None, 42)


def test_case_sensitive_query_rejects_other_case(sqlite_session):
    query = sqlite_session.create_query('select ID from person').set_case_sensitive(True)
    with pytest.raises(MappingError):
        query.execute_and_fetch(Person)


def test_fetch_first_without_rows(sqlite_session):
    query = sqlite_session.create_query('select * from person where id = :id').add_parameter('id', 99)
    assert query.execute_and_fetch_first(Person) is None


def test_unmapped_column_strict_and_lenient(sqlite_session):
    sql = "select id, name, 'x' as nickname from person order by id"
    with pytest.raises(MappingError, match='nickname'):
        sqlite_session.create_query(sql).execute_and_fetch(Person)

    people = sqlite_session.create_query(sql).throw_on_mapping_failure(False).execute_and_fetch(Person)
    assert people[0] == Person(1, 'Alice')


def test_fetch_rows_and_dicts(sqlite_session):
    rows = sqlite_session.create_query('select id, name from person order by id').execute_and_fetch()
    assert isinstance(rows[0], Row)
    assert rows[0]['NAME'] == 'Alice'
    assert rows[1][0] == 2
    assert rows[0].get('id', str) == '1'

    dicts = sqlite_session.create_query('select id, name from person order by id').execute_and_fetch(dict)
    assert dicts[2] == {'id': 3, 'name': 'Charlie'}


def test_row_handler(sqlite_session):
    names = sqlite_session.create_query('select name, age from person order by id').execute_and_fetch(
        row_handler=lambda row: f"{row['name']}:{row['age']}")
    assert names == ['Alice:31', 'Bob:42', 'Charlie:27']


def test_scalar(sqlite_session):
    assert sqlite_session.create_query('select count(*) from person').execute_scalar() == 3
    assert sqlite_session.create_query('select count(*) from person').execute_scalar(str) == '3'
    query = sqlite_session.create_query('select age from person where id = :id').add_parameter('id', 42)
    assert query.execute_scalar(int) is None


def test_scalar_list(sqlite_session):
    names = sqlite_session.create_query('select name from person order by id').execute_scalar_list()
    assert names == ['Alice', 'Bob', 'Charlie']
    ages = sqlite_session.create_query('select age from person order by id').execute_scalar_list(str)
    assert ages == ['31', '42', '27']


def test_scalar_type_as_target(sqlite_session):
    ages = sqlite_session.create_query('select age from person order by id').execute_and_fetch(int)
    assert ages == [31, 42, 27]


def test_update_result(sqlite_session):
    connection = sqlite_session.create_query('update person set age = age + 1').execute_update()
    assert connection.result == 3
    assert connection.closed
    assert sqlite_session.create_query('select sum(age) from person').execute_scalar() == 103


def test_array_parameter(sqlite_session):
    sql = 'select name from person where id in (:ids) and age > :age order by id'
    query = sqlite_session.create_query(sql).add_parameter('ids', [1, 2, 3]).add_parameter('age', 30)
    assert query.execute_scalar_list() == ['Alice', 'Bob']

    query = sqlite_session.create_query(sql).add_parameters('ids', 1, 3).add_parameter('age', 0)
    assert query.execute_scalar_list() == ['Alice', 'Charlie']


def test_empty_array_matches_nothing(sqlite_session):
    query = sqlite_session.create_query('select name from person where id in (:ids)').add_parameter('ids', [])
    assert query.execute_scalar_list() == []


def test_repeated_parameter(sqlite_session):
    sql = 'select name from person where age > :age and :age < 40 order by id'
    assert sqlite_session.create_query(sql).add_parameter('age', 30).execute_scalar_list() == ['Alice', 'Bob']


def test_null_parameter(sqlite_session):
    sqlite_session.create_query('update person set email = :email where id = 1').add_null_parameter('email').execute_update()
    query = sqlite_session.create_query('select count(*) from person where email is null')
    assert query.execute_scalar() == 2


def test_with_params(sqlite_session):
    query = sqlite_session.create_query('select name from person where age > :p1 and age < :p2')
    assert query.with_params(30, 40).execute_scalar_list() == ['Alice']


def test_bind_object(sqlite_session):
    insert = 'insert into person (name, email, age) values (:name, :email, :age)'
    sqlite_session.create_query(insert).bind(Person(name='Dana', email='dana@example.com', age=35)).execute_update()
    sqlite_session.create_query(insert).bind({'name': 'Eve', 'age': 22, 'email': None, 'ignored': 1}).execute_update()
    names = sqlite_session.create_query('select name from person where id > 3 order by id').execute_scalar_list()
    assert names == ['Dana', 'Eve']


def test_parameters_reset_between_executions(sqlite_session):
    with sqlite_session.open() as cn:
        query = cn.create_query('select name from person where id = :id')
        assert query.add_parameter('id', 1).execute_scalar() == 'Alice'
        assert query.add_parameter('id', 2).execute_scalar() == 'Bob'
        with pytest.raises(dbquery.ConfigurationError, match='id'):
            query.execute_scalar()


def test_nested_members_from_dotted_columns(sqlite_session):
    sql = 'select id, name, id as "team.id", email as "team.label" from person where id = 1'
    member = sqlite_session.create_query(sql).execute_and_fetch_first(Member)
    assert member == Member(1, 'Alice', Team(1, 'alice@example.com'))


def test_column_mapping(sqlite_session):
    sql = 'select id, name, age as team_id from person where id = 2'
    member = sqlite_session.create_query(sql).add_column_mapping('team_id', 'team.id').execute_and_fetch_first(Member)
    assert member.team == Team(42, None)


def test_query_level_mappings_and_derived_names(sqlite_session):
    @dataclass
    class Badge:
        holder: str | None = None
        yearsOld: int | None = None

    sql = 'select name as person_name, age as years_old from person where id = 3'
    query = sqlite_session.create_query(sql).set_column_mappings({'person_name': 'holder'})
    badge = query.set_auto_derive_column_names(True).execute_and_fetch_first(Badge)
    assert badge == Badge('Charlie', 27)


def test_session_defaults(tmp_path):
    session = dbquery.Session(drivername='sqlite', database=str(tmp_path / 'defaults.db'),
                              default_column_mappings={'full_name': 'name'},
                              auto_derive_column_names=True)

    @dataclass
    class Contact:
        name: str | None = None
        phoneNumber: str | None = None

    try:
        session.create_query('create table contact (full_name text, phone_number text)').execute_update()
        session.create_query("insert into contact values ('Ann', '555')").execute_update()
        contact = session.create_query('select * from contact').execute_and_fetch_first(Contact)
        assert contact == Contact('Ann', '555')
    finally:
        session.close()


def test_enum_blob_boolean_date(empty_sqlite_session):
    session = empty_sqlite_session
    session.create_query(
        'create table item (id integer primary key, status text, payload blob, active boolean, created date)'
    ).execute_update()
    (session.create_query('insert into item (status, payload, active, created) values (:status, :payload, :active, :created)')
        .add_parameter('status', Status.RETIRED)
        .add_parameter('payload', b'\x00\x01')
        .add_parameter('active', True)
        .add_parameter('created', datetime.date(2024, 5, 17))
        .execute_update())

    assert session.create_query('select status from item').execute_scalar() == 'RETIRED'
    item = session.create_query('select * from item').execute_and_fetch_first(Item)
    assert item == Item(1, Status.RETIRED, b'\x00\x01', True, datetime.date(2024, 5, 17))


def test_connection_tracks_statements(sqlite_session):
    with sqlite_session.open() as cn:
        query = cn.create_query('select * from person')
        query.execute_and_fetch()
        assert cn.statement_count == 1
        query.close()
        assert cn.statement_count == 0
        assert cn.calls == 1


def test_with_connection(sqlite_session):
    count = sqlite_session.with_connection(
        lambda cn, table: cn.create_query(f'select count(*) from {table}').execute_scalar(), 'person')
    assert count == 3

    def fails(cn, _):
        raise RuntimeError('boom')

    with pytest.raises(dbquery.DatabaseError, match='boom'):
        sqlite_session.with_connection(fails)


def test_memory_sessions_are_private(sqlite_session, empty_sqlite_session):
    assert sqlite_session.create_query('select count(*) from person').execute_scalar() == 3
    with pytest.raises(dbquery.QueryError):
        empty_sqlite_session.create_query('select count(*) from person').execute_scalar()


def test_existing_dbapi_connection():
    import sqlite3

    raw = sqlite3.connect(':memory:')
    try:
        session = dbquery.Session(source=dbquery.DbapiConnectionSource(raw))
        assert session.dialect == 'sqlite'
        session.create_query('create table t (a integer)').execute_update()
        session.create_query('insert into t values (:a)').add_parameter('a', 7).execute_update()
        assert session.create_query('select a from t').execute_scalar() == 7
        assert raw.execute('select count(*) from t').fetchone()[0] == 1
        assert raw.isolation_level is not None
    finally:
        raw.close()


def test_unconvertible_parameter_raises_conversion_error(sqlite_session):
    query = sqlite_session.create_query('select * from person where id = :id').add_parameter('id', 'abc', int)
    with pytest.raises(dbquery.TypeConversionError):
        query.execute_and_fetch(Person)
    assert query.connection.closed
