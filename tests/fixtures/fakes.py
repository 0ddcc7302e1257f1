"""
In-memory gateway for descriptor tests.

FakeGateway answers the metadata queries of ConnectionGateway from canned
rows, so builds run without a server.

Usage:
    def test_build(fake_gateway, gateway_factory):
        fake_gateway.add_statement('SELECT 1 AS one', columns=[column_row('one', 56)])
        descriptor = build('SELECT 1 AS one', 'Server=x', gateway_factory=gateway_factory)
"""
from dataclasses import dataclass, field

import pytest
from sqlcommand.catalog import TypeCatalog
from sqlcommand.connection import ColumnRow, ConnectionGateway, Introspected
from sqlcommand.connection import NeedsFallback, ParameterRow


def _type_row(name, system_type_id, user_type_id=None, max_length=4,
              system_type_name=None, is_user_defined=False, is_table_type=False,
              schema_name='sys'):
    return {
        'name': name,
        'system_type_id': system_type_id,
        'user_type_id': system_type_id if user_type_id is None else user_type_id,
        'is_table_type': is_table_type,
        'is_user_defined': is_user_defined,
        'system_type_name': system_type_name or name,
        'max_length': max_length,
        'schema_name': schema_name,
        }


TYPE_ROWS = [
    _type_row('int', 56),
    _type_row('bigint', 127, max_length=8),
    _type_row('smallint', 52, max_length=2),
    _type_row('bit', 104, max_length=1),
    _type_row('float', 62, max_length=8),
    _type_row('decimal', 106, max_length=17),
    _type_row('money', 60, max_length=8),
    _type_row('datetime', 61, max_length=8),
    _type_row('datetime2', 42, max_length=8),
    _type_row('date', 40, max_length=3),
    _type_row('time', 41, max_length=5),
    _type_row('uniqueidentifier', 36, max_length=16),
    _type_row('varchar', 167, max_length=8000),
    _type_row('nvarchar', 231, max_length=8000),
    _type_row('varbinary', 165, max_length=8000),
    _type_row('sql_variant', 98, max_length=8016),
    _type_row('sysname', 231, user_type_id=256, max_length=256, system_type_name='nvarchar'),
    _type_row('geography', 240, user_type_id=130, max_length=-1, is_user_defined=True),
    _type_row('IdList', 243, user_type_id=257, max_length=-1, system_type_name='sysname',
              is_user_defined=True, is_table_type=True, schema_name='dbo'),
    _type_row('VariantList', 243, user_type_id=258, max_length=-1, system_type_name='sysname',
              is_user_defined=True, is_table_type=True, schema_name='dbo'),
    ]

TABLE_TYPE_COLUMNS = {
    257: [
        {'name': 'id', 'system_type_id': 56, 'user_type_id': 56, 'is_nullable': False, 'max_length': 4},
        {'name': 'label', 'system_type_id': 231, 'user_type_id': 231, 'is_nullable': True, 'max_length': 200},
        ],
    258: [
        {'name': 'value', 'system_type_id': 98, 'user_type_id': 98, 'is_nullable': True, 'max_length': 8016},
        ],
    }


def parameter_row(name, type_id, udt_name='', is_input=True, is_output=False, type_name=''):
    return ParameterRow(name, type_id, udt_name, is_input, is_output, type_name)


def column_row(name, type_id, nullable=False, ordinal=1, udt_name='', max_length=None):
    return ColumnRow(name, type_id, udt_name, nullable, ordinal, max_length)


@dataclass
class FakeStatement:
    """Canned metadata for one statement.

    ``columns`` and ``fallback`` are column rows, or an exception the engine
    reports for that attempt.
    """
    parameters: list = field(default_factory=list)
    columns: list | BaseException = field(default_factory=list)
    fallback: list | BaseException | None = None


class FakeGateway(ConnectionGateway):
    """ConnectionGateway answering from canned rows."""

    def __init__(self, server_version='16.0.4135.4', database='test_db',
                 type_rows=None, table_columns=None):
        super().__init__('fake')
        self._server_info = {'product_version': server_version, 'database_name': database}
        self.type_rows = TYPE_ROWS if type_rows is None else type_rows
        self.table_columns = TABLE_TYPE_COLUMNS if table_columns is None else table_columns
        self.statements: dict[str, FakeStatement] = {}
        self.log: list[tuple[str, str]] = []
        self.opened = 0
        self.closed = 0

    def add_statement(self, text, parameters=(), columns=(), fallback=None):
        if not isinstance(columns, BaseException):
            columns = list(columns)
        self.statements[text] = FakeStatement(list(parameters), columns, fallback)
        return self.statements[text]

    def open(self):
        self.opened += 1
        return self

    def close(self):
        self.closed += 1

    def describe_parameters(self, text):
        self.log.append(('describe_parameters', text))
        return list(self.statements[text].parameters)

    def introspect_columns(self, text, parameters=()):
        self.log.append(('introspect_columns', text))
        outcome = self.statements[text].columns
        if isinstance(outcome, BaseException):
            return NeedsFallback(outcome)
        return Introspected(tuple(outcome))

    def introspect_columns_fallback(self, text, parameters=()):
        self.log.append(('introspect_columns_fallback', text))
        outcome = self.statements[text].fallback
        if outcome is None:
            return NeedsFallback(RuntimeError('FMTONLY not supported for this statement'))
        if isinstance(outcome, BaseException):
            return NeedsFallback(outcome)
        return Introspected(tuple(outcome))

    def load_type_rows(self):
        self.log.append(('load_type_rows', ''))
        return [dict(row) for row in self.type_rows]

    def load_table_type_columns(self, user_type_id):
        return [dict(row) for row in self.table_columns.get(user_type_id, [])]

    def calls_to(self, name):
        return [text for op, text in self.log if op == name]


USERS_SQL = 'SELECT id, name FROM users WHERE age > @minAge'
UPDATE_SQL = 'UPDATE users SET name=@n WHERE id=@id'


def add_user_statements(gateway):
    """Register the users query and update on a FakeGateway."""
    gateway.add_statement(
        USERS_SQL,
        parameters=[parameter_row('@minAge', 56, type_name='int')],
        columns=[column_row('id', 56, nullable=False, ordinal=1),
                 column_row('name', 231, nullable=True, ordinal=2, max_length=200)],
        )
    gateway.add_statement(
        UPDATE_SQL,
        parameters=[parameter_row('@n', 231, type_name='nvarchar(100)'),
                    parameter_row('@id', 56, type_name='int')],
        columns=[],
        )
    return gateway


@pytest.fixture
def fake_gateway():
    """FakeGateway with the users statements registered."""
    return add_user_statements(FakeGateway())


@pytest.fixture
def gateway_factory(fake_gateway):
    """Callable(connection_string) returning fake_gateway. Records the strings it was given."""
    def factory(connection_string):
        factory.connection_strings.append(connection_string)
        return fake_gateway
    factory.connection_strings = []
    return factory


@pytest.fixture
def catalog(fake_gateway):
    return TypeCatalog.load(fake_gateway)
