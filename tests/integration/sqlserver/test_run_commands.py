"""
Executing emitted commands against a live SQL Server.
"""
import asyncio
import decimal

import pytest
from sqlcommand import CommandOptions, CommandProvider, ResultType, build, emit
from sqlcommand.connection import get_engine
from sqlcommand.rows import TypedTable

pytestmark = pytest.mark.sqlserver


def test_records(sqlserver):
    """Test records come back typed and in order"""
    GetUsers = emit(build('SELECT id, name, balance FROM dbo.users WHERE age > @minAge ORDER BY id',
                          sqlserver, name='GetUsers'))

    users = list(GetUsers().execute(minAge=29))

    assert [u.id for u in users] == [1, 2, 4]
    assert users[0].name == 'Alice'
    assert users[0].balance == decimal.Decimal('10.50')
    assert users[1].balance is None


def test_single_row_and_missing_row(sqlserver):
    GetName = emit(build('SELECT name FROM dbo.users WHERE id = @id', sqlserver,
                         CommandOptions(single_row=True)))
    assert GetName().execute(id=1) == 'Alice'
    assert GetName().execute(id=3) is None
    assert GetName().execute(id=99) is None


def test_tuples(sqlserver):
    command = emit(build('SELECT id, age FROM dbo.users WHERE id = @id', sqlserver,
                         CommandOptions(ResultType.TUPLES)))
    assert list(command().execute(id=2)) == [(2, 41)]


def test_non_query_returns_row_count(sqlserver):
    """Test updates return the affected row count and are committed"""
    Rename = emit(build('UPDATE dbo.users SET name = @name WHERE age > @minAge', sqlserver))
    assert Rename().execute(name='X', minAge=40) == 2

    CountNamed = emit(build("SELECT COUNT(*) AS n FROM dbo.users WHERE name = N'X'", sqlserver,
                            CommandOptions(single_row=True)))
    assert CountNamed().execute() == 2


def test_data_table(sqlserver):
    command = emit(build('SELECT id, name FROM dbo.users ORDER BY id', sqlserver,
                         CommandOptions(ResultType.DATA_TABLE)))
    table = command().execute()
    assert isinstance(table, TypedTable)
    assert len(table) == 4
    assert table[2].name is None


def test_data_reader(sqlserver):
    command = emit(build('SELECT id FROM dbo.users ORDER BY id', sqlserver,
                         CommandOptions(ResultType.DATA_READER)))
    with command().execute() as reader:
        assert [row[0] for row in reader.fetchall()] == [1, 2, 3, 4]


def test_table_valued_parameter(sqlserver):
    """Test table-valued arguments are sent as rows of the table type"""
    CountIds = emit(build('EXEC dbo.CountIds @ids = @ids', sqlserver, name='CountIds'))

    (result,) = CountIds().execute(ids=[CountIds.IdList(1, 'a'), CountIds.IdList(id=2)])
    assert result.total == 2
    assert result.last_label == 'a'

    (empty,) = CountIds().execute(ids=[])
    assert empty.total == 0


def test_optional_parameters(sqlserver):
    command = emit(build('SELECT id FROM dbo.users WHERE name = @name OR @name IS NULL', sqlserver,
                         CommandOptions(all_parameters_optional=True)))
    assert len(list(command().execute())) == 4
    assert list(command().execute(name='Bob')) == [2]


def test_async_execute(sqlserver):
    GetUsers = emit(build('SELECT id, name FROM dbo.users WHERE age > @minAge ORDER BY id', sqlserver))
    users = asyncio.run(GetUsers().async_execute(minAge=50))
    assert users == [{'id': 4, 'name': 'Dana'}]


def test_caller_transaction_rolls_back(sqlserver):
    """Test commands on a caller's transaction commit only when the caller does"""
    Rename = emit(build('UPDATE dbo.users SET name = @name WHERE id = @id', sqlserver))
    GetName = emit(build('SELECT name FROM dbo.users WHERE id = @id', sqlserver,
                         CommandOptions(single_row=True)))

    with get_engine(sqlserver).connect() as cn:
        transaction = cn.begin()
        assert Rename(connection=transaction).execute(name='Changed', id=1) == 1
        assert GetName(connection=cn).execute(id=1) == 'Changed'
        transaction.rollback()

    assert GetName().execute(id=1) == 'Alice'


def test_provider_file_source(sqlserver, tmp_path):
    """Test the provider caches a file command and rebuilds it after the file changes"""
    path = tmp_path / 'users.sql'
    path.write_text('SELECT id FROM dbo.users WHERE age > @minAge')

    with CommandProvider(tmp_path) as provider:
        first = provider.provide('GetIds', '@users.sql', sqlserver)
        assert provider.provide('GetIds', '@users.sql', sqlserver) is first

        path.write_text('SELECT id, name FROM dbo.users WHERE age > @minAge')
        provider.watcher.poll()

        second = provider.provide('GetIds', '@users.sql', sqlserver)
        assert second is not first
        assert [c.name for c in second.columns] == ['id', 'name']


if __name__ == '__main__':
    __import__('pytest').main([__file__])
