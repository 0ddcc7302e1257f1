"""
Describing statements against a live SQL Server.
"""
import datetime
import decimal

import pytest
from sqlcommand import CommandOptions, ResultType, build
from sqlcommand.catalog import CatalogRegistry
from sqlcommand.exceptions import DuplicateColumnNameError, EmptyColumnNameError
from sqlcommand.exceptions import SchemaIntrospectionFailure
from sqlcommand.shapes import Cardinality, RecordShape, Scalar, TableShape

pytestmark = pytest.mark.sqlserver

USERS_SQL = 'SELECT id, name, balance, created FROM dbo.users WHERE age > @minAge'


def test_describe_parameters_and_columns(sqlserver):
    """Test parameter and column types come from the server catalog"""
    descriptor = build(USERS_SQL, sqlserver, name='GetUsers')

    (param,) = descriptor.parameters
    assert param.name == '@minAge'
    assert param.type_info.python_type is int
    assert param.declaration == '@minAge int'

    assert [(c.name, c.python_type, c.nullable) for c in descriptor.columns] == [
        ('id', int, False),
        ('name', str, True),
        ('balance', decimal.Decimal, True),
        ('created', datetime.datetime, False),
        ]
    assert isinstance(descriptor.output.shape, RecordShape)
    assert descriptor.output.cardinality is Cardinality.SEQUENCE


def test_describe_non_query(sqlserver):
    descriptor = build('UPDATE dbo.users SET name = @name WHERE id = @id', sqlserver)
    assert [p.argument_name for p in descriptor.parameters] == ['name', 'id']
    assert descriptor.columns == ()
    assert descriptor.output.is_non_query


def test_describe_single_column(sqlserver):
    """Test one output column collapses to a scalar"""
    descriptor = build('SELECT name FROM dbo.users WHERE id = @id', sqlserver,
                       CommandOptions(single_row=True))
    assert descriptor.output.shape == Scalar(str, nullable=True)
    assert descriptor.output.cardinality is Cardinality.OPTIONAL


def test_describe_data_table(sqlserver):
    descriptor = build('SELECT id, name FROM dbo.users', sqlserver,
                       CommandOptions(ResultType.DATA_TABLE))
    assert isinstance(descriptor.output.shape, TableShape)
    assert descriptor.output.shape.row_type._fields == ('id', 'name')


def test_describe_table_valued_parameter(sqlserver):
    """Test a table type parameter gets a row type from the catalog"""
    descriptor = build('EXEC dbo.CountIds @ids = @ids', sqlserver, name='CountIds')

    (param,) = descriptor.parameters
    assert param.is_table_type
    assert param.declaration == '@ids IdList READONLY'
    assert param.row_type._fields == ('id', 'label')
    assert [c.name for c in descriptor.columns] == ['total', 'last_label']


def test_unnamed_column_rejected(sqlserver):
    with pytest.raises(EmptyColumnNameError):
        build('SELECT 1', sqlserver)


def test_duplicate_column_rejected(sqlserver):
    with pytest.raises(DuplicateColumnNameError):
        build('SELECT 1 AS a, 2 AS a', sqlserver)


def test_temp_table_cannot_be_described(sqlserver):
    """Test a statement neither describe path handles reports the primary error"""
    with pytest.raises(SchemaIntrospectionFailure):
        build('CREATE TABLE #t (a INT); SELECT a FROM #t', sqlserver)


def test_catalog_loaded_once(sqlserver):
    build(USERS_SQL, sqlserver)
    build('SELECT id FROM dbo.users', sqlserver)
    assert len(CatalogRegistry.get_instance()._catalogs) == 1


if __name__ == '__main__':
    __import__('pytest').main([__file__])
