"""
Unit tests for output column extraction and the FMTONLY fallback.
"""
import logging

import pytest
from sqlcommand.exceptions import DuplicateColumnNameError, EmptyColumnNameError
from sqlcommand.exceptions import SchemaIntrospectionFailure, UnmappedTypeError
from sqlcommand.introspection import ColumnExtractor
from sqlcommand.options import ResultType
from tests.fixtures.fakes import USERS_SQL, column_row


def test_extract_users_columns(fake_gateway, catalog):
    """Test schema-only introspection of the users query"""
    columns = ColumnExtractor(fake_gateway, catalog).extract(USERS_SQL)

    assert [(c.name, c.python_type, c.nullable, c.ordinal) for c in columns] == [
        ('id', int, False, 1),
        ('name', str, True, 2),
        ]
    assert fake_gateway.calls_to('introspect_columns_fallback') == []


def test_fallback_used_when_primary_rejected(fake_gateway, catalog):
    """Test the FMTONLY fallback describes what the primary attempt could not"""
    fake_gateway.add_statement(
        'SELECT * FROM #temp',
        columns=RuntimeError('Invalid object name #temp'),
        fallback=[column_row('id', 56, ordinal=1)],
        )
    columns = ColumnExtractor(fake_gateway, catalog).extract('SELECT * FROM #temp')

    assert [c.name for c in columns] == ['id']
    assert fake_gateway.calls_to('introspect_columns_fallback') == ['SELECT * FROM #temp']


def test_fallback_failure_surfaces_primary_error(fake_gateway, catalog, caplog):
    """Test that when both attempts fail the primary error is raised"""
    primary = RuntimeError('primary failure')
    secondary = RuntimeError('fallback failure')
    fake_gateway.add_statement('broken', columns=primary, fallback=secondary)

    with caplog.at_level(logging.DEBUG, logger='sqlcommand.introspection.columns'):
        with pytest.raises(SchemaIntrospectionFailure) as exc_info:
            ColumnExtractor(fake_gateway, catalog).extract('broken')

    assert exc_info.value.error is primary
    assert exc_info.value.__cause__ is primary
    assert 'primary failure' in str(exc_info.value)
    assert 'fallback failure' not in str(exc_info.value)
    assert 'fallback failure' in caplog.text


def test_empty_column_name_is_fatal(fake_gateway, catalog):
    """Test a column without a name fails with its ordinal"""
    fake_gateway.add_statement('SELECT id, COUNT(*) FROM t GROUP BY id', columns=[
        column_row('id', 56, ordinal=1),
        column_row('', 56, ordinal=2),
        ])
    with pytest.raises(EmptyColumnNameError, match='#2') as exc_info:
        ColumnExtractor(fake_gateway, catalog).extract('SELECT id, COUNT(*) FROM t GROUP BY id')
    assert exc_info.value.ordinal == 2


def test_empty_column_name_is_fatal_for_tuples(fake_gateway, catalog):
    """Test empty names fail regardless of result type"""
    fake_gateway.add_statement('SELECT 1', columns=[column_row('', 56, ordinal=1)])
    with pytest.raises(EmptyColumnNameError):
        ColumnExtractor(fake_gateway, catalog).extract('SELECT 1', result_type=ResultType.TUPLES)


@pytest.mark.parametrize('result_type', [ResultType.RECORDS, ResultType.DATA_TABLE])
def test_duplicate_column_names_rejected(fake_gateway, catalog, result_type):
    """Test duplicate names fail where names key the row"""
    fake_gateway.add_statement('SELECT a.id, b.id FROM a, b', columns=[
        column_row('id', 56, ordinal=1),
        column_row('id', 56, ordinal=2),
        ])
    with pytest.raises(DuplicateColumnNameError, match='id'):
        ColumnExtractor(fake_gateway, catalog).extract('SELECT a.id, b.id FROM a, b', result_type=result_type)


def test_duplicate_column_names_allowed_for_tuples(fake_gateway, catalog):
    """Test duplicate names are fine for positional rows"""
    fake_gateway.add_statement('SELECT a.id, b.id FROM a, b', columns=[
        column_row('id', 56, ordinal=1),
        column_row('id', 56, ordinal=2),
        ])
    columns = ColumnExtractor(fake_gateway, catalog).extract(
        'SELECT a.id, b.id FROM a, b', result_type=ResultType.TUPLES)
    assert len(columns) == 2


def test_data_reader_skips_extraction(fake_gateway, catalog):
    """Test nothing is described for DATA_READER"""
    columns = ColumnExtractor(fake_gateway, catalog).extract(USERS_SQL, result_type=ResultType.DATA_READER)
    assert columns == ()
    assert fake_gateway.calls_to('introspect_columns') == []


def test_unmapped_column_type_names_column(fake_gateway, catalog):
    """Test an unmapped column type fails naming the column"""
    fake_gateway.add_statement('SELECT location FROM places', columns=[
        column_row('location', 240, udt_name='geography'),
        ])
    with pytest.raises(UnmappedTypeError, match='location'):
        ColumnExtractor(fake_gateway, catalog).extract('SELECT location FROM places')


def test_no_columns_for_non_query(fake_gateway, catalog):
    """Test statements without a result set have no columns"""
    assert ColumnExtractor(fake_gateway, catalog).extract('UPDATE users SET name=@n WHERE id=@id') == ()


if __name__ == '__main__':
    __import__('pytest').main([__file__])
