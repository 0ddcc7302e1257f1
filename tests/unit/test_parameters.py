"""
Unit tests for parameter extraction.
"""
import pytest
from sqlcommand.descriptor import ParameterDirection
from sqlcommand.exceptions import UnmappedTypeError, ValidationError
from sqlcommand.introspection import ParameterExtractor
from tests.fixtures.fakes import USERS_SQL, parameter_row


@pytest.mark.parametrize(('is_input', 'is_output', 'expected'), [
    (True, True, ParameterDirection.INPUT_OUTPUT),
    (False, True, ParameterDirection.OUTPUT),
    (True, False, ParameterDirection.INPUT),
    (False, False, ParameterDirection.INPUT),
])
def test_direction_table(is_input, is_output, expected):
    """Test direction from the engine's input/output flags"""
    assert ParameterDirection.from_flags(is_input, is_output) is expected


def test_extract_users_parameter(fake_gateway, catalog):
    """Test the users query yields @minAge int input"""
    params = ParameterExtractor(fake_gateway, catalog).extract(USERS_SQL)

    assert len(params) == 1
    p = params[0]
    assert p.name == '@minAge'
    assert p.argument_name == 'minAge'
    assert p.type_info.python_type is int
    assert p.direction is ParameterDirection.INPUT
    assert p.optional is False


def test_extract_keeps_engine_order(fake_gateway, catalog):
    """Test parameters keep the order the engine reported"""
    fake_gateway.add_statement('SELECT @b + @a AS total', parameters=[
        parameter_row('@b', 56, type_name='int'),
        parameter_row('@a', 127, type_name='bigint'),
        ])
    params = ParameterExtractor(fake_gateway, catalog).extract('SELECT @b + @a AS total')
    assert [p.name for p in params] == ['@b', '@a']


def test_extract_directions(fake_gateway, catalog):
    """Test directions flow through extraction"""
    fake_gateway.add_statement('EXEC dbo.Proc @x, @y OUTPUT, @z OUTPUT', parameters=[
        parameter_row('@x', 56),
        parameter_row('@y', 56, is_input=False, is_output=True),
        parameter_row('@z', 56, is_input=True, is_output=True),
        ])
    params = ParameterExtractor(fake_gateway, catalog).extract('EXEC dbo.Proc @x, @y OUTPUT, @z OUTPUT')
    assert [p.direction for p in params] == [
        ParameterDirection.INPUT, ParameterDirection.OUTPUT, ParameterDirection.INPUT_OUTPUT]
    assert params[1].declaration == '@y int OUTPUT'


def test_all_parameters_optional(fake_gateway, catalog):
    """Test every parameter becomes optional"""
    params = ParameterExtractor(fake_gateway, catalog).extract(USERS_SQL, all_parameters_optional=True)
    assert all(p.optional for p in params)


def test_unmapped_parameter_type_names_parameter(fake_gateway, catalog):
    """Test an unmapped parameter type fails naming the parameter"""
    fake_gateway.add_statement('SELECT @loc.STAsText() AS wkt', parameters=[
        parameter_row('@loc', 240, udt_name='geography'),
        ])
    with pytest.raises(UnmappedTypeError, match='@loc'):
        ParameterExtractor(fake_gateway, catalog).extract('SELECT @loc.STAsText() AS wkt')


def test_duplicate_parameter_name(fake_gateway, catalog):
    """Test duplicate names are rejected"""
    fake_gateway.add_statement('dup', parameters=[parameter_row('@a', 56), parameter_row('@A', 56)])
    with pytest.raises(ValidationError, match='more than once'):
        ParameterExtractor(fake_gateway, catalog).extract('dup')


def test_parameter_name_without_prefix(fake_gateway, catalog):
    """Test names must begin with @"""
    fake_gateway.add_statement('bad', parameters=[parameter_row('a', 56)])
    with pytest.raises(ValidationError, match='must start with @'):
        ParameterExtractor(fake_gateway, catalog).extract('bad')


def test_table_valued_parameter(fake_gateway, catalog):
    """Test a table-type parameter gets its row type and READONLY declaration"""
    fake_gateway.add_statement('SELECT id FROM @ids', parameters=[
        parameter_row('@ids', 243, udt_name='dbo.IdList'),
        ])
    (p,) = ParameterExtractor(fake_gateway, catalog).extract('SELECT id FROM @ids')

    assert p.is_table_type
    assert p.row_type.__name__ == 'IdList'
    assert p.row_type._fields == ('id', 'label')
    assert p.declaration == '@ids IdList READONLY'
    assert p.local_declaration == '@ids IdList'


def test_table_valued_parameter_must_be_input(fake_gateway, catalog):
    """Test a table-type parameter marked as output is rejected"""
    fake_gateway.add_statement('tvp out', parameters=[
        parameter_row('@ids', 243, udt_name='IdList', is_output=True),
        ])
    with pytest.raises(ValidationError, match='must be an input'):
        ParameterExtractor(fake_gateway, catalog).extract('tvp out')


def test_table_valued_parameter_with_unknown_column_length(fake_gateway, catalog):
    """Test a table type with a column of unknown length class fails"""
    fake_gateway.add_statement('variants', parameters=[
        parameter_row('@v', 243, udt_name='VariantList'),
        ])
    with pytest.raises(ValidationError, match='unknown length'):
        ParameterExtractor(fake_gateway, catalog).extract('variants')


if __name__ == '__main__':
    __import__('pytest').main([__file__])
