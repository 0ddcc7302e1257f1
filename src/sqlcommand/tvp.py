"""
Table-valued parameter rows.

A table-type parameter binds a sequence of rows of a row type built from
the catalog schema of the table type. Rows are tuples in column order,
which is what pyodbc expects for a TVP.

Usage:
    IdList = make_tvp_row_type(catalog.lookup(243, 'dbo.IdList'))
    rows = [IdList(1, 'a'), IdList(id=2)]
"""
import logging
from dataclasses import dataclass
from typing import Any

from sqlcommand.catalog import TypeInfo
from sqlcommand.exceptions import TvpArityMismatchError, ValidationError

__all__ = [
    'TvpColumnMeta',
    'TvpRow',
    'column_metadata',
    'make_tvp_row_type',
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TvpColumnMeta:
    """Column metadata sent with a TVP. ``max_length`` is None for fixed-length types."""
    name: str
    sql_db_type: str
    max_length: int | None = None


def column_metadata(type_info: TypeInfo) -> tuple[TvpColumnMeta, ...]:
    """Metadata for every column of a table type.

    Raises
        ValidationError: for a column whose length class is unknown
    """
    metadata = []
    for column in type_info.tvp_columns:
        fixed = column.type_info.is_fixed_length
        if fixed is True:
            metadata.append(TvpColumnMeta(column.name, column.type_info.sql_db_type))
        elif fixed is False:
            metadata.append(TvpColumnMeta(column.name, column.type_info.sql_db_type, column.max_length))
        else:
            raise ValidationError(
                f'Column {column.name} of table type {type_info.type_name} has '
                f'type {column.type_info.type_name} with unknown length')
    return tuple(metadata)


class TvpRow(tuple):
    """Row of a table-valued parameter.

    Construct positionally with every column, or by keyword. Nullable
    columns may be omitted when constructing by keyword.
    """

    __slots__ = ()
    _type_name: str = ''
    _fields: tuple[str, ...] = ()
    _nullable: frozenset[str] = frozenset()
    _metadata: tuple[TvpColumnMeta, ...] = ()

    def __new__(cls, *values: Any, **named: Any) -> 'TvpRow':
        if values and named:
            raise ValidationError(f'{cls.__name__} takes positional or keyword values, not both')
        if named:
            return cls._from_named(named)
        return cls.from_values(values)

    @classmethod
    def from_values(cls, values) -> 'TvpRow':
        values = tuple(values)
        if len(values) != len(cls._fields):
            raise TvpArityMismatchError(cls._type_name, len(cls._fields), len(values))
        return tuple.__new__(cls, values)

    @classmethod
    def _from_named(cls, named: dict[str, Any]) -> 'TvpRow':
        unknown = set(named) - set(cls._fields)
        if unknown:
            raise ValidationError(f'Unknown columns for table type {cls._type_name}: {sorted(unknown)}')
        values = []
        for name in cls._fields:
            if name in named:
                values.append(named[name])
            elif name in cls._nullable:
                values.append(None)
            else:
                raise ValidationError(f'Missing value for column {name} of table type {cls._type_name}')
        return tuple.__new__(cls, values)

    def __getattr__(self, name: str) -> Any:
        try:
            return self[self._fields.index(name)]
        except ValueError:
            raise AttributeError(name) from None

    def _asdict(self) -> dict[str, Any]:
        return dict(zip(self._fields, self))

    def __repr__(self) -> str:
        body = ', '.join(f'{k}={v!r}' for k, v in zip(self._fields, self))
        return f'{type(self).__name__}({body})'


def make_tvp_row_type(type_info: TypeInfo) -> type[TvpRow]:
    """Create the row type of a user-defined table type.

    Raises
        ValidationError: if type_info is not a table type or a column length is unknown
    """
    if not type_info.is_table_type:
        raise ValidationError(f'{type_info.type_name} is not a table type')
    metadata = column_metadata(type_info)
    name = type_info.type_name.rsplit('.', 1)[-1].strip('[]')
    row_type = type(name, (TvpRow,), {
        '__slots__': (),
        '_type_name': type_info.type_name,
        '_fields': tuple(c.name for c in type_info.tvp_columns),
        '_nullable': frozenset(c.name for c in type_info.tvp_columns if c.nullable),
        '_metadata': metadata,
        '__annotations__': {
            c.name: c.type_info.python_type | None if c.nullable else c.type_info.python_type
            for c in type_info.tvp_columns
            },
        })
    logger.debug(f'Created row type {name} with {len(metadata)} columns')
    return row_type
