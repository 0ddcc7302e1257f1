"""
Row structures for command results.

- Record: dictionary-like row keyed by column name with attribute access
- TypedTable / TableRow: tabular result backed by a pandas DataFrame, with
  one accessor per column

These structures do NOT convert values. They only map structure and, for
table storage, translate between ``None`` and the storage null marker.
"""
from collections.abc import Iterable, Iterator, Sequence
from typing import TYPE_CHECKING, Any

import pandas as pd
from sqlcommand.exceptions import ValidationError

from libb import attrdict
from libb import is_null as _is_null

if TYPE_CHECKING:
    from sqlcommand.shapes import Field

__all__ = [
    'NULL',
    'is_null',
    'Record',
    'make_record_type',
    'TableRow',
    'TypedTable',
    'make_table_row_type',
]

# null marker held by table storage
NULL = pd.NA


def is_null(value: Any) -> bool:
    """libb.is_null, extended to the pandas null markers (NA, NaT)."""
    if value is NULL or value is pd.NaT or _is_null(value):
        return True
    return bool(pd.api.types.is_scalar(value) and pd.isna(value))


class Record(attrdict):
    """Row keyed by column name.

    >>> r = Record(id=1, name=None)
    >>> r.id, r['name']
    (1, None)
    """

    _fields: tuple[str, ...] = ()

    def __getattr__(self, name: str) -> Any:
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None

    def __repr__(self) -> str:
        return f'{type(self).__name__}({dict.__repr__(self)})'

    @classmethod
    def from_values(cls, values: Sequence[Any]) -> 'Record':
        return cls(zip(cls._fields, values))


def make_record_type(fields: Sequence['Field'], name: str = 'Record') -> type[Record]:
    """Create a Record subclass whose annotations mirror the output fields.
    """
    return type(name, (Record,), {
        '_fields': tuple(f.name for f in fields),
        '__annotations__': {f.name: f.annotation for f in fields},
        })


class TableRow:
    """View of one row of a TypedTable.

    Subclasses created by make_table_row_type carry one property per column.
    Nullable columns read as None when storage holds the null marker and
    store the null marker when assigned None.
    """

    __slots__ = ('_table', '_index')
    _fields: tuple[str, ...] = ()
    _nullable: frozenset[str] = frozenset()
    _accessors: dict[str, property] = {}

    def __init__(self, table: 'TypedTable', index: int) -> None:
        self._table = table
        self._index = index

    def _get(self, name: str) -> Any:
        return self._table._frame.at[self._index, name]

    def _set(self, name: str, value: Any) -> None:
        self._table._frame.at[self._index, name] = value

    def __getitem__(self, name: str) -> Any:
        return self._accessors[name].fget(self)

    def __setitem__(self, name: str, value: Any) -> None:
        self._accessors[name].fset(self, value)

    def to_dict(self) -> dict[str, Any]:
        return {name: self[name] for name in self._fields}

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TableRow):
            return self.to_dict() == other.to_dict()
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.to_dict()!r})'


def _nullable_accessor(name: str) -> property:
    def getter(self: TableRow) -> Any:
        value = self._get(name)
        return None if is_null(value) else value

    def setter(self: TableRow, value: Any) -> None:
        self._set(name, NULL if value is None else value)

    return property(getter, setter)


def _accessor(name: str) -> property:
    def getter(self: TableRow) -> Any:
        return self._get(name)

    def setter(self: TableRow, value: Any) -> None:
        self._set(name, value)

    return property(getter, setter)


def make_table_row_type(fields: Sequence['Field'], name: str = 'Row') -> type[TableRow]:
    """Create a TableRow subclass with one accessor per output field.
    """
    accessors = {
        f.name: _nullable_accessor(f.name) if f.nullable else _accessor(f.name)
        for f in fields
        }
    return type(name, (TableRow,), {
        '__slots__': (),
        '_fields': tuple(f.name for f in fields),
        '_nullable': frozenset(f.name for f in fields if f.nullable),
        '_accessors': accessors,
        '__annotations__': {f.name: f.annotation for f in fields},
        **accessors,
        })


class TypedTable:
    """Tabular result with a fixed row schema.

    Storage is an object-dtype DataFrame so values keep the Python types the
    driver produced. Null cells hold NULL.
    """

    def __init__(self, row_type: type[TableRow], frame: pd.DataFrame | None = None) -> None:
        self.row_type = row_type
        columns = list(row_type._fields)
        if frame is None:
            frame = pd.DataFrame({c: pd.Series(dtype=object) for c in columns})
        self._frame = frame.reset_index(drop=True)

    @classmethod
    def from_rows(cls, row_type: type[TableRow], rows: Iterable[Sequence[Any]]) -> 'TypedTable':
        """Load driver rows, storing None as NULL.
        """
        columns = list(row_type._fields)
        values = [[NULL if v is None else v for v in row] for row in rows]
        if not values:
            return cls(row_type)
        return cls(row_type, pd.DataFrame(values, columns=columns, dtype=object))

    def __len__(self) -> int:
        return len(self._frame)

    def __iter__(self) -> Iterator[TableRow]:
        for index in range(len(self._frame)):
            yield self.row_type(self, index)

    def __getitem__(self, index: int) -> TableRow:
        if index < 0:
            index += len(self._frame)
        if not 0 <= index < len(self._frame):
            raise IndexError('table row index out of range')
        return self.row_type(self, index)

    def __repr__(self) -> str:
        return f'TypedTable({self.row_type.__name__}, rows={len(self)})'

    @property
    def columns(self) -> tuple[str, ...]:
        return self.row_type._fields

    def first(self) -> TableRow | None:
        return self[0] if len(self._frame) else None

    def add_row(self, **values: Any) -> TableRow:
        """Append a row. Omitted nullable columns are stored as NULL.

        Raises
            ValidationError: for unknown columns or omitted non-nullable columns
        """
        unknown = set(values) - set(self.row_type._fields)
        if unknown:
            raise ValidationError(f'Unknown columns: {sorted(unknown)}')
        row = []
        for name in self.row_type._fields:
            if name not in values:
                if name not in self.row_type._nullable:
                    raise ValidationError(f'Missing value for non-nullable column {name}')
                row.append(NULL)
            else:
                value = values[name]
                row.append(NULL if value is None and name in self.row_type._nullable else value)
        self._frame.loc[len(self._frame)] = row
        return self.row_type(self, len(self._frame) - 1)

    def to_dataframe(self) -> pd.DataFrame:
        """Copy of the storage frame."""
        return self._frame.copy()
