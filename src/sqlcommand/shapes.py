"""
Output shapes of a described command.

A shape says how output rows are represented; the cardinality says how many
of them the caller receives. Every output exposes a synchronous and an
asynchronous execution variant with the same type mapping.

Decision table applied by select_shape:

============================  ==================================  ===========
Condition                     Shape                               Cardinality
============================  ==================================  ===========
DATA_READER                   RawReader                           SINGLE
no output columns             Scalar(int), affected row count     SINGLE
DATA_TABLE                    TableShape                          per single_row
one column, RECORDS/TUPLES    Scalar(column type)                 per single_row
RECORDS                       RecordShape                         per single_row
TUPLES                        TupleShape                          per single_row
============================  ==================================  ===========
"""
import enum
import logging
from collections.abc import Awaitable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlcommand.options import ResultType
from sqlcommand.rows import Record, TableRow, TypedTable, make_record_type
from sqlcommand.rows import make_table_row_type

if TYPE_CHECKING:
    from sqlcommand.descriptor import Column

__all__ = [
    'Cardinality',
    'Field',
    'Scalar',
    'RecordShape',
    'TupleShape',
    'TableShape',
    'RawReader',
    'Output',
    'ExecuteVariant',
    'select_shape',
]

logger = logging.getLogger(__name__)


class Cardinality(enum.Enum):
    SEQUENCE = 'sequence'  # forward-only, single-pass iterator
    OPTIONAL = 'optional'  # first row or None
    SINGLE = 'single'      # exactly one value (row count, reader)


@dataclass(frozen=True)
class Field:
    """One output field derived from a column."""
    name: str
    python_type: type
    nullable: bool
    ordinal: int

    @property
    def annotation(self) -> Any:
        return self.python_type | None if self.nullable else self.python_type

    @classmethod
    def from_column(cls, column: 'Column') -> 'Field':
        return cls(column.name, column.type_info.python_type, column.nullable, column.ordinal)


@dataclass(frozen=True)
class Scalar:
    """Single value per row, or the affected row count of a non-query."""
    python_type: type
    nullable: bool = False
    affected_rows: bool = False

    @property
    def row_annotation(self) -> Any:
        return self.python_type | None if self.nullable else self.python_type


@dataclass(frozen=True)
class RecordShape:
    """Rows keyed by column name."""
    fields: tuple[Field, ...]
    record_type: type[Record] = field(compare=False, repr=False, default=Record)

    @property
    def row_annotation(self) -> Any:
        return self.record_type


@dataclass(frozen=True)
class TupleShape:
    """Rows as tuples, position = column ordinal."""
    fields: tuple[Field, ...]

    @property
    def types(self) -> tuple[Any, ...]:
        return tuple(f.annotation for f in self.fields)

    @property
    def row_annotation(self) -> Any:
        return tuple[self.types]


@dataclass(frozen=True)
class TableShape:
    """Typed table, one accessor per column."""
    fields: tuple[Field, ...]
    row_type: type[TableRow] = field(compare=False, repr=False, default=TableRow)

    @property
    def row_annotation(self) -> Any:
        return self.row_type


@dataclass(frozen=True)
class RawReader:
    """Opaque cursor passed through to the caller."""

    @property
    def row_annotation(self) -> Any:
        return Any


Shape = Scalar | RecordShape | TupleShape | TableShape | RawReader


@dataclass(frozen=True)
class ExecuteVariant:
    """One execution entry point of a command.

    ``method`` is the driver-level operation (``execute`` or
    ``execute_non_query``); ``name`` is the entry point exposed to callers.
    """
    name: str
    method: str
    is_async: bool
    return_annotation: Any = field(compare=False)


@dataclass(frozen=True)
class Output:
    """Shape plus cardinality."""
    shape: Shape
    cardinality: Cardinality

    @property
    def is_non_query(self) -> bool:
        return isinstance(self.shape, Scalar) and self.shape.affected_rows

    @property
    def is_reader(self) -> bool:
        return isinstance(self.shape, RawReader)

    @property
    def return_annotation(self) -> Any:
        """Annotation of the synchronous result."""
        if self.cardinality is Cardinality.SINGLE:
            from sqlcommand.command import Reader
            return Reader if self.is_reader else int
        row = self.shape.row_annotation
        if self.cardinality is Cardinality.OPTIONAL:
            return row | None
        if isinstance(self.shape, TableShape):
            return TypedTable
        return Iterator[row]

    @property
    def async_return_annotation(self) -> Any:
        """Annotation of the asynchronous result. Sequences arrive materialized."""
        annotation = self.return_annotation
        if self.cardinality is Cardinality.SEQUENCE and not isinstance(self.shape, TableShape):
            annotation = list[self.shape.row_annotation]
        return Awaitable[annotation]

    @property
    def variants(self) -> tuple[ExecuteVariant, ExecuteVariant]:
        method = 'execute_non_query' if self.is_non_query else 'execute'
        return (
            ExecuteVariant('execute', method, False, self.return_annotation),
            ExecuteVariant('async_execute', method, True, self.async_return_annotation),
            )

    def to_dict(self) -> dict[str, Any]:
        shape = self.shape
        fields = getattr(shape, 'fields', ())
        if isinstance(shape, Scalar):
            kind = 'scalar'
        elif isinstance(shape, RecordShape):
            kind = 'record'
        elif isinstance(shape, TupleShape):
            kind = 'tuple'
        elif isinstance(shape, TableShape):
            kind = 'table'
        else:
            kind = 'reader'
        result = {
            'kind': kind,
            'cardinality': self.cardinality.value,
            'fields': [{'name': f.name, 'python_type': f.python_type.__name__,
                        'nullable': f.nullable, 'ordinal': f.ordinal} for f in fields],
            'variants': [{'name': v.name, 'method': v.method, 'async': v.is_async}
                         for v in self.variants],
            }
        if isinstance(shape, Scalar):
            result['python_type'] = shape.python_type.__name__
            result['nullable'] = shape.nullable
            result['affected_rows'] = shape.affected_rows
        return result


def select_shape(columns: Sequence['Column'], result_type: ResultType,
                 single_row: bool = False) -> Output:
    """Decide the output representation of a command.

    Args:
        columns: Extracted output columns (empty when DATA_READER skipped extraction)
        result_type: Requested result type
        single_row: Expect at most one row

    Returns
        Output
    """
    result_type = ResultType.parse(result_type)

    if result_type is ResultType.DATA_READER:
        return Output(RawReader(), Cardinality.SINGLE)

    if not columns:
        logger.debug('No output columns, treating command as non-query')
        return Output(Scalar(int, affected_rows=True), Cardinality.SINGLE)

    cardinality = Cardinality.OPTIONAL if single_row else Cardinality.SEQUENCE
    fields = tuple(Field.from_column(c) for c in columns)

    if result_type is ResultType.DATA_TABLE:
        return Output(TableShape(fields, make_table_row_type(fields)), cardinality)

    if len(fields) == 1:
        column = fields[0]
        return Output(Scalar(column.python_type, nullable=column.nullable), cardinality)

    if result_type is ResultType.RECORDS:
        return Output(RecordShape(fields, make_record_type(fields)), cardinality)

    return Output(TupleShape(fields), cardinality)
