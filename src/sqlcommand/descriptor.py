"""
Immutable description of a statement.

A CommandDescriptor is the product of one successful build: resolved
parameters, output columns and the selected output shape. It is plain data;
the runtime command reads its fields.
"""
import enum
import inspect
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlcommand.catalog import TypeInfo
from sqlcommand.options import CommandOptions
from sqlcommand.shapes import Output
from sqlcommand.source import TextSource

__all__ = [
    'ParameterDirection',
    'Parameter',
    'Column',
    'CommandDescriptor',
    'type_declaration',
]


class ParameterDirection(enum.Enum):
    INPUT = 'input'
    OUTPUT = 'output'
    INPUT_OUTPUT = 'input_output'

    @classmethod
    def from_flags(cls, is_input: bool, is_output: bool) -> 'ParameterDirection':
        """Direction from the engine's suggested input/output flags.

        A parameter the engine marks as neither input nor output is an input.
        """
        if is_input and is_output:
            return cls.INPUT_OUTPUT
        if is_output:
            return cls.OUTPUT
        return cls.INPUT


def type_declaration(type_info: TypeInfo) -> str:
    """Engine type text for a DECLARE or parameter list.

    >>> type_declaration(TypeInfo('nvarchar', 231, 231, 'NVarChar', str, False, max_length=100))
    'nvarchar(50)'
    >>> type_declaration(TypeInfo('varbinary', 165, 165, 'VarBinary', bytes, False, max_length=-1))
    'varbinary(max)'
    """
    if type_info.is_table_type or type_info.udt_name:
        return type_info.udt_name or type_info.type_name
    name = type_info.type_name
    if type_info.is_fixed_length is False and type_info.max_length is not None:
        if type_info.max_length == -1:
            return f'{name}(max)'
        if name in {'nvarchar', 'nchar'}:
            return f'{name}({max(type_info.max_length // 2, 1)})'
        if name in {'varchar', 'varbinary'}:
            return f'{name}({type_info.max_length})'
    return name


@dataclass(frozen=True)
class Parameter:
    """Statement parameter.

    ``declared_type`` is the engine type text suggested for the parameter
    (``'int'``, ``'nvarchar(50)'``, ``'dbo.IdList'``); when empty it is
    derived from the TypeInfo. ``optional`` parameters default to None and
    bind as NULL (an empty row set for table types).
    """
    name: str
    type_info: TypeInfo
    direction: ParameterDirection = ParameterDirection.INPUT
    optional: bool = False
    declared_type: str = ''
    row_type: type | None = field(default=None, compare=False, repr=False)

    @property
    def argument_name(self) -> str:
        return self.name[1:]

    @property
    def is_table_type(self) -> bool:
        return self.type_info.is_table_type

    @property
    def is_output(self) -> bool:
        return self.direction is not ParameterDirection.INPUT

    @property
    def type_text(self) -> str:
        return self.declared_type or type_declaration(self.type_info)

    @property
    def declaration(self) -> str:
        """Entry of a sp_executesql / sp_describe_first_result_set parameter list."""
        if self.is_table_type:
            return f'{self.name} {self.type_text} READONLY'
        if self.is_output:
            return f'{self.name} {self.type_text} OUTPUT'
        return f'{self.name} {self.type_text}'

    @property
    def local_declaration(self) -> str:
        """Body of a DECLARE statement for the same variable."""
        return f'{self.name} {self.type_text}'

    @property
    def annotation(self) -> Any:
        if self.is_table_type:
            annotation = Sequence[self.row_type] if self.row_type else list
        else:
            annotation = self.type_info.python_type
        return annotation | None if self.optional else annotation

    def to_dict(self) -> dict[str, Any]:
        return {
            'name': self.name,
            'type': self.type_info.to_dict(),
            'direction': self.direction.value,
            'optional': self.optional,
            'declaration': self.declaration,
            }


@dataclass(frozen=True)
class Column:
    """Output column. Names are never empty."""
    name: str
    ordinal: int
    type_info: TypeInfo
    nullable: bool

    @property
    def python_type(self) -> type:
        return self.type_info.python_type

    @property
    def annotation(self) -> Any:
        return self.python_type | None if self.nullable else self.python_type

    def to_dict(self) -> dict[str, Any]:
        return {
            'name': self.name,
            'ordinal': self.ordinal,
            'type': self.type_info.to_dict(),
            'nullable': self.nullable,
            }


@dataclass(frozen=True)
class CommandDescriptor:
    """Fully resolved description of a statement.

    ``connection_target`` is the connection as declared (a connection string
    or ``name=...``). ``connection_string`` is what it resolved to and is kept
    out of repr.
    """
    name: str
    source: TextSource
    connection_target: str
    options: CommandOptions
    parameters: tuple[Parameter, ...]
    columns: tuple[Column, ...]
    output: Output
    connection_string: str = field(default='', repr=False, compare=False)

    @property
    def text(self) -> str:
        return self.source.text

    def parameter(self, argument_name: str) -> Parameter:
        for p in self.parameters:
            if p.argument_name == argument_name:
                return p
        raise KeyError(argument_name)

    def signature(self) -> inspect.Signature:
        """Keyword-only call signature of the execution variants."""
        params = [
            inspect.Parameter(
                p.argument_name, inspect.Parameter.KEYWORD_ONLY,
                default=None if p.optional else inspect.Parameter.empty,
                annotation=p.annotation)
            for p in self.parameters
            ]
        return inspect.Signature(params)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'name': self.name,
            'source': self.source.to_dict(),
            'text': self.text,
            'connection_target': self.connection_target,
            'result_type': self.options.result_type.name,
            'single_row': self.options.single_row,
            'all_parameters_optional': self.options.all_parameters_optional,
            'config_file': self.options.config_file,
            'parameters': [p.to_dict() for p in self.parameters],
            'columns': [c.to_dict() for c in self.columns],
            'output': self.output.to_dict(),
            }
