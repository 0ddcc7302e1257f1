"""
Typed commands for SQL Server statements.

A statement is described once against a live server (parameters, output
columns, output shape), cached, and turned into a command type:

- build(text, connection, options) -> CommandDescriptor
- emit(descriptor) -> command type with execute / async_execute
- CommandProvider: cached descriptors, invalidated when a ``.sql`` file changes
"""
__version__ = '0.1.0'

from sqlcommand.builder import build
from sqlcommand.cache import CacheKey, DescriptorCache
from sqlcommand.catalog import CatalogRegistry, TypeCatalog, TypeInfo
from sqlcommand.command import Reader, RowIterator, SqlCommand, emit
from sqlcommand.connection import ConnectionGateway
from sqlcommand.descriptor import Column, CommandDescriptor, Parameter
from sqlcommand.descriptor import ParameterDirection
from sqlcommand.exceptions import ConfigurationError, DescriptorError
from sqlcommand.exceptions import DuplicateColumnNameError, EmptyColumnNameError
from sqlcommand.exceptions import EmptyConnectionTargetError
from sqlcommand.exceptions import SchemaIntrospectionFailure
from sqlcommand.exceptions import TvpArityMismatchError, UnmappedTypeError
from sqlcommand.exceptions import UnsupportedServerError, ValidationError
from sqlcommand.options import CommandOptions, ResultType
from sqlcommand.provider import CommandProvider
from sqlcommand.rows import Record, TypedTable
from sqlcommand.shapes import Cardinality, Output

__all__ = [
    'build',
    'emit',
    'CommandProvider',
    'CommandOptions',
    'ResultType',
    'CommandDescriptor',
    'Parameter',
    'ParameterDirection',
    'Column',
    'Output',
    'Cardinality',
    'SqlCommand',
    'Reader',
    'RowIterator',
    'Record',
    'TypedTable',
    'TypeInfo',
    'TypeCatalog',
    'CatalogRegistry',
    'ConnectionGateway',
    'CacheKey',
    'DescriptorCache',
    'DescriptorError',
    'ConfigurationError',
    'ValidationError',
    'UnsupportedServerError',
    'EmptyConnectionTargetError',
    'UnmappedTypeError',
    'EmptyColumnNameError',
    'DuplicateColumnNameError',
    'SchemaIntrospectionFailure',
    'TvpArityMismatchError',
]
