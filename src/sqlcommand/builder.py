"""
Command descriptor construction.

``build`` runs the whole pipeline for one declared command:

    text source -> connection target -> gateway (version check)
      -> type catalog -> parameters -> columns -> output shape

and returns a frozen CommandDescriptor. Any failure aborts the build and
nothing partial escapes.
"""
import logging
import pathlib
from collections.abc import Callable

from sqlcommand.catalog import CatalogRegistry
from sqlcommand.config import resolve_connection_string
from sqlcommand.connection import ConnectionGateway
from sqlcommand.descriptor import CommandDescriptor
from sqlcommand.exceptions import EmptyConnectionTargetError
from sqlcommand.introspection import ColumnExtractor, ParameterExtractor
from sqlcommand.options import CommandOptions
from sqlcommand.shapes import select_shape
from sqlcommand.source import TextSource, resolve_text

__all__ = [
    'build',
    'validate_connection_target',
]

logger = logging.getLogger(__name__)


def validate_connection_target(target: str | None) -> str:
    """Return the stripped connection target.

    Raises
        EmptyConnectionTargetError: for a missing or blank target
    """
    if target is None or not target.strip():
        raise EmptyConnectionTargetError()
    return target.strip()


def build(command_text: str | TextSource, connection: str, options: CommandOptions | None = None, *,
          name: str = 'Command',
          resolution_folder: str | pathlib.Path = '.',
          gateway_factory: Callable[[str], ConnectionGateway] = ConnectionGateway,
          registry: CatalogRegistry | None = None) -> CommandDescriptor:
    """Describe a statement against a live server.

    Args:
        command_text: Inline statement, ``@file.sql`` reference, or a resolved TextSource
        connection: Connection string or ``name=<connection name>``
        options: CommandOptions (default: RECORDS, sequence, required parameters)
        name: Declared name of the command
        resolution_folder: Folder for relative file and config references
        gateway_factory: Callable(connection_string) returning a ConnectionGateway
        registry: Catalog registry (default: the process-wide registry)

    Returns
        CommandDescriptor

    Raises
        EmptyConnectionTargetError: blank connection target
        ConfigurationError: missing text file, config file or connection name
        UnsupportedServerError: server older than SQL Server 2012
        UnmappedTypeError: parameter or column type missing from the catalog
        SchemaIntrospectionFailure: output columns cannot be described
        ValidationError: malformed parameters or duplicate column names
    """
    options = options or CommandOptions()
    registry = registry or CatalogRegistry.get_instance()

    target = validate_connection_target(connection)
    source = command_text if isinstance(command_text, TextSource) \
        else resolve_text(command_text, resolution_folder)
    connection_string = resolve_connection_string(target, resolution_folder, options.config_file)

    logger.debug(f'Building {name} ({options.result_type.name}, single_row={options.single_row})')
    with gateway_factory(connection_string) as gateway:
        gateway.check_version()
        catalog = registry.get_or_load(gateway)
        parameters = ParameterExtractor(gateway, catalog).extract(
            source.text, options.all_parameters_optional)
        columns = ColumnExtractor(gateway, catalog).extract(
            source.text, parameters, options.result_type)

    output = select_shape(columns, options.result_type, options.single_row)
    descriptor = CommandDescriptor(
        name=name,
        source=source,
        connection_target=target,
        options=options,
        parameters=parameters,
        columns=columns,
        output=output,
        connection_string=connection_string,
        )
    logger.info(f'Built {name}: {len(parameters)} parameters, {len(columns)} columns, '
                f'{type(output.shape).__name__} {output.cardinality.value}')
    return descriptor
