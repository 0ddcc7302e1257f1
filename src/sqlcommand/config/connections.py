"""
Named connection strings.

A connection target written as ``name=<connection name>`` is looked up in a
JSON configuration file:

    {"connectionStrings": {"Main": "Driver={ODBC Driver 18 for SQL Server};Server=...;"}}

Search order:
    1. the explicit config file, relative to the resolution folder
    2. ``sqlcommand.json`` in the resolution folder
    3. ``~/.config/sqlcommand/connections.json``
"""
import json
import logging
import pathlib

from sqlcommand.exceptions import ConfigurationError, EmptyConnectionTargetError

__all__ = [
    'DEFAULT_CONFIG_NAME',
    'parse_connection_string_name',
    'config_locations',
    'read_connection_string',
    'resolve_connection_string',
]

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = 'sqlcommand.json'
USER_CONFIG = pathlib.Path('~/.config/sqlcommand/connections.json')
SECTION = 'connectionStrings'


def parse_connection_string_name(target: str) -> str | None:
    """Return the connection name of a ``name=...`` target, else None.

    >>> parse_connection_string_name('name=Main')
    'Main'
    >>> parse_connection_string_name('Server=.;Database=db') is None
    True
    """
    key, sep, value = target.strip().partition('=')
    if sep and key.strip().lower() == 'name':
        return value.strip()
    return None


def config_locations(resolution_folder: str | pathlib.Path = '.',
                     config_file: str = '') -> list[pathlib.Path]:
    """Candidate config files in search order.

    An explicit config file replaces the search path.
    """
    folder = pathlib.Path(resolution_folder)
    if config_file:
        path = pathlib.Path(config_file).expanduser()
        return [path if path.is_absolute() else folder / path]
    return [folder / DEFAULT_CONFIG_NAME, USER_CONFIG.expanduser()]


def _load_section(path: pathlib.Path) -> dict[str, str]:
    try:
        with path.open(encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f'Invalid JSON in config file {path}: {e}') from e
    section = config.get(SECTION, {}) if isinstance(config, dict) else {}
    if not isinstance(section, dict):
        raise ConfigurationError(f'{SECTION} in {path} must be an object')
    return section


def read_connection_string(name: str, resolution_folder: str | pathlib.Path = '.',
                           config_file: str = '') -> str:
    """Look up a named connection string.

    Raises
        ConfigurationError: if the config file is missing or the name is not defined
    """
    locations = config_locations(resolution_folder, config_file)
    if config_file and not locations[0].is_file():
        raise ConfigurationError(f'Config file not found: {locations[0]}')

    for path in locations:
        if not path.is_file():
            continue
        section = _load_section(path)
        if name in section:
            logger.debug(f'Resolved connection {name} from {path}')
            return section[name]
        if config_file:
            break

    searched = ', '.join(str(p) for p in locations)
    raise ConfigurationError(f'Cannot find connection string named {name!r} (searched: {searched})')


def resolve_connection_string(target: str, resolution_folder: str | pathlib.Path = '.',
                              config_file: str = '') -> str:
    """Resolve a connection target to a connection string.

    Raises
        EmptyConnectionTargetError: for a blank target or a blank connection name
        ConfigurationError: if a named connection cannot be found
    """
    if not target or not target.strip():
        raise EmptyConnectionTargetError()
    name = parse_connection_string_name(target)
    if name is None:
        return target.strip()
    if not name:
        raise EmptyConnectionTargetError()
    return read_connection_string(name, resolution_folder, config_file)
