from sqlcommand.config.connections import parse_connection_string_name
from sqlcommand.config.connections import read_connection_string
from sqlcommand.config.connections import resolve_connection_string

__all__ = [
    'parse_connection_string_name',
    'read_connection_string',
    'resolve_connection_string',
]
