"""
SQL Server sessions for statement introspection, with SQLAlchemy.

This module provides:
1. Engine creation and management through a thread-safe registry
2. The `ConnectionGateway` class: a short-lived session exposing the
   metadata queries used to describe a statement
3. The `Introspected` / `NeedsFallback` outcomes of column introspection

SQLAlchemy (``mssql+pyodbc``) is used for connection management only. The
metadata queries run on the raw DBAPI cursor.
"""
import atexit
import datetime
import decimal
import logging
import threading
import time
import uuid
from collections.abc import Callable, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from functools import wraps
from typing import Any, Protocol, Self

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlcommand.exceptions import EngineError, UnsupportedServerError

__all__ = [
    'ConnectionGateway',
    'ParameterRow',
    'ColumnRow',
    'Introspected',
    'NeedsFallback',
    'MIN_SERVER_VERSION',
    'create_url',
    'get_engine',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

# SQL Server 2012 introduced sp_describe_undeclared_parameters and
# sp_describe_first_result_set
MIN_SERVER_VERSION = 11

SERVER_INFO_SQL = """
SELECT CAST(SERVERPROPERTY('ProductVersion') AS nvarchar(128)) AS product_version,
       DB_NAME() AS database_name
"""

DESCRIBE_PARAMETERS_SQL = 'EXEC sys.sp_describe_undeclared_parameters @tsql = ?'

DESCRIBE_FIRST_RESULT_SET_SQL = """
EXEC sys.sp_describe_first_result_set @tsql = ?, @params = ?, @browse_information_mode = 0
"""

TYPES_SQL = """
SELECT t.name, t.system_type_id, t.user_type_id, t.is_table_type, t.is_user_defined,
       TYPE_NAME(t.system_type_id) AS system_type_name, t.max_length, s.name AS schema_name
FROM sys.types AS t
JOIN sys.schemas AS s ON t.schema_id = s.schema_id
"""

TABLE_TYPE_COLUMNS_SQL = """
SELECT c.name, c.system_type_id, c.user_type_id, c.is_nullable, c.max_length
FROM sys.table_types AS tt
JOIN sys.columns AS c ON tt.type_table_object_id = c.object_id
WHERE tt.user_type_id = ?
ORDER BY c.column_id
"""

# pyodbc reports Python types in cursor.description; map them back to a
# representative system type id for the FMTONLY fallback
FALLBACK_TYPE_IDS: dict[type, int] = {
    bool: 104,
    int: 56,
    float: 62,
    decimal.Decimal: 106,
    str: 231,
    bytes: 165,
    bytearray: 165,
    datetime.datetime: 42,
    datetime.date: 40,
    datetime.time: 41,
    uuid.UUID: 36,
    }

_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


class DeclaredParameter(Protocol):
    """Parameter shape the gateway needs to declare a statement's variables."""
    name: str
    declaration: str
    local_declaration: str


@dataclass(frozen=True)
class ParameterRow:
    """One row of ``sp_describe_undeclared_parameters``."""
    name: str
    suggested_type_id: int | None
    suggested_udt_name: str
    is_input: bool
    is_output: bool
    suggested_type_name: str = ''


@dataclass(frozen=True)
class ColumnRow:
    """One output column as reported by the engine."""
    name: str
    type_id: int | None
    udt_name: str
    nullable: bool
    ordinal: int
    max_length: int | None = None


@dataclass(frozen=True)
class Introspected:
    """Column introspection succeeded."""
    columns: tuple[ColumnRow, ...]


@dataclass(frozen=True)
class NeedsFallback:
    """Column introspection was rejected by the engine."""
    error: BaseException


def create_url(connection_string: str,
               url_creator: Callable[..., sa.URL] = sa.URL.create) -> sa.URL:
    """Convert a connection string to a SQLAlchemy URL.

    SQLAlchemy URLs (``mssql+pyodbc://...``) are used as given. Anything else
    is treated as an ODBC connection string.
    """
    if '://' in connection_string:
        return sa.make_url(connection_string)
    return url_creator(
        drivername='mssql+pyodbc',
        query={'odbc_connect': connection_string}
        )


def get_engine(connection_string: str, use_pool: bool = False,
               engine_factory: Callable[..., Engine] = sa.create_engine,
               **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for the given connection string.
    """
    key = f'{connection_string}_{use_pool}'

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug('Using existing engine')
            return _engine_registry[key]

        url = create_url(connection_string)

        engine_kwargs: dict[str, Any] = {'echo': False}
        if not use_pool:
            engine_kwargs['poolclass'] = NullPool
        else:
            engine_kwargs['pool_pre_ping'] = True
            engine_kwargs['pool_reset_on_return'] = 'rollback'
        engine_kwargs.update(kwargs)

        engine = engine_factory(url, **engine_kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {url.get_backend_name()}')

        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in _engine_registry.values():
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


def dumpsql(func):
    """Decorator for logging gateway queries and their timing."""
    @wraps(func)
    def wrapper(self, sql: str, params: Sequence[Any] = ()):
        start = time.time()
        logger.debug(f'SQL:\n{sql}\nargs: {params}')
        try:
            return func(self, sql, params)
        except Exception as e:
            logger.debug(f'Error with query: {e}\nSQL:\n{sql}\nargs: {params}')
            raise
        finally:
            elapsed = time.time() - start
            self.calls += 1
            self.time += elapsed
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


def _parse_major_version(version: str) -> int:
    try:
        return int(version.split('.')[0])
    except (ValueError, IndexError):
        return 0


class ConnectionGateway:
    """Short-lived session against the server that describes statements.

    Usage:
        with ConnectionGateway(connection_string) as gateway:
            gateway.check_version()
            rows = gateway.describe_parameters(text)

    Every method is a blocking network call.
    """

    def __init__(self, connection_string: str,
                 engine_factory: Callable[[str], Engine] = get_engine) -> None:
        self.connection_string = connection_string
        self._engine_factory = engine_factory
        self.engine: Engine | None = None
        self.sa_connection = None
        self.dbapi_connection = None
        self._server_info: dict[str, Any] | None = None
        self.calls = 0
        self.time = 0.0

    def __enter__(self) -> Self:
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def open(self) -> Self:
        """Open the session."""
        if self.sa_connection is None:
            self.engine = self._engine_factory(self.connection_string)
            self.sa_connection = self.engine.connect()
            self.dbapi_connection = self.sa_connection.connection
        return self

    def close(self) -> None:
        """Close the session. Metadata queries leave nothing to commit."""
        if self.sa_connection is None:
            return
        try:
            self.sa_connection.close()
        except Exception as e:
            logger.warning(f'Error closing gateway connection: {e}')
        finally:
            self.sa_connection = None
            self.dbapi_connection = None
            logger.debug(f'Gateway closed: {self.calls} queries in {self.time:.2f}s')

    @property
    def engine_errors(self) -> tuple[type[BaseException], ...]:
        """Exception classes raised by the engine for a rejected statement."""
        dbapi = getattr(self.engine.dialect, 'loaded_dbapi', None) if self.engine else None
        if dbapi is not None and hasattr(dbapi, 'Error'):
            return (*EngineError, dbapi.Error)
        return EngineError

    @contextmanager
    def _cursor(self):
        """Context manager for raw cursor lifecycle."""
        if self.dbapi_connection is None:
            self.open()
        cursor = self.dbapi_connection.cursor()
        try:
            yield cursor
        finally:
            cursor.close()

    @dumpsql
    def _select_raw(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Execute SQL and return results as list of dicts."""
        with self._cursor() as cursor:
            cursor.execute(sql, *params)
            if cursor.description is None:
                return []
            columns = [desc[0] for desc in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]

    @dumpsql
    def _describe_raw(self, sql: str, params: Sequence[Any] = ()) -> list[tuple]:
        """Execute SQL and return the description of its first result set."""
        with self._cursor() as cursor:
            cursor.execute(sql, *params)
            while cursor.description is None:
                if not cursor.nextset():
                    return []
            return list(cursor.description)

    def _load_server_info(self) -> dict[str, Any]:
        if self._server_info is None:
            rows = self._select_raw(SERVER_INFO_SQL)
            self._server_info = rows[0] if rows else {}
        return self._server_info

    @property
    def server_version(self) -> str:
        return str(self._load_server_info().get('product_version') or '')

    @property
    def database(self) -> str:
        return str(self._load_server_info().get('database_name') or '')

    def check_version(self) -> None:
        """Fail fast on servers that cannot describe statements.

        Raises
            UnsupportedServerError: if the major version is below MIN_SERVER_VERSION
        """
        version = self.server_version
        if _parse_major_version(version) < MIN_SERVER_VERSION:
            raise UnsupportedServerError(version, MIN_SERVER_VERSION)
        logger.debug(f'Connected to SQL Server {version} ({self.database})')

    def describe_parameters(self, text: str) -> list[ParameterRow]:
        """Describe the undeclared parameters of a statement, in engine order.
        """
        rows = self._select_raw(DESCRIBE_PARAMETERS_SQL, (text,))
        rows.sort(key=lambda r: r.get('parameter_ordinal') or 0)
        return [
            ParameterRow(
                name=str(row['name']),
                suggested_type_id=row['suggested_system_type_id'],
                suggested_udt_name=str(row.get('suggested_user_type_name') or ''),
                is_input=bool(row['suggested_is_input']),
                is_output=bool(row['suggested_is_output']),
                suggested_type_name=str(row.get('suggested_system_type_name') or ''),
                )
            for row in rows
            ]

    def introspect_columns(self, text: str,
                           parameters: Sequence[DeclaredParameter] = ()) -> Introspected | NeedsFallback:
        """Describe the first result set without executing the statement.
        """
        params_declaration = ', '.join(p.declaration for p in parameters) or None
        try:
            rows = self._select_raw(DESCRIBE_FIRST_RESULT_SET_SQL, (text, params_declaration))
        except self.engine_errors as e:
            return NeedsFallback(e)
        return Introspected(tuple(
            ColumnRow(
                name=str(row.get('name') or ''),
                type_id=row['system_type_id'],
                udt_name=str(row.get('user_type_name') or ''),
                nullable=bool(row['is_nullable']),
                ordinal=row['column_ordinal'],
                max_length=row.get('max_length'),
                )
            for row in rows
            if not row.get('is_hidden')
            ))

    def introspect_columns_fallback(self, text: str,
                                    parameters: Sequence[DeclaredParameter] = ()) -> Introspected | NeedsFallback:
        """Capture the result schema by running the statement under SET FMTONLY.

        Parameters are declared as local variables so the text compiles.
        No rows are produced and no changes are made.
        """
        declarations = ''.join(f'DECLARE {p.local_declaration};\n' for p in parameters)
        sql = f'SET NOCOUNT ON;\n{declarations}SET FMTONLY ON;\n{text}\n;SET FMTONLY OFF;'
        try:
            description = self._describe_raw(sql)
        except self.engine_errors as e:
            self._reset_fmtonly()
            return NeedsFallback(e)
        return Introspected(tuple(
            ColumnRow(
                name=str(desc[0] or ''),
                type_id=FALLBACK_TYPE_IDS.get(desc[1]),
                udt_name='',
                nullable=bool(desc[6]) if len(desc) > 6 else True,
                ordinal=ordinal,
                max_length=desc[3] if len(desc) > 3 else None,
                )
            for ordinal, desc in enumerate(description, start=1)
            ))

    def _reset_fmtonly(self) -> None:
        try:
            with self._cursor() as cursor:
                cursor.execute('SET FMTONLY OFF')
        except self.engine_errors as e:
            logger.debug(f'Could not reset FMTONLY: {e}')

    def load_type_rows(self) -> list[dict[str, Any]]:
        """Rows of ``sys.types`` for the type catalog."""
        return self._select_raw(TYPES_SQL)

    def load_table_type_columns(self, user_type_id: int) -> list[dict[str, Any]]:
        """Column rows of a user-defined table type, in column order."""
        return self._select_raw(TABLE_TYPE_COLUMNS_SQL, (user_type_id,))
