"""
Type catalog for SQL Server statement introspection.

This module provides:
- TypeInfo / TvpColumn: resolved type metadata for parameters and columns
- SQLSERVER_TYPES: static mapping of engine type names to SqlDbType names,
  Python types and length classes
- TypeCatalog: the per-server mapping built from ``sys.types``
- CatalogRegistry: thread-safe, lazily populated registry of catalogs keyed
  by server version and database

The catalog identifies types only. Value conversion is left to the driver.
"""
import datetime
import decimal
import logging
import threading
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from sqlcommand.exceptions import UnmappedTypeError

if TYPE_CHECKING:
    from sqlcommand.connection import ConnectionGateway

__all__ = [
    'TypeInfo',
    'TvpColumn',
    'SQLSERVER_TYPES',
    'TABLE_TYPE_ID',
    'TypeCatalog',
    'CatalogRegistry',
    'get_catalog',
]

logger = logging.getLogger(__name__)

# system_type_id shared by every user-defined table type
TABLE_TYPE_ID = 243

# engine type name -> (SqlDbType name, Python type, fixed length)
# fixed length is tri-state: True fixed, False variable, None unknown
SQLSERVER_TYPES: dict[str, tuple[str, type, bool | None]] = {
    'bigint': ('BigInt', int, True),
    'binary': ('Binary', bytes, True),
    'bit': ('Bit', bool, True),
    'char': ('Char', str, True),
    'date': ('Date', datetime.date, True),
    'datetime': ('DateTime', datetime.datetime, True),
    'datetime2': ('DateTime2', datetime.datetime, True),
    'datetimeoffset': ('DateTimeOffset', datetime.datetime, True),
    'decimal': ('Decimal', decimal.Decimal, True),
    'float': ('Float', float, True),
    'image': ('Image', bytes, False),
    'int': ('Int', int, True),
    'money': ('Money', decimal.Decimal, True),
    'nchar': ('NChar', str, True),
    'ntext': ('NText', str, False),
    'numeric': ('Decimal', decimal.Decimal, True),
    'nvarchar': ('NVarChar', str, False),
    'real': ('Real', float, True),
    'smalldatetime': ('SmallDateTime', datetime.datetime, True),
    'smallint': ('SmallInt', int, True),
    'smallmoney': ('SmallMoney', decimal.Decimal, True),
    'sql_variant': ('Variant', object, None),
    'text': ('Text', str, False),
    'time': ('Time', datetime.time, True),
    'timestamp': ('Timestamp', bytes, True),
    'tinyint': ('TinyInt', int, True),
    'uniqueidentifier': ('UniqueIdentifier', uuid.UUID, True),
    'varbinary': ('VarBinary', bytes, False),
    'varchar': ('VarChar', str, False),
    'xml': ('Xml', str, False),
    }


@dataclass(frozen=True)
class TvpColumn:
    """One column of a user-defined table type.
    """
    name: str
    type_info: 'TypeInfo'
    nullable: bool
    max_length: int


@dataclass(frozen=True)
class TypeInfo:
    """Resolved engine type.

    Attributes
        type_name: Engine type name ('int', 'nvarchar', 'sysname', table type name)
        sql_engine_type_id: sys.types.system_type_id
        user_type_id: sys.types.user_type_id
        sql_db_type: SqlDbType name ('Int', 'NVarChar', 'Structured')
        python_type: Python type values of this type are read as
        is_fixed_length: True fixed, False variable, None unknown
        max_length: sys.types.max_length (-1 for MAX types)
        is_table_type: True for user-defined table types
        udt_name: user type name, '' for built-in system types
        tvp_columns: column schema of a table type, in column order
    """
    type_name: str
    sql_engine_type_id: int
    user_type_id: int
    sql_db_type: str
    python_type: type
    is_fixed_length: bool | None
    max_length: int | None = None
    is_table_type: bool = False
    udt_name: str = ''
    tvp_columns: tuple[TvpColumn, ...] = field(default=())

    @property
    def python_type_name(self) -> str:
        module = self.python_type.__module__
        if module == 'builtins':
            return self.python_type.__name__
        return f'{module}.{self.python_type.__qualname__}'

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization.
        """
        return {
            'type_name': self.type_name,
            'sql_engine_type_id': self.sql_engine_type_id,
            'user_type_id': self.user_type_id,
            'sql_db_type': self.sql_db_type,
            'python_type': self.python_type_name,
            'is_fixed_length': self.is_fixed_length,
            'max_length': self.max_length,
            'is_table_type': self.is_table_type,
            'udt_name': self.udt_name,
            'tvp_columns': [
                {'name': c.name, 'type': c.type_info.to_dict(),
                 'nullable': c.nullable, 'max_length': c.max_length}
                for c in self.tvp_columns
                ],
            }


def _system_type_info(type_name: str, system_type_id: int, user_type_id: int,
                      max_length: int | None, udt_name: str = '') -> TypeInfo | None:
    """Build a TypeInfo for a built-in or alias type from the static mapping.
    """
    mapping = SQLSERVER_TYPES.get(type_name)
    if mapping is None:
        return None
    sql_db_type, python_type, is_fixed_length = mapping
    return TypeInfo(
        type_name=udt_name or type_name,
        sql_engine_type_id=system_type_id,
        user_type_id=user_type_id,
        sql_db_type=sql_db_type,
        python_type=python_type,
        is_fixed_length=is_fixed_length,
        max_length=max_length,
        udt_name=udt_name,
        )


class TypeCatalog:
    """Mapping of engine type ids and UDT names to TypeInfo.

    Built from the rows of ``sys.types``:

    - Built-in types (user_type_id == system_type_id) are keyed by system type id.
    - Alias types (``sysname`` or ``CREATE TYPE ... FROM nvarchar``) are keyed by
      their name and carry the mapping of their base system type.
    - Table types are keyed by name and carry their column schema.

    Engine types missing from SQLSERVER_TYPES (CLR types such as geography or
    hierarchyid) are left out, so a statement using them fails lookup.
    """

    def __init__(self, server_version: str, system_types: dict[int, TypeInfo],
                 user_types: dict[str, TypeInfo]) -> None:
        self.server_version = server_version
        self._system_types = MappingProxyType(dict(system_types))
        self._user_types = MappingProxyType({k.lower(): v for k, v in user_types.items()})

    def __len__(self) -> int:
        return len(self._system_types) + len(self._user_types)

    def __repr__(self) -> str:
        return (f'TypeCatalog(server_version={self.server_version!r}, '
                f'system_types={len(self._system_types)}, user_types={len(self._user_types)})')

    @classmethod
    def from_rows(cls, server_version: str, type_rows: list[dict[str, Any]],
                  load_table_columns=None) -> 'TypeCatalog':
        """Build a catalog from ``sys.types`` rows.

        Args:
            server_version: Product version the rows were read from
            type_rows: Rows with name, system_type_id, user_type_id, is_table_type,
                is_user_defined, system_type_name, max_length
            load_table_columns: Callable(user_type_id) returning the column rows
                (name, system_type_id, user_type_id, is_nullable, max_length)
                of a table type

        Returns
            TypeCatalog instance
        """
        system_types: dict[int, TypeInfo] = {}
        user_types: dict[str, TypeInfo] = {}
        by_user_type_id: dict[int, TypeInfo] = {}
        table_rows = []

        for row in type_rows:
            system_type_id = row['system_type_id']
            user_type_id = row['user_type_id']
            if row.get('is_table_type'):
                table_rows.append(row)
                continue
            is_alias = row.get('is_user_defined') or user_type_id != system_type_id
            info = _system_type_info(
                row.get('system_type_name') or row['name'],
                system_type_id, user_type_id, row.get('max_length'),
                udt_name=row['name'] if is_alias else '')
            if info is None:
                logger.debug(f"No mapping for engine type {row['name']} ({system_type_id})")
                continue
            by_user_type_id[user_type_id] = info
            if is_alias:
                user_types[row['name']] = info
            else:
                system_types[system_type_id] = info

        for row in table_rows:
            columns = []
            for col in (load_table_columns(row['user_type_id']) if load_table_columns else []):
                col_info = by_user_type_id.get(col['user_type_id']) or system_types.get(col['system_type_id'])
                if col_info is None:
                    raise UnmappedTypeError(
                        col['system_type_id'], '',
                        f"Column name: {col['name']} of table type {row['name']}")
                columns.append(TvpColumn(
                    name=col['name'],
                    type_info=col_info,
                    nullable=bool(col['is_nullable']),
                    max_length=col['max_length'],
                    ))
            user_types[row['name']] = TypeInfo(
                type_name=row['name'],
                sql_engine_type_id=row['system_type_id'],
                user_type_id=row['user_type_id'],
                sql_db_type='Structured',
                python_type=list,
                is_fixed_length=None,
                max_length=row.get('max_length'),
                is_table_type=True,
                udt_name=row['name'],
                tvp_columns=tuple(columns),
                )

        catalog = cls(server_version, system_types, user_types)
        logger.info(f'Loaded {catalog!r}')
        return catalog

    @classmethod
    def load(cls, gateway: 'ConnectionGateway') -> 'TypeCatalog':
        """Query the engine's system catalog through an open gateway.
        """
        return cls.from_rows(gateway.server_version, gateway.load_type_rows(),
                             gateway.load_table_type_columns)

    def find(self, type_id: int | None, udt_name: str | None = None) -> TypeInfo | None:
        """Find a TypeInfo without raising.

        Table types always match by name. Other types match by name when the
        UDT is a known alias, otherwise by system type id.
        """
        udt_key = (udt_name or '').strip().lower()
        if udt_key and '.' in udt_key and udt_key not in self._user_types:
            udt_key = udt_key.rsplit('.', 1)[-1].strip('[]')
        if type_id == TABLE_TYPE_ID:
            return self._user_types.get(udt_key) if udt_key else None
        if udt_key and udt_key in self._user_types:
            info = self._user_types[udt_key]
            if info.sql_engine_type_id == type_id or info.is_table_type:
                return info
        return self._system_types.get(type_id)

    def lookup(self, type_id: int | None, udt_name: str | None = None,
               context: str = '') -> TypeInfo:
        """Resolve an engine type id / UDT name pair.

        Raises
            UnmappedTypeError: when the pair is not in the catalog
        """
        info = self.find(type_id, udt_name)
        if info is None:
            raise UnmappedTypeError(type_id, udt_name, context)
        return info


class CatalogRegistry:
    """Registry of type catalogs keyed by (server version, database).

    Thread-safe singleton. Each catalog is loaded once, on first request,
    while holding a lock for that key only.
    """

    _instance = None
    _lock = threading.RLock()

    @classmethod
    def get_instance(cls) -> 'CatalogRegistry':
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def __init__(self) -> None:
        self._catalogs: dict[tuple[str, str], TypeCatalog] = {}
        self._key_locks: dict[tuple[str, str], threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _key_lock(self, key: tuple[str, str]) -> threading.Lock:
        with self._registry_lock:
            return self._key_locks.setdefault(key, threading.Lock())

    def get(self, server_version: str, database: str = '') -> TypeCatalog | None:
        return self._catalogs.get((server_version, database))

    def get_or_load(self, gateway: 'ConnectionGateway') -> TypeCatalog:
        """Get the catalog for the gateway's server, loading it on first use.
        """
        key = (gateway.server_version, gateway.database)
        catalog = self._catalogs.get(key)
        if catalog is not None:
            logger.debug(f'Catalog hit for {key}')
            return catalog

        with self._key_lock(key):
            catalog = self._catalogs.get(key)
            if catalog is None:
                logger.debug(f'Catalog miss for {key}')
                catalog = TypeCatalog.load(gateway)
                with self._registry_lock:
                    self._catalogs[key] = catalog
        return catalog

    def clear(self) -> None:
        """Drop every loaded catalog."""
        with self._registry_lock:
            self._catalogs.clear()
            self._key_locks.clear()


def get_catalog(gateway: 'ConnectionGateway') -> TypeCatalog:
    """Get the type catalog for an open gateway from the global registry.
    """
    return CatalogRegistry.get_instance().get_or_load(gateway)
