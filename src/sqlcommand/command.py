"""
Runtime commands.

``emit(descriptor)`` turns a CommandDescriptor into a command type. The type
carries the descriptor and exposes ``execute`` and ``async_execute`` with a
keyword-only signature built from the parameters, plus the nested row types
(``Record``, ``Row``, one row type per table-valued parameter).

Each call opens a connection, binds the arguments, runs the statement
through ``sp_executesql`` and maps the result by the descriptor's output:

- SEQUENCE: forward-only RowIterator over the cursor (TypedTable for DATA_TABLE)
- OPTIONAL: first row or None
- SINGLE: affected row count, or a Reader over the raw cursor

Usage:
    GetUsers = emit(build('SELECT id, name FROM users WHERE age > @minAge', 'name=Main'))
    for user in GetUsers().execute(minAge=30):
        print(user.id, user.name)
"""
import asyncio
import inspect
import logging
from collections.abc import Callable, Iterator, Sequence
from typing import Any, Self

import more_itertools
from sqlalchemy.engine import Connection, Engine, Transaction
from sqlcommand.binding import BoundParameter, bind_parameters
from sqlcommand.connection import get_engine
from sqlcommand.descriptor import CommandDescriptor
from sqlcommand.exceptions import ValidationError
from sqlcommand.rows import TypedTable
from sqlcommand.shapes import Cardinality, RecordShape, Scalar, TableShape, TupleShape

__all__ = [
    'SqlCommand',
    'Reader',
    'RowIterator',
    'emit',
    'compose_statement',
]

logger = logging.getLogger(__name__)

# SQL Server accepts at most 1000 rows per VALUES list
TVP_INSERT_CHUNK = 1000


def compose_statement(text: str, bound: Sequence[BoundParameter]) -> tuple[str, list[Any]]:
    """SQL and positional arguments for one execution.

    Without parameters the text runs as is. Otherwise it runs through
    ``sp_executesql`` with named arguments; table-valued arguments are
    loaded into local table variables first.
    """
    if not bound:
        return text, []

    prelude: list[str] = []
    prelude_args: list[Any] = []
    assignments: list[str] = []
    values: list[Any] = []

    for index, b in enumerate(bound):
        p = b.parameter
        if p.is_table_type:
            local = f'@__tvp{index}'
            prelude.append(f'DECLARE {local} {p.type_text};')
            width = len(p.type_info.tvp_columns)
            row_placeholder = '(' + ', '.join('?' * width) + ')'
            for chunk in more_itertools.chunked(b.value, TVP_INSERT_CHUNK):
                prelude.append(f'INSERT INTO {local} VALUES {", ".join([row_placeholder] * len(chunk))};')
                prelude_args.extend(more_itertools.flatten(chunk))
            assignments.append(f'{p.name} = {local}')
        else:
            assignments.append(f'{p.name} = ?')
            values.append(b.value)

    declarations = ', '.join(b.parameter.declaration for b in bound)
    exec_sql = f'EXEC sp_executesql ?, ?, {", ".join(assignments)}'
    if prelude:
        sql = '\n'.join(['SET NOCOUNT ON;', *prelude, 'SET NOCOUNT OFF;', exec_sql])
    else:
        sql = exec_sql
    return sql, [*prelude_args, text, declarations, *values]


class _Session:
    """One cursor for the lifetime of a call.

    A session that owns its connection commits or rolls back and closes it
    when the call ends. On a caller's connection only the cursor is closed;
    the caller commits, rolls back and closes.
    """

    def __init__(self, connection: Any, owns_connection: bool = True) -> None:
        self.connection = connection
        self.owns_connection = owns_connection
        self.cursor = connection.cursor()
        self.closed = False

    def execute(self, sql: str, args: Sequence[Any]) -> None:
        logger.debug(f'SQL:\n{sql}\nargs: {list(args)}')
        self.cursor.execute(sql, *args)

    def skip_to_result(self) -> bool:
        """Advance to the first result set with rows. False if there is none."""
        while self.cursor.description is None:
            if not self.cursor.nextset():
                return False
        return True

    def finish(self) -> None:
        if self.closed:
            return
        if not self.owns_connection:
            self.close()
            return
        try:
            self.connection.commit()
        finally:
            self.close()

    def abort(self) -> None:
        if self.closed:
            return
        if not self.owns_connection:
            self.close()
            return
        try:
            self.connection.rollback()
        except Exception as e:
            logger.warning(f'Error rolling back: {e}')
        finally:
            self.close()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.cursor.close()
        finally:
            if self.owns_connection:
                self.connection.close()


class RowIterator(Iterator):
    """Forward-only, single-pass iterator over a result set.

    The connection closes when the rows are exhausted or on ``close()``.
    """

    def __init__(self, session: _Session, mapper: Callable[[Sequence[Any]], Any]) -> None:
        self._session = session
        self._mapper = mapper
        self._has_rows = session.skip_to_result()

    def __iter__(self) -> Self:
        return self

    def __next__(self) -> Any:
        if self._session.closed:
            raise StopIteration
        row = self._session.cursor.fetchone() if self._has_rows else None
        if row is None:
            self._session.finish()
            raise StopIteration
        return self._mapper(row)

    def close(self) -> None:
        self._session.finish()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is None:
            self._session.finish()
        else:
            self._session.abort()

    def __del__(self) -> None:
        session = getattr(self, '_session', None)
        if session is not None and not session.closed:
            session.abort()


class Reader:
    """Raw result cursor. Closing the reader ends the call and commits on an owned connection.
    """

    def __init__(self, session: _Session) -> None:
        self._session = session
        session.skip_to_result()

    @property
    def cursor(self) -> Any:
        return self._session.cursor

    @property
    def description(self) -> Any:
        return self._session.cursor.description

    def fetchone(self) -> Any:
        return self._session.cursor.fetchone()

    def fetchmany(self, size: int | None = None) -> list:
        if size is None:
            return self._session.cursor.fetchmany()
        return self._session.cursor.fetchmany(size)

    def fetchall(self) -> list:
        return self._session.cursor.fetchall()

    def nextset(self) -> bool:
        return bool(self._session.cursor.nextset())

    def __iter__(self) -> Iterator:
        return iter(self._session.cursor.fetchone, None)

    def close(self) -> None:
        self._session.finish()

    @property
    def closed(self) -> bool:
        return self._session.closed

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is None:
            self._session.finish()
        else:
            self._session.abort()


def _dbapi_connection(connection: Any) -> Any:
    """DBAPI-level connection behind a caller's connection or transaction."""
    if isinstance(connection, Transaction):
        connection = connection.connection
    if isinstance(connection, Connection):
        if connection.closed:
            raise ValidationError('Connection is closed')
        return connection.connection
    if not callable(getattr(connection, 'cursor', None)):
        raise ValidationError(f'Not a connection: {type(connection).__name__}')
    return connection


def _row_mapper(descriptor: CommandDescriptor) -> Callable[[Sequence[Any]], Any]:
    shape = descriptor.output.shape
    if isinstance(shape, Scalar):
        return lambda row: row[0]
    if isinstance(shape, RecordShape):
        return shape.record_type.from_values
    if isinstance(shape, TupleShape):
        return tuple
    raise ValidationError(f'No row mapping for {type(shape).__name__}')


class SqlCommand:
    """Executable command bound to a descriptor.

    Emitted command types set ``descriptor`` as a class attribute. The
    connection string defaults to the one the descriptor was built with.

    ``connection`` runs every call on an open connection instead: a DBAPI
    connection, a SQLAlchemy Connection, or a SQLAlchemy Transaction. The
    statements then join whatever transaction the caller has open, and the
    command never commits, rolls back or closes it.
    """

    descriptor: CommandDescriptor | None = None

    def __init__(self, connection_string: str | None = None, *,
                 descriptor: CommandDescriptor | None = None,
                 connection: Any = None,
                 engine_factory: Callable[[str], Engine] = get_engine) -> None:
        if descriptor is not None:
            self.descriptor = descriptor
        if self.descriptor is None:
            raise ValidationError('SqlCommand requires a descriptor')
        self.connection_string = connection_string or self.descriptor.connection_string
        self._engine_factory = engine_factory
        self._connection = _dbapi_connection(connection) if connection is not None else None

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.descriptor.name!r})'

    @property
    def text(self) -> str:
        return self.descriptor.text

    def _open(self, values: dict[str, Any]) -> _Session:
        bound = bind_parameters(self.descriptor.parameters, values)
        sql, args = compose_statement(self.descriptor.text, bound)
        if self._connection is not None:
            session = _Session(self._connection, owns_connection=False)
        else:
            session = _Session(self._engine_factory(self.connection_string).raw_connection())
        try:
            session.execute(sql, args)
        except Exception:
            session.abort()
            raise
        return session

    def execute(self, **values: Any) -> Any:
        """Run the command and map the result by the descriptor's output.
        """
        output = self.descriptor.output
        session = self._open(values)
        try:
            if output.is_non_query:
                count = session.cursor.rowcount
                session.finish()
                return count
            if output.is_reader:
                return Reader(session)
            if isinstance(output.shape, TableShape):
                rows = session.cursor.fetchall() if session.skip_to_result() else []
                session.finish()
                table = TypedTable.from_rows(output.shape.row_type, rows)
                if output.cardinality is Cardinality.OPTIONAL:
                    return table.first()
                return table
            rows = RowIterator(session, _row_mapper(self.descriptor))
            if output.cardinality is Cardinality.OPTIONAL:
                with rows:
                    return more_itertools.first(rows, None)
            return rows
        except Exception:
            session.abort()
            raise

    def execute_materialized(self, **values: Any) -> Any:
        """``execute`` with sequences read into a list."""
        result = self.execute(**values)
        if isinstance(result, RowIterator):
            with result:
                return list(result)
        return result

    async def async_execute(self, **values: Any) -> Any:
        """Run ``execute`` in a worker thread. Sequences arrive as lists."""
        return await asyncio.to_thread(self.execute_materialized, **values)


def _method_signature(descriptor: CommandDescriptor, return_annotation: Any) -> inspect.Signature:
    self_param = inspect.Parameter('self', inspect.Parameter.POSITIONAL_OR_KEYWORD)
    params = list(descriptor.signature().parameters.values())
    return inspect.Signature([self_param, *params], return_annotation=return_annotation)


def emit(descriptor: CommandDescriptor) -> type[SqlCommand]:
    """Create the command type of a descriptor.
    """
    output = descriptor.output
    sync_variant, async_variant = output.variants

    def execute(self, **values):
        return SqlCommand.execute(self, **values)

    async def async_execute(self, **values):
        return await SqlCommand.async_execute(self, **values)

    execute.__signature__ = _method_signature(descriptor, sync_variant.return_annotation)
    async_execute.__signature__ = _method_signature(descriptor, async_variant.return_annotation)
    execute.__doc__ = f'Execute {descriptor.name} ({sync_variant.method}).'
    async_execute.__doc__ = f'Execute {descriptor.name} in a worker thread ({async_variant.method}).'

    namespace: dict[str, Any] = {
        '__module__': __name__,
        '__doc__': descriptor.text,
        'descriptor': descriptor,
        sync_variant.name: execute,
        async_variant.name: async_execute,
        }
    if isinstance(output.shape, RecordShape):
        namespace['Record'] = output.shape.record_type
    if isinstance(output.shape, TableShape):
        namespace['Row'] = output.shape.row_type
    for p in descriptor.parameters:
        if p.row_type is not None:
            namespace[p.row_type.__name__] = p.row_type

    command_type = type(descriptor.name, (SqlCommand,), namespace)
    logger.debug(f'Emitted {descriptor.name} with {len(descriptor.parameters)} parameters')
    return command_type
