"""
Descriptor build exception classes.

Every error raised while building a command descriptor is fatal to that
build. None are retried and nothing partial is cached.
"""
import sqlalchemy as sa


class DescriptorError(Exception):
    """Base class for all sqlcommand errors.
    """


class ConfigurationError(DescriptorError):
    """Missing or malformed configuration (config file, connection name, text file).
    """


class ValidationError(DescriptorError):
    """Error in input validation.
    """


class UnsupportedServerError(DescriptorError):
    """Server is older than the minimum version supporting statement introspection.
    """

    def __init__(self, version: str, minimum: int) -> None:
        self.version = version
        self.minimum = minimum
        super().__init__(f'SQL Server version {version} is not supported. '
                         f'Minimum supported major version is {minimum}.')


class EmptyConnectionTargetError(DescriptorError):
    """Blank connection string or connection name.
    """

    def __init__(self) -> None:
        super().__init__('ConnectionStringOrName value is empty!')


class UnmappedTypeError(DescriptorError):
    """Engine type id / UDT pair that has no entry in the type catalog.
    """

    def __init__(self, type_id: int | None, udt_name: str | None, context: str) -> None:
        self.type_id = type_id
        self.udt_name = udt_name or ''
        self.context = context
        super().__init__(f'Cannot map sql engine type {type_id} and UDT {self.udt_name!r} '
                         f'to a Python type. {context}')


class EmptyColumnNameError(DescriptorError):
    """Output column without a name or alias.
    """

    def __init__(self, ordinal: int) -> None:
        self.ordinal = ordinal
        super().__init__(f"Column #{ordinal} doesn't have name. "
                         'Only columns with names accepted. Use explicit alias.')


class DuplicateColumnNameError(ValidationError):
    """Two output columns share a name where names must be unique.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f'Column name {name!r} is used more than once. Use explicit aliases.')


class SchemaIntrospectionFailure(DescriptorError):
    """Both schema-only introspection and the fallback failed.

    The ``error`` attribute (and ``__cause__``) hold the error from the
    primary attempt. The fallback's error is not reported.
    """

    def __init__(self, error: BaseException) -> None:
        self.error = error
        super().__init__(f'Cannot describe output columns: {error}')


class TvpArityMismatchError(DescriptorError):
    """Table-valued row whose field count disagrees with its catalog schema.
    """

    def __init__(self, type_name: str, expected: int, actual: int) -> None:
        self.type_name = type_name
        self.expected = expected
        self.actual = actual
        super().__init__(f'Unexpected number of values for table type {type_name}: '
                         f'expected {expected}, got {actual}')


# Errors reported by the engine itself. The loaded DBAPI module's Error
# class is appended at runtime by ConnectionGateway.engine_errors.
EngineError = (
    sa.exc.DBAPIError,
    )
