"""
Output column extraction.

Schema-only introspection (``sp_describe_first_result_set``) runs first.
When the engine rejects it (temp tables, dynamic SQL) the statement is
described again under ``SET FMTONLY ON``. If both fail the error of the
first attempt is raised.
"""
import logging
from collections.abc import Sequence

from sqlcommand.catalog import TypeCatalog
from sqlcommand.connection import ColumnRow, ConnectionGateway, NeedsFallback
from sqlcommand.descriptor import Column, Parameter
from sqlcommand.exceptions import DuplicateColumnNameError, EmptyColumnNameError
from sqlcommand.exceptions import SchemaIntrospectionFailure
from sqlcommand.options import ResultType

__all__ = ['ColumnExtractor']

logger = logging.getLogger(__name__)


class ColumnExtractor:
    """Describe the first result set of a statement.
    """

    def __init__(self, gateway: ConnectionGateway, catalog: TypeCatalog) -> None:
        self.gateway = gateway
        self.catalog = catalog

    def describe(self, text: str, parameters: Sequence[Parameter] = ()) -> tuple[ColumnRow, ...]:
        """Raw column rows, falling back to FMTONLY when needed.

        Raises
            SchemaIntrospectionFailure: when both attempts fail
        """
        outcome = self.gateway.introspect_columns(text, parameters)
        if not isinstance(outcome, NeedsFallback):
            return outcome.columns

        primary = outcome.error
        logger.debug(f'Schema-only introspection failed, falling back to FMTONLY: {primary}')
        fallback = self.gateway.introspect_columns_fallback(text, parameters)
        if isinstance(fallback, NeedsFallback):
            logger.debug(f'FMTONLY fallback failed: {fallback.error}')
            raise SchemaIntrospectionFailure(primary) from primary
        return fallback.columns

    def extract(self, text: str, parameters: Sequence[Parameter] = (),
                result_type: ResultType = ResultType.RECORDS) -> tuple[Column, ...]:
        """Describe output columns.

        Nothing is described for DATA_READER.

        Raises
            SchemaIntrospectionFailure: when both introspection attempts fail
            EmptyColumnNameError: for a column without a name
            DuplicateColumnNameError: for repeated names where names key the row
            UnmappedTypeError: for a column type missing from the catalog
        """
        result_type = ResultType.parse(result_type)
        if result_type is ResultType.DATA_READER:
            return ()

        columns = []
        for row in self.describe(text, parameters):
            if not row.name:
                raise EmptyColumnNameError(row.ordinal)
            type_info = self.catalog.lookup(row.type_id, row.udt_name, f'Column name: {row.name}')
            columns.append(Column(row.name, row.ordinal, type_info, row.nullable))

        if result_type in {ResultType.RECORDS, ResultType.DATA_TABLE} and len(columns) > 1:
            seen = set()
            for column in columns:
                if column.name in seen:
                    raise DuplicateColumnNameError(column.name)
                seen.add(column.name)

        logger.debug(f'Extracted {len(columns)} columns: {[c.name for c in columns]}')
        return tuple(columns)
