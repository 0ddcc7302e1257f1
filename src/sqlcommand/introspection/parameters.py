"""
Parameter extraction from ``sp_describe_undeclared_parameters``.
"""
import logging

from sqlcommand.catalog import TypeCatalog
from sqlcommand.connection import ConnectionGateway, ParameterRow
from sqlcommand.descriptor import Parameter, ParameterDirection
from sqlcommand.exceptions import ValidationError
from sqlcommand.tvp import make_tvp_row_type

__all__ = ['ParameterExtractor']

logger = logging.getLogger(__name__)


class ParameterExtractor:
    """Resolve the undeclared parameters of a statement against the type catalog.
    """

    def __init__(self, gateway: ConnectionGateway, catalog: TypeCatalog) -> None:
        self.gateway = gateway
        self.catalog = catalog

    def extract(self, text: str, all_parameters_optional: bool = False) -> tuple[Parameter, ...]:
        """Describe parameters in engine order.

        Raises
            UnmappedTypeError: for a parameter type missing from the catalog
            ValidationError: for a malformed or duplicate name, or a table-type
                parameter that is not an input
        """
        rows = self.gateway.describe_parameters(text)
        parameters = tuple(self._to_parameter(row, all_parameters_optional) for row in rows)

        seen = set()
        for p in parameters:
            key = p.name.lower()
            if key in seen:
                raise ValidationError(f'Parameter {p.name} is declared more than once')
            seen.add(key)

        logger.debug(f'Extracted {len(parameters)} parameters: {[p.name for p in parameters]}')
        return parameters

    def _to_parameter(self, row: ParameterRow, optional: bool) -> Parameter:
        if not row.name.startswith('@') or len(row.name) < 2:
            raise ValidationError(f'Parameter name {row.name!r} must start with @')

        type_info = self.catalog.lookup(
            row.suggested_type_id, row.suggested_udt_name,
            f'Parameter name: {row.name}')
        direction = ParameterDirection.from_flags(row.is_input, row.is_output)

        row_type = None
        if type_info.is_table_type:
            if direction is not ParameterDirection.INPUT:
                raise ValidationError(f'Table-valued parameter {row.name} must be an input')
            row_type = make_tvp_row_type(type_info)

        return Parameter(
            name=row.name,
            type_info=type_info,
            direction=direction,
            optional=optional,
            declared_type='' if type_info.is_table_type else row.suggested_type_name,
            row_type=row_type,
            )
