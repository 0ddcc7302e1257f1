"""
Parameter binding for command execution.

Converts call arguments to driver values (Python -> database direction only):

1. Arguments are matched to descriptor parameters by name (without ``@``)
2. Absent optional arguments bind as NULL, or as an empty row set for a
   table-valued parameter
3. NumPy and Pandas scalars are converted to plain Python values, with
   NaN, NaT and NA becoming NULL
4. Table-valued arguments become a list of row tuples in column order

Usage:
    bound = bind_parameters(descriptor.parameters, {'minAge': np.int64(30)})
    values = [b.value for b in bound]
"""
import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
import pandas as pd
from sqlcommand.descriptor import Parameter
from sqlcommand.exceptions import ValidationError
from sqlcommand.rows import TableRow, TypedTable
from sqlcommand.tvp import TvpRow

__all__ = [
    'TypeConverter',
    'BoundParameter',
    'bind_parameters',
]

logger = logging.getLogger(__name__)


def _convert_numpy_value(val: Any) -> Any:
    """Convert a NumPy scalar to its Python counterpart. NaN and NaT become None.
    """
    if isinstance(val, np.floating) and np.isnan(val):
        return None

    if isinstance(val, np.datetime64):
        if np.isnat(val):
            return None
        return pd.Timestamp(val).to_pydatetime()

    if isinstance(val, np.timedelta64):
        if np.isnat(val):
            return None
        return pd.Timedelta(val).to_pytimedelta()

    if isinstance(val, np.bool_ | np.floating | np.integer | np.unsignedinteger):
        return val.item()

    return val


class TypeConverter:
    """Conversion of argument values to driver values"""

    @staticmethod
    def convert_value(value: Any) -> Any:
        """Convert a single value to a driver-compatible value

        Args:
            value: Any Python, NumPy or Pandas value

        Returns
            Converted value suitable for the driver
        """
        if value is None:
            return None

        # Python float NaN
        if isinstance(value, float) and math.isnan(value):
            return None

        # NumPy scalars (numbers, booleans, datetime64)
        if isinstance(value, np.generic):
            return _convert_numpy_value(value)

        # Pandas scalars
        if isinstance(value, pd.Timestamp):
            return None if pd.isna(value) else value.to_pydatetime()

        if isinstance(value, pd.Timedelta):
            return None if pd.isna(value) else value.to_pytimedelta()

        if pd.api.types.is_scalar(value) and pd.isna(value):
            return None

        return value

    @staticmethod
    def convert_row(values: Sequence[Any]) -> tuple[Any, ...]:
        return tuple(TypeConverter.convert_value(v) for v in values)


@dataclass(frozen=True)
class BoundParameter:
    """Parameter paired with its driver value."""
    parameter: Parameter
    value: Any

    @property
    def name(self) -> str:
        return self.parameter.name


def _table_rows(parameter: Parameter, value: Any) -> list[tuple[Any, ...]]:
    """Rows of a table-valued argument as tuples in column order.

    Accepts row-type instances, mappings, positional sequences, a
    TypedTable, or a DataFrame whose columns match the table type.
    """
    row_type = parameter.row_type
    if isinstance(value, pd.DataFrame):
        value = value.to_dict(orient='records')
    elif isinstance(value, TypedTable):
        value = [row.to_dict() for row in value]

    rows = []
    for item in value:
        if isinstance(item, TvpRow) and row_type is not None and not isinstance(item, row_type):
            item = row_type(**item._asdict())
        elif isinstance(item, TableRow):
            item = row_type(**item.to_dict())
        elif isinstance(item, Mapping):
            item = row_type(**item)
        elif not isinstance(item, TvpRow):
            item = row_type.from_values(item)
        rows.append(TypeConverter.convert_row(item))
    return rows


def bind_parameters(parameters: Sequence[Parameter], values: Mapping[str, Any]) -> list[BoundParameter]:
    """Match call arguments to parameters, in parameter order.

    Args:
        parameters: Descriptor parameters
        values: Arguments keyed by parameter name without ``@``

    Returns
        List of BoundParameter in parameter order

    Raises
        ValidationError: for unknown arguments or missing required ones
        TvpArityMismatchError: for a table row with the wrong number of values
    """
    known = {p.argument_name for p in parameters}
    unknown = set(values) - known
    if unknown:
        raise ValidationError(f'Unknown parameters: {sorted(unknown)}')

    bound = []
    for p in parameters:
        if p.argument_name in values:
            value = values[p.argument_name]
        elif p.optional:
            value = None
        else:
            raise ValidationError(f'Missing value for parameter {p.name}')

        if p.is_table_type:
            value = [] if value is None else _table_rows(p, value)
        else:
            value = TypeConverter.convert_value(value)
        bound.append(BoundParameter(p, value))

    logger.debug(f'Bound {len(bound)} parameters')
    return bound
