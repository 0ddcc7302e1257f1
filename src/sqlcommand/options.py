import enum
from dataclasses import dataclass
from typing import Any

__all__ = [
    'ResultType',
    'CommandOptions',
]


class ResultType(enum.IntEnum):
    """Requested structure of a command's result.
    """
    RECORDS = 0      # sequence of records keyed by column name
    TUPLES = 1       # sequence of tuples in column order
    DATA_TABLE = 2   # typed table with row accessors
    DATA_READER = 3  # raw cursor

    @classmethod
    def parse(cls, value: Any) -> 'ResultType':
        """Accept the enum, its name (``'records'``, ``'DataTable'``) or its integer value.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            key = value.strip().replace('_', '').lower()
            for member in cls:
                if member.name.replace('_', '').lower() == key:
                    return member
        raise ValueError(f'result_type must be one of: {[m.name for m in cls]}, got {value!r}')


@dataclass(frozen=True)
class CommandOptions:
    """Options

    - result_type: structure of the result (default: ResultType.RECORDS)
    - single_row: expect at most one row, result becomes optional (default: False)
    - all_parameters_optional: every parameter gets a ``None`` default that
      binds as NULL (default: False)
    - config_file: configuration file holding named connection strings,
      relative to the resolution folder (default: '' for the search path)
    """
    result_type: ResultType = ResultType.RECORDS
    single_row: bool = False
    all_parameters_optional: bool = False
    config_file: str = ''

    def __post_init__(self):
        object.__setattr__(self, 'result_type', ResultType.parse(self.result_type))
        object.__setattr__(self, 'single_row', bool(self.single_row))
        object.__setattr__(self, 'all_parameters_optional', bool(self.all_parameters_optional))
        object.__setattr__(self, 'config_file', (self.config_file or '').strip())
