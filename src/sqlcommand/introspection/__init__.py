"""
Statement introspection: parameters and output columns.
"""
from sqlcommand.introspection.columns import ColumnExtractor
from sqlcommand.introspection.parameters import ParameterExtractor

__all__ = ['ParameterExtractor', 'ColumnExtractor']
