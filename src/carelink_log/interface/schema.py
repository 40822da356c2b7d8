"""Base Schema Infrastructure.

This module defines the base types, enums, and schema builder classes
used to describe the tabular views of Carelink log data.
"""

import polars as pl
from enum import Enum
from typing import Dict, Any, Iterable, List, Sequence, Union, Type, TypedDict, NotRequired


class EnumLiteral(str, Enum):
    """
    A general base class for string-based enums that behave like literals.
    Ensures compatibility with str comparisons and retains enum benefits.
    """
    def __new__(cls, value, *args, **kwargs):
        obj = str.__new__(cls, value)
        obj._value_ = value
        return obj

    def __str__(self):
        # String representation directly returns the value
        return self.value

    def __eq__(self, other):
        # Allow direct comparison with strings
        if isinstance(other, str):
            return self.value == other
        return super().__eq__(other)

    def __hash__(self):
        # Use the hash of the value to behave like a string in hashable contexts
        return hash(self.value)
    
    def __repr__(self):
        # For print statements and serialization
        return self.value


class ColumnSchema(TypedDict):
    """Schema definition for a single column."""
    name: str
    dtype: Union[Type[pl.DataType], pl.DataType]
    description: str
    unit: NotRequired[str]


class LogSchemaDefinition:
    """Schema definition builder for the tabular exports of log data.
    
    Holds an ordered list of column definitions and turns row tuples into
    polars DataFrames with exactly those names and dtypes, so an empty
    export still carries the right columns.
    """
    
    def __init__(self, columns: List[ColumnSchema]) -> None:
        """Initialize schema definition.
        
        Args:
            columns: Column definitions in output order
        """
        self.columns = columns
    
    def get_polars_schema(self) -> Dict[str, pl.DataType]:
        """Get Polars dtype schema dictionary.
        
        Returns:
            Dictionary mapping column names to Polars data types
        """
        return {col["name"]: col["dtype"] for col in self.columns}
    
    def get_column_names(self) -> List[str]:
        """Get list of all column names in schema order."""
        return [col["name"] for col in self.columns]
    
    def get_units(self) -> Dict[str, str]:
        """Get the unit of every column that declares one."""
        return {col["name"]: col["unit"] for col in self.columns if col.get("unit")}
    
    def build_frame(self, rows: Iterable[Sequence[Any]]) -> pl.DataFrame:
        """Build a DataFrame from row tuples ordered like the schema columns.
        
        Args:
            rows: Iterable of row sequences, one value per schema column
            
        Returns:
            DataFrame with the schema's column names and dtypes
        """
        return pl.DataFrame(list(rows), schema=self.get_polars_schema(), orient="row")
