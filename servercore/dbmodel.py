"""In-memory model of a database schema: tables, columns, indexes and procedures."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

__all__ = [
    "DataType",
    "IndexType",
    "Column",
    "Index",
    "Table",
    "Param",
    "Procedure",
    "data_type_to_string",
    "remove_whitespace",
    "string_to_data_type",
]


class DataType(Enum):
    """SQL Server column types, valued by their ``user_type_id``."""

    NONE = 0
    TINYINT = 48
    SMALLINT = 52
    INT = 56
    REAL = 59
    DATETIME = 61
    FLOAT = 62
    BIT = 104
    NUMERIC = 108
    BIGINT = 127
    VARBINARY = 165
    VARCHAR = 167
    BINARY = 173
    NVARCHAR = 231


class IndexType(Enum):
    CLUSTERED = 1
    NON_CLUSTERED = 2


_TYPE_NAMES = {
    DataType.TINYINT: "TinyInt",
    DataType.SMALLINT: "SmallInt",
    DataType.INT: "Int",
    DataType.REAL: "Real",
    DataType.DATETIME: "DateTime",
    DataType.FLOAT: "Float",
    DataType.BIT: "Bit",
    DataType.NUMERIC: "Numeric",
    DataType.BIGINT: "BigInt",
    DataType.VARBINARY: "VarBinary",
    DataType.VARCHAR: "Varchar",
    DataType.BINARY: "Binary",
    DataType.NVARCHAR: "NVarChar",
}

_TYPES_BY_LOWER_NAME = {name.lower(): data_type for data_type, name in _TYPE_NAMES.items()}

_TYPE_PATTERN = re.compile(r"([a-z]+)(\((max|\d+)\))?")


def data_type_to_string(data_type: DataType) -> str:
    """Name of ``data_type`` as SQL Server spells it; ``"None"`` for anything unknown."""
    return _TYPE_NAMES.get(data_type, "None")


def remove_whitespace(text: str) -> str:
    """``text`` with every whitespace character removed."""
    return "".join(ch for ch in text if not ch.isspace())


def string_to_data_type(text: str) -> tuple[DataType, int]:
    """Parse a type such as ``nvarchar(50)`` into its type and maximum length.

    The length is ``-1`` for ``max`` and ``0`` when none is given. Text that
    does not have the form of a lower-case type name yields ``DataType.NONE``.
    """
    match = _TYPE_PATTERN.fullmatch(text)
    if match is None:
        return DataType.NONE, 0

    length_text = match.group(3)
    if length_text is None:
        max_length = 0
    elif length_text.lower() == "max":
        max_length = -1
    else:
        max_length = int(length_text)

    return _TYPES_BY_LOWER_NAME.get(match.group(1).lower(), DataType.NONE), max_length


@dataclass
class Column:
    name: str = ""
    column_id: int = 0
    type: DataType = DataType.NONE
    type_text: str = ""
    max_length: int = 0
    nullable: bool = False
    identity: bool = False
    seed_value: int = 0
    increment_value: int = 0
    default: str = ""
    default_constraint_name: str = ""

    def create_text(self) -> str:
        """Column definition as used in CREATE TABLE and ALTER COLUMN."""
        identity = f"IDENTITY({self.seed_value}, {self.increment_value})" if self.identity else ""
        null_text = "NULL" if self.nullable else "NOT NULL"
        return f"[{self.name}] {self.type_text} {null_text} {identity}"


@dataclass
class Index:
    name: str = ""
    index_id: int = 0
    type: IndexType = IndexType.NON_CLUSTERED
    primary_key: bool = False
    unique_constraint: bool = False
    columns: list[Column] = field(default_factory=list)

    def unique_name(self) -> str:
        """Key identifying the index by its kind and columns, independent of its name."""
        parts = [
            "PK " if self.primary_key else " ",
            "UK " if self.unique_constraint else " ",
            "C " if self.type == IndexType.CLUSTERED else "NC ",
        ]
        parts.extend(f"*{column.name} " for column in self.columns)
        return "".join(parts)

    def create_name(self, table_name: str) -> str:
        """Name for a new index on ``table_name``."""
        return "".join([f"IX_{table_name}", *(f"_{column.name}" for column in self.columns)])

    def type_text(self) -> str:
        return "CLUSTERED" if self.type == IndexType.CLUSTERED else "NONCLUSTERED"

    def key_text(self) -> str:
        if self.primary_key:
            return "PRIMARY KEY"
        if self.unique_constraint:
            return "UNIQUE"
        return ""

    def create_columns_text(self) -> str:
        """Bracketed, comma separated list of the indexed columns."""
        return ", ".join(f"[{column.name}]" for column in self.columns)

    def depends_on(self, column_name: str) -> bool:
        return any(column.name == column_name for column in self.columns)


@dataclass
class Table:
    object_id: int = 0
    name: str = ""
    columns: list[Column] = field(default_factory=list)
    indexes: list[Index] = field(default_factory=list)

    def find_column(self, column_name: str) -> Column | None:
        return next((column for column in self.columns if column.name == column_name), None)


@dataclass
class Param:
    name: str = ""
    type: str = ""


@dataclass
class Procedure:
    name: str = ""
    full_body: str = ""
    body: str = ""
    parameters: list[Param] = field(default_factory=list)

    def generate_create_query(self) -> str:
        return f"CREATE PROCEDURE [dbo].[{self.name}] {self.generate_param_string()} AS BEGIN {self.body} END"

    def generate_alter_query(self) -> str:
        return f"ALTER PROCEDURE [dbo].[{self.name}] {self.generate_param_string()} AS\tBEGIN {self.body} END"

    def generate_param_string(self) -> str:
        """One tab-indented ``name type`` line per parameter, joined by commas."""
        return ",\n".join(f"\t{param.name} {param.type}" for param in self.parameters)