"""
Type system for declared fields.

Every field carries a ``DataType``: a primitive ``TypeKind`` plus a
``nullable`` flag (the optional wrapper). Types convert to and from Polars
dtypes so that source data can be checked against the declared schema.

Only numeric widening is treated as compatible when a source returns a
different type than declared:

    int32   -> int64, float64
    int64   -> float64
    float32 -> float64
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo

import polars as pl


class TypeKind(str, Enum):
    """Primitive type tags."""

    INT32 = "int32"
    INT64 = "int64"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    BOOL = "bool"
    STRING = "string"
    TIMESTAMP = "timestamp"
    BYTES = "bytes"
    JSON = "json"


_NUMERIC = {TypeKind.INT32, TypeKind.INT64, TypeKind.FLOAT32, TypeKind.FLOAT64}
_INTEGER = {TypeKind.INT32, TypeKind.INT64}

_WIDENING: dict[TypeKind, set[TypeKind]] = {
    TypeKind.INT32: {TypeKind.INT64, TypeKind.FLOAT64},
    TypeKind.INT64: {TypeKind.FLOAT64},
    TypeKind.FLOAT32: {TypeKind.FLOAT64},
}

# Ordering used to pick the result type of arithmetic on mixed operands
_NUMERIC_RANK = {
    TypeKind.INT32: 0,
    TypeKind.INT64: 1,
    TypeKind.FLOAT32: 2,
    TypeKind.FLOAT64: 3,
}


@dataclass(frozen=True)
class DataType:
    """
    A declared column type.

    Attributes:
        kind: Primitive type tag
        nullable: Whether null values are permitted (optional-wrapped)
    """

    kind: TypeKind
    nullable: bool = False

    @property
    def is_numeric(self) -> bool:
        return self.kind in _NUMERIC

    @property
    def is_integer(self) -> bool:
        return self.kind in _INTEGER

    @property
    def is_string(self) -> bool:
        return self.kind == TypeKind.STRING

    @property
    def is_temporal(self) -> bool:
        return self.kind == TypeKind.TIMESTAMP

    def as_optional(self) -> DataType:
        """Return the nullable variant of this type."""
        return replace(self, nullable=True)

    def as_required(self) -> DataType:
        """Return the non-nullable variant of this type."""
        return replace(self, nullable=False)

    def can_widen_to(self, other: DataType) -> bool:
        """
        Check whether values of this type may be safely read as ``other``.

        Args:
            other: Target type

        Returns:
            True if the kinds match or the conversion is a numeric widening
        """
        if self.kind == other.kind:
            return True
        return other.kind in _WIDENING.get(self.kind, set())

    def to_polars(self) -> pl.DataType:
        """Convert to the equivalent Polars dtype."""
        return to_polars(self)

    def to_string(self) -> str:
        """Render as ``kind`` or ``optional[kind]``."""
        if self.nullable:
            return f"optional[{self.kind.value}]"
        return self.kind.value

    def __str__(self) -> str:
        return self.to_string()


int32 = DataType(TypeKind.INT32)
int64 = DataType(TypeKind.INT64)
float32 = DataType(TypeKind.FLOAT32)
float64 = DataType(TypeKind.FLOAT64)
boolean = DataType(TypeKind.BOOL)
string = DataType(TypeKind.STRING)
timestamp = DataType(TypeKind.TIMESTAMP)
bytes_ = DataType(TypeKind.BYTES)
json = DataType(TypeKind.JSON)


def optional(dtype: DataType) -> DataType:
    """Wrap a type as optional (nullable)."""
    return dtype.as_optional()


def numeric_result(left: DataType, right: DataType) -> DataType:
    """
    Result type of arithmetic between two numeric operands.

    Args:
        left: Left operand type
        right: Right operand type

    Returns:
        The wider of the two types, nullable if either operand is
    """
    kind = max(left.kind, right.kind, key=lambda k: _NUMERIC_RANK[k])
    return DataType(kind, nullable=left.nullable or right.nullable)


# =============================================================================
# Polars conversion
# =============================================================================

_TO_POLARS: dict[TypeKind, Any] = {
    TypeKind.INT32: pl.Int32,
    TypeKind.INT64: pl.Int64,
    TypeKind.FLOAT32: pl.Float32,
    TypeKind.FLOAT64: pl.Float64,
    TypeKind.BOOL: pl.Boolean,
    TypeKind.STRING: pl.Utf8,
    TypeKind.TIMESTAMP: pl.Datetime("us"),
    TypeKind.BYTES: pl.Binary,
    # JSON payloads travel as serialized strings
    TypeKind.JSON: pl.Utf8,
}


def to_polars(dtype: DataType) -> pl.DataType:
    """
    Convert a DataType to a Polars dtype.

    Args:
        dtype: Declared type

    Returns:
        Polars dtype used for casting and schema checks
    """
    return _TO_POLARS[dtype.kind]


def from_polars(dtype: pl.DataType) -> DataType | None:
    """
    Convert a Polars dtype to a DataType.

    Args:
        dtype: Polars dtype observed in source data

    Returns:
        Matching DataType, or None if the dtype has no counterpart
    """
    if dtype == pl.Null:
        return None

    match dtype:
        case pl.Int8 | pl.Int16 | pl.Int32 | pl.UInt8 | pl.UInt16:
            return int32
        case pl.Int64 | pl.UInt32 | pl.UInt64:
            return int64
        case pl.Float32:
            return float32
        case pl.Float64:
            return float64
        case pl.Boolean:
            return boolean
        case pl.Utf8 | pl.Categorical | pl.Enum:
            return string
        case pl.Binary:
            return bytes_

    if isinstance(dtype, pl.Datetime) or dtype == pl.Date:
        return timestamp

    return None


def naive_utc(expr: pl.Expr) -> pl.Expr:
    """Convert a timezone-aware datetime expression to naive UTC."""
    return expr.dt.convert_time_zone("UTC").dt.replace_time_zone(None)


def align_datetime(value: datetime, dtype: pl.DataType) -> datetime:
    """
    Match a datetime's timezone awareness to a column's dtype.

    Naive values are read as UTC. A timezone-aware value compared with a
    naive column is converted to naive UTC.

    Args:
        value: Bound or anchor to compare with the column
        dtype: Polars dtype of the column

    Returns:
        Value comparable with the column
    """
    time_zone = dtype.time_zone if isinstance(dtype, pl.Datetime) else None
    if time_zone is None:
        if value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(ZoneInfo(time_zone))


def parse_type(value: str) -> DataType:
    """
    Parse a type string such as ``"float64"`` or ``"optional[string]"``.

    Args:
        value: Serialized type

    Returns:
        Parsed DataType

    Raises:
        ValueError: If the type name is unknown
    """
    text = value.strip()
    nullable = False
    if text.startswith("optional[") and text.endswith("]"):
        nullable = True
        text = text[len("optional[") : -1]

    aliases = {"int": "int64", "float": "float64", "str": "string", "boolean": "bool", "datetime": "timestamp"}
    text = aliases.get(text, text)

    try:
        kind = TypeKind(text)
    except ValueError as e:
        valid = ", ".join(k.value for k in TypeKind)
        raise ValueError(f"Unknown type '{value}'. Expected one of: {valid}") from e

    return DataType(kind, nullable=nullable)
