"""
Entity definitions.

An entity is the identifier type rows are keyed by. Views that share an
entity can be joined on its key column.

Example:
    trip = ff.Entity(name="trip_id", dtype=ff.string)
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

import featureforge.types as types_


class Entity(BaseModel):
    """
    A named identifier type.

    The entity name is also the key column name in every view keyed by it.

    Attributes:
        name: Entity and key column name (e.g. "trip_id")
        dtype: Key type. Defaults to string.
        description: Free text

    Example:
        wine = ff.Entity(name="wine_id", dtype=ff.int64)
    """

    name: str = Field(min_length=1)
    dtype: types_.DataType = types_.string
    description: str | None = None

    model_config = ConfigDict(frozen=True)

    @field_validator("dtype", mode="before")
    @classmethod
    def parse_dtype(cls, v: Any) -> Any:
        """Accept type strings such as "int64"."""
        if isinstance(v, str):
            return types_.parse_type(v)
        return v

    @field_validator("dtype")
    @classmethod
    def validate_dtype(cls, v: types_.DataType) -> types_.DataType:
        """Entity keys are never nullable and never opaque."""
        if v.nullable:
            raise ValueError("entity keys cannot be optional")
        if v.kind in (types_.TypeKind.JSON, types_.TypeKind.FLOAT32, types_.TypeKind.FLOAT64):
            raise ValueError(f"{v.kind.value} cannot be used as an entity key")
        return v

    @property
    def key(self) -> str:
        """Name of the key column."""
        return self.name

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "type": self.dtype.to_string()}
        if self.description:
            result["description"] = self.description
        return result
