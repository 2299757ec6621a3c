"""
Declarative value constraints for fields.

Constraints are attached to a field in order and checked independently
against the assembled result. Each check returns the mask of offending
rows so the validation layer can report which entities failed.

Example:
    alcohol = ff.Field(ff.float64, constraints=[ff.lower_bound(0), ff.upper_bound(20)])
    color = ff.Field(ff.string, constraints=[ff.accepted_values(["red", "white"])])
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal

import polars as pl

ConstraintKind = Literal["lower_bound", "upper_bound", "accepted_values"]


@dataclass(frozen=True)
class Constraint:
    """
    A single constraint on a field's values.

    Attributes:
        kind: Constraint type
        value: Bound for lower/upper bounds, tuple of values for accepted_values
        inclusive: Whether bounds accept the bound itself
    """

    kind: ConstraintKind
    value: Any
    inclusive: bool = True

    @property
    def name(self) -> str:
        """Readable name, e.g. ``lower_bound(0)``."""
        if self.kind == "accepted_values":
            return f"accepted_values({list(self.value)})"
        suffix = "" if self.inclusive else ", exclusive"
        return f"{self.kind}({self.value}{suffix})"

    def failing(self, column: str) -> pl.Expr:
        """
        Build an expression flagging rows that break this constraint.

        Null values never fail a value constraint; required-ness is
        checked separately.

        Args:
            column: Column to check

        Returns:
            Boolean expression, true for offending rows
        """
        col = pl.col(column)

        match self.kind:
            case "lower_bound":
                bad = col < self.value if self.inclusive else col <= self.value
            case "upper_bound":
                bad = col > self.value if self.inclusive else col >= self.value
            case _:
                bad = ~col.is_in(list(self.value))

        return col.is_not_null() & bad

    def describe_failure(self, count: int) -> str:
        match self.kind:
            case "lower_bound":
                op = "<" if self.inclusive else "<="
                return f"{count} value(s) {op} {self.value}"
            case "upper_bound":
                op = ">" if self.inclusive else ">="
                return f"{count} value(s) {op} {self.value}"
            case _:
                return f"{count} value(s) not in {list(self.value)}"

    def accepts(self, value: Any) -> bool:
        """Check a single Python value, used by the random data generator."""
        if value is None:
            return True
        match self.kind:
            case "lower_bound":
                return value >= self.value if self.inclusive else value > self.value
            case "upper_bound":
                return value <= self.value if self.inclusive else value < self.value
            case _:
                return value in self.value

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": self.kind}
        if self.kind == "accepted_values":
            result["values"] = list(self.value)
        else:
            result["value"] = self.value
            if not self.inclusive:
                result["inclusive"] = False
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Constraint:
        kind = data["kind"]
        if kind == "accepted_values":
            return accepted_values(data["values"])
        if kind not in ("lower_bound", "upper_bound"):
            raise ValueError(f"Unknown constraint kind: {kind!r}")
        return cls(kind=kind, value=data["value"], inclusive=data.get("inclusive", True))


def lower_bound(value: float, inclusive: bool = True) -> Constraint:
    """
    Values must be at or above ``value``.

    Args:
        value: Lower bound
        inclusive: Accept the bound itself. Defaults to True.
    """
    return Constraint(kind="lower_bound", value=value, inclusive=inclusive)


def upper_bound(value: float, inclusive: bool = True) -> Constraint:
    """
    Values must be at or below ``value``.

    Args:
        value: Upper bound
        inclusive: Accept the bound itself. Defaults to True.
    """
    return Constraint(kind="upper_bound", value=value, inclusive=inclusive)


def accepted_values(values: Sequence[Any]) -> Constraint:
    """
    Values must be one of ``values``.

    Args:
        values: The permitted values

    Raises:
        ValueError: If values is empty
    """
    if not values:
        raise ValueError("accepted_values requires at least one value")
    return Constraint(kind="accepted_values", value=tuple(values))


def bounds(constraints: Sequence[Constraint]) -> tuple[Any, Any]:
    """Return the tightest (lower, upper) bounds, None where unbounded."""
    lower = None
    upper = None
    for constraint in constraints:
        if constraint.kind == "lower_bound":
            lower = constraint.value if lower is None else max(lower, constraint.value)
        elif constraint.kind == "upper_bound":
            upper = constraint.value if upper is None else min(upper, constraint.value)
    return lower, upper
