"""
Validation of assembled results against field declarations.

Every check runs; violations are collected into one report per request
so callers see all problems at once. Nulls in required fields produce a
RequiredFieldViolation, values outside a constraint produce a
ConstraintViolation.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

import polars as pl

import featureforge.constraints as constraints_
import featureforge.errors as errors
import featureforge.fields as fields_

MAX_LISTED_IDS = 10


@dataclass(frozen=True)
class Violation:
    """
    A data-quality problem on one field.

    Attributes:
        view: Owning view or contract
        field: Field name
        column: Output column the field was found in
        entity_ids: Entity ids of the offending rows, in row order
    """

    view: str
    field: str
    column: str
    entity_ids: tuple[Any, ...]

    @property
    def count(self) -> int:
        return len(self.entity_ids)

    @property
    def kind(self) -> str:
        return "violation"

    def _ids(self) -> str:
        shown = ", ".join(repr(i) for i in self.entity_ids[:MAX_LISTED_IDS])
        more = self.count - MAX_LISTED_IDS
        return f"[{shown}{f', ... {more} more' if more > 0 else ''}]"

    def describe(self) -> str:
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "view": self.view,
            "field": self.field,
            "column": self.column,
            "count": self.count,
            "entity_ids": list(self.entity_ids),
        }


@dataclass(frozen=True)
class RequiredFieldViolation(Violation):
    """A required field is null."""

    @property
    def kind(self) -> str:
        return "required"

    def describe(self) -> str:
        return f"{self.view}.{self.field}: {self.count} null value(s) in required field for {self._ids()}"


@dataclass(frozen=True)
class ConstraintViolation(Violation):
    """A value breaks a declared constraint."""

    constraint: constraints_.Constraint | None = None

    @property
    def kind(self) -> str:
        return "constraint"

    def describe(self) -> str:
        assert self.constraint is not None
        return (
            f"{self.view}.{self.field}: {self.constraint.name} failed, "
            f"{self.constraint.describe_failure(self.count)} for {self._ids()}"
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.constraint is not None:
            result["constraint"] = self.constraint.name
        return result


@dataclass
class ValidationReport:
    """
    All violations found for one request.

    Attributes:
        violations: Violations in field order, required checks first
        checked: Number of field columns checked
    """

    violations: list[Violation] = field(default_factory=list)
    checked: int = 0

    @property
    def passed(self) -> bool:
        return not self.violations

    @property
    def failed_count(self) -> int:
        return len(self.violations)

    def for_field(self, name: str) -> list[Violation]:
        return [v for v in self.violations if v.field == name or v.column == name]

    def raise_if_failed(self, request: str | None = None) -> None:
        """
        Raises:
            ValidationError: If any violation was found
        """
        if self.violations:
            raise errors.ValidationError(self.violations, request=request)

    def merge(self, other: ValidationReport) -> ValidationReport:
        return ValidationReport(
            violations=[*self.violations, *other.violations],
            checked=self.checked + other.checked,
        )

    def to_dicts(self) -> list[dict[str, Any]]:
        return [v.to_dict() for v in self.violations]


def validate_frame(
    df: pl.DataFrame,
    checks: Sequence[tuple[fields_.Field, str]],
    id_column: str | None = None,
) -> ValidationReport:
    """
    Check a frame against field declarations.

    Args:
        df: Assembled result
        checks: Pairs of field handle and the column holding its values.
            Pairs whose column is absent are skipped.
        id_column: Column identifying rows in violations. Row positions
            are used when omitted or absent.

    Returns:
        Report with every violation found
    """
    report = ValidationReport()
    if id_column is not None and id_column not in df.columns:
        id_column = None

    ids = df.get_column(id_column) if id_column else pl.Series("row", range(df.height))

    for f, column in checks:
        if column not in df.columns:
            continue
        report.checked += 1
        view = f.view or "?"
        name = f.name or column

        if f.required:
            mask = df.get_column(column).is_null()
            if mask.any():
                report.violations.append(
                    RequiredFieldViolation(view, name, column, tuple(ids.filter(mask).to_list()))
                )

        for constraint in f.constraints:
            mask = df.select(constraint.failing(column)).to_series()
            if mask.any():
                report.violations.append(
                    ConstraintViolation(
                        view,
                        name,
                        column,
                        tuple(ids.filter(mask).to_list()),
                        constraint=constraint,
                    )
                )

    return report
