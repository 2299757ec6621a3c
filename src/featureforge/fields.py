"""
Typed field handles.

A ``Field`` is a column declaration that doubles as a handle: derived
features reference other fields through the handle itself, never through
a string lookup, so a typo or a type mismatch surfaces when the schema is
declared.

Example:
    @ff.feature_view(name="wine", entity=wine_id, batch_source=ff.CsvSource("wine.csv"))
    class Wine:
        alcohol = ff.Field(ff.float64, constraints=[ff.lower_bound(0), ff.upper_bound(20)])
        quality = ff.Field(ff.int32, constraints=[ff.lower_bound(0), ff.upper_bound(10)])
        is_strong = ff.derived(alcohol > 12)
"""

from __future__ import annotations

import copy
from collections.abc import Sequence
from typing import Any

import featureforge.constraints as constraints_
import featureforge.errors as errors
import featureforge.expressions as expressions
import featureforge.types as types_


class Field(expressions.ExprOperators):
    """
    A typed column declaration.

    Attributes:
        name: Column name. Taken from the class attribute when omitted.
        required: Whether nulls are a violation
        constraints: Ordered value constraints
        description: Free text, not used by the engine
        expr: Expression for derived features, None for raw fields
        view: Name of the owning view or contract, set on registration
        owner: The owning view or contract object
    """

    role = "field"

    def __init__(
        self,
        dtype: types_.DataType | None = None,
        name: str | None = None,
        required: bool | None = None,
        constraints: Sequence[constraints_.Constraint] = (),
        description: str | None = None,
        expr: expressions.Expr | None = None,
    ) -> None:
        if dtype is None and expr is None:
            raise errors.InvalidTypeError(
                f"Field '{name or '<unnamed>'}' needs a dtype or an expression"
            )

        if required is None:
            required = not (dtype is not None and dtype.nullable)

        self.name = name
        self.required = required
        self.constraints = tuple(constraints)
        self.description = description
        self.expr = expr
        self.view: str | None = None
        self.owner: Any = None
        self._declared = dtype

        if self._declared is not None and not required:
            self._declared = self._declared.as_optional()

        if expr is not None and expr.is_resolved:
            self.check()

    def __set_name__(self, owner: type, name: str) -> None:
        if self.name is None:
            self.name = name

    def _as_expr(self) -> expressions.Expr:
        return expressions.FieldRef(field=self)

    @property
    def is_derived(self) -> bool:
        return self.expr is not None

    @property
    def dtype(self) -> types_.DataType:
        if self._declared is not None:
            return self._declared
        assert self.expr is not None
        inferred = self.expr.dtype
        return inferred if self.required else inferred.as_optional()

    @property
    def qualified_name(self) -> str:
        if self.view is None:
            raise errors.FeatureStoreError(
                f"Field '{self.name}' is not attached to a view yet"
            )
        return f"{self.view}:{self.name}"

    def references(self) -> list[expressions.FieldRef]:
        """Fields this field reads, in expression order."""
        if self.expr is None:
            return []
        return list(self.expr.references())

    def check(self) -> types_.DataType:
        """
        Validate a derived field's expression against its declared type.

        Returns:
            The field's resulting type

        Raises:
            InvalidTypeError: If the expression misuses an operator or
                produces a type inconsistent with the declared one
        """
        if self.expr is None:
            return self.dtype

        try:
            inferred = self.expr.check()
        except errors.InvalidTypeError as e:
            raise errors.InvalidTypeError(
                f"Derived field '{self.name}': {e.message}",
                field=self.name,
                hint=e.hint,
            ) from e

        if self._declared is not None and not inferred.can_widen_to(self._declared):
            raise errors.InvalidTypeError(
                f"Derived field '{self.name}' is declared {self._declared.kind.value} "
                f"but its expression {self.expr.describe()} yields {inferred.kind.value}",
                field=self.name,
            )
        return self.dtype

    def bind(self, view: str) -> None:
        """Attach this handle to its owning view."""
        if self.name is None:
            raise errors.InvalidTypeError(f"Field in '{view}' has no name")
        if self.view is not None and self.view != view:
            raise errors.DuplicateNameError(
                "field owner",
                f"{self.name}",
                hint=f"Field already belongs to '{self.view}'. Create a new Field for '{view}'.",
            )
        self.view = view

    def optional(self) -> Field:
        """Return an unbound nullable copy of this field."""
        clone = copy.copy(self)
        clone.required = False
        clone.view = None
        clone.owner = None
        if clone._declared is not None:
            clone._declared = clone._declared.as_optional()
        return clone

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name}
        if self._declared is not None:
            result["type"] = self._declared.to_string()
        if not self.required:
            result["required"] = False
        if self.constraints:
            result["constraints"] = [c.to_dict() for c in self.constraints]
        if self.description:
            result["description"] = self.description
        if self.expr is not None:
            result["expression"] = self.expr.to_dict()
        if self.role != "field":
            result["role"] = self.role
        return result

    def __repr__(self) -> str:
        owner = f"{self.view}." if self.view else ""
        try:
            dtype = str(self.dtype)
        except errors.FeatureStoreError:
            dtype = "?"
        return f"{type(self).__name__}({owner}{self.name}: {dtype})"


class EventTimestamp(Field):
    """The point-in-time anchor of a view. At most one per view."""

    role = "event_timestamp"

    def __init__(
        self,
        name: str | None = None,
        description: str | None = None,
        required: bool = True,
    ) -> None:
        super().__init__(
            dtype=types_.timestamp,
            name=name,
            required=required,
            description=description,
        )


class EntityKey(Field):
    """The entity key column of a view, created from its Entity."""

    role = "entity_key"


def derived(
    expr: expressions.Expr,
    dtype: types_.DataType | None = None,
    name: str | None = None,
    required: bool | None = None,
    constraints: Sequence[constraints_.Constraint] = (),
    description: str | None = None,
) -> Field:
    """
    Declare a derived feature computed from other fields.

    Args:
        expr: Pure expression over other field handles
        dtype: Declared type. Inferred from the expression when omitted.
        name: Column name. Taken from the class attribute when omitted.
        required: Whether nulls are a violation. Defaults to the
            expression's nullability.
        constraints: Value constraints on the result
        description: Free text

    Returns:
        Derived field handle

    Raises:
        InvalidTypeError: If the expression is ill-typed or disagrees
            with ``dtype``

    Example:
        travel_distance = ff.derived(
            ((dep.latitude - arr.latitude) ** 2 + (dep.longitude - arr.longitude) ** 2).sqrt()
        )
    """
    if not isinstance(expr, expressions.Expr):
        expr = expressions.wrap(expr)

    if required is None:
        required = not (expr.is_resolved and expr.dtype.nullable) and not (
            dtype is not None and dtype.nullable
        )

    return Field(
        dtype=dtype,
        name=name,
        required=required,
        constraints=constraints,
        description=description,
        expr=expr,
    )


def one_hot(
    source: Field,
    categories: Sequence[Any],
    prefix: str | None = None,
) -> list[Field]:
    """
    Expand a categorical field into one boolean derived field per category.

    Args:
        source: Categorical field handle
        categories: Category values, one output field each
        prefix: Name prefix. Defaults to the source field's name.

    Returns:
        Derived fields named ``{prefix}_{category}``
    """
    if not categories:
        raise ValueError("one_hot requires at least one category")

    base = prefix or source.name
    if base is None:
        raise ValueError("one_hot needs a prefix when the source field is unnamed")

    return [
        derived(
            (source == category).fill_null(False),
            name=f"{base}_{category}",
        )
        for category in categories
    ]
