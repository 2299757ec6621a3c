"""
Expression trees for derived features.

Derived features are pure expressions over other fields. Expressions are
built with Python operators on field handles and stored as a small
tagged-variant tree:

    Literal     constant value
    FieldRef    reference to a declared field
    BinaryOp    arithmetic, comparison and boolean operators
    UnaryOp     negation, not, abs, sqrt, log, is_null
    Cast        explicit type conversion
    StringOp    string predicates and transforms
    IsIn        membership test against accepted values
    Bucketize   numeric bucketing
    MapLookup   dictionary / embedding lookup
    FillNull    null replacement

Result types are inferred when the expression is built, so applying a
string operator to a numeric field fails at declaration time rather than
when data arrives. Trees compile to Polars expressions and serialize to
plain dictionaries for the schema document.

Example:
    distance = ((dep.lat - arr.lat) ** 2 + (dep.lon - arr.lon) ** 2).sqrt()
    is_strong = wine.alcohol > 12
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar

import polars as pl

import featureforge.errors as errors
import featureforge.types as types_

if TYPE_CHECKING:
    from featureforge.fields import Field


ARITHMETIC_OPS = ("+", "-", "*", "/", "**", "%")
COMPARISON_OPS = ("==", "!=", "<", "<=", ">", ">=")
BOOLEAN_OPS = ("&", "|")
UNARY_OPS = ("neg", "not", "abs", "sqrt", "log", "is_null")
STRING_OPS = ("contains", "starts_with", "ends_with", "lower", "upper", "length")


class ExprOperators:
    """
    Operator overloads shared by expressions and field handles.

    Subclasses provide ``_as_expr()`` returning the node that represents
    them inside a tree.
    """

    # Comparison operators build expressions, so identity hashing is kept
    __hash__ = object.__hash__

    def _as_expr(self) -> Expr:
        raise NotImplementedError

    # Arithmetic
    def __add__(self, other: Any) -> Expr:
        return BinaryOp("+", self._as_expr(), wrap(other))

    def __radd__(self, other: Any) -> Expr:
        return BinaryOp("+", wrap(other), self._as_expr())

    def __sub__(self, other: Any) -> Expr:
        return BinaryOp("-", self._as_expr(), wrap(other))

    def __rsub__(self, other: Any) -> Expr:
        return BinaryOp("-", wrap(other), self._as_expr())

    def __mul__(self, other: Any) -> Expr:
        return BinaryOp("*", self._as_expr(), wrap(other))

    def __rmul__(self, other: Any) -> Expr:
        return BinaryOp("*", wrap(other), self._as_expr())

    def __truediv__(self, other: Any) -> Expr:
        return BinaryOp("/", self._as_expr(), wrap(other))

    def __rtruediv__(self, other: Any) -> Expr:
        return BinaryOp("/", wrap(other), self._as_expr())

    def __pow__(self, other: Any) -> Expr:
        return BinaryOp("**", self._as_expr(), wrap(other))

    def __mod__(self, other: Any) -> Expr:
        return BinaryOp("%", self._as_expr(), wrap(other))

    def __neg__(self) -> Expr:
        return UnaryOp("neg", self._as_expr())

    def __abs__(self) -> Expr:
        return UnaryOp("abs", self._as_expr())

    # Comparison
    def __eq__(self, other: Any) -> Expr:  # type: ignore[override]
        return BinaryOp("==", self._as_expr(), wrap(other))

    def __ne__(self, other: Any) -> Expr:  # type: ignore[override]
        return BinaryOp("!=", self._as_expr(), wrap(other))

    def __lt__(self, other: Any) -> Expr:
        return BinaryOp("<", self._as_expr(), wrap(other))

    def __le__(self, other: Any) -> Expr:
        return BinaryOp("<=", self._as_expr(), wrap(other))

    def __gt__(self, other: Any) -> Expr:
        return BinaryOp(">", self._as_expr(), wrap(other))

    def __ge__(self, other: Any) -> Expr:
        return BinaryOp(">=", self._as_expr(), wrap(other))

    # Boolean
    def __and__(self, other: Any) -> Expr:
        return BinaryOp("&", self._as_expr(), wrap(other))

    def __or__(self, other: Any) -> Expr:
        return BinaryOp("|", self._as_expr(), wrap(other))

    def __invert__(self) -> Expr:
        return UnaryOp("not", self._as_expr())

    def __bool__(self) -> bool:
        raise TypeError(
            "Expressions cannot be used as booleans. "
            "Use '&' and '|' instead of 'and' and 'or'."
        )

    # Named operations
    def sqrt(self) -> Expr:
        return UnaryOp("sqrt", self._as_expr())

    def log(self) -> Expr:
        return UnaryOp("log", self._as_expr())

    def abs(self) -> Expr:
        return UnaryOp("abs", self._as_expr())

    def is_null(self) -> Expr:
        return UnaryOp("is_null", self._as_expr())

    def fill_null(self, value: Any) -> Expr:
        return FillNull(self._as_expr(), wrap(value))

    def cast(self, dtype: types_.DataType) -> Expr:
        return Cast(self._as_expr(), dtype)

    def is_in(self, values: Sequence[Any]) -> Expr:
        return IsIn(self._as_expr(), tuple(values))

    def contains(self, pattern: str) -> Expr:
        return StringOp("contains", self._as_expr(), pattern)

    def starts_with(self, prefix: str) -> Expr:
        return StringOp("starts_with", self._as_expr(), prefix)

    def ends_with(self, suffix: str) -> Expr:
        return StringOp("ends_with", self._as_expr(), suffix)

    def lower(self) -> Expr:
        return StringOp("lower", self._as_expr())

    def upper(self) -> Expr:
        return StringOp("upper", self._as_expr())

    def length(self) -> Expr:
        return StringOp("length", self._as_expr())

    def bucketize(
        self,
        breaks: Sequence[float],
        labels: Sequence[str] | None = None,
    ) -> Expr:
        return Bucketize(
            self._as_expr(),
            tuple(breaks),
            tuple(labels) if labels is not None else None,
        )

    def map_values(self, mapping: Mapping[Any, Any], default: Any = None) -> Expr:
        return MapLookup(self._as_expr(), tuple(mapping.items()), default)


def wrap(value: Any) -> Expr:
    """Turn a field handle, expression or Python constant into a node."""
    if isinstance(value, ExprOperators):
        return value._as_expr()
    return Literal(value)


# =============================================================================
# Nodes
# =============================================================================


class Expr(ExprOperators):
    """Base class for expression nodes."""

    kind: ClassVar[str]

    def _as_expr(self) -> Expr:
        return self

    def children(self) -> tuple[Expr, ...]:
        return ()

    @property
    def is_resolved(self) -> bool:
        """True when every field reference has a known type."""
        return all(child.is_resolved for child in self.children())

    @property
    def dtype(self) -> types_.DataType:
        """Inferred result type. Raises InvalidTypeError on misuse."""
        raise NotImplementedError

    def check(self) -> types_.DataType:
        """Infer the result type, validating every node in the tree."""
        for child in self.children():
            child.check()
        return self.dtype

    def references(self) -> Iterator[FieldRef]:
        """Yield every field reference in the tree, left to right."""
        for child in self.children():
            yield from child.references()

    def to_polars(self, columns: Mapping[str, str]) -> pl.Expr:
        """
        Compile to a Polars expression.

        Args:
            columns: Mapping of qualified field ids to output column names

        Returns:
            Polars expression computing this node
        """
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"Expr({self.describe()})"

    def _post_check(self) -> None:
        if self.is_resolved:
            self.dtype


@dataclass(eq=False)
class Literal(Expr):
    kind: ClassVar[str] = "literal"

    value: Any

    @property
    def dtype(self) -> types_.DataType:
        value = self.value
        if value is None:
            return types_.optional(types_.string)
        if isinstance(value, bool):
            return types_.boolean
        if isinstance(value, int):
            return types_.int64
        if isinstance(value, float):
            return types_.float64
        if isinstance(value, str):
            return types_.string
        if isinstance(value, datetime):
            return types_.timestamp
        if isinstance(value, bytes):
            return types_.bytes_
        raise errors.InvalidTypeError(
            f"Unsupported literal {value!r} of type {type(value).__name__}"
        )

    def to_polars(self, columns: Mapping[str, str]) -> pl.Expr:
        return pl.lit(self.value)

    def to_dict(self) -> dict[str, Any]:
        value = self.value
        if isinstance(value, datetime):
            return {"kind": self.kind, "value": value.isoformat(), "type": "timestamp"}
        return {"kind": self.kind, "value": value}

    def describe(self) -> str:
        return repr(self.value)


@dataclass(eq=False)
class FieldRef(Expr):
    """
    Reference to a declared field.

    A reference either holds the field handle directly, or a
    ``view:name`` pair that the registry binds to a handle when the
    graph is built (used by the schema document and forward references).
    """

    kind: ClassVar[str] = "field"

    field: Field | None = None
    view: str | None = None
    name: str | None = None

    @property
    def qualified_name(self) -> str:
        if self.field is not None and self.field.view is not None:
            return self.field.qualified_name
        if self.field is not None:
            return f"?:{self.field.name}"
        return f"{self.view}:{self.name}"

    @property
    def is_resolved(self) -> bool:
        return self.field is not None

    def bind(self, field: Field) -> None:
        self.field = field

    @property
    def dtype(self) -> types_.DataType:
        if self.field is None:
            raise errors.UnknownReferenceError(
                field="<expression>", reference=self.qualified_name
            )
        return self.field.dtype

    def references(self) -> Iterator[FieldRef]:
        yield self

    def to_polars(self, columns: Mapping[str, str]) -> pl.Expr:
        return pl.col(columns[self.qualified_name])

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "ref": self.qualified_name}

    def describe(self) -> str:
        return self.qualified_name


_POLARS_BINARY = {
    "+": lambda a, b: a + b,
    "-": lambda a, b: a - b,
    "*": lambda a, b: a * b,
    "/": lambda a, b: a / b,
    "**": lambda a, b: a.cast(pl.Float64).pow(b),
    "%": lambda a, b: a % b,
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a < b,
    "<=": lambda a, b: a <= b,
    ">": lambda a, b: a > b,
    ">=": lambda a, b: a >= b,
    "&": lambda a, b: a & b,
    "|": lambda a, b: a | b,
}


@dataclass(eq=False)
class BinaryOp(Expr):
    kind: ClassVar[str] = "binary"

    op: str
    left: Expr
    right: Expr

    def __post_init__(self) -> None:
        if self.op not in _POLARS_BINARY:
            raise errors.InvalidTypeError(f"Unknown binary operator '{self.op}'")
        self._post_check()

    def children(self) -> tuple[Expr, ...]:
        return (self.left, self.right)

    @property
    def dtype(self) -> types_.DataType:
        left, right = self.left.dtype, self.right.dtype
        nullable = left.nullable or right.nullable

        if self.op in ARITHMETIC_OPS:
            if self.op == "+" and left.is_string and right.is_string:
                return types_.DataType(types_.TypeKind.STRING, nullable)
            self._require(left.is_numeric and right.is_numeric, "numeric operands")
            if self.op in ("/", "**"):
                return types_.DataType(types_.TypeKind.FLOAT64, nullable)
            return types_.numeric_result(left, right)

        if self.op in COMPARISON_OPS:
            comparable = (left.is_numeric and right.is_numeric) or left.kind == right.kind
            if self.op not in ("==", "!="):
                comparable = comparable and left.kind not in (
                    types_.TypeKind.BOOL,
                    types_.TypeKind.JSON,
                    types_.TypeKind.BYTES,
                )
            # null literals compare against anything
            if isinstance(self.left, Literal) and self.left.value is None:
                comparable = True
            if isinstance(self.right, Literal) and self.right.value is None:
                comparable = True
            self._require(comparable, "comparable operands")
            return types_.DataType(types_.TypeKind.BOOL, nullable)

        self._require(
            left.kind == types_.TypeKind.BOOL and right.kind == types_.TypeKind.BOOL,
            "boolean operands",
        )
        return types_.DataType(types_.TypeKind.BOOL, nullable)

    def _require(self, condition: bool, expected: str) -> None:
        if not condition:
            raise errors.InvalidTypeError(
                f"Operator '{self.op}' requires {expected}, got "
                f"{self.left.dtype} and {self.right.dtype} in {self.describe()}",
                field=_first_ref(self),
            )

    def to_polars(self, columns: Mapping[str, str]) -> pl.Expr:
        return _POLARS_BINARY[self.op](
            self.left.to_polars(columns), self.right.to_polars(columns)
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "op": self.op,
            "left": self.left.to_dict(),
            "right": self.right.to_dict(),
        }

    def describe(self) -> str:
        return f"({self.left.describe()} {self.op} {self.right.describe()})"


@dataclass(eq=False)
class UnaryOp(Expr):
    kind: ClassVar[str] = "unary"

    op: str
    operand: Expr

    def __post_init__(self) -> None:
        if self.op not in UNARY_OPS:
            raise errors.InvalidTypeError(f"Unknown unary operator '{self.op}'")
        self._post_check()

    def children(self) -> tuple[Expr, ...]:
        return (self.operand,)

    @property
    def dtype(self) -> types_.DataType:
        inner = self.operand.dtype

        match self.op:
            case "is_null":
                return types_.boolean
            case "not":
                self._require(inner.kind == types_.TypeKind.BOOL, "a boolean operand")
                return inner
            case "neg" | "abs":
                self._require(inner.is_numeric, "a numeric operand")
                return inner
            case _:
                self._require(inner.is_numeric, "a numeric operand")
                return types_.DataType(types_.TypeKind.FLOAT64, inner.nullable)

    def _require(self, condition: bool, expected: str) -> None:
        if not condition:
            raise errors.InvalidTypeError(
                f"'{self.op}' requires {expected}, got {self.operand.dtype} "
                f"in {self.describe()}",
                field=_first_ref(self),
            )

    def to_polars(self, columns: Mapping[str, str]) -> pl.Expr:
        inner = self.operand.to_polars(columns)
        match self.op:
            case "neg":
                return -inner
            case "not":
                return ~inner
            case "abs":
                return inner.abs()
            case "sqrt":
                return inner.cast(pl.Float64).sqrt()
            case "log":
                return inner.cast(pl.Float64).log()
            case _:
                return inner.is_null()

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "op": self.op, "operand": self.operand.to_dict()}

    def describe(self) -> str:
        return f"{self.op}({self.operand.describe()})"


@dataclass(eq=False)
class Cast(Expr):
    kind: ClassVar[str] = "cast"

    operand: Expr
    to: types_.DataType

    def __post_init__(self) -> None:
        self._post_check()

    def children(self) -> tuple[Expr, ...]:
        return (self.operand,)

    @property
    def dtype(self) -> types_.DataType:
        inner = self.operand.dtype
        opaque = (types_.TypeKind.JSON, types_.TypeKind.BYTES)
        if inner.kind in opaque and self.to.kind not in (*opaque, types_.TypeKind.STRING):
            raise errors.InvalidTypeError(
                f"Cannot cast {inner} to {self.to} in {self.describe()}",
                field=_first_ref(self),
            )
        return types_.DataType(self.to.kind, inner.nullable or self.to.nullable)

    def to_polars(self, columns: Mapping[str, str]) -> pl.Expr:
        return self.operand.to_polars(columns).cast(types_.to_polars(self.to))

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "operand": self.operand.to_dict(), "to": self.to.to_string()}

    def describe(self) -> str:
        return f"cast({self.operand.describe()}, {self.to})"


@dataclass(eq=False)
class StringOp(Expr):
    kind: ClassVar[str] = "string"

    op: str
    operand: Expr
    argument: str | None = None

    def __post_init__(self) -> None:
        if self.op not in STRING_OPS:
            raise errors.InvalidTypeError(f"Unknown string operator '{self.op}'")
        self._post_check()

    def children(self) -> tuple[Expr, ...]:
        return (self.operand,)

    @property
    def dtype(self) -> types_.DataType:
        inner = self.operand.dtype
        if not inner.is_string:
            raise errors.InvalidTypeError(
                f"String operator '{self.op}' cannot be applied to {inner} "
                f"in {self.describe()}",
                field=_first_ref(self),
                hint="Cast the field to string first if this is intended.",
            )
        match self.op:
            case "lower" | "upper":
                return inner
            case "length":
                return types_.DataType(types_.TypeKind.INT64, inner.nullable)
            case _:
                return types_.DataType(types_.TypeKind.BOOL, inner.nullable)

    def to_polars(self, columns: Mapping[str, str]) -> pl.Expr:
        inner = self.operand.to_polars(columns)
        match self.op:
            case "contains":
                return inner.str.contains(self.argument, literal=True)
            case "starts_with":
                return inner.str.starts_with(self.argument)
            case "ends_with":
                return inner.str.ends_with(self.argument)
            case "lower":
                return inner.str.to_lowercase()
            case "upper":
                return inner.str.to_uppercase()
            case _:
                return inner.str.len_chars().cast(pl.Int64)

    def to_dict(self) -> dict[str, Any]:
        result = {"kind": self.kind, "op": self.op, "operand": self.operand.to_dict()}
        if self.argument is not None:
            result["argument"] = self.argument
        return result

    def describe(self) -> str:
        arg = f", {self.argument!r}" if self.argument is not None else ""
        return f"{self.op}({self.operand.describe()}{arg})"


@dataclass(eq=False)
class IsIn(Expr):
    kind: ClassVar[str] = "is_in"

    operand: Expr
    values: tuple[Any, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        self._post_check()

    def children(self) -> tuple[Expr, ...]:
        return (self.operand,)

    @property
    def dtype(self) -> types_.DataType:
        inner = self.operand.dtype
        if inner.kind in (types_.TypeKind.JSON, types_.TypeKind.BYTES):
            raise errors.InvalidTypeError(
                f"Membership test is not supported on {inner} in {self.describe()}",
                field=_first_ref(self),
            )
        return types_.DataType(types_.TypeKind.BOOL, inner.nullable)

    def to_polars(self, columns: Mapping[str, str]) -> pl.Expr:
        return self.operand.to_polars(columns).is_in(list(self.values))

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "operand": self.operand.to_dict(), "values": list(self.values)}

    def describe(self) -> str:
        return f"is_in({self.operand.describe()}, {list(self.values)})"


@dataclass(eq=False)
class Bucketize(Expr):
    """
    Assign each value to a bucket delimited by ascending ``breaks``.

    Values below ``breaks[0]`` land in bucket 0, values in
    ``[breaks[i-1], breaks[i])`` in bucket i, values at or above the last
    break in bucket ``len(breaks)``. With ``labels`` (one more than the
    number of breaks) the label is returned instead of the index.
    """

    kind: ClassVar[str] = "bucketize"

    operand: Expr
    breaks: tuple[float, ...] = field(default_factory=tuple)
    labels: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        if not self.breaks:
            raise errors.InvalidTypeError("bucketize requires at least one break")
        if list(self.breaks) != sorted(self.breaks):
            raise errors.InvalidTypeError(f"bucketize breaks must be ascending: {list(self.breaks)}")
        if self.labels is not None and len(self.labels) != len(self.breaks) + 1:
            raise errors.InvalidTypeError(
                f"bucketize needs {len(self.breaks) + 1} labels, got {len(self.labels)}"
            )
        self._post_check()

    def children(self) -> tuple[Expr, ...]:
        return (self.operand,)

    @property
    def dtype(self) -> types_.DataType:
        inner = self.operand.dtype
        if not inner.is_numeric:
            raise errors.InvalidTypeError(
                f"bucketize requires a numeric operand, got {inner} in {self.describe()}",
                field=_first_ref(self),
            )
        kind = types_.TypeKind.STRING if self.labels else types_.TypeKind.INT32
        return types_.DataType(kind, inner.nullable)

    def to_polars(self, columns: Mapping[str, str]) -> pl.Expr:
        inner = self.operand.to_polars(columns)
        outputs: list[Any] = list(self.labels) if self.labels else list(range(len(self.breaks) + 1))
        dtype = pl.Utf8 if self.labels else pl.Int32

        chain = pl.when(inner.is_null()).then(pl.lit(None, dtype=dtype))
        for bound, output in zip(self.breaks, outputs):
            chain = chain.when(inner < bound).then(pl.lit(output, dtype=dtype))
        return chain.otherwise(pl.lit(outputs[-1], dtype=dtype))

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "kind": self.kind,
            "operand": self.operand.to_dict(),
            "breaks": list(self.breaks),
        }
        if self.labels is not None:
            result["labels"] = list(self.labels)
        return result

    def describe(self) -> str:
        return f"bucketize({self.operand.describe()}, {list(self.breaks)})"


@dataclass(eq=False)
class MapLookup(Expr):
    """Replace each value by its entry in a lookup table."""

    kind: ClassVar[str] = "map"

    operand: Expr
    mapping: tuple[tuple[Any, Any], ...] = field(default_factory=tuple)
    default: Any = None

    def __post_init__(self) -> None:
        if not self.mapping:
            raise errors.InvalidTypeError("map_values requires a non-empty mapping")
        self._post_check()

    def children(self) -> tuple[Expr, ...]:
        return (self.operand,)

    @property
    def dtype(self) -> types_.DataType:
        inner = self.operand.dtype
        key_types = {Literal(key).dtype.kind for key, _ in self.mapping}
        compatible = all(
            kind == inner.kind or (inner.is_numeric and kind in (types_.TypeKind.INT64, types_.TypeKind.FLOAT64))
            for kind in key_types
        )
        if not compatible:
            raise errors.InvalidTypeError(
                f"Lookup keys {sorted(k.value for k in key_types)} do not match "
                f"operand type {inner} in {self.describe()}",
                field=_first_ref(self),
            )

        value_types = [Literal(value).dtype for _, value in self.mapping]
        result = value_types[0]
        for other in value_types[1:]:
            if result.is_numeric and other.is_numeric:
                result = types_.numeric_result(result, other)
            elif other.kind != result.kind:
                raise errors.InvalidTypeError(
                    f"Lookup values mix {result} and {other} in {self.describe()}",
                    field=_first_ref(self),
                )
        nullable = inner.nullable or self.default is None
        return types_.DataType(result.kind, nullable)

    def to_polars(self, columns: Mapping[str, str]) -> pl.Expr:
        return self.operand.to_polars(columns).replace_strict(
            dict(self.mapping),
            default=self.default,
            return_dtype=types_.to_polars(self.dtype),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "operand": self.operand.to_dict(),
            "mapping": [[key, value] for key, value in self.mapping],
            "default": self.default,
        }

    def describe(self) -> str:
        return f"map({self.operand.describe()})"


@dataclass(eq=False)
class FillNull(Expr):
    kind: ClassVar[str] = "fill_null"

    operand: Expr
    value: Expr

    def __post_init__(self) -> None:
        self._post_check()

    def children(self) -> tuple[Expr, ...]:
        return (self.operand, self.value)

    @property
    def dtype(self) -> types_.DataType:
        inner, fill = self.operand.dtype, self.value.dtype
        if inner.is_numeric and fill.is_numeric:
            return types_.numeric_result(inner, fill).as_required()
        if inner.kind != fill.kind:
            raise errors.InvalidTypeError(
                f"Cannot fill {inner} nulls with {fill} in {self.describe()}",
                field=_first_ref(self),
            )
        return inner.as_required()

    def to_polars(self, columns: Mapping[str, str]) -> pl.Expr:
        return self.operand.to_polars(columns).fill_null(self.value.to_polars(columns))

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "operand": self.operand.to_dict(), "value": self.value.to_dict()}

    def describe(self) -> str:
        return f"fill_null({self.operand.describe()}, {self.value.describe()})"


def _first_ref(expr: Expr) -> str | None:
    for ref in expr.references():
        return ref.qualified_name
    return None


# =============================================================================
# Serialization
# =============================================================================


def from_dict(data: Mapping[str, Any]) -> Expr:
    """
    Rebuild an expression from its dictionary form.

    Field references come back as unbound ``view:name`` pairs; the
    registry binds them to handles when the graph is built.

    Args:
        data: Output of ``Expr.to_dict()``

    Returns:
        Expression tree

    Raises:
        ValueError: If the node kind is unknown
    """
    kind = data.get("kind")

    match kind:
        case "literal":
            value = data["value"]
            if data.get("type") == "timestamp":
                value = datetime.fromisoformat(value)
            return Literal(value)
        case "field":
            view, _, name = str(data["ref"]).partition(":")
            if not name:
                raise ValueError(f"Field reference must be 'view:field', got '{data['ref']}'")
            return FieldRef(view=view, name=name)
        case "binary":
            return BinaryOp(data["op"], from_dict(data["left"]), from_dict(data["right"]))
        case "unary":
            return UnaryOp(data["op"], from_dict(data["operand"]))
        case "cast":
            return Cast(from_dict(data["operand"]), types_.parse_type(data["to"]))
        case "string":
            return StringOp(data["op"], from_dict(data["operand"]), data.get("argument"))
        case "is_in":
            return IsIn(from_dict(data["operand"]), tuple(data["values"]))
        case "bucketize":
            labels = data.get("labels")
            return Bucketize(
                from_dict(data["operand"]),
                tuple(data["breaks"]),
                tuple(labels) if labels is not None else None,
            )
        case "map":
            return MapLookup(
                from_dict(data["operand"]),
                tuple((key, value) for key, value in data["mapping"]),
                data.get("default"),
            )
        case "fill_null":
            return FillNull(from_dict(data["operand"]), from_dict(data["value"]))
        case _:
            raise ValueError(f"Unknown expression kind: {kind!r}")


def ref(qualified_name: str) -> FieldRef:
    """
    Reference a field by ``view:name`` before its handle is available.

    Args:
        qualified_name: View name and field name separated by a colon

    Returns:
        Unbound field reference
    """
    view, _, name = qualified_name.partition(":")
    if not view or not name:
        raise ValueError(f"Expected 'view:field', got '{qualified_name}'")
    return FieldRef(view=view, name=name)
