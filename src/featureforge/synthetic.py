"""
Synthetic rows for views and contracts.

Values come from a small strategy table keyed on each field's type. A
field's constraints narrow the strategy: bounds limit numeric ranges and
accepted_values replaces the strategy with a choice among the values.
Explicit overrides fill chosen columns with given values.

Example:
    df = ff.n_examples(Wine, 5, overrides={"alcohol": [11, 13, 15, 9, 14]}, seed=7)
"""

from __future__ import annotations

import json
import math
import random
import string as string_
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any

import polars as pl

import featureforge.constraints as constraints_
import featureforge.fields as fields_
import featureforge.types as types_
from featureforge.views import SchemaNode

DEFAULT_COUNT = 100

type Strategy = Callable[[random.Random, fields_.Field], Any]


def _int_bounds(f: fields_.Field) -> tuple[int, int]:
    lower, upper = -1000, 1000
    for c in f.constraints:
        if c.kind == "lower_bound":
            lower = max(lower, math.ceil(c.value) if c.inclusive else math.floor(c.value) + 1)
        elif c.kind == "upper_bound":
            upper = min(upper, math.floor(c.value) if c.inclusive else math.ceil(c.value) - 1)
    if lower == -1000 and upper == 1000:
        lower = 0
    return lower, max(lower, upper)


def _float_bounds(f: fields_.Field) -> tuple[float, float]:
    lower, upper = constraints_.bounds(f.constraints)
    if lower is None and upper is None:
        return 0.0, 1.0
    if lower is None:
        lower = upper - 1000.0
    if upper is None:
        upper = lower + 1000.0
    return float(lower), float(upper)


def _random_float(rng: random.Random, f: fields_.Field) -> float:
    lower, upper = _float_bounds(f)
    value = rng.uniform(lower, upper)
    # uniform() may return an endpoint; keep exclusive bounds strict
    while not all(c.accepts(value) for c in f.constraints):
        value = rng.uniform(lower, upper)
    return value


def _random_string(rng: random.Random, f: fields_.Field) -> str:
    return "".join(rng.choices(string_.ascii_lowercase, k=8))


def _random_timestamp(rng: random.Random, f: fields_.Field) -> datetime:
    now = datetime.now().replace(microsecond=0)
    return now - timedelta(seconds=rng.randint(0, 30 * 86400))


STRATEGIES: dict[types_.TypeKind, Strategy] = {
    types_.TypeKind.INT32: lambda rng, f: rng.randint(*_int_bounds(f)),
    types_.TypeKind.INT64: lambda rng, f: rng.randint(*_int_bounds(f)),
    types_.TypeKind.FLOAT32: _random_float,
    types_.TypeKind.FLOAT64: _random_float,
    types_.TypeKind.BOOL: lambda rng, f: rng.random() < 0.5,
    types_.TypeKind.STRING: _random_string,
    types_.TypeKind.TIMESTAMP: _random_timestamp,
    types_.TypeKind.BYTES: lambda rng, f: rng.randbytes(8),
    types_.TypeKind.JSON: lambda rng, f: json.dumps({"value": rng.randint(0, 100)}),
}


def random_value(rng: random.Random, f: fields_.Field) -> Any:
    """Draw one value respecting the field's type and constraints."""
    for c in f.constraints:
        if c.kind == "accepted_values":
            return rng.choice(list(c.value))
    return STRATEGIES[f.dtype.kind](rng, f)


def _key_values(node: SchemaNode, count: int) -> list[Any]:
    dtype = node.entity.dtype
    if dtype.is_integer:
        return list(range(count))
    if dtype.kind == types_.TypeKind.BYTES:
        return [f"{node.entity.name}_{i}".encode() for i in range(count)]
    return [f"{node.entity.name}_{i}" for i in range(count)]


def _infer_count(overrides: Mapping[str, Any]) -> int:
    lengths = {len(v) for v in overrides.values() if isinstance(v, Sequence) and not isinstance(v, str)}
    if len(lengths) > 1:
        raise ValueError(f"Override columns have different lengths: {sorted(lengths)}")
    return lengths.pop() if lengths else DEFAULT_COUNT


def n_examples(
    node: SchemaNode,
    count: int | None = None,
    overrides: Mapping[str, Any] | None = None,
    seed: int | None = None,
) -> pl.DataFrame:
    """
    Generate rows matching a view's or contract's raw schema.

    Args:
        node: View or contract to generate rows for
        count: Number of rows. Inferred from list overrides when omitted.
        overrides: Column values to use instead of random ones. A list
            gives one value per row, a scalar repeats for every row.
        seed: Seed for reproducible rows

    Returns:
        Frame with the entity key, event timestamp and raw fields, typed
        with the declared Polars dtypes

    Raises:
        ValueError: If an override names an unknown column or has the wrong length
    """
    overrides = dict(overrides or {})
    if count is None:
        count = _infer_count(overrides)

    raw = [f for f in node if not f.is_derived]
    known = {f.name for f in raw}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValueError(f"Unknown override column(s) for '{node.name}': {unknown}")

    rng = random.Random(seed)
    columns: list[pl.Series] = []

    for f in raw:
        name = f.name or ""
        if name in overrides:
            value = overrides[name]
            values = list(value) if isinstance(value, Sequence) and not isinstance(value, (str, bytes)) else [value] * count
            if len(values) != count:
                raise ValueError(f"Override '{name}' has {len(values)} values, expected {count}")
        elif isinstance(f, fields_.EntityKey):
            values = _key_values(node, count)
        else:
            values = [random_value(rng, f) for _ in range(count)]

        columns.append(pl.Series(name, values, dtype=f.dtype.to_polars(), strict=False))

    return pl.DataFrame(columns)
