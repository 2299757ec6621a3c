import polars as pl
import pytest

import featureforge as ff
import featureforge.types as types_

# =============================================================================
# Widening
# =============================================================================


@pytest.mark.parametrize(
    "source,target",
    [
        (ff.int32, ff.int64),
        (ff.int32, ff.float64),
        (ff.int64, ff.float64),
        (ff.float32, ff.float64),
    ],
)
def test_numeric_widening_is_allowed(source, target):
    # Given a narrower numeric type
    # When checking widening to a wider type
    # Then it should be allowed
    assert source.can_widen_to(target)


@pytest.mark.parametrize(
    "source,target",
    [
        (ff.int64, ff.int32),
        (ff.float64, ff.int64),
        (ff.string, ff.int64),
        (ff.boolean, ff.int32),
    ],
)
def test_narrowing_and_cross_kind_are_rejected(source, target):
    # Given two incompatible types
    # When checking widening
    # Then it should be refused
    assert not source.can_widen_to(target)


def test_optional_wraps_type():
    # Given a required type
    # When wrapping it as optional
    wrapped = ff.optional(ff.string)

    # Then it should be nullable with the same kind
    assert wrapped.nullable
    assert wrapped.kind == types_.TypeKind.STRING
    assert str(wrapped) == "optional[string]"


# =============================================================================
# Parsing and Polars conversion
# =============================================================================


def test_parse_type_round_trips_to_string():
    # Given serialized types
    # When parsing them
    # Then they should render back the same way
    assert types_.parse_type("float64").to_string() == "float64"
    assert types_.parse_type("optional[int32]").to_string() == "optional[int32]"


def test_parse_type_accepts_aliases():
    assert types_.parse_type("int") == ff.int64
    assert types_.parse_type("datetime") == ff.timestamp


def test_parse_type_rejects_unknown_names():
    # Given an unknown type name
    # When parsing it
    # Then a ValueError should list the valid kinds
    with pytest.raises(ValueError, match="Unknown type"):
        types_.parse_type("decimal")


def test_json_travels_as_string():
    assert ff.json.to_polars() == pl.Utf8


@pytest.mark.parametrize(
    "dtype,expected",
    [
        (pl.Int16, ff.int32),
        (pl.Int64, ff.int64),
        (pl.Float32, ff.float32),
        (pl.Utf8, ff.string),
        (pl.Datetime("ms"), ff.timestamp),
        (pl.Date, ff.timestamp),
        (pl.Binary, ff.bytes_),
    ],
)
def test_from_polars_maps_observed_dtypes(dtype, expected):
    assert types_.from_polars(dtype) == expected


def test_from_polars_returns_none_for_unsupported_dtype():
    assert types_.from_polars(pl.List(pl.Int64)) is None
    assert types_.from_polars(pl.Null) is None


def test_numeric_result_picks_wider_type():
    # Given mixed numeric operands
    result = types_.numeric_result(ff.int32, ff.optional(ff.float64))

    # Then the result should be the wider, nullable type
    assert result == ff.optional(ff.float64)
