import warnings
from datetime import timedelta

import pytest

from featureforge.constraints import upper_bound
from featureforge.errors import (
    CyclicDependencyError,
    DefinitionsLoadError,
    FeatureStoreError,
    NotFoundError,
    SchemaMismatchError,
    SourceUnavailableError,
    StalenessError,
    StalenessWarning,
    ValidationError,
)
from featureforge.validation import ConstraintViolation, RequiredFieldViolation


def test_error_with_message_only():
    # Given an error with just a message
    error = DefinitionsLoadError("Failed to load module")

    # When converting to string
    # Then it should be the message alone
    assert str(error) == "Failed to load module"


def test_error_with_cause():
    # Given an error with a cause
    cause = ValueError("Invalid configuration")
    error = DefinitionsLoadError("Failed to load", cause=cause)

    # When converting to string
    error_str = str(error)

    # Then it should include cause information
    assert "Failed to load" in error_str
    assert "Caused by: ValueError" in error_str
    assert "Invalid configuration" in error_str


def test_error_with_hint():
    error = DefinitionsLoadError("No definitions found", hint="Define a SchemaRegistry")

    assert "Hint: Define a SchemaRegistry" in str(error)


def test_every_error_is_a_feature_store_error():
    errors_ = [
        NotFoundError("view", "wine"),
        CyclicDependencyError(["a:x", "a:y"]),
        SchemaMismatchError("wine", "alcohol", "float64", "string"),
        SourceUnavailableError("warehouse", attempts=3),
        StalenessError("wine", "3d", "1d"),
    ]
    assert all(isinstance(e, FeatureStoreError) for e in errors_)


def test_not_found_lists_available_names():
    # Given an unknown name with alternatives
    error = NotFoundError("view", "wines", available=["wine", "beer"])

    # Then the alternatives are listed sorted
    assert "Unknown view: 'wines'" in str(error)
    assert "Available views: beer, wine" in str(error)


def test_cycle_message_closes_the_loop():
    error = CyclicDependencyError(["loop:a", "loop:b"])

    assert "loop:a -> loop:b -> loop:a" in str(error)
    assert error.cycle == ["loop:a", "loop:b"]


def test_source_unavailable_keeps_cause():
    cause = ConnectionError("refused")
    error = SourceUnavailableError("warehouse", attempts=3, cause=cause)

    assert error.cause is cause
    assert "after 3 attempt(s)" in str(error)


def test_validation_error_lists_every_violation():
    # Given two violations on different fields
    violations = [
        RequiredFieldViolation("wine", "alcohol", "alcohol", (4,)),
        ConstraintViolation("wine", "quality", "quality", (1, 2), constraint=upper_bound(10)),
    ]

    # When raising them together
    error = ValidationError(violations, request="wine")

    # Then the message names both
    message = str(error)
    assert "Validation failed for 'wine': 2 violation(s)" in message
    assert "wine.alcohol: 1 null value(s) in required field for [4]" in message
    assert "wine.quality: upper_bound(10) failed, 2 value(s) > 10 for [1, 2]" in message


def test_staleness_warning_is_a_user_warning():
    warning = StalenessWarning("wine", "2d", "1d")

    assert isinstance(warning, UserWarning)
    assert warning.view == "wine"
    with pytest.warns(StalenessWarning):
        warnings.warn(warning)


def test_staleness_error_names_the_view():
    error = StalenessError("sensors", "10d", timedelta(days=1))

    assert error.view == "sensors"
    assert str(error).startswith("View 'sensors' is stale")
