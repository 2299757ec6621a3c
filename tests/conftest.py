"""Shared test fixtures for featureforge tests."""

import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import polars as pl
import pytest

import featureforge as ff


@pytest.fixture
def temp_dir():
    """Temporary directory that's cleaned up after test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def wine_id():
    return ff.Entity(name="wine_id", dtype=ff.int64)


@pytest.fixture
def wine_frame():
    """Latest wine measurements, one row per wine."""
    return pl.DataFrame(
        {
            "wine_id": [1, 2, 3],
            "alcohol": [9.5, 12.5, 14.0],
            "color": ["red", "white", "red"],
            "quality": [5, 6, 7],
        },
        schema={
            "wine_id": pl.Int64,
            "alcohol": pl.Float64,
            "color": pl.Utf8,
            "quality": pl.Int64,
        },
    )


@pytest.fixture
def wine_view(wine_id, wine_frame):
    """Untimed wine view with a derived field."""

    @ff.feature_view(
        name="wine",
        entity=wine_id,
        batch_source=ff.InMemorySource(wine_frame, name="wine_batch"),
        tags=["wine"],
    )
    class Wine:
        alcohol = ff.Field(ff.float64, constraints=[ff.lower_bound(0), ff.upper_bound(20)])
        color = ff.Field(ff.string, constraints=[ff.accepted_values(["red", "white"])])
        quality = ff.Field(ff.int64, constraints=[ff.lower_bound(0), ff.upper_bound(10)])
        is_strong = ff.derived(alcohol > 12)

    return Wine


@pytest.fixture
def quality_model(wine_view):
    """Contract predicting wine quality from alcohol."""
    return ff.ModelContract(
        name="wine_quality",
        features=[wine_view.alcohol],
        outputs=[
            ff.classification_label(
                ff.Field(ff.int64, name="predicted_quality"),
                ground_truth=wine_view.quality,
            ),
            ff.model_version(ff.Field(ff.string, name="model_version")),
        ],
        event_timestamp="predicted_at",
        prediction_source=ff.InMemorySource(name="predictions"),
        dataset_store=ff.InMemorySource(name="datasets"),
    )


@pytest.fixture
def wine_registry(wine_view, quality_model):
    return ff.SchemaRegistry(nodes=[wine_view, quality_model], name="wine")


@pytest.fixture
def wine_store(wine_registry):
    return ff.FeatureStore(wine_registry)


@pytest.fixture
def customer_id():
    return ff.Entity(name="customer_id", dtype=ff.string)


@pytest.fixture
def balance_history():
    """Account balances recorded at several points in time."""
    return pl.DataFrame(
        {
            "customer_id": ["alice", "alice", "alice", "bob"],
            "balance": [100.0, 250.0, 400.0, 75.0],
            "recorded_at": [
                datetime(2024, 1, 1),
                datetime(2024, 1, 15),
                datetime(2024, 2, 1),
                datetime(2024, 1, 10),
            ],
        }
    )


@pytest.fixture
def balance_view(customer_id, balance_history):
    """Timed view over balance history."""

    @ff.feature_view(
        name="balances",
        entity=customer_id,
        batch_source=ff.InMemorySource(balance_history, name="balances_batch"),
    )
    class Balances:
        recorded_at = ff.EventTimestamp()
        balance = ff.Field(ff.float64)

    return Balances


@pytest.fixture
def balance_store(balance_view):
    return ff.FeatureStore([balance_view], staleness="ignore")


@pytest.fixture
def recent():
    """A timestamp well within any freshness threshold used in tests."""
    return datetime.now().replace(microsecond=0) - timedelta(hours=1)
