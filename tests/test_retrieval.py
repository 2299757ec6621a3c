import asyncio
import threading
from datetime import datetime, timedelta, timezone

import polars as pl
import pytest

import featureforge as ff
from featureforge.errors import (
    CancelledError,
    SchemaMismatchError,
    StalenessError,
    StalenessWarning,
    ValidationError,
)


@pytest.fixture
def trip():
    return ff.Entity(name="trip_id", dtype=ff.string)


@pytest.fixture
def taxi_views(trip):
    """Departure and arrival views with a cross-view derived distance."""
    departures_source = ff.InMemorySource(
        {"trip_id": ["t1", "t2"], "latitude": [0.0, 1.0], "longitude": [0.0, 1.0]},
        name="departures",
    )
    arrivals_source = ff.InMemorySource(
        {"trip_id": ["t1", "t2"], "latitude": [3.0, 1.0], "longitude": [4.0, 2.0]},
        name="arrivals",
    )

    @ff.feature_view(entity=trip, batch_source=departures_source)
    class Departures:
        latitude = ff.Field(ff.float64)
        longitude = ff.Field(ff.float64)

    @ff.feature_view(entity=trip, batch_source=arrivals_source)
    class Arrivals:
        latitude = ff.Field(ff.float64)
        longitude = ff.Field(ff.float64)
        travel_distance = ff.derived(
            ((Departures.latitude - latitude) ** 2 + (Departures.longitude - longitude) ** 2).sqrt()
        )

    return Departures, Arrivals


class SlowSource(ff.InMemorySource):
    """In-memory source whose reads never finish on their own."""

    async def fetch_by_entities(self, entities, fields):
        await asyncio.sleep(10)
        return await super().fetch_by_entities(entities, fields)


# =============================================================================
# Entity-only requests
# =============================================================================


def test_scenario_a_contract_features_return_only_inputs(wine_store, quality_model):
    # Given a contract whose only input is wine:alcohol
    # When requesting its features for three wines
    df = wine_store.features_for(quality_model, {"wine_id": [1, 2, 3]}).collect()

    # Then only the entity key and the input should be returned
    assert df.columns == ["wine_id", "alcohol"]
    assert df.get_column("alcohol").to_list() == [9.5, 12.5, 14.0]


def test_view_request_defaults_to_every_feature(wine_store):
    df = wine_store.features_for("wine", {"wine_id": [3, 1]}).collect()

    assert df.columns == ["wine_id", "alcohol", "color", "quality", "is_strong"]
    assert df.to_dicts() == [
        {"wine_id": 3, "alcohol": 14.0, "color": "red", "quality": 7, "is_strong": True},
        {"wine_id": 1, "alcohol": 9.5, "color": "red", "quality": 5, "is_strong": False},
    ]


def test_derived_field_alone_reads_its_inputs(wine_store, wine_view):
    # Given a request for the derived field only
    job = wine_store.features_for("wine", {"wine_id": [1, 2]}, fields=[wine_view.is_strong])

    # When planning and collecting
    plan = job.plan()
    df = job.collect()

    # Then the raw input is read but not returned
    assert [(s.kind, s.fields) for s in plan.steps] == [
        ("read", ("alcohol",)),
        ("derive", ("is_strong",)),
    ]
    assert df.columns == ["wine_id", "is_strong"]
    assert df.get_column("is_strong").to_list() == [False, True]


def test_scenario_b_cross_view_derived_field(taxi_views):
    # Given a derived distance that reads both departure and arrival coordinates
    departures, arrivals = taxi_views
    store = ff.FeatureStore([departures, arrivals])

    # When requesting it alone
    df = store.features_for(
        arrivals, {"trip_id": ["t2", "t1"]}, fields=["travel_distance"]
    ).collect()

    # Then both views are read, colliding names kept apart, and only the distance returned
    assert df.columns == ["trip_id", "travel_distance"]
    assert df.get_column("travel_distance").to_list() == pytest.approx([1.0, 5.0])


def test_unmatched_entities_are_dropped_by_default(wine_store):
    # Given a request for an unknown wine
    # When collecting
    df = wine_store.features_for("wine", {"wine_id": [1, 99, 2]}).collect()

    # Then the unmatched row is dropped and order is kept
    assert df.get_column("wine_id").to_list() == [1, 2]


def test_unmatched_entities_kept_surface_as_violations(wine_store):
    # Given on_missing="keep"
    job = wine_store.features_for("wine", {"wine_id": [1, 99]}, on_missing="keep")

    # When collecting without diagnostics
    # Then the null required fields fail validation
    with pytest.raises(ValidationError) as exc_info:
        job.collect()

    fields = {v.field for v in exc_info.value.violations}
    assert {"alcohol", "color", "quality"} <= fields
    assert all(v.entity_ids == (99,) for v in exc_info.value.violations)


def test_diagnostics_returns_data_with_report(wine_store):
    # Given a source with an out-of-range alcohol value
    bad = ff.InMemorySource(
        {
            "wine_id": [1, 2],
            "alcohol": [25.0, 11.0],
            "color": ["red", "rose"],
            "quality": [5, 6],
        }
    )
    store = wine_store.with_source("wine", bad)

    # When collecting with diagnostics
    result = store.features_for("wine", {"wine_id": [1, 2]}).with_diagnostics().result()

    # Then every violation is reported together with the data
    assert result.to_polars().height == 2
    assert not result.passed
    assert [(v.field, v.kind, v.entity_ids) for v in result.report.violations] == [
        ("alcohol", "constraint", (1,)),
        ("color", "constraint", (2,)),
    ]


def test_validation_error_lists_all_violations(wine_store):
    bad = ff.InMemorySource(
        {
            "wine_id": [1, 2],
            "alcohol": [25.0, 11.0],
            "color": ["red", "rose"],
            "quality": [5, 60],
        }
    )
    store = wine_store.with_source("wine", bad)

    with pytest.raises(ValidationError, match="3 violation"):
        store.features_for("wine", {"wine_id": [1, 2]}).collect()


def test_wrong_source_type_raises_schema_mismatch(wine_store):
    # Given a source returning alcohol as strings
    bad = ff.InMemorySource(
        {"wine_id": [1], "alcohol": ["strong"], "color": ["red"], "quality": [5]}
    )
    store = wine_store.with_source("wine", bad)

    # When collecting
    # Then the mismatch names the field and both types
    with pytest.raises(SchemaMismatchError, match="wine.alcohol"):
        store.features_for("wine", {"wine_id": [1]}).collect()


def test_narrower_source_types_are_widened(wine_store):
    narrow = ff.InMemorySource(
        pl.DataFrame(
            {"wine_id": [1], "alcohol": [11.0], "color": ["red"], "quality": [5]},
            schema={"wine_id": pl.Int32, "alcohol": pl.Float32, "color": pl.Utf8, "quality": pl.Int32},
        )
    )
    store = wine_store.with_source("wine", narrow)

    df = store.features_for("wine", {"wine_id": [1]}).collect()

    assert df.schema["alcohol"] == pl.Float64
    assert df.schema["quality"] == pl.Int64


def test_results_are_deterministic(wine_store):
    # Given the same request twice
    entities = {"wine_id": [2, 3, 1]}

    # When collecting both
    first = wine_store.features_for("wine", entities).collect()
    second = wine_store.features_for("wine", entities).collect()

    # Then the tables are identical
    assert first.equals(second)


class DelayedSource(ff.InMemorySource):
    """In-memory source that records when each read finishes."""

    def __init__(self, df, delay, finished, name="memory"):
        super().__init__(df, name=name)
        self.delay = delay
        self.finished = finished

    async def fetch_by_entities(self, entities, fields):
        await asyncio.sleep(self.delay)
        rows = await super().fetch_by_entities(entities, fields)
        self.finished.append(self.name)
        return rows


def test_output_follows_request_order_when_reads_finish_out_of_order():
    # Given a contract whose first input view answers after the second
    item = ff.Entity(name="item_id", dtype=ff.int64)
    finished = []

    @ff.feature_view(
        entity=item,
        batch_source=DelayedSource(
            {"item_id": [1, 2, 3], "price": [10, 20, 30]}, 0.05, finished, name="prices"
        ),
    )
    class Prices:
        price = ff.Field(ff.int64)

    @ff.feature_view(
        entity=item,
        batch_source=DelayedSource(
            {"item_id": [3, 1, 2], "stock": [300, 100, 200]}, 0.0, finished, name="stock"
        ),
    )
    class Stock:
        stock = ff.Field(ff.int64)

    contract = ff.ModelContract(
        name="restock",
        features=[Prices.price, Stock.stock],
        outputs=[ff.model_version(ff.Field(ff.string, name="model_version"))],
    )
    store = ff.FeatureStore([Prices, Stock, contract])

    # When requesting keys in a non-sorted order
    df = store.features_for(contract, {"item_id": [2, 3, 1]}).collect()

    # Then rows come back in request order with matching values
    assert finished == ["stock", "prices"]
    assert df.get_column("item_id").to_list() == [2, 3, 1]
    assert df.get_column("price").to_list() == [20, 30, 10]
    assert df.get_column("stock").to_list() == [200, 300, 100]


# =============================================================================
# Point-in-time requests
# =============================================================================


def test_point_in_time_never_reads_future_rows(balance_store):
    # Given requests anchored between balance updates
    requests = pl.DataFrame(
        {
            "customer_id": ["alice", "alice", "alice"],
            "as_of": [datetime(2024, 1, 20), datetime(2024, 1, 1), datetime(2024, 3, 1)],
        }
    )

    # When retrieving as of each anchor
    df = balance_store.features_for("balances", requests, timestamp_column="as_of").collect()

    # Then each row sees the latest balance at or before its anchor, in request order
    assert df.columns == ["customer_id", "as_of", "balance"]
    assert df.get_column("balance").to_list() == [250.0, 100.0, 400.0]


def test_point_in_time_drops_rows_before_first_observation(balance_store):
    requests = {
        "customer_id": ["bob", "bob"],
        "as_of": [datetime(2024, 1, 5), datetime(2024, 1, 11)],
    }

    df = balance_store.features_for("balances", requests, timestamp_column="as_of").collect()

    assert df.get_column("as_of").to_list() == [datetime(2024, 1, 11)]
    assert df.get_column("balance").to_list() == [75.0]


def test_point_in_time_accepts_string_anchors(balance_store):
    requests = {"customer_id": ["alice"], "as_of": ["2024-01-16 00:00:00"]}

    df = balance_store.features_for("balances", requests, timestamp_column="as_of").collect()

    assert df.get_column("balance").to_list() == [250.0]


def test_missing_anchor_column_raises(balance_store):
    with pytest.raises(ff.FeatureStoreError, match="Timestamp column 'as_of'"):
        balance_store.features_for(
            "balances", {"customer_id": ["alice"]}, timestamp_column="as_of"
        ).collect()


def test_untimed_view_joins_latest_values_in_point_in_time_request(wine_store):
    # Given a point-in-time request against a view without event timestamps
    requests = {"wine_id": [1, 2], "as_of": [datetime(2024, 1, 1), datetime(2024, 2, 1)]}

    # When collecting
    df = wine_store.features_for(
        "wine", requests, timestamp_column="as_of", fields=["alcohol"]
    ).collect()

    # Then the latest values are used
    assert df.get_column("alcohol").to_list() == [9.5, 12.5]


# =============================================================================
# Freshness
# =============================================================================


@pytest.fixture
def sensor_id():
    return ff.Entity(name="sensor_id", dtype=ff.int64)


def _readings(at: datetime) -> ff.InMemorySource:
    return ff.InMemorySource(
        {"sensor_id": [1, 2], "read_at": [at, at], "temperature": [20.5, 21.0]},
        name="readings",
    )


def _sensor_view(entity, source, **kwargs):
    return ff.FeatureView(
        name="sensors",
        entity=entity,
        fields=[ff.Field(ff.float64, name="temperature")],
        event_timestamp="read_at",
        batch_source=source,
        **kwargs,
    )


def test_scenario_c_unacceptable_staleness_raises(sensor_id):
    # Given a view whose newest row is ten days old and a one day limit
    view = _sensor_view(
        sensor_id,
        _readings(datetime.now() - timedelta(days=10)),
        unacceptable_freshness="1d",
    )
    store = ff.FeatureStore([view], staleness="ignore")

    # When requesting latest values
    # Then the request fails naming the view, whatever the policy
    with pytest.raises(StalenessError, match="View 'sensors' is stale") as exc_info:
        store.features_for("sensors", {"sensor_id": [1]}).collect()

    assert exc_info.value.view == "sensors"


def test_acceptable_staleness_warns_by_default(sensor_id):
    view = _sensor_view(
        sensor_id,
        _readings(datetime.now() - timedelta(days=2)),
        acceptable_freshness="1d",
        unacceptable_freshness="7d",
    )
    store = ff.FeatureStore([view])

    with pytest.warns(StalenessWarning, match="sensors"):
        df = store.features_for("sensors", {"sensor_id": [1]}).collect()

    assert df.height == 1


def test_acceptable_staleness_raises_under_raise_policy(sensor_id):
    view = _sensor_view(
        sensor_id,
        _readings(datetime.now() - timedelta(days=2)),
        acceptable_freshness="1d",
    )
    store = ff.FeatureStore([view], staleness="raise")

    with pytest.raises(StalenessError):
        store.features_for("sensors", {"sensor_id": [1]}).collect()


def test_point_in_time_age_is_measured_from_anchor(sensor_id):
    # Given old data but anchors just after it
    at = datetime(2023, 6, 1)
    view = _sensor_view(sensor_id, _readings(at), unacceptable_freshness="1d")
    store = ff.FeatureStore([view])

    # When requesting as of an hour later
    df = store.features_for(
        "sensors",
        {"sensor_id": [1, 2], "as_of": [at + timedelta(hours=1)] * 2},
        timestamp_column="as_of",
    ).collect()

    # Then the rows are fresh relative to their anchors
    assert df.get_column("temperature").to_list() == [20.5, 21.0]


def test_fresh_materialized_source_is_preferred(sensor_id, recent):
    # Given a fresh materialized cache and an older batch source
    cache = ff.InMemorySource(
        {"sensor_id": [1], "read_at": [recent], "temperature": [30.0]}, name="cache"
    )
    view = _sensor_view(
        sensor_id,
        _readings(recent - timedelta(days=3)),
        materialized_source=cache,
        acceptable_freshness="1d",
    )
    store = ff.FeatureStore([view], staleness="ignore")

    # When requesting latest values
    df = store.features_for("sensors", {"sensor_id": [1]}).collect()

    # Then the cache answers
    assert df.get_column("temperature").to_list() == [30.0]


def test_stale_materialized_source_falls_back_to_batch(sensor_id, recent):
    cache = ff.InMemorySource(
        {"sensor_id": [1], "read_at": [recent - timedelta(days=5)], "temperature": [30.0]},
        name="cache",
    )
    view = _sensor_view(
        sensor_id,
        _readings(recent),
        materialized_source=cache,
        acceptable_freshness="1d",
    )
    store = ff.FeatureStore([view])

    df = store.features_for("sensors", {"sensor_id": [1]}).collect()

    assert df.get_column("temperature").to_list() == [20.5]


def test_online_request_reads_stream_source(sensor_id, recent):
    # Given a stream source holding newer values
    stream = ff.InMemorySource(
        {"sensor_id": [1], "read_at": [recent], "temperature": [99.0]}, name="stream"
    )
    view = _sensor_view(sensor_id, _readings(recent), stream_source=stream)
    store = ff.FeatureStore([view])

    # When requesting online and offline
    online = store.features_for("sensors", {"sensor_id": [1]}, online=True).collect()
    offline = store.features_for("sensors", {"sensor_id": [1]}).collect()

    # Then only the online request reads the stream
    assert online.get_column("temperature").to_list() == [99.0]
    assert offline.get_column("temperature").to_list() == [20.5]


def test_point_in_time_accepts_timezone_aware_anchors(balance_store):
    # Given a UTC anchor against naive event timestamps
    requests = {"customer_id": ["alice"], "as_of": [datetime(2024, 1, 20, tzinfo=timezone.utc)]}

    # When retrieving
    df = balance_store.features_for("balances", requests, timestamp_column="as_of").collect()

    # Then the anchor is compared as naive UTC
    assert df.get_column("balance").to_list() == [250.0]
    assert df.get_column("as_of").to_list() == [datetime(2024, 1, 20)]


def test_timezone_aware_event_timestamps_are_read_as_utc(sensor_id):
    # Given a source storing UTC event timestamps
    source = ff.InMemorySource(
        {
            "sensor_id": [1, 1],
            "read_at": [
                datetime(2024, 1, 1, tzinfo=timezone.utc),
                datetime(2024, 1, 3, tzinfo=timezone.utc),
            ],
            "temperature": [20.5, 25.0],
        },
        name="readings",
    )
    store = ff.FeatureStore([_sensor_view(sensor_id, source)], staleness="ignore")

    # When anchoring between the two readings with a naive timestamp
    df = store.features_for(
        "sensors", {"sensor_id": [1], "as_of": [datetime(2024, 1, 2)]}, timestamp_column="as_of"
    ).collect()

    # Then only the earlier reading is visible
    assert df.get_column("temperature").to_list() == [20.5]


class IncomparableSource(ff.InMemorySource):
    """Source whose range reads fail on timestamp comparison."""

    async def fetch_range(self, entities, fields, timestamp_column, start=None, end=None):
        raise pl.exceptions.SchemaError("could not evaluate '<=' comparison")


def test_incomparable_timestamps_raise_schema_mismatch(sensor_id):
    store = ff.FeatureStore([_sensor_view(sensor_id, IncomparableSource(name="readings"))])

    with pytest.raises(SchemaMismatchError, match="sensors.read_at") as exc_info:
        store.features_for(
            "sensors", {"sensor_id": [1], "as_of": [datetime(2024, 1, 2)]}, timestamp_column="as_of"
        ).collect()

    assert exc_info.value.view == "sensors"


def test_point_in_time_age_follows_newest_observation(sensor_id):
    # Given one sensor read an hour before the anchor and one a year before
    source = ff.InMemorySource(
        {
            "sensor_id": [1, 2],
            "read_at": [datetime(2024, 1, 1), datetime(2023, 1, 1)],
            "temperature": [20.5, 18.0],
        },
        name="readings",
    )
    view = _sensor_view(sensor_id, source, unacceptable_freshness="30d")
    store = ff.FeatureStore([view])
    anchor = datetime(2024, 1, 1, 1)

    # When requesting both sensors at the same anchor
    df = store.features_for(
        "sensors", {"sensor_id": [1, 2], "as_of": [anchor, anchor]}, timestamp_column="as_of"
    ).collect()

    # Then the sparse sensor does not make the view stale
    assert df.get_column("temperature").to_list() == [20.5, 18.0]


def test_latest_row_ties_keep_the_last_source_row(sensor_id, recent):
    # Given two readings of one sensor at the same instant
    source = ff.InMemorySource(
        {"sensor_id": [1, 1], "read_at": [recent, recent], "temperature": [20.0, 22.0]},
        name="readings",
    )
    store = ff.FeatureStore([_sensor_view(sensor_id, source)], staleness="ignore")

    # When requesting latest values repeatedly
    values = [
        store.features_for("sensors", {"sensor_id": [1]}).collect().get_column("temperature").to_list()
        for _ in range(5)
    ]

    # Then the row written last always wins
    assert values == [[22.0]] * 5


# =============================================================================
# Cancellation
# =============================================================================


def test_cancelled_token_stops_request_before_reading(wine_store):
    token = ff.CancellationToken()
    token.cancel()

    with pytest.raises(CancelledError, match="wine"):
        wine_store.features_for("wine", {"wine_id": [1]}, token=token).collect()


def test_cancel_abandons_in_flight_reads(wine_store, wine_frame):
    # Given a source whose reads hang
    store = wine_store.with_source("wine", SlowSource(wine_frame))
    token = ff.CancellationToken()
    job = store.features_for("wine", {"wine_id": [1]}, token=token)

    # When cancelling from another thread while the read is pending
    timer = threading.Timer(0.05, token.cancel)
    timer.start()

    # Then the request raises promptly
    try:
        with pytest.raises(CancelledError):
            job.collect()
    finally:
        timer.cancel()


def test_async_execute_runs_in_caller_loop(wine_store):
    async def run():
        return await wine_store.features_for("wine", {"wine_id": [2]}).to_polars()

    df = asyncio.run(run())

    assert df.get_column("alcohol").to_list() == [12.5]
