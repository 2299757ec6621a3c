"""
Feature store query surface.

``FeatureStore`` ties the registry, resolver and join engine together and
hands out lazy retrieval jobs. Nothing is read until a job is executed.

Example:
    store = ff.FeatureStore([Wine, quality_model])

    df = store.features_for(quality_model, {"wine_id": [1, 2, 3]}).collect()

    dataset = (
        store.features_for(quality_model, requests, timestamp_column="as_of")
        .with_labels()
        .train_test_validate(train=0.7, test=0.2, validate=0.1)
        .collect()
    )
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Mapping, Sequence
from pathlib import Path
from types import ModuleType
from typing import Any, Literal

import polars as pl
from loguru import logger

import featureforge.errors as errors
import featureforge.fields as fields_
import featureforge.splits as splits
from featureforge.contracts import ModelContract
from featureforge.engine import CancellationToken, MissingPolicy, PointInTimeJoinEngine, RequestOptions
from featureforge.freshness import StalenessPolicy
from featureforge.registry import SchemaRegistry
from featureforge.resolver import DependencyResolver, FieldSpec, Plan
from featureforge.results import DatasetSplits, RetrievalResult
from featureforge.sources.base import SourceAdapter
from featureforge.sources.random import RandomDataSource
from featureforge.views import FeatureView, SchemaNode

type EntityRows = pl.DataFrame | Mapping[str, Sequence[Any]] | Sequence[Mapping[str, Any]]
type ValidationMode = Literal["raise", "diagnostics"]

PREDICTION_ROW = "__prediction_row"
EVENT_TIME = "__event_time"


def _as_frame(entities: EntityRows) -> pl.DataFrame:
    if isinstance(entities, pl.DataFrame):
        return entities
    return pl.DataFrame(entities)


class FeatureStore:
    """
    Entry point for reading and writing features.

    Attributes:
        registry: Schema registry
        staleness: Default policy between acceptable and unacceptable freshness
        on_missing: Default handling of rows with no match in a required view
        validation: "raise" to fail on violations, "diagnostics" to return
            them with the data

    Example:
        store = ff.FeatureStore([Wine], staleness="raise")
        store.write(Wine, new_rows)
    """

    def __init__(
        self,
        registry: SchemaRegistry | Sequence[SchemaNode | ModuleType] = (),
        staleness: StalenessPolicy = "warn",
        on_missing: MissingPolicy = "drop",
        validation: ValidationMode = "raise",
        name: str = "default",
    ) -> None:
        if not isinstance(registry, SchemaRegistry):
            registry = SchemaRegistry(nodes=registry, name=name)
        self.registry = registry
        self.staleness = staleness
        self.on_missing = on_missing
        self.validation = validation
        self.resolver = DependencyResolver(registry)
        self.engine = PointInTimeJoinEngine(registry)

    @classmethod
    def from_profile(
        cls,
        name: str | None = None,
        config_path: Path | None = None,
    ) -> FeatureStore:
        """
        Build a store from a featureforge.yaml profile.

        The profile's schema document is loaded with the profile's retry
        settings applied to every source that does not declare its own.

        Raises:
            ProfileError: If the profile is missing or has no schema
        """
        import featureforge.document as document
        import featureforge.profiles as profiles

        profile = profiles.load_profile(name, config_path)
        if profile.schema_ is None:
            raise errors.ProfileError(
                "Profile has no schema document",
                hint="Add 'schema: path/to/schema.yaml' to the profile.",
            )

        schema_path = Path(profile.schema_)
        if not schema_path.is_absolute():
            base = (config_path or Path(profiles.CONFIG_FILENAME)).resolve().parent
            schema_path = base / schema_path

        registry = document.load_registry(schema_path, retry=profile.retry)
        logger.debug(f"Loaded store '{registry.name}' from {schema_path}")
        return cls(
            registry,
            staleness=profile.staleness,
            on_missing=profile.on_missing,
            validation=profile.validation,
        )

    # -------------------------------------------------------------------------
    # Schema access
    # -------------------------------------------------------------------------

    def feature_view(self, name: str) -> FeatureView:
        return self.registry.view(name)

    def model(self, name: str) -> ModelContract:
        return self.registry.contract(name)

    def plan(self, target: str | SchemaNode, fields: Sequence[FieldSpec] | None = None) -> Plan:
        """Resolve the evaluation plan of a request without reading data."""
        return self.resolver.plan(target, fields)

    # -------------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------------

    def _options(
        self,
        timestamp_column: str | None,
        online: bool,
        on_missing: MissingPolicy | None,
    ) -> RequestOptions:
        return RequestOptions(
            timestamp_column=timestamp_column,
            online=online,
            on_missing=on_missing or self.on_missing,
            staleness=self.staleness,
            diagnostics=self.validation == "diagnostics",
        )

    def features_for(
        self,
        target: str | SchemaNode,
        entities: EntityRows,
        timestamp_column: str | None = None,
        fields: Sequence[FieldSpec] | None = None,
        online: bool = False,
        on_missing: MissingPolicy | None = None,
        token: CancellationToken | None = None,
    ) -> RetrievalJob:
        """
        Request feature values for entities.

        Args:
            target: Feature view or model contract
            entities: Request rows holding the entity key column, plus the
                anchor timestamp column for point-in-time requests
            timestamp_column: Anchor column. Each row gets the latest
                values at or before its anchor. None for latest values.
            fields: Subset of fields. Defaults to the view's features or
                the contract's inputs.
            online: Prefer stream sources
            on_missing: Override the store's missing row policy
            token: Cancellation token for the request

        Returns:
            Lazy job

        Example:
            job = store.features_for("wine", {"wine_id": [1, 2]})
            df = job.collect()
        """
        node = self.registry.resolve(target)
        return RetrievalJob(
            store=self,
            target=node,
            entities=_as_frame(entities),
            fields=fields,
            options=self._options(timestamp_column, online, on_missing),
            token=token,
        )

    def predictions_for(
        self,
        contract: str | ModelContract,
        entities: EntityRows,
        timestamp_column: str | None = None,
        token: CancellationToken | None = None,
    ) -> RetrievalJob:
        """
        Read stored predictions of a model contract.

        Returns every output of the contract, plus its event timestamp
        when it declares one.
        """
        node = self.registry.resolve(contract)
        if not isinstance(node, ModelContract):
            raise errors.FeatureStoreError(
                f"'{node.name}' is a feature view, predictions need a model contract"
            )
        fields: list[FieldSpec] = [o.field for o in node.outputs]
        if node.event_timestamp is not None:
            fields.append(node.event_timestamp)
        return RetrievalJob(
            store=self,
            target=node,
            entities=_as_frame(entities),
            fields=fields,
            options=self._options(timestamp_column, False, None),
            token=token,
            predictions=True,
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def write_async(self, target: str | SchemaNode, rows: EntityRows) -> int:
        return await self.engine.write(target, _as_frame(rows))

    def write(self, target: str | SchemaNode, rows: EntityRows) -> int:
        """
        Validate rows and upsert them into a view's materialized source.

        Rows are keyed by entity key and event timestamp; writing the same
        rows again leaves the source unchanged.

        Returns:
            Number of rows written
        """
        return asyncio.run(self.write_async(target, rows))

    # -------------------------------------------------------------------------
    # Source swaps
    # -------------------------------------------------------------------------

    def update_source_for(self, target: str | SchemaNode, adapter: SourceAdapter) -> None:
        """Read and write ``target`` through ``adapter`` from now on."""
        self.registry.update_source_for(target, adapter)

    def with_source(self, target: str | SchemaNode, adapter: SourceAdapter) -> FeatureStore:
        """Return a store reading ``target`` from ``adapter``, leaving this one untouched."""
        return FeatureStore(
            self.registry.with_source(target, adapter),
            staleness=self.staleness,
            on_missing=self.on_missing,
            validation=self.validation,
        )

    def with_random_source(
        self,
        target: str | SchemaNode,
        overrides: Mapping[str, Any] | None = None,
        count: int | None = None,
        seed: int | None = None,
    ) -> FeatureStore:
        """
        Return a store serving synthetic rows for a view.

        Args:
            target: View or contract to replace
            overrides: Column values to use instead of random ones, either
                a constant or a list with one value per row
            count: Number of rows. Defaults to the override list length, or 100.
            seed: Random seed

        Example:
            store = store.with_random_source(Wine, overrides={"wine_id": [1, 2], "alcohol": [9.5, 14.0]})
        """
        node = self.registry.resolve(target)
        source = RandomDataSource(node, count=count, overrides=overrides, seed=seed)
        return self.with_source(node, source)

    def __repr__(self) -> str:
        return f"FeatureStore({self.registry!r})"


class RetrievalJob:
    """
    Lazy handle on a retrieval request.

    Configuration methods return new jobs; data is only read by
    ``execute``, ``to_polars``, ``collect`` or ``result``.
    """

    def __init__(
        self,
        store: FeatureStore,
        target: SchemaNode,
        entities: pl.DataFrame,
        fields: Sequence[FieldSpec] | None,
        options: RequestOptions,
        token: CancellationToken | None = None,
        predictions: bool = False,
        labels: bool = False,
    ) -> None:
        self.store = store
        self.target = target
        self.entities = entities
        self.fields = list(fields) if fields is not None else None
        self.options = options
        self.token = token
        self.predictions = predictions
        self.labels = labels

    def _replace(self, **changes: Any) -> RetrievalJob:
        job = copy.copy(self)
        for name, value in changes.items():
            setattr(job, name, value)
        return job

    def with_diagnostics(self) -> RetrievalJob:
        """Return violations in the result report instead of raising ValidationError."""
        return self._replace(options=self.options.with_changes(diagnostics=True))

    def with_labels(self) -> RetrievalJob:
        """
        Add the ground truth of every label output.

        For feature requests the ground truth is joined like any other
        feature. For prediction requests it is joined as of each
        prediction's event timestamp.

        Raises:
            FeatureStoreError: If the target is not a model contract
        """
        if not isinstance(self.target, ModelContract):
            raise errors.FeatureStoreError(
                f"with_labels() needs a model contract, '{self.target.name}' is a feature view"
            )
        if not self.target.labels:
            raise errors.FeatureStoreError(
                f"Contract '{self.target.name}' has no label outputs",
                hint="Tag outputs with classification_label() or regression_label().",
            )
        if self.predictions and self.target.event_timestamp is None:
            raise errors.FeatureStoreError(
                f"Contract '{self.target.name}' has no event timestamp to join labels on",
                hint="Declare event_timestamp= on the contract.",
            )
        return self._replace(labels=True)

    def train_test_validate(
        self,
        train: float,
        test: float,
        validate: float,
        seed: int = 0,
        persist: bool = False,
    ) -> SplitJob:
        """
        Split the result into train, test and validation sets.

        Rows are ordered by event time when the request has one, so
        every training row precedes every test row, which precedes every
        validation row. Otherwise rows are shuffled with ``seed``.

        Args:
            train: Fraction for training
            test: Fraction for testing
            validate: Fraction for validation
            seed: Random seed for untimed splits
            persist: Write the labelled splits to the contract's dataset store

        Raises:
            ValueError: If fractions are negative or do not sum to 1
        """
        splits.check_fractions(train, test, validate)
        return SplitJob(self, train, test, validate, seed=seed, persist=persist)

    def _ground_truths(self) -> list[str]:
        assert isinstance(self.target, ModelContract)
        return [
            o.ground_truth.qualified_name
            for o in self.target.labels
            if o.ground_truth is not None
        ]

    def _requested(self) -> list[FieldSpec] | None:
        if not self.labels or self.predictions:
            return self.fields
        assert isinstance(self.target, ModelContract)
        base: list[FieldSpec] = (
            list(self.fields) if self.fields is not None else list(self.target.features)
        )
        return [*base, *self._ground_truths()]

    def plan(self) -> Plan:
        """Plan of the main read, without data access."""
        return self.store.resolver.plan(self.target, self._requested())

    async def execute(self) -> RetrievalResult:
        """
        Run the request.

        Raises:
            FeatureStoreError: Any resolution, source, freshness or
                validation error of the request
        """
        result = await self.store.engine.execute(
            self.plan(), self.entities, self.options, self.token
        )
        if self.labels and self.predictions:
            result = await self._join_labels(result)
        return result

    async def _join_labels(self, predictions: RetrievalResult) -> RetrievalResult:
        assert isinstance(self.target, ModelContract)
        assert self.target.event_timestamp is not None
        ts = self.target.event_timestamp.name or ""
        key = self.target.entity.key

        preds = predictions.to_polars().with_row_index(PREDICTION_ROW)
        plan = self.store.resolver.plan(self.target, self._ground_truths())
        options = self.options.with_changes(timestamp_column=ts)
        labelled = await self.store.engine.execute(
            plan, preds.select([PREDICTION_ROW, key, ts]), options, self.token
        )

        rename: dict[str, str] = {}
        for qid in plan.requested:
            column = plan.columns[qid]
            if column in preds.columns:
                rename[column] = qid.replace(":", "__")
        labels = labelled.to_polars().drop([key, ts]).rename(rename)

        joined = (
            preds.join(labels, on=PREDICTION_ROW, how="inner")
            .sort(PREDICTION_ROW)
            .drop(PREDICTION_ROW)
        )
        report = predictions.report.merge(labelled.report)
        return RetrievalResult(joined, report=report, plan=predictions.plan)

    async def to_polars(self) -> pl.DataFrame:
        return (await self.execute()).to_polars()

    def result(self) -> RetrievalResult:
        """Run the request synchronously, keeping the validation report."""
        return asyncio.run(self.execute())

    def collect(self) -> pl.DataFrame:
        return self.result().to_polars()

    def to_dicts(self) -> list[dict[str, Any]]:
        return self.collect().to_dicts()

    def __repr__(self) -> str:
        kind = "predictions" if self.predictions else "features"
        return f"RetrievalJob({kind} of '{self.target.name}', rows={self.entities.height})"


class SplitJob:
    """Lazy train/test/validation split of a retrieval job."""

    def __init__(
        self,
        job: RetrievalJob,
        train: float,
        test: float,
        validate: float,
        seed: int = 0,
        persist: bool = False,
    ) -> None:
        self.job = job
        self.fractions = (train, test, validate)
        self.seed = seed
        self.persist = persist

    def _timed_job(self) -> tuple[RetrievalJob, str | None]:
        job = self.job
        if job.options.timestamp_column is not None:
            return job, job.options.timestamp_column

        target = job.target
        if job.predictions or isinstance(target, FeatureView):
            ts = target.event_timestamp
            if ts is None:
                return job, None
            requested = job.fields if job.fields is not None else list(target.feature_fields)
            if not any(isinstance(f, fields_.EventTimestamp) for f in requested):
                job = job._replace(fields=[*requested, ts])
            return job, ts.name

        # Contract features are ordered by the latest event time of their inputs
        registry = job.store.registry
        if any(registry.resolve(s.node).timestamp_column for s in job.plan().reads):
            return job._replace(options=job.options.with_changes(event_time=EVENT_TIME)), EVENT_TIME

        return job, None

    async def execute(self) -> DatasetSplits:
        job, time_column = self._timed_job()
        result = await job.execute()
        df = result.to_polars()

        train, test, validate = splits.split_frame(
            df, *self.fractions, timestamp_column=time_column, seed=self.seed
        )
        order = f" by '{time_column}'" if time_column else " at random"
        if time_column == EVENT_TIME:
            train, test, validate = (part.drop(EVENT_TIME) for part in (train, test, validate))
            order, time_column = " by input event time", None
        logger.info(
            f"Split '{job.target.name}' into {train.height}/{test.height}/{validate.height} rows{order}"
        )

        if self.persist:
            await self._persist(job.target, train, test, validate, time_column)

        return DatasetSplits(train=train, test=test, validate=validate, report=result.report)

    async def _persist(
        self,
        target: SchemaNode,
        train: pl.DataFrame,
        test: pl.DataFrame,
        validate: pl.DataFrame,
        time_column: str | None,
    ) -> None:
        store = target.dataset_store if isinstance(target, ModelContract) else None
        if store is None:
            raise errors.MissingSourceError(
                target.name, f"'{target.name}' has no dataset store to persist splits to"
            )
        keys = [target.entity.key, *([time_column] if time_column else []), splits.SPLIT_COLUMN]
        written = await store.write(splits.label_splits(train, test, validate), keys)
        logger.info(f"Persisted {written} split row(s) for '{target.name}' to {store!r}")

    def collect(self) -> DatasetSplits:
        return asyncio.run(self.execute())
