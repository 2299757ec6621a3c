"""
Point-in-time join engine.

Executes a resolved plan against source adapters:

1. Read steps run concurrently; each fetches the rows of one view for the
   requested entities from its freshest available source.
2. Each read is joined back onto the request frame. Entity-only requests
   take the latest row per entity; point-in-time requests take, per
   (entity, timestamp), the latest row at or before the timestamp with a
   backward as-of join. A later row is never used.
3. Derived fields are computed in plan order on the joined table.
4. The result is validated and returned in request order.

Adapter calls are the only suspension points; joins, transforms and
validation are synchronous.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Literal

import polars as pl
from loguru import logger

import featureforge.errors as errors
import featureforge.fields as fields_
import featureforge.freshness as freshness
import featureforge.types as types_
import featureforge.validation as validation
from featureforge.contracts import ModelContract
from featureforge.registry import SchemaRegistry
from featureforge.resolver import Plan, PlanStep
from featureforge.results import RetrievalResult
from featureforge.sources.base import SourceAdapter
from featureforge.views import FeatureView, SchemaNode

ROW_INDEX = "__row_index"

type MissingPolicy = Literal["drop", "keep"]


@dataclass(frozen=True)
class RequestOptions:
    """
    Per-request execution settings.

    Attributes:
        timestamp_column: Request column holding anchor timestamps. None
            for an entity-only request.
        online: Read from stream sources where views have one
        on_missing: Drop or keep rows with no match in a view that
            contributes a required field. Kept rows surface as
            required-field violations.
        staleness: Policy between acceptable and unacceptable freshness
        diagnostics: Return data with the validation report instead of
            raising ValidationError
        event_time: Output column holding, per row, the latest event
            timestamp among the views that contributed to it
    """

    timestamp_column: str | None = None
    online: bool = False
    on_missing: MissingPolicy = "drop"
    staleness: freshness.StalenessPolicy = "warn"
    diagnostics: bool = False
    event_time: str | None = None

    def with_changes(self, **changes) -> RequestOptions:
        return replace(self, **changes)


class CancellationToken:
    """
    Cooperative cancellation for a request.

    ``cancel()`` may be called from any thread. In-flight adapter calls
    are abandoned and the request raises CancelledError.
    """

    poll_interval = 0.01

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, request: str | None = None) -> None:
        if self._event.is_set():
            raise errors.CancelledError(request)

    async def wait(self) -> None:
        while not self._event.is_set():
            await asyncio.sleep(self.poll_interval)


@dataclass
class _Read:
    step: PlanStep
    node: SchemaNode
    frame: pl.DataFrame
    source: SourceAdapter


class PointInTimeJoinEngine:
    """
    Runs plans against sources.

    Attributes:
        registry: Schema registry supplying nodes and sources
    """

    def __init__(self, registry: SchemaRegistry) -> None:
        self.registry = registry

    # -------------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------------

    async def execute(
        self,
        plan: Plan,
        entities: pl.DataFrame,
        options: RequestOptions | None = None,
        token: CancellationToken | None = None,
    ) -> RetrievalResult:
        """
        Execute a plan for the requested entities.

        Args:
            plan: Plan from the dependency resolver
            entities: Request frame with entity key columns, plus the
                anchor timestamp column for point-in-time requests
            options: Execution settings
            token: Optional cancellation token

        Returns:
            Result in request order, with its validation report

        Raises:
            MissingSourceError: If a view has no usable source
            SchemaMismatchError: If a source returns a column of the wrong type
            StalenessError: If a view is older than its thresholds allow
            SourceUnavailableError: If a source stays unreachable
            CancelledError: If the token is cancelled
            ValidationError: If validation fails outside diagnostics mode
        """
        options = options or RequestOptions()
        anchor = options.timestamp_column
        if token is not None:
            token.raise_if_cancelled(plan.target)

        entities = self._prepare_request(entities, anchor)
        logger.info(
            f"Resolving '{plan.target}' for {entities.height} row(s)"
            + (f" as of '{anchor}'" if anchor else "")
        )

        reads = plan.reads
        with self.registry.in_flight([s.node for s in reads]):
            results = await self._gather(
                [self._read(step, entities, options) for step in reads],
                token,
                plan.target,
            )

        if token is not None:
            token.raise_if_cancelled(plan.target)

        wide = entities.with_row_index(ROW_INDEX)
        for read in results:
            wide, age = self._join(wide, read, plan, options)
            freshness.check_freshness(read.node, age, options.staleness)

        for step in plan.derives:
            wide = self._derive(wide, step, plan)

        wide = wide.sort(ROW_INDEX)
        result = self._finish(wide, entities, plan)
        if options.event_time is not None:
            result = result.with_columns(_event_time(wide, results).alias(options.event_time))
        report = self._validate(wide, plan, entities)

        if not report.passed:
            logger.warning(f"'{plan.target}': {report.failed_count} validation violation(s)")
            if not options.diagnostics:
                report.raise_if_failed(plan.target)

        return RetrievalResult(result, report=report, plan=plan)

    def _prepare_request(self, entities: pl.DataFrame, anchor: str | None) -> pl.DataFrame:
        if ROW_INDEX in entities.columns:
            entities = entities.drop(ROW_INDEX)
        if anchor is None:
            return entities
        if anchor not in entities.columns:
            raise errors.FeatureStoreError(
                f"Timestamp column '{anchor}' not found in request",
                hint=f"Request columns: {entities.columns}",
            )
        dtype = entities.schema[anchor]
        if dtype == pl.Utf8:
            entities = entities.with_columns(pl.col(anchor).str.to_datetime())
        elif dtype == pl.Date:
            entities = entities.with_columns(pl.col(anchor).cast(pl.Datetime("us")))
        elif not isinstance(dtype, pl.Datetime):
            raise errors.FeatureStoreError(
                f"Timestamp column '{anchor}' must hold datetimes, got {dtype}"
            )

        # Anchors are compared against naive UTC event timestamps
        if entities.schema[anchor].time_zone is not None:
            logger.debug(f"Converting timezone-aware anchors in '{anchor}' to naive UTC")
            entities = entities.with_columns(types_.naive_utc(pl.col(anchor)))
        return entities

    async def _gather(
        self,
        calls: Sequence[Awaitable[_Read]],
        token: CancellationToken | None,
        request: str,
    ) -> list[_Read]:
        tasks = [asyncio.ensure_future(call) for call in calls]
        if not tasks:
            return []
        if token is None:
            return list(await asyncio.gather(*tasks))

        waiter = asyncio.ensure_future(token.wait())
        try:
            pending: set[asyncio.Future] = set(tasks)
            while pending:
                done, _ = await asyncio.wait(
                    pending | {waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                if waiter in done:
                    for task in tasks:
                        task.cancel()
                    await asyncio.gather(*tasks, return_exceptions=True)
                    logger.info(f"Request '{request}' cancelled")
                    raise errors.CancelledError(request)
                for task in done:
                    if task.exception() is not None:
                        for other in tasks:
                            other.cancel()
                        await asyncio.gather(*tasks, return_exceptions=True)
                        raise task.exception()  # type: ignore[misc]
                pending -= done
            return [task.result() for task in tasks]
        finally:
            waiter.cancel()

    async def _read(
        self,
        step: PlanStep,
        entities: pl.DataFrame,
        options: RequestOptions,
    ) -> _Read:
        node = self.registry.resolve(step.node)
        key = node.entity.key
        if key not in entities.columns:
            raise errors.UnsatisfiableRequestError(
                node.name,
                step.fields,
                hint=f"The request needs an entity key column named '{key}'.",
            )

        ts = node.timestamp_column
        ids = entities.select(key).drop_nulls().unique(maintain_order=True)
        columns = [key, *([ts] if ts else []), *step.fields]
        source = await self._choose_source(node, options.online)

        anchor = options.timestamp_column
        if anchor is not None and ts is not None:
            end = entities.get_column(anchor).max()
            try:
                frame = await source.fetch_range(ids, columns, ts, end=end)  # type: ignore[arg-type]
            except pl.exceptions.SchemaError as exc:
                raise errors.SchemaMismatchError(
                    node.name, ts, str(entities.schema[anchor]), f"an incomparable timestamp ({exc})"
                ) from exc
        else:
            frame = await source.fetch_by_entities(ids, columns)

        logger.debug(f"Read {frame.height} row(s) for '{node.name}' from {source!r}")
        frame = self.conform(node, frame, [*([ts] if ts else []), *step.fields])
        frame = frame.with_columns(pl.col(key).cast(entities.schema[key]))
        return _Read(step, node, frame, source)

    async def _choose_source(self, node: SchemaNode, online: bool) -> SourceAdapter:
        if isinstance(node, ModelContract) or self.registry.has_override(node):
            source = self.registry.source_for(node)
            if source is None:
                raise errors.MissingSourceError(node.name)
            return source

        assert isinstance(node, FeatureView)
        if online and node.stream_source is not None:
            return node.stream_source

        if node.materialized_source is not None:
            ts = node.timestamp_column
            if ts is None and node.batch_source is None:
                return node.materialized_source
            if ts is not None:
                newest = await node.materialized_source.describe_freshness(ts)
                if freshness.is_fresh(node, newest):
                    return node.materialized_source
                logger.debug(f"Materialized source of '{node.name}' is stale, reading batch source")

        fallback = node.batch_source or node.materialized_source or node.stream_source
        if fallback is None:
            raise errors.MissingSourceError(node.name)
        return fallback

    # -------------------------------------------------------------------------
    # Schema conformance
    # -------------------------------------------------------------------------

    def conform(
        self,
        node: SchemaNode,
        frame: pl.DataFrame,
        names: Sequence[str],
        allow_missing: bool = False,
    ) -> pl.DataFrame:
        """
        Check source columns against declared types.

        Numeric widening (int32 -> int64/float64, float32 -> float64) is
        applied silently; any other difference is an error.

        Args:
            node: Owning view or contract
            frame: Rows returned by a source
            names: Field names expected in the frame
            allow_missing: Fill absent optional fields with nulls

        Returns:
            Frame with declared Polars dtypes

        Raises:
            SchemaMismatchError: If a column is absent or has the wrong type
        """
        key = node.entity.key
        if key not in frame.columns:
            raise errors.SchemaMismatchError(node.name, key, str(node.entity.dtype), "missing column")

        casts: list[pl.Expr] = []
        for name in names:
            f = node.field(name)
            expected = f.dtype
            if name not in frame.columns:
                if allow_missing and not f.required:
                    casts.append(pl.lit(None, dtype=expected.to_polars()).alias(name))
                    continue
                raise errors.SchemaMismatchError(node.name, name, str(expected), "missing column")

            polars_dtype = frame.schema[name]
            actual = types_.from_polars(polars_dtype)
            if actual is None and polars_dtype != pl.Null:
                raise errors.SchemaMismatchError(node.name, name, str(expected), str(polars_dtype))
            if actual is not None and not _compatible(actual, expected):
                raise errors.SchemaMismatchError(node.name, name, str(expected), str(actual))

            column = pl.col(name)
            if isinstance(polars_dtype, pl.Datetime) and polars_dtype.time_zone is not None:
                column = types_.naive_utc(column)
            if polars_dtype != expected.to_polars():
                casts.append(column.cast(expected.to_polars()))

        return frame.with_columns(casts) if casts else frame

    # -------------------------------------------------------------------------
    # Joins
    # -------------------------------------------------------------------------

    def _join(
        self,
        wide: pl.DataFrame,
        read: _Read,
        plan: Plan,
        options: RequestOptions,
    ) -> tuple[pl.DataFrame, timedelta | None]:
        node, step = read.node, read.step
        key = node.entity.key
        ts = node.timestamp_column
        hidden_ts = f"__ts__{node.name}"
        matched = f"__matched__{node.name}"
        anchor = options.timestamp_column

        frame = read.frame.select([key, *([ts] if ts else []), *step.fields])
        rename = {name: plan.columns[f"{node.name}:{name}"] for name in step.fields}
        if ts:
            rename[ts] = hidden_ts
        frame = frame.rename(rename).with_columns(pl.lit(True).alias(matched))

        age: timedelta | None = None
        if anchor is not None and ts is not None:
            frame = (
                frame.with_columns(pl.col(hidden_ts).cast(wide.schema[anchor]))
                .drop_nulls(hidden_ts)
                .sort(hidden_ts)
            )
            joined = wide.sort(anchor).join_asof(
                frame,
                left_on=anchor,
                right_on=hidden_ts,
                by=key,
                strategy="backward",
                check_sortedness=False,
            )
            # Age of the newest observation relative to its anchor
            lag = joined.select((pl.col(anchor) - pl.col(hidden_ts)).min()).item()
            age = lag if isinstance(lag, timedelta) else None
        else:
            if ts is not None:
                frame = frame.sort(hidden_ts, nulls_last=False, maintain_order=True)
            frame = frame.unique(subset=[key], keep="last", maintain_order=True)
            joined = wide.join(frame, on=key, how="left")
            if ts is not None and frame.height:
                newest = frame.get_column(hidden_ts).max()
                if isinstance(newest, datetime):
                    age = freshness.age_of(newest)

        joined = self._handle_missing(joined, node, step, matched, options)
        return joined.drop(matched), age

    def _handle_missing(
        self,
        joined: pl.DataFrame,
        node: SchemaNode,
        step: PlanStep,
        matched: str,
        options: RequestOptions,
    ) -> pl.DataFrame:
        required = any(node.field(name).required for name in step.fields)
        missing = joined.get_column(matched).is_null()
        count = int(missing.sum())
        if not count:
            return joined

        if required and options.on_missing == "drop":
            logger.debug(f"Dropping {count} row(s) with no match in '{node.name}'")
            return joined.filter(~missing)

        logger.debug(f"{count} row(s) have no match in '{node.name}', filled with nulls")
        return joined

    def _derive(self, wide: pl.DataFrame, step: PlanStep, plan: Plan) -> pl.DataFrame:
        exprs: list[pl.Expr] = []
        for name in step.fields:
            f = self.registry.field(f"{step.node}:{name}")
            assert f.expr is not None
            column = plan.columns[f.qualified_name]
            exprs.append(
                f.expr.to_polars(plan.columns).cast(f.dtype.to_polars()).alias(column)
            )
        return wide.with_columns(exprs)

    def _finish(self, wide: pl.DataFrame, entities: pl.DataFrame, plan: Plan) -> pl.DataFrame:
        selected: list[pl.Expr] = [pl.col(c) for c in entities.columns]
        seen = set(entities.columns)
        for qid in plan.requested:
            column = plan.columns[qid]
            f = self.registry.field(qid)
            name = f.name if isinstance(f, fields_.EventTimestamp) else column
            if name in seen:
                continue
            seen.add(name or column)
            selected.append(pl.col(column).alias(name or column))
        return wide.select(selected)

    def _validate(
        self,
        wide: pl.DataFrame,
        plan: Plan,
        entities: pl.DataFrame,
    ) -> validation.ValidationReport:
        target = self.registry.resolve(plan.target)
        checks = [
            (self.registry.field(qid), plan.columns[qid])
            for qid in plan.requested
        ]
        checks = [(f, c) for f, c in checks if not isinstance(f, fields_.EntityKey)]
        id_column = target.entity.key if target.entity.key in wide.columns else entities.columns[0]
        return validation.validate_frame(wide, checks, id_column=id_column)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def write(self, node: str | SchemaNode, rows: pl.DataFrame) -> int:
        """
        Validate rows against a view's schema and upsert them.

        Rows go to the materialized source, else the batch source (the
        prediction source for contracts). Rows are keyed by entity key
        and event timestamp, so writing the same batch twice is a no-op.

        Returns:
            Number of rows written

        Raises:
            MissingSourceError: If there is nowhere to write
            SchemaMismatchError: If a column has the wrong type
            ValidationError: If rows break required or constraint rules
        """
        resolved = self.registry.resolve(node)
        source = self._write_target(resolved)
        key = resolved.entity.key
        ts = resolved.timestamp_column

        names = [*([ts] if ts else []), *(f.name or "" for f in resolved.raw_fields)]
        conformed = self.conform(resolved, rows, names, allow_missing=True)
        conformed = conformed.select([key, *names]).with_columns(
            pl.col(key).cast(resolved.entity.dtype.to_polars())
        )

        report = validation.validate_frame(
            conformed,
            [(f, f.name or "") for f in resolved.raw_fields],
            id_column=key,
        )
        nulls = conformed.get_column(key).null_count()
        if nulls:
            raise errors.FeatureStoreError(
                f"{nulls} row(s) written to '{resolved.name}' have a null entity key '{key}'"
            )
        report.raise_if_failed(f"write:{resolved.name}")

        keys = [key, *([ts] if ts else [])]
        conformed = conformed.unique(subset=keys, keep="last", maintain_order=True)

        with self.registry.in_flight([resolved.name]):
            written = await source.write(conformed, keys)

        logger.info(f"Wrote {written} row(s) to '{resolved.name}' via {source!r}")
        return written

    def _write_target(self, node: SchemaNode) -> SourceAdapter:
        if isinstance(node, ModelContract) or self.registry.has_override(node):
            source = self.registry.source_for(node)
        else:
            assert isinstance(node, FeatureView)
            source = node.materialized_source or node.batch_source
        if source is None:
            raise errors.MissingSourceError(node.name, f"'{node.name}' has no source to write to")
        return source


def _compatible(actual: types_.DataType, expected: types_.DataType) -> bool:
    if actual.kind == expected.kind or actual.can_widen_to(expected):
        return True
    # JSON payloads are stored as strings
    return expected.kind == types_.TypeKind.JSON and actual.kind == types_.TypeKind.STRING


def _event_time(wide: pl.DataFrame, reads: Sequence[_Read]) -> pl.Series:
    columns = [f"__ts__{r.node.name}" for r in reads if r.node.timestamp_column is not None]
    if not columns:
        return pl.Series(values=[None] * wide.height, dtype=pl.Datetime("us"))
    return wide.select(pl.max_horizontal(columns)).to_series()
