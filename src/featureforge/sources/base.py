"""
Abstract base classes for source adapters.

This module defines the SourceAdapter ABC that every storage backend
implements, and TableSource, a Polars-backed base for adapters whose data
can be loaded as a LazyFrame (in-memory frames, Parquet and CSV files).

Adapter methods are coroutines: they are the only points where a request
suspends. Blocking work runs in a worker thread via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Sequence
from datetime import datetime
from typing import Any

import polars as pl

import featureforge.types as types_


class SourceAdapter(ABC):
    """
    Abstract base class for source adapters.

    Defines the capability contract each backend (batch table, file,
    stream, API) must provide to the join engine.

    All frames exchanged with an adapter are Polars DataFrames. The
    ``entities`` argument is a one-column frame holding the requested
    entity ids under the entity key column name.
    """

    name: str = "source"

    @abstractmethod
    async def fetch_by_entities(
        self,
        entities: pl.DataFrame,
        fields: Sequence[str],
    ) -> pl.DataFrame:
        """
        Fetch every row for the given entities.

        Args:
            entities: One-column frame of entity ids
            fields: Column names to return (key column included)

        Returns:
            Matching rows, in no particular order
        """
        ...

    @abstractmethod
    async def fetch_range(
        self,
        entities: pl.DataFrame,
        fields: Sequence[str],
        timestamp_column: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> pl.DataFrame:
        """
        Fetch rows for the given entities within a time range.

        Args:
            entities: One-column frame of entity ids
            fields: Column names to return (key and timestamp included)
            timestamp_column: Event timestamp column
            start: Inclusive lower bound, None for unbounded
            end: Inclusive upper bound, None for unbounded

        Returns:
            Matching rows, in no particular order
        """
        ...

    @abstractmethod
    async def fetch_latest_at_or_before(
        self,
        entities: pl.DataFrame,
        timestamp: datetime,
        fields: Sequence[str],
        timestamp_column: str,
    ) -> pl.DataFrame:
        """
        Fetch the newest row per entity with event timestamp <= timestamp.

        Args:
            entities: One-column frame of entity ids
            timestamp: Point in time to look back from
            fields: Column names to return (key and timestamp included)
            timestamp_column: Event timestamp column

        Returns:
            At most one row per entity
        """
        ...

    @abstractmethod
    async def write(self, rows: pl.DataFrame, keys: Sequence[str]) -> int:
        """
        Upsert rows into the source.

        Rows sharing ``keys`` with existing rows replace them, so writing
        the same batch twice leaves the source unchanged.

        Args:
            rows: Rows to write
            keys: Columns identifying a row (entity key, event timestamp)

        Returns:
            Number of rows written
        """
        ...

    @abstractmethod
    async def describe_freshness(self, timestamp_column: str) -> datetime | None:
        """
        Get the newest event timestamp present in the source.

        Args:
            timestamp_column: Event timestamp column

        Returns:
            Newest timestamp, or None if the source is empty
        """
        ...

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the schema document."""
        raise NotImplementedError(f"{type(self).__name__} cannot be serialized")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class TableSource(SourceAdapter):
    """
    Base class for adapters that can expose their data as a LazyFrame.

    Subclasses implement ``_scan()`` and ``_replace()``; filtering, as-of
    lookups and upserts are shared.
    """

    @abstractmethod
    def _scan(self) -> pl.LazyFrame:
        """Lazily scan the full table."""
        ...

    @abstractmethod
    def _replace(self, df: pl.DataFrame) -> None:
        """Replace the full table contents."""
        ...

    def _select(self, lf: pl.LazyFrame, fields: Sequence[str]) -> pl.LazyFrame:
        available = lf.collect_schema().names()
        present = [f for f in dict.fromkeys(fields) if f in available]
        return lf.select(present)

    def _filter_entities(self, lf: pl.LazyFrame, entities: pl.DataFrame) -> pl.LazyFrame:
        key = entities.columns[0]
        ids = entities.get_column(key).unique()
        return lf.filter(pl.col(key).is_in(ids.to_list()))

    def _read_by_entities(self, entities: pl.DataFrame, fields: Sequence[str]) -> pl.DataFrame:
        lf = self._filter_entities(self._scan(), entities)
        return self._select(lf, fields).collect()

    def _bound(self, lf: pl.LazyFrame, timestamp_column: str, value: datetime) -> datetime:
        dtype = lf.collect_schema().get(timestamp_column)
        return types_.align_datetime(value, dtype) if dtype is not None else value

    def _read_range(
        self,
        entities: pl.DataFrame,
        fields: Sequence[str],
        timestamp_column: str,
        start: datetime | None,
        end: datetime | None,
    ) -> pl.DataFrame:
        lf = self._filter_entities(self._scan(), entities)
        if start is not None:
            lf = lf.filter(pl.col(timestamp_column) >= self._bound(lf, timestamp_column, start))
        if end is not None:
            lf = lf.filter(pl.col(timestamp_column) <= self._bound(lf, timestamp_column, end))
        return self._select(lf, fields).collect()

    def _read_latest(
        self,
        entities: pl.DataFrame,
        timestamp: datetime,
        fields: Sequence[str],
        timestamp_column: str,
    ) -> pl.DataFrame:
        key = entities.columns[0]
        lf = self._filter_entities(self._scan(), entities)
        lf = lf.filter(pl.col(timestamp_column) <= self._bound(lf, timestamp_column, timestamp))
        lf = lf.sort([key, timestamp_column]).group_by(key, maintain_order=True).last()
        return self._select(lf, fields).collect()

    def _upsert(self, rows: pl.DataFrame, keys: Sequence[str]) -> int:
        try:
            existing = self._scan().collect()
        except FileNotFoundError:
            existing = None

        if existing is None or existing.is_empty():
            merged = rows
        else:
            merged = pl.concat([existing, rows], how="diagonal_relaxed")

        merged = merged.unique(subset=list(keys), keep="last", maintain_order=True)
        self._replace(merged)
        return rows.height

    def _newest(self, timestamp_column: str) -> datetime | None:
        try:
            lf = self._scan()
        except FileNotFoundError:
            return None
        if timestamp_column not in lf.collect_schema().names():
            return None
        return lf.select(pl.col(timestamp_column).max()).collect().item()

    async def fetch_by_entities(
        self,
        entities: pl.DataFrame,
        fields: Sequence[str],
    ) -> pl.DataFrame:
        return await asyncio.to_thread(self._read_by_entities, entities, fields)

    async def fetch_range(
        self,
        entities: pl.DataFrame,
        fields: Sequence[str],
        timestamp_column: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> pl.DataFrame:
        return await asyncio.to_thread(
            self._read_range, entities, fields, timestamp_column, start, end
        )

    async def fetch_latest_at_or_before(
        self,
        entities: pl.DataFrame,
        timestamp: datetime,
        fields: Sequence[str],
        timestamp_column: str,
    ) -> pl.DataFrame:
        return await asyncio.to_thread(
            self._read_latest, entities, timestamp, fields, timestamp_column
        )

    async def write(self, rows: pl.DataFrame, keys: Sequence[str]) -> int:
        return await asyncio.to_thread(self._upsert, rows, keys)

    async def describe_freshness(self, timestamp_column: str) -> datetime | None:
        return await asyncio.to_thread(self._newest, timestamp_column)
