"""
Retrying wrapper for source adapters.

I/O failures are retried at the adapter boundary only. After the last
attempt the wrapper raises a single SourceUnavailableError; the engine
itself never retries.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from typing import Any, TypeVar, override

import polars as pl
from loguru import logger

import featureforge.errors as errors
from featureforge.sources.base import SourceAdapter

T = TypeVar("T")

DEFAULT_RETRYABLE: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    OSError,
)


class RetryingSource(SourceAdapter):
    """
    Wrap an adapter with bounded retries and exponential backoff.

    Attributes:
        inner: Wrapped adapter
        max_attempts: Total attempts per call, including the first
        base_delay: Delay before the first retry in seconds, doubled each retry
        retryable: Exception types that trigger a retry

    Example:
        source = ff.RetryingSource(ff.DuckDBSource(table="trips"), max_attempts=3)
    """

    def __init__(
        self,
        inner: SourceAdapter,
        max_attempts: int = 3,
        base_delay: float = 0.1,
        retryable: tuple[type[BaseException], ...] = DEFAULT_RETRYABLE,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.inner = inner
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.retryable = retryable
        self.name = inner.name

    async def _call(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        last_error: Exception | None = None

        for attempt in range(self.max_attempts):
            try:
                return await fn()
            except self.retryable as e:
                last_error = e  # type: ignore[assignment]
                if attempt + 1 == self.max_attempts:
                    break
                delay = self.base_delay * (2**attempt)
                logger.warning(
                    f"{operation} on '{self.name}' failed ({type(e).__name__}: {e}), "
                    f"retrying in {delay:.2f}s ({attempt + 1}/{self.max_attempts})"
                )
                await asyncio.sleep(delay)

        raise errors.SourceUnavailableError(
            self.name, attempts=self.max_attempts, cause=last_error
        )

    @override
    async def fetch_by_entities(
        self,
        entities: pl.DataFrame,
        fields: Sequence[str],
    ) -> pl.DataFrame:
        return await self._call(
            "fetch_by_entities",
            lambda: self.inner.fetch_by_entities(entities, fields),
        )

    @override
    async def fetch_range(
        self,
        entities: pl.DataFrame,
        fields: Sequence[str],
        timestamp_column: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> pl.DataFrame:
        return await self._call(
            "fetch_range",
            lambda: self.inner.fetch_range(entities, fields, timestamp_column, start, end),
        )

    @override
    async def fetch_latest_at_or_before(
        self,
        entities: pl.DataFrame,
        timestamp: datetime,
        fields: Sequence[str],
        timestamp_column: str,
    ) -> pl.DataFrame:
        return await self._call(
            "fetch_latest_at_or_before",
            lambda: self.inner.fetch_latest_at_or_before(
                entities, timestamp, fields, timestamp_column
            ),
        )

    @override
    async def write(self, rows: pl.DataFrame, keys: Sequence[str]) -> int:
        return await self._call("write", lambda: self.inner.write(rows, keys))

    @override
    async def describe_freshness(self, timestamp_column: str) -> datetime | None:
        return await self._call(
            "describe_freshness",
            lambda: self.inner.describe_freshness(timestamp_column),
        )

    @override
    def to_dict(self) -> dict[str, Any]:
        return {
            **self.inner.to_dict(),
            "retry": {"max_attempts": self.max_attempts, "base_delay": self.base_delay},
        }
