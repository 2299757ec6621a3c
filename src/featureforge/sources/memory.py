"""
In-memory source adapter.

Holds a Polars DataFrame. Used for tests, synthetic data injection and as
a lightweight stream buffer.
"""

from __future__ import annotations

from typing import Any, override

import polars as pl

from featureforge.sources.base import TableSource


class InMemorySource(TableSource):
    """
    Source adapter backed by an in-process DataFrame.

    Attributes:
        df: Current table contents

    Example:
        source = ff.InMemorySource(pl.DataFrame({"wine_id": [1, 2], "alcohol": [11.0, 13.0]}))
    """

    def __init__(
        self,
        df: pl.DataFrame | dict[str, list[Any]] | None = None,
        name: str = "memory",
    ) -> None:
        if df is None:
            df = pl.DataFrame()
        elif isinstance(df, dict):
            df = pl.DataFrame(df)
        self.df = df
        self.name = name

    @override
    def _scan(self) -> pl.LazyFrame:
        return self.df.lazy()

    @override
    def _replace(self, df: pl.DataFrame) -> None:
        self.df = df

    @override
    def to_dict(self) -> dict[str, Any]:
        return {"kind": "memory", "name": self.name}
