"""
File-based source adapters.

Reads and writes Parquet and CSV files through Polars. Writes rewrite the
whole file after an upsert, which keeps them idempotent.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, override

import polars as pl

from featureforge.sources.base import TableSource


class FileSource(TableSource):
    """
    Base class for single-file sources.

    Attributes:
        path: File location
    """

    suffix: str = ""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.name = str(path)

    def _ensure_exists(self) -> None:
        if not self.path.exists():
            raise FileNotFoundError(f"Source file not found: {self.path}")


class ParquetSource(FileSource):
    """
    Parquet file source.

    Example:
        source = ff.ParquetSource("data/transactions.parquet")
    """

    suffix = ".parquet"

    @override
    def _scan(self) -> pl.LazyFrame:
        self._ensure_exists()
        return pl.scan_parquet(self.path)

    @override
    def _replace(self, df: pl.DataFrame) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        df.write_parquet(self.path)

    @override
    def to_dict(self) -> dict[str, Any]:
        return {"kind": "parquet", "path": str(self.path)}


class CsvSource(FileSource):
    """
    CSV file source.

    Timestamp columns are parsed from ISO 8601 strings when reading.

    Attributes:
        separator: Field delimiter
        try_parse_dates: Parse date-like strings as datetimes

    Example:
        source = ff.CsvSource("data/wine.csv")
    """

    suffix = ".csv"

    def __init__(
        self,
        path: str | Path,
        separator: str = ",",
        try_parse_dates: bool = True,
    ) -> None:
        super().__init__(path)
        self.separator = separator
        self.try_parse_dates = try_parse_dates

    @override
    def _scan(self) -> pl.LazyFrame:
        self._ensure_exists()
        return pl.scan_csv(
            self.path,
            separator=self.separator,
            try_parse_dates=self.try_parse_dates,
        )

    @override
    def _replace(self, df: pl.DataFrame) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        df.write_csv(self.path, separator=self.separator)

    @override
    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": "csv", "path": str(self.path)}
        if self.separator != ",":
            result["separator"] = self.separator
        return result


def file_source(path: str | Path) -> FileSource:
    """
    Create a file source from its extension.

    Args:
        path: Path ending in .parquet or .csv

    Returns:
        Matching file source

    Raises:
        ValueError: If the format is not supported
    """
    path = Path(path)

    match path.suffix:
        case ".parquet":
            return ParquetSource(path)
        case ".csv":
            return CsvSource(path)
        case _:
            raise ValueError(f"Unsupported source format: {path.suffix}")
