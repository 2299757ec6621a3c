from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import polars as pl

from featureforge.validation import ValidationReport

if TYPE_CHECKING:
    from featureforge.resolver import Plan


class RetrievalResult:
    """
    Result of one resolved request.

    Wraps the assembled table together with the validation report and
    the plan that produced it.

    Attributes:
        report: Validation report, empty when every check passed
        plan: Plan the engine executed
    """

    def __init__(
        self,
        df: pl.DataFrame | pl.LazyFrame,
        report: ValidationReport | None = None,
        plan: Plan | None = None,
    ) -> None:
        """
        Initialize a retrieval result.

        Args:
            df: Assembled table, eager or lazy
            report: Validation report for the table
            plan: Plan that produced the table
        """
        if isinstance(df, pl.DataFrame):
            self._lf = df.lazy()
            self._df: pl.DataFrame | None = df
        else:
            self._lf = df
            self._df = None
        self.report = report or ValidationReport()
        self.plan = plan

    def _collect(self) -> pl.DataFrame:
        """
        Materialize lazy computation if needed.

        Caches result to avoid recomputation on subsequent calls.

        Returns:
            Materialized DataFrame
        """
        if self._df is None:
            self._df = self._lf.collect()
        return self._df

    @property
    def passed(self) -> bool:
        return self.report.passed

    def write_parquet(self, path: Path) -> None:
        self._collect().write_parquet(path)

    def to_polars(self) -> pl.DataFrame:
        return self._collect()

    def to_dicts(self) -> list[dict[str, Any]]:
        return self._collect().to_dicts()

    def row_count(self) -> int:
        return self._collect().height

    def schema(self) -> dict[str, str]:
        return {name: str(dtype) for name, dtype in self._lf.collect_schema().items()}

    def __repr__(self) -> str:
        return f"RetrievalResult(rows={self.row_count()}, violations={self.report.failed_count})"


@dataclass(frozen=True)
class DatasetSplits:
    """
    Train, test and validation partitions of one dataset.

    Attributes:
        train: Earliest rows for time-anchored data
        test: Rows between train and validate
        validate: Latest rows for time-anchored data
        report: Validation report of the full dataset
    """

    train: pl.DataFrame
    test: pl.DataFrame
    validate: pl.DataFrame
    report: ValidationReport

    def sizes(self) -> dict[str, int]:
        return {
            "train": self.train.height,
            "test": self.test.height,
            "validate": self.validate.height,
        }
