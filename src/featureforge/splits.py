"""
Train/test/validation splitting.

Time-anchored datasets are split by event time: the earliest rows go to
train and the latest to validate, so no training row is newer than a
validation row. Datasets without a time anchor are shuffled uniformly
with a seed and cut by the same fractions.
"""

from __future__ import annotations

import math

import polars as pl

SPLIT_COLUMN = "split"
SPLIT_NAMES = ("train", "test", "validate")


def check_fractions(train: float, test: float, validate: float) -> None:
    """
    Raises:
        ValueError: If a fraction is negative or they do not sum to 1
    """
    fractions = (train, test, validate)
    if any(f < 0 for f in fractions):
        raise ValueError(f"Split fractions must be non-negative, got {fractions}")
    if not math.isclose(sum(fractions), 1.0, abs_tol=1e-9):
        raise ValueError(f"Split fractions must sum to 1, got {sum(fractions)}")


def _sizes(height: int, train: float, test: float) -> tuple[int, int]:
    n_train = math.floor(height * train + 0.5)
    n_test = min(math.floor(height * test + 0.5), height - n_train)
    return n_train, n_test


def split_frame(
    df: pl.DataFrame,
    train: float,
    test: float,
    validate: float,
    timestamp_column: str | None = None,
    seed: int = 0,
) -> tuple[pl.DataFrame, pl.DataFrame, pl.DataFrame]:
    """
    Partition a dataset into train, test and validation frames.

    Args:
        df: Dataset to split
        train: Fraction of rows for training
        test: Fraction of rows for testing
        validate: Fraction of rows for validation
        timestamp_column: Event time column. Splits by time when given,
            uniformly at random otherwise.
        seed: Random seed for untimed splits

    Returns:
        (train, test, validate) frames

    Raises:
        ValueError: If fractions are invalid
    """
    check_fractions(train, test, validate)

    if timestamp_column is not None:
        ordered = df.sort(timestamp_column, maintain_order=True, nulls_last=False)
    else:
        ordered = df.sample(fraction=1.0, shuffle=True, seed=seed)

    n_train, n_test = _sizes(ordered.height, train, test)
    return (
        ordered.slice(0, n_train),
        ordered.slice(n_train, n_test),
        ordered.slice(n_train + n_test),
    )


def label_splits(
    train: pl.DataFrame,
    test: pl.DataFrame,
    validate: pl.DataFrame,
) -> pl.DataFrame:
    """Concatenate splits with a ``split`` column naming each row's partition."""
    return pl.concat(
        [
            frame.with_columns(pl.lit(name).alias(SPLIT_COLUMN))
            for name, frame in zip(SPLIT_NAMES, (train, test, validate))
        ],
        how="vertical",
    )
