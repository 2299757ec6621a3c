"""
Freshness checks.

A view's age is the time between a reference point and the newest event
timestamp observed for it. Ages above ``unacceptable_freshness`` always
fail the request. Ages between the two thresholds follow the configured
policy: warn (default), raise, or ignore.
"""

from __future__ import annotations

import warnings
from datetime import datetime, timedelta, timezone
from typing import Literal

from loguru import logger

import featureforge.durations as durations
import featureforge.errors as errors
from featureforge.views import SchemaNode

type StalenessPolicy = Literal["warn", "raise", "ignore"]

STALENESS_POLICIES: tuple[str, ...] = ("warn", "raise", "ignore")


def now_like(value: datetime) -> datetime:
    """Current time, timezone-aware only when ``value`` is."""
    if value.tzinfo is not None:
        return datetime.now(timezone.utc).astimezone(value.tzinfo)
    return datetime.now()


def age_of(newest: datetime, reference: datetime | None = None) -> timedelta:
    """Age of ``newest`` relative to ``reference`` (now by default)."""
    reference = reference or now_like(newest)
    if (reference.tzinfo is None) != (newest.tzinfo is None):
        reference = reference.replace(tzinfo=newest.tzinfo)
    return reference - newest


def is_fresh(node: SchemaNode, newest: datetime | None) -> bool:
    """Whether a source whose newest row is ``newest`` is within acceptable freshness."""
    if newest is None:
        return False
    if node.acceptable_freshness is None:
        return True
    return age_of(newest) <= node.acceptable_freshness


def check_freshness(
    node: SchemaNode,
    age: timedelta | None,
    policy: StalenessPolicy = "warn",
) -> None:
    """
    Compare a view's age against its thresholds.

    Args:
        node: View or contract with freshness thresholds
        age: Observed age, None when no rows were observed
        policy: What to do between the two thresholds

    Raises:
        StalenessError: If age exceeds unacceptable_freshness, or exceeds
            acceptable_freshness under the "raise" policy
    """
    if age is None:
        return

    if node.unacceptable_freshness is not None and age > node.unacceptable_freshness:
        logger.error(f"View '{node.name}' is stale: {durations.format_duration(age)} old")
        raise errors.StalenessError(
            node.name,
            durations.format_duration(age),
            durations.format_duration(node.unacceptable_freshness),
        )

    if node.acceptable_freshness is None or age <= node.acceptable_freshness:
        return

    match policy:
        case "ignore":
            return
        case "raise":
            raise errors.StalenessError(
                node.name,
                durations.format_duration(age),
                durations.format_duration(node.acceptable_freshness),
            )
        case _:
            warning = errors.StalenessWarning(
                node.name,
                durations.format_duration(age),
                durations.format_duration(node.acceptable_freshness),
            )
            logger.warning(str(warning))
            warnings.warn(warning, stacklevel=2)
