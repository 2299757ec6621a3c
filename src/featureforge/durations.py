"""
Duration parsing utilities for featureforge.

Freshness thresholds and split windows accept either ``timedelta`` or
compact duration strings (e.g., "7d", "24h", "30m").

Supported units:
- s: seconds
- m: minutes
- h: hours
- d: days
- w: weeks
- mo: months (30 days)
- y: years (365 days)
"""

import re
from dataclasses import dataclass
from datetime import timedelta

_DURATION_PATTERN = re.compile(r"^(\d+)(mo|[smhdwy])?$")


@dataclass(frozen=True)
class ParsedDuration:
    """
    Parsed duration with value and unit.

    Attributes:
        value: Numeric value of the duration
        unit: Unit character(s) (s, m, h, d, w, mo, y)
    """

    value: int
    unit: str

    def to_timedelta(self) -> timedelta:
        """
        Convert to a timedelta.

        Returns:
            Equivalent timedelta
        """
        match self.unit:
            case "s":
                return timedelta(seconds=self.value)
            case "m":
                return timedelta(minutes=self.value)
            case "h":
                return timedelta(hours=self.value)
            case "d":
                return timedelta(days=self.value)
            case "w":
                return timedelta(weeks=self.value)
            case "mo":
                # approximate months with 30 days
                return timedelta(days=self.value * 30)
            case "y":
                return timedelta(days=self.value * 365)
            case _:
                return timedelta(days=self.value)


def parse_duration(duration: str) -> ParsedDuration:
    """
    Parse a duration string into value and unit.

    Args:
        duration: Duration string (e.g., "7d", "24h", "30m", "1mo")

    Returns:
        ParsedDuration with value and unit

    Raises:
        ValueError: If the string is not a valid duration

    Examples:
        parse_duration("7d")   -> ParsedDuration(7, "d")
        parse_duration("24h")  -> ParsedDuration(24, "h")
        parse_duration("7")    -> ParsedDuration(7, "d")
    """
    match = _DURATION_PATTERN.match(duration.strip().lower())
    if not match:
        raise ValueError(
            f"Invalid duration format: '{duration}'. "
            "Expected format like '7d', '24h', '30m', '1w', '1mo'."
        )

    return ParsedDuration(int(match.group(1)), match.group(2) or "d")


def to_timedelta(value: timedelta | str | None) -> timedelta | None:
    """
    Normalize a duration given as timedelta or string.

    Args:
        value: timedelta, duration string, or None

    Returns:
        timedelta, or None when value is None
    """
    if value is None or isinstance(value, timedelta):
        return value
    return parse_duration(value).to_timedelta()


def format_duration(td: timedelta) -> str:
    """
    Render a timedelta in the largest exact unit.

    Args:
        td: Python timedelta object

    Returns:
        Duration string (e.g., "7d", "2h", "30m")

    Example:
        format_duration(timedelta(days=7)) -> "7d"
        format_duration(timedelta(hours=2)) -> "2h"
    """
    total_seconds = int(td.total_seconds())

    if total_seconds % 86400 == 0:
        return f"{total_seconds // 86400}d"
    elif total_seconds % 3600 == 0:
        return f"{total_seconds // 3600}h"
    elif total_seconds % 60 == 0:
        return f"{total_seconds // 60}m"
    else:
        return f"{total_seconds}s"
