"""Formatting utilities for amounts and log messages."""

from config.constants import DEFAULT_POINTS_PER_UNIT


def format_points(points: int) -> str:
    """Format a point amount with thousands separators."""
    return f"{points:,} pts"


def format_currency(points: int, points_per_unit: int = DEFAULT_POINTS_PER_UNIT) -> str:
    """Format points as a currency amount (e.g. 1050 -> ¥10.50)."""
    units, rest = divmod(abs(points), points_per_unit)
    sign = "-" if points < 0 else ""
    if points_per_unit == 100:
        return f"{sign}¥{units:,}.{rest:02d}"
    return f"{sign}¥{abs(points) / points_per_unit:,.2f}"


def format_short_hash(content_hash: str) -> str:
    """Format a content hash (shortened)."""
    return f"{content_hash[:8]}…"
