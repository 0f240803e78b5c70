"""
Helper utilities
"""
from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Optional
import math

import numpy as np
from dateutil import parser as date_parser


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers"""
    try:
        return numerator / denominator if denominator != 0 else default
    except (TypeError, ZeroDivisionError):
        return default


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero"""
    return int(math.floor(abs(value) + 0.5)) * (1 if value >= 0 else -1)


def median(values: Iterable[float]) -> float:
    """Median of a sequence, 0 for an empty one"""
    values = list(values)
    if not values:
        return 0.0
    return float(np.median(values))


def coefficient_of_variation(values: Iterable[float]) -> float:
    """Population standard deviation divided by the mean (0 when the mean is 0)"""
    values = list(values)
    if not values:
        return 0.0
    mean = float(np.mean(values))
    if mean == 0:
        return 0.0
    return float(np.std(values)) / mean


def mean(values: Iterable[float]) -> float:
    values = list(values)
    if not values:
        return 0.0
    return float(np.mean(values))


# ---------------------------------------------------------------------------
# Order timestamps
# ---------------------------------------------------------------------------

def _parse_iso_date(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%d")


def _parse_iso_datetime(value: str) -> datetime:
    return date_parser.isoparse(value)


def _parse_sql_datetime(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%d %H:%M:%S")


def _parse_ru_date(value: str) -> datetime:
    return datetime.strptime(value, "%d.%m.%Y")


# Tried in order, first success wins
ORDER_DATE_PARSERS = (
    _parse_iso_date,
    _parse_iso_datetime,
    _parse_sql_datetime,
    _parse_ru_date,
)


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_order_date(value: Any) -> Optional[datetime]:
    """
    Parse an order timestamp.

    Accepts ISO dates, ISO date-times, ``yyyy-MM-dd HH:mm:ss`` and
    ``dd.MM.yyyy``. Returns a naive (UTC) datetime, or None when no format
    matches so the caller can drop the record.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _to_naive_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())

    text = str(value).strip()
    if not text:
        return None

    for parse in ORDER_DATE_PARSERS:
        try:
            return _to_naive_utc(parse(text))
        except (ValueError, OverflowError):
            continue
    return None


def days_between(later: datetime, earlier: datetime) -> int:
    """Whole days between two instants, truncated toward zero"""
    return int((later - earlier).total_seconds() / 86400)


def to_fixed(value: float, digits: int = 2) -> str:
    """Format a number with a fixed number of decimals"""
    return f"{value:.{digits}f}"


def chunk_list(lst: List, chunk_size: int) -> List[List]:
    """Split list into chunks"""
    return [lst[i:i + chunk_size] for i in range(0, len(lst), chunk_size)]
