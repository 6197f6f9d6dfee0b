from __future__ import annotations

import calendar
import logging
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Tuple

logger = logging.getLogger(__name__)


def record_value(record: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from a dict-like record or from an attribute of an object."""
    if record is None:
        return default
    if isinstance(record, dict):
        value = record.get(key, default)
    else:
        value = getattr(record, key, default)
    return default if value is None else value


def coerce_amount(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        if isinstance(value, Decimal):
            return float(value)
        return float(Decimal(str(value).strip()))
    except (InvalidOperation, ValueError, TypeError):
        logger.debug(f"Unparseable amount {value!r}, counting as 0")
        return 0.0


def coerce_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            logger.debug(f"Unparseable date {value!r}")
            return None
    return None


def naive(value: datetime) -> datetime:
    """Drop tzinfo after converting to UTC so aware and naive values compare."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def days_between(later: datetime, earlier: datetime) -> float:
    return (naive(later) - naive(earlier)).total_seconds() / 86400


def amount_of(record: Any) -> float:
    return coerce_amount(record_value(record, "amount"))


def date_of(record: Any) -> Optional[datetime]:
    return coerce_datetime(record_value(record, "date"))


def is_expense(record: Any) -> bool:
    return record_value(record, "type", "expense") in ("", "expense")


def month_key(value: datetime) -> Tuple[int, int]:
    return value.year, value.month


def shift_month(year: int, month: int, offset: int) -> Tuple[int, int]:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def transaction_summary(record: Any) -> dict:
    return {
        "id": record_value(record, "id"),
        "amount": amount_of(record),
        "description": record_value(record, "description", ""),
        "category_id": record_value(record, "category_id"),
    }


def round_half_up(value: float, places: int = 0):
    """Round with halves going away from zero; ``round()`` sends them to the even neighbour."""
    rounded = Decimal(str(value)).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    return int(rounded) if places == 0 else float(rounded)
