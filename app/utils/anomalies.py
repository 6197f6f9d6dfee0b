from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from app.utils.records import (
    amount_of,
    date_of,
    days_between,
    is_expense,
    record_value,
    round_half_up,
    transaction_summary,
)

logger = logging.getLogger(__name__)

SEVERITY_ORDER = {"high": 3, "medium": 2, "low": 1}
BASELINE_DAYS = 60


def sort_by_severity(anomalies: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(anomalies, key=lambda a: -SEVERITY_ORDER.get(a["severity"], 0))


class AnomalyDetector:
    """
    Flags unusual spending in a recent window against a historical baseline:
    days far above the average daily spend, single transactions far above
    their category's average, and sizeable transactions in the early hours.

    A transaction can be reported under more than one rule.
    """

    def __init__(
        self,
        baseline_days: int = BASELINE_DAYS,
        daily_multiplier: float = 3.0,
        daily_high_multiplier: float = 5.0,
        transaction_multiplier: float = 5.0,
        transaction_high_multiplier: float = 10.0,
        min_category_samples: int = 5,
        unusual_hours: Tuple[int, int] = (2, 5),
        unusual_time_min_amount: float = 100.0,
        max_results: int = 10,
        max_day_transactions: int = 5,
    ) -> None:
        self._baseline_days = baseline_days
        self._daily_multiplier = daily_multiplier
        self._daily_high_multiplier = daily_high_multiplier
        self._transaction_multiplier = transaction_multiplier
        self._transaction_high_multiplier = transaction_high_multiplier
        self._min_category_samples = min_category_samples
        self._unusual_hours = unusual_hours
        self._unusual_time_min_amount = unusual_time_min_amount
        self._max_results = max_results
        self._max_day_transactions = max_day_transactions

    def detect(
        self,
        recent_transactions: Optional[Iterable[Any]],
        historical_transactions: Optional[Iterable[Any]],
        now: datetime,
    ) -> List[Dict[str, Any]]:
        recent = []
        for record in recent_transactions or []:
            occurred = date_of(record)
            if occurred is None:
                logger.debug(f"Skipping recent record {record_value(record, 'id')!r} without a date")
                continue
            recent.append((record, occurred))
        historical = [r for r in (historical_transactions or []) if is_expense(r)]

        daily_average = sum(amount_of(r) for r in historical) / self._baseline_days

        anomalies: List[Dict[str, Any]] = []
        anomalies.extend(self._high_daily_spending(recent, daily_average, now))
        anomalies.extend(self._unusual_transactions(recent, historical, now))
        anomalies.extend(self._unusual_times(recent, now))

        ranked = sort_by_severity(anomalies)[: self._max_results]
        logger.info(
            f"Anomaly detection: daily average {daily_average:.2f}, "
            f"{len(anomalies)} found, returning {len(ranked)}"
        )
        return ranked

    def _high_daily_spending(
        self,
        recent: List[Tuple[Any, datetime]],
        daily_average: float,
        now: datetime,
    ) -> List[Dict[str, Any]]:
        by_day: Dict[Any, List[Any]] = defaultdict(list)
        for record, occurred in recent:
            if is_expense(record):
                by_day[occurred.date()].append(record)

        found = []
        for day, records in by_day.items():
            total = sum(amount_of(r) for r in records)
            if total <= daily_average * self._daily_multiplier:
                continue
            found.append(
                {
                    "type": "high_daily_spending",
                    "date": day.isoformat(),
                    "amount": round_half_up(total, 2),
                    "average": round_half_up(daily_average, 2),
                    "difference": round_half_up(total - daily_average, 2),
                    "days_ago": int(days_between(now, datetime(day.year, day.month, day.day))),
                    "transactions": [transaction_summary(r) for r in records[: self._max_day_transactions]],
                    "severity": "high" if total > daily_average * self._daily_high_multiplier else "medium",
                }
            )
        return found

    def _unusual_transactions(
        self,
        recent: List[Tuple[Any, datetime]],
        historical: List[Any],
        now: datetime,
    ) -> List[Dict[str, Any]]:
        sums: Dict[Any, List[float]] = defaultdict(lambda: [0.0, 0])
        for record in historical:
            category_id = record_value(record, "category_id")
            if category_id is None:
                continue
            sums[category_id][0] += amount_of(record)
            sums[category_id][1] += 1

        averages = {
            category_id: total / count
            for category_id, (total, count) in sums.items()
            if count > self._min_category_samples
        }

        found = []
        for record, occurred in recent:
            category_id = record_value(record, "category_id")
            if not is_expense(record) or category_id not in averages:
                continue
            amount = amount_of(record)
            category_average = averages[category_id]
            if amount <= category_average * self._transaction_multiplier:
                continue
            found.append(
                {
                    "type": "unusual_transaction",
                    "transaction_id": record_value(record, "id"),
                    "date": occurred.isoformat(),
                    "amount": amount,
                    "category_id": category_id,
                    "average": round_half_up(category_average, 2),
                    "description": record_value(record, "description", ""),
                    "days_ago": int(days_between(now, occurred)),
                    "severity": "high" if amount > category_average * self._transaction_high_multiplier else "medium",
                }
            )
        return found

    def _unusual_times(self, recent: List[Tuple[Any, datetime]], now: datetime) -> List[Dict[str, Any]]:
        first_hour, last_hour = self._unusual_hours
        found = []
        for record, occurred in recent:
            amount = amount_of(record)
            if not first_hour <= occurred.hour <= last_hour or amount <= self._unusual_time_min_amount:
                continue
            found.append(
                {
                    "type": "unusual_time",
                    "transaction_id": record_value(record, "id"),
                    "date": occurred.isoformat(),
                    "amount": amount,
                    "description": record_value(record, "description", ""),
                    "hour": occurred.hour,
                    "days_ago": int(days_between(now, occurred)),
                    "severity": "low",
                }
            )
        return found


def detect_anomalies(
    recent_transactions: Optional[Iterable[Any]],
    historical_transactions: Optional[Iterable[Any]],
    now: datetime,
) -> List[Dict[str, Any]]:
    return AnomalyDetector().detect(recent_transactions, historical_transactions, now)
