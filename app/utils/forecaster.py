from __future__ import annotations

import calendar
import logging
import random
import statistics
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from app.utils.records import (
    amount_of,
    date_of,
    is_expense,
    month_key,
    record_value,
    round_half_up,
    shift_month,
)

logger = logging.getLogger(__name__)

MIN_TRANSACTIONS_FOR_FORECAST = 10
MIN_MONTHS_OF_DATA = 2
HISTORY_MONTHS = 6
MAX_TREND_STEP = 0.10
JITTER_SCALE = 0.1
TREND_LABEL_THRESHOLD = 5.0


def forecast_confidence(month_offset: int) -> float:
    return max(0.3, 1 - month_offset * 0.15)


def trend_label(trend_percentage: float) -> str:
    if trend_percentage > TREND_LABEL_THRESHOLD:
        return "increasing"
    if trend_percentage < -TREND_LABEL_THRESHOLD:
        return "decreasing"
    return "stable"


def weighted_average(totals_recent_first: List[float]) -> float:
    """Most recent month weighs N, the oldest weighs 1."""
    count = len(totals_recent_first)
    weights = [count - i for i in range(count)]
    if not weights:
        return 0.0
    return sum(t * w for t, w in zip(totals_recent_first, weights)) / sum(weights)


def trend_percentage(totals_recent_first: List[float]) -> float:
    recent = totals_recent_first[:3]
    older = totals_recent_first[3:6]
    recent_avg = statistics.fmean(recent) if recent else 0.0
    older_avg = statistics.fmean(older) if older else recent_avg
    if older_avg <= 0:
        return 0.0
    return (recent_avg - older_avg) / older_avg * 100


class ExpenseForecaster:
    """
    Projects monthly expenses from a recency-weighted average of the last
    months, nudged by a capped trend and a small random perturbation.

    ``rng`` is any object with a ``random()`` method; pass a seeded
    ``random.Random`` (or disable ``jitter``) for reproducible output.
    """

    def __init__(
        self,
        rng: Optional[Any] = None,
        jitter: bool = True,
        min_transactions: int = MIN_TRANSACTIONS_FOR_FORECAST,
        min_months: int = MIN_MONTHS_OF_DATA,
        history_months: int = HISTORY_MONTHS,
        max_trend_step: float = MAX_TREND_STEP,
    ) -> None:
        self._rng = rng if rng is not None else random.Random()
        self._jitter = jitter
        self._min_transactions = min_transactions
        self._min_months = min_months
        self._history_months = history_months
        self._max_trend_step = max_trend_step

    def forecast(
        self,
        historical_expenses: Optional[Iterable[Any]],
        recurring_definitions: Optional[Iterable[Any]],
        now: datetime,
        months_ahead: int = 3,
    ) -> Dict[str, Any]:
        dated: List[Tuple[Any, datetime]] = []
        for record in historical_expenses or []:
            if not is_expense(record):
                continue
            occurred = date_of(record)
            if occurred is None:
                logger.debug(f"Skipping forecast record {record_value(record, 'id')!r} without a date")
                continue
            dated.append((record, occurred))

        months_seen = {month_key(occurred) for _, occurred in dated}
        if len(dated) < self._min_transactions or len(months_seen) < self._min_months:
            logger.info(
                f"Not enough data to forecast: {len(dated)} transactions over {len(months_seen)} months"
            )
            return {
                "has_enough_data": False,
                "min_transactions_needed": self._min_transactions,
                "current_transactions": len(dated),
                "min_months_needed": self._min_months,
                "current_months": len(months_seen),
                "forecast": [],
            }

        monthly = self._monthly_totals(dated, now)
        totals = [monthly[key] for key in sorted(monthly, reverse=True)]
        average = weighted_average(totals)
        trend = trend_percentage(totals)
        variance_ratio = self._variance_ratio(totals)
        recurring_total = self._recurring_total(recurring_definitions or [])
        step = max(-self._max_trend_step, min(self._max_trend_step, trend / 100))
        label = trend_label(trend)

        forecast = []
        for month_offset in range(1, months_ahead + 1):
            year, month = shift_month(now.year, now.month, month_offset)
            trend_multiplier = 1 + step * month_offset
            total = round_half_up(average * trend_multiplier * self._variance_factor(variance_ratio))
            forecast.append(
                {
                    "month": month,
                    "year": year,
                    "month_name": f"{calendar.month_name[month]} {year}",
                    "total": total,
                    "recurring_total": round_half_up(recurring_total, 2),
                    "trend": label,
                    "trend_amount": round_half_up(total - average),
                    "confidence": forecast_confidence(month_offset),
                }
            )

        logger.info(
            f"Forecast over {len(totals)} months: average {average:.2f}, trend {trend:.1f}%"
        )
        return {
            "has_enough_data": True,
            "historical_average": round_half_up(average),
            "trend_percentage": round_half_up(trend),
            "data_months": len(months_seen),
            "forecast": forecast,
        }

    def _monthly_totals(self, dated: List[Tuple[Any, datetime]], now: datetime) -> Dict[Tuple[int, int], float]:
        """Totals for each of the preceding months; months without records are left out."""
        wanted = {shift_month(now.year, now.month, -i) for i in range(1, self._history_months + 1)}
        totals: Dict[Tuple[int, int], float] = {}
        for record, occurred in dated:
            key = month_key(occurred)
            if key in wanted:
                totals[key] = totals.get(key, 0.0) + amount_of(record)
        return totals

    @staticmethod
    def _variance_ratio(totals: List[float]) -> float:
        if not totals:
            return 0.0
        mean = statistics.fmean(totals)
        if mean == 0:
            return 0.0
        return statistics.pstdev(totals) / mean

    def _variance_factor(self, variance_ratio: float) -> float:
        if not self._jitter:
            return 1.0
        return 1 + (self._rng.random() - 0.5) * JITTER_SCALE * variance_ratio

    @staticmethod
    def _recurring_total(definitions: Iterable[Any]) -> float:
        return sum(
            amount_of(d)
            for d in definitions
            if record_value(d, "is_active", True) and is_expense(d)
        )


def forecast_expenses(
    historical_expenses: Optional[Iterable[Any]],
    recurring_definitions: Optional[Iterable[Any]],
    now: datetime,
    months_ahead: int = 3,
    rng: Optional[Any] = None,
) -> Dict[str, Any]:
    return ExpenseForecaster(rng=rng).forecast(historical_expenses, recurring_definitions, now, months_ahead)
