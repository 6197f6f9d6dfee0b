from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from app.utils.records import (
    amount_of,
    date_of,
    days_in_month,
    month_key,
    record_value,
    round_half_up,
)

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {"high": 3, "medium": 2, "low": 1}
UNCATEGORIZED_NAME = "Uncategorized"


@dataclass
class CategoryTotal:
    total: float = 0.0
    count: int = 0

    def add(self, amount: float) -> None:
        self.total += amount
        self.count += 1


@dataclass
class RecommendationSet:
    """Recommendations collected during one call, plus the categories already flagged."""

    names: Dict[Any, Any]
    items: List[Dict[str, Any]] = field(default_factory=list)
    flagged: Set[Any] = field(default_factory=set)

    def emit(
        self,
        kind: str,
        priority: str,
        potential_savings: float,
        category_id: Any = None,
        *,
        overall: bool = False,
        flag: bool = False,
        **details: Any,
    ) -> None:
        if overall:
            name = None
        elif category_id is None:
            name = UNCATEGORIZED_NAME
        else:
            name = self.names.get(category_id)

        entry = {
            "type": kind,
            "category_id": category_id,
            "category_name": name,
            "priority": priority,
            "potential_savings": round_half_up(potential_savings, 2),
        }
        entry.update(details)
        self.items.append(entry)
        if flag and not overall:
            self.flagged.add(category_id)


def category_totals(expenses: Iterable[Any]) -> Dict[Any, CategoryTotal]:
    """Aggregate spend per category; ``None`` keys the uncategorized bucket."""
    totals: Dict[Any, CategoryTotal] = defaultdict(CategoryTotal)
    for expense in expenses:
        totals[record_value(expense, "category_id")].add(amount_of(expense))
    return dict(totals)


def count_months(expenses: Iterable[Any]) -> int:
    months = {month_key(d) for d in (date_of(e) for e in expenses) if d is not None}
    return max(len(months), 1)


def sort_by_priority(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(
        items,
        key=lambda item: (-PRIORITY_ORDER.get(item["priority"], 0), -item["potential_savings"]),
    )


class SavingsRecommendationEngine:
    """
    Compares this month's spending with last month, the trailing window,
    budgets and recurring definitions to surface where money can be saved.
    """

    def __init__(
        self,
        max_recommendations: int = 8,
        high_spending_threshold: float = 200.0,
        high_spending_priority_threshold: float = 1000.0,
        increase_threshold_pct: float = 80.0,
        increase_high_pct: float = 150.0,
        increase_min_current: float = 300.0,
        increase_min_previous: float = 50.0,
        small_transaction_count: int = 15,
        small_transaction_average: float = 40.0,
        recurring_min_amount: float = 50.0,
        recurring_overrun_ratio: float = 1.3,
        spike_multiplier: float = 2.0,
        spike_window_months: int = 3,
        no_budget_min_total: float = 300.0,
        no_budget_max_tips: int = 2,
    ) -> None:
        self._max_recommendations = max_recommendations
        self._high_spending_threshold = high_spending_threshold
        self._high_spending_priority_threshold = high_spending_priority_threshold
        self._increase_threshold_pct = increase_threshold_pct
        self._increase_high_pct = increase_high_pct
        self._increase_min_current = increase_min_current
        self._increase_min_previous = increase_min_previous
        self._small_transaction_count = small_transaction_count
        self._small_transaction_average = small_transaction_average
        self._recurring_min_amount = recurring_min_amount
        self._recurring_overrun_ratio = recurring_overrun_ratio
        self._spike_multiplier = spike_multiplier
        self._spike_window_months = spike_window_months
        self._no_budget_min_total = no_budget_min_total
        self._no_budget_max_tips = no_budget_max_tips

    def recommend(
        self,
        current_month_expenses: Optional[Iterable[Any]],
        prev_month_expenses: Optional[Iterable[Any]],
        trailing_expenses: Optional[Iterable[Any]],
        budgets: Optional[Iterable[Any]],
        recurring_definitions: Optional[Iterable[Any]],
        now: datetime,
        categories: Optional[Iterable[Any]] = None,
        current_month_income: Optional[Iterable[Any]] = None,
    ) -> List[Dict[str, Any]]:
        current_expenses = list(current_month_expenses or [])
        trailing = list(trailing_expenses or [])

        result = RecommendationSet(
            names={record_value(c, "id"): record_value(c, "name") for c in (categories or [])}
        )
        actual_months = count_months(trailing)
        current = category_totals(current_expenses)
        previous = category_totals(prev_month_expenses or [])

        budgeted = self._compare_budgets(result, budgets or [], current, now)
        self._high_spending(result, budgeted, current, previous, category_totals(trailing), actual_months)
        self._spending_increase(result, current, previous)
        self._spending_decrease(result, current, previous)
        self._many_small(result, current)
        self._recurring_exceeded(result, recurring_definitions or [], current, current_expenses)
        self._unusual_spike(result, trailing)
        self._monthly_pace(result, current, previous, now)
        self._no_budget_set(result, budgeted, current)
        if current_month_income is not None:
            self._income_ratio(result, current, current_month_income, now)

        ranked = sort_by_priority(result.items)[: self._max_recommendations]
        logger.info(
            f"Savings recommendations: {len(result.items)} candidates over "
            f"{actual_months} trailing months, returning {len(ranked)}"
        )
        return ranked

    def _compare_budgets(
        self,
        result: RecommendationSet,
        budgets: Iterable[Any],
        current: Dict[Any, CategoryTotal],
        now: datetime,
    ) -> Set[Any]:
        budgeted: Set[Any] = set()
        month_total = sum(t.total for t in current.values())
        days_left = days_in_month(now.year, now.month) - now.day

        for budget in budgets:
            category_id = record_value(budget, "category_id")
            budget_amount = amount_of(budget)
            overall = category_id is None
            if not overall:
                budgeted.add(category_id)
            if budget_amount <= 0:
                continue

            if overall:
                spent = month_total
            else:
                spent = current[category_id].total if category_id in current else 0.0
            percent_used = spent / budget_amount * 100

            if percent_used > 100:
                result.emit(
                    "over_budget",
                    "high",
                    spent - budget_amount,
                    category_id,
                    overall=overall,
                    flag=True,
                    budget=round_half_up(budget_amount, 2),
                    spent=round_half_up(spent, 2),
                    over_budget_percentage=round_half_up(percent_used - 100),
                )
            elif percent_used >= 80:
                remaining = budget_amount - spent
                result.emit(
                    "approaching_budget",
                    "high",
                    0.0,
                    category_id,
                    overall=overall,
                    flag=True,
                    budget=round_half_up(budget_amount, 2),
                    spent=round_half_up(spent, 2),
                    percent_used=round_half_up(percent_used),
                    remaining=round_half_up(remaining, 2),
                    days_left=days_left,
                    daily_limit=round_half_up(remaining / days_left, 2) if days_left > 0 else 0.0,
                )
        return budgeted

    def _high_spending(
        self,
        result: RecommendationSet,
        budgeted: Set[Any],
        current: Dict[Any, CategoryTotal],
        previous: Dict[Any, CategoryTotal],
        trailing: Dict[Any, CategoryTotal],
        actual_months: int,
    ) -> None:
        for category_id, stat in current.items():
            if category_id in budgeted or category_id in result.flagged:
                continue
            if stat.total <= self._high_spending_threshold:
                continue

            details: Dict[str, Any] = {"spent": round_half_up(stat.total, 2)}
            if category_id in trailing:
                details["monthly_average"] = round_half_up(trailing[category_id].total / actual_months, 2)
            prev = previous.get(category_id)
            if prev is not None and prev.total > 0:
                details["increase_percentage"] = round_half_up((stat.total - prev.total) / prev.total * 100)

            priority = "high" if stat.total > self._high_spending_priority_threshold else "medium"
            result.emit("high_spending", priority, stat.total * 0.2, category_id, flag=True, **details)

    def _spending_increase(
        self,
        result: RecommendationSet,
        current: Dict[Any, CategoryTotal],
        previous: Dict[Any, CategoryTotal],
    ) -> None:
        for category_id, stat in current.items():
            prev = previous.get(category_id)
            if prev is None or prev.total < self._increase_min_previous or category_id in result.flagged:
                continue

            increase = (stat.total - prev.total) / prev.total * 100
            if increase > self._increase_threshold_pct and stat.total > self._increase_min_current:
                result.emit(
                    "spending_increase",
                    "high" if increase > self._increase_high_pct else "medium",
                    stat.total - prev.total,
                    category_id,
                    flag=True,
                    current_amount=round_half_up(stat.total, 2),
                    previous_amount=round_half_up(prev.total, 2),
                    increase_percentage=round_half_up(increase),
                )

    @staticmethod
    def _spending_decrease(
        result: RecommendationSet,
        current: Dict[Any, CategoryTotal],
        previous: Dict[Any, CategoryTotal],
    ) -> None:
        # Positive reinforcement, never counted as savings.
        for category_id, prev in previous.items():
            stat = current.get(category_id)
            if stat is None or prev.total < 100:
                continue
            decrease = (prev.total - stat.total) / prev.total * 100
            if decrease > 30 and prev.total > 200:
                result.emit(
                    "spending_decrease",
                    "low",
                    0.0,
                    category_id,
                    saved_amount=round_half_up(prev.total - stat.total, 2),
                    decrease_percentage=round_half_up(decrease),
                )

    def _many_small(self, result: RecommendationSet, current: Dict[Any, CategoryTotal]) -> None:
        for category_id, stat in current.items():
            if stat.count <= self._small_transaction_count:
                continue
            average = stat.total / stat.count
            if average < self._small_transaction_average:
                result.emit(
                    "many_small",
                    "medium",
                    stat.total * 0.15,
                    category_id,
                    transaction_count=stat.count,
                    average_transaction=round_half_up(average, 2),
                )

    def _recurring_exceeded(
        self,
        result: RecommendationSet,
        definitions: Iterable[Any],
        current: Dict[Any, CategoryTotal],
        current_expenses: List[Any],
    ) -> None:
        for definition in definitions:
            if not record_value(definition, "is_active", True):
                continue
            expected = amount_of(definition)
            if expected <= self._recurring_min_amount:
                continue

            category_id = record_value(definition, "category_id")
            description = record_value(definition, "description", "") or ""
            if category_id is not None:
                if category_id in result.flagged:
                    continue
                actual = current[category_id].total if category_id in current else 0.0
            else:
                pattern = description.strip().lower()
                if not pattern:
                    continue
                actual = sum(
                    amount_of(e)
                    for e in current_expenses
                    if pattern in (record_value(e, "description", "") or "").lower()
                )

            if actual > expected * self._recurring_overrun_ratio:
                result.emit(
                    "recurring_exceeded",
                    "medium",
                    actual - expected,
                    category_id,
                    flag=category_id is not None,
                    description=description,
                    expected=round_half_up(expected, 2),
                    actual=round_half_up(actual, 2),
                )

    @staticmethod
    def _monthly_pace(
        result: RecommendationSet,
        current: Dict[Any, CategoryTotal],
        previous: Dict[Any, CategoryTotal],
        now: datetime,
    ) -> None:
        if now.day <= 7:
            return
        previous_total = sum(t.total for t in previous.values())
        if previous_total <= 0:
            return

        daily_average = sum(t.total for t in current.values()) / now.day
        projected = daily_average * days_in_month(now.year, now.month)
        if projected > previous_total * 1.2:
            result.emit(
                "monthly_pace",
                "medium",
                projected - previous_total,
                overall=True,
                projected=round_half_up(projected, 2),
                previous_month=round_half_up(previous_total, 2),
                daily_average=round_half_up(daily_average, 2),
            )

    def _unusual_spike(self, result: RecommendationSet, trailing: List[Any]) -> None:
        """Trailing-window transactions well above their category's per-transaction average."""
        averages = {
            category_id: stat.total / stat.count
            for category_id, stat in category_totals(trailing).items()
            if stat.count > 0
        }
        excess = 0.0
        spikes = 0
        for expense in trailing:
            average = averages[record_value(expense, "category_id")]
            amount = amount_of(expense)
            if amount > average * self._spike_multiplier:
                excess += amount - average
                spikes += 1
        if spikes:
            result.emit(
                "unusual_spike",
                "high",
                excess / self._spike_window_months,
                overall=True,
                spike_count=spikes,
                excess_amount=round_half_up(excess, 2),
            )

    def _no_budget_set(
        self,
        result: RecommendationSet,
        budgeted: Set[Any],
        current: Dict[Any, CategoryTotal],
    ) -> None:
        unbudgeted = sorted(
            (
                (category_id, stat)
                for category_id, stat in current.items()
                if category_id is not None and category_id not in budgeted
            ),
            key=lambda pair: pair[1].total,
            reverse=True,
        )
        for category_id, stat in unbudgeted[: self._no_budget_max_tips]:
            if stat.total <= self._no_budget_min_total:
                continue
            result.emit(
                "no_budget_set",
                "low",
                stat.total * 0.1,
                category_id,
                spent=round_half_up(stat.total, 2),
                suggested_budget=round_half_up(stat.total * 0.9, 2),
            )

    @staticmethod
    def _income_ratio(
        result: RecommendationSet,
        current: Dict[Any, CategoryTotal],
        income: Iterable[Any],
        now: datetime,
    ) -> None:
        if now.day <= 10:
            return
        income_total = sum(amount_of(i) for i in income)
        expense_total = sum(t.total for t in current.values())
        if income_total > 0 and expense_total > income_total * 0.9:
            result.emit(
                "income_ratio",
                "high",
                0.0,
                overall=True,
                expenses=round_half_up(expense_total, 2),
                income=round_half_up(income_total, 2),
                ratio=round_half_up(expense_total / income_total * 100),
            )


def recommend_savings(
    current_month_expenses: Optional[Iterable[Any]],
    prev_month_expenses: Optional[Iterable[Any]],
    trailing_expenses: Optional[Iterable[Any]],
    budgets: Optional[Iterable[Any]],
    recurring_definitions: Optional[Iterable[Any]],
    now: datetime,
    categories: Optional[Iterable[Any]] = None,
    current_month_income: Optional[Iterable[Any]] = None,
) -> List[Dict[str, Any]]:
    return SavingsRecommendationEngine().recommend(
        current_month_expenses,
        prev_month_expenses,
        trailing_expenses,
        budgets,
        recurring_definitions,
        now,
        categories=categories,
        current_month_income=current_month_income,
    )
