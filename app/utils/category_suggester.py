from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from app.utils.records import (
    amount_of,
    coerce_amount,
    date_of,
    days_between,
    record_value,
    round_half_up,
)
from app.utils.similarity import TextSimilarityMatcher

logger = logging.getLogger(__name__)

RECENCY_TIME_CONSTANT_DAYS = 60.0

EXACT_MATCH_SIMILARITY = 0.85
HIGH_SIMILARITY = 0.75
PARTIAL_SIMILARITY = 0.5
CATEGORY_NAME_SIMILARITY = 0.6

EXACT_MATCH_AMOUNT_TOLERANCE = 0.10
CLOSE_AMOUNT_TOLERANCE = 0.15
EXACT_AMOUNT_EPSILON = 0.01

RECURRING_MIN_DAYS = 10
RECURRING_MIN_OCCURRENCES = 15
RECURRING_BONUS = 15.0

GENERIC_USAGE_THRESHOLD = 20
GENERIC_PENALTY_PER_USE = 0.5

# Tags that show a category earned its score from the query itself.
SPECIFIC_MATCH_TAGS = frozenset(
    {"exact_match", "similar_description", "exact_amount", "category_name_match"}
)


@dataclass
class CategoryScore:
    """Per-category accumulator built during a single suggestion call."""

    category: Any
    score: float = 0.0
    reasons: List[str] = field(default_factory=list)
    usage_count: int = 0
    avg_amount: float = 0.0
    matched_transaction: Any = None
    active_days: Set[Any] = field(default_factory=set)

    def add(self, points: float, reason: str) -> None:
        self.score += points
        if reason not in self.reasons:
            self.reasons.append(reason)

    def capture_match(self, record: Any) -> None:
        """Earliest-to-score capture: the first record that scores a match is kept."""
        if self.matched_transaction is None:
            self.matched_transaction = record

    def observe(self, amount: float) -> None:
        self.usage_count += 1
        self.avg_amount += (amount - self.avg_amount) / self.usage_count

    def to_dict(self) -> Dict[str, Any]:
        matched = self.matched_transaction
        return {
            "category_id": record_value(self.category, "id"),
            "category_name": record_value(self.category, "name"),
            "category_icon": record_value(self.category, "icon"),
            "category_color": record_value(self.category, "color"),
            "confidence": min(self.score / 100, 1.0),
            "reasons": list(self.reasons),
            "avg_amount": round_half_up(self.avg_amount),
            "usage_count": self.usage_count,
            "matched_description": record_value(matched, "description") if matched is not None else None,
            "matched_amount": amount_of(matched) if matched is not None else None,
        }


def recency_weight(days_ago: float, time_constant: float = RECENCY_TIME_CONSTANT_DAYS) -> float:
    return math.exp(-max(days_ago, 1.0) / time_constant)


def _within(amount: float, other: float, tolerance: float) -> bool:
    return abs(amount - other) <= amount * tolerance


class CategorySuggestionEngine:
    """
    Ranks a user's categories for a new transaction by learning from that
    user's own categorized history.

    Each historical record contributes to its category's score according to
    description similarity and amount closeness, scaled by an exponential
    recency weight. Category names, recurring usage patterns and a penalty
    for catch-all categories adjust the totals afterwards.
    """

    def __init__(
        self,
        matcher: Optional[TextSimilarityMatcher] = None,
        max_suggestions: int = 3,
        min_score: float = 2.0,
        time_constant_days: float = RECENCY_TIME_CONSTANT_DAYS,
    ) -> None:
        self._matcher = matcher or TextSimilarityMatcher()
        self._max_suggestions = max_suggestions
        self._min_score = min_score
        self._time_constant = time_constant_days

    def suggest(
        self,
        history: Optional[Iterable[Any]],
        categories: Optional[Iterable[Any]],
        description: Optional[str],
        amount: Any,
        transaction_type: str,
        now: datetime,
    ) -> List[Dict[str, Any]]:
        description = (description or "").strip()
        query_amount = coerce_amount(amount)
        history = list(history or [])

        if not description and query_amount == 0:
            return []
        if not history:
            return []

        scores = self._candidate_scores(categories, transaction_type)
        if not scores:
            return []

        self._score_history(scores, history, description, query_amount, transaction_type, now)
        if description:
            self._score_category_names(scores, description)
        self._apply_recurring_bonus(scores)
        if description:
            self._apply_generic_penalty(scores)

        ranked = sorted(
            (s for s in scores.values() if s.score > self._min_score),
            key=lambda s: s.score,
            reverse=True,
        )[: self._max_suggestions]

        logger.debug(
            f"Category suggestion for {description!r}/{query_amount}: "
            f"{len(history)} records, {len(ranked)} suggestions"
        )
        return [s.to_dict() for s in ranked]

    @staticmethod
    def _candidate_scores(categories: Optional[Iterable[Any]], transaction_type: str) -> Dict[Any, CategoryScore]:
        scores: Dict[Any, CategoryScore] = {}
        for category in categories or []:
            if record_value(category, "type", "both") not in (transaction_type, "both"):
                continue
            category_id = record_value(category, "id")
            if category_id is not None and category_id not in scores:
                scores[category_id] = CategoryScore(category=category)
        return scores

    def _score_history(
        self,
        scores: Dict[Any, CategoryScore],
        history: List[Any],
        description: str,
        query_amount: float,
        transaction_type: str,
        now: datetime,
    ) -> None:
        has_description = bool(description)

        for record in history:
            entry = scores.get(record_value(record, "category_id"))
            if entry is None:
                continue
            if record_value(record, "type", transaction_type) != transaction_type:
                continue

            occurred = date_of(record)
            if occurred is None:
                logger.debug(f"Skipping history record {record_value(record, 'id')!r} without a date")
                continue

            record_amount = amount_of(record)
            weight = recency_weight(days_between(now, occurred), self._time_constant)

            similarity = 0.0
            if has_description:
                similarity = self._matcher.similarity(description, record_value(record, "description", ""))

            if similarity >= EXACT_MATCH_SIMILARITY and query_amount > 0 and _within(
                query_amount, record_amount, EXACT_MATCH_AMOUNT_TOLERANCE
            ):
                entry.add(100 * weight * similarity, "exact_match")
                entry.capture_match(record)
            elif similarity >= HIGH_SIMILARITY:
                entry.add(60 * weight * similarity, "similar_description")
            elif similarity >= PARTIAL_SIMILARITY:
                entry.add(30 * weight * similarity, "partial_match")

            if query_amount > 0:
                if abs(query_amount - record_amount) < EXACT_AMOUNT_EPSILON:
                    entry.add((25 if has_description else 50) * weight, "exact_amount")
                    if not has_description:
                        entry.capture_match(record)
                elif _within(query_amount, record_amount, CLOSE_AMOUNT_TOLERANCE):
                    entry.add((10 if has_description else 25) * weight, "similar_amount")

            entry.observe(record_amount)
            entry.active_days.add(occurred.date())

    def _score_category_names(self, scores: Dict[Any, CategoryScore], description: str) -> None:
        for entry in scores.values():
            similarity = self._matcher.similarity(description, record_value(entry.category, "name", ""))
            if similarity >= CATEGORY_NAME_SIMILARITY:
                entry.add(40 * similarity, "category_name_match")

    @staticmethod
    def _apply_recurring_bonus(scores: Dict[Any, CategoryScore]) -> None:
        for entry in scores.values():
            if len(entry.active_days) >= RECURRING_MIN_DAYS and entry.usage_count >= RECURRING_MIN_OCCURRENCES:
                entry.add(RECURRING_BONUS, "recurring_pattern")

    @staticmethod
    def _apply_generic_penalty(scores: Dict[Any, CategoryScore]) -> None:
        for entry in scores.values():
            if SPECIFIC_MATCH_TAGS.intersection(entry.reasons):
                continue
            if entry.usage_count > GENERIC_USAGE_THRESHOLD:
                entry.score = max(0.0, entry.score - entry.usage_count * GENERIC_PENALTY_PER_USE)


def suggest_categories(
    history: Optional[Iterable[Any]],
    categories: Optional[Iterable[Any]],
    description: Optional[str],
    amount: Any,
    transaction_type: str,
    now: datetime,
) -> List[Dict[str, Any]]:
    return CategorySuggestionEngine().suggest(history, categories, description, amount, transaction_type, now)
