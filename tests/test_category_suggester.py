import math
from datetime import datetime, timedelta

from app.utils.category_suggester import (
    CategorySuggestionEngine,
    recency_weight,
    suggest_categories,
)

NOW = datetime(2026, 10, 19, 12, 0, 0)

categories = [
    {"id": "cafe", "name": "Cafe", "type": "expense", "icon": "coffee", "color": "#6f4e37"},
    {"id": "groceries", "name": "Groceries", "type": "expense", "icon": "cart", "color": "#2e7d32"},
    {"id": "transport", "name": "Transport", "type": "expense", "icon": "bus", "color": "#1565c0"},
    {"id": "misc", "name": "Other", "type": "both", "icon": "dots", "color": "#9e9e9e"},
    {"id": "salary", "name": "Salary", "type": "income", "icon": "bank", "color": "#ffb300"},
]


def _tx(category_id, description, amount, days_ago, tx_id=None, tx_type="expense"):
    return {
        "id": tx_id or f"{category_id}-{description}-{days_ago}",
        "type": tx_type,
        "category_id": category_id,
        "description": description,
        "amount": amount,
        "date": NOW - timedelta(days=days_ago),
    }


def test_starbucks_exact_match_scenario():
    history = [_tx("cafe", "Starbucks", 18, 5)]
    result = suggest_categories(history, categories, "starbucks", 18, "expense", NOW)

    assert result[0]["category_id"] == "cafe"
    assert "exact_match" in result[0]["reasons"]
    assert result[0]["confidence"] > 0.5
    assert result[0]["matched_description"] == "Starbucks"
    assert result[0]["matched_amount"] == 18.0
    assert result[0]["category_name"] == "Cafe"


def test_empty_query_and_empty_history_return_nothing():
    history = [_tx("cafe", "Starbucks", 18, 5)]
    assert suggest_categories(history, categories, "", 0, "expense", NOW) == []
    assert suggest_categories([], categories, "starbucks", 18, "expense", NOW) == []
    assert suggest_categories(None, categories, "starbucks", 18, "expense", NOW) == []


def test_at_most_three_suggestions_with_bounded_confidence():
    history = [
        _tx("cafe", "coffee shop", 20, 3),
        _tx("groceries", "coffee beans", 20, 4),
        _tx("transport", "coffee and train", 20, 6),
        _tx("misc", "coffee", 20, 8),
    ]
    result = suggest_categories(history, categories, "coffee", 20, "expense", NOW)
    assert 0 < len(result) <= 3
    for suggestion in result:
        assert 0.0 <= suggestion["confidence"] <= 1.0


def test_exact_match_ranks_first_over_frequent_category():
    history = [_tx("groceries", f"supermarket run {i}", 75 + i, i + 1) for i in range(12)]
    history.append(_tx("cafe", "Blue Bottle", 6.5, 20))
    result = suggest_categories(history, categories, "Blue Bottle", 6.5, "expense", NOW)

    assert result[0]["category_id"] == "cafe"
    assert "exact_match" in result[0]["reasons"]


def test_similar_description_with_amount_out_of_range():
    history = [_tx("cafe", "Starbuck coffee", 40, 5)]

    result = suggest_categories(history, categories, "Starbucks coffee", 18, "expense", NOW)

    cafe = [s for s in result if s["category_id"] == "cafe"][0]
    assert "similar_description" in cafe["reasons"]
    assert "exact_match" not in cafe["reasons"]
    assert cafe["matched_description"] is None
    # one edit over 16 characters
    assert abs(cafe["confidence"] - 0.6 * math.exp(-5 / 60) * (15 / 16)) < 1e-9


def test_partial_match_tier():
    history = [_tx("groceries", "paymxyz", 500, 5)]

    result = suggest_categories(history, categories, "payment", 18, "expense", NOW)

    groceries = [s for s in result if s["category_id"] == "groceries"][0]
    assert groceries["reasons"] == ["partial_match"]
    assert abs(groceries["confidence"] - 0.3 * math.exp(-5 / 60) * (4 / 7)) < 1e-9


def test_recent_match_scores_higher_than_older_match():
    assert recency_weight(5) > recency_weight(30)
    assert recency_weight(0) == recency_weight(1)

    recent = suggest_categories([_tx("cafe", "Starbucks", 18, 5)], categories, "starbucks", 18, "expense", NOW)
    older = suggest_categories([_tx("cafe", "Starbucks", 18, 90)], categories, "starbucks", 18, "expense", NOW)
    assert recent[0]["confidence"] > older[0]["confidence"]


def test_amount_only_lookup_captures_matched_transaction():
    history = [
        _tx("transport", "monthly pass", 45, 10, tx_id="pass"),
        _tx("groceries", "market", 120, 4),
    ]
    result = suggest_categories(history, categories, "", 45, "expense", NOW)

    assert result[0]["category_id"] == "transport"
    assert "exact_amount" in result[0]["reasons"]
    assert result[0]["matched_description"] == "monthly pass"


def test_first_scoring_transaction_is_the_match():
    history = [
        _tx("cafe", "Starbucks", 18, 2, tx_id="newer"),
        _tx("cafe", "Starbucks", 18.5, 9, tx_id="older"),
    ]
    result = suggest_categories(history, categories, "Starbucks", 18, "expense", NOW)
    assert result[0]["matched_amount"] == 18.0


def test_category_name_match_without_history_signal():
    history = [_tx("transport", "bus", 3, 2)]
    result = suggest_categories(history, categories, "groceries", 250, "expense", NOW)

    by_id = {s["category_id"]: s for s in result}
    assert "groceries" in by_id
    assert "category_name_match" in by_id["groceries"]["reasons"]


def test_income_categories_ignored_for_expense_queries():
    history = [
        _tx("salary", "Payroll", 5000, 3, tx_type="income"),
        _tx("groceries", "Payroll deli", 50, 3),
    ]
    result = suggest_categories(history, categories, "Payroll", 5000, "expense", NOW)
    assert all(s["category_id"] != "salary" for s in result)


def test_recurring_pattern_bonus():
    history = [_tx("transport", "train ticket", 4.2, i) for i in range(1, 17)]
    result = suggest_categories(history, categories, "train ticket", 4.2, "expense", NOW)

    assert result[0]["category_id"] == "transport"
    assert "recurring_pattern" in result[0]["reasons"]
    assert result[0]["usage_count"] == 16


def test_generic_category_penalty_suppresses_volume_only_scores():
    # 40 old entries sharing one day: only close amounts, no specific signal
    history = [_tx("misc", "zzzz", 105, 280, tx_id=f"old-{i}") for i in range(40)]
    engine = CategorySuggestionEngine()

    amount_only = engine.suggest(history, categories, "", 100, "expense", NOW)
    assert [s["category_id"] for s in amount_only] == ["misc"]
    assert amount_only[0]["reasons"] == ["similar_amount"]

    penalized = engine.suggest(history, categories, "payment", 100, "expense", NOW)
    assert all(s["category_id"] != "misc" for s in penalized)


def test_malformed_records_do_not_abort():
    history = [
        {"id": "broken", "category_id": "cafe", "description": "Starbucks", "amount": None, "date": None},
        {"id": "no-amount", "category_id": "cafe", "description": "Starbucks", "date": NOW - timedelta(days=3)},
        _tx("cafe", "Starbucks", 18, 5),
    ]
    result = suggest_categories(history, categories, "starbucks", 18, "expense", NOW)
    assert result[0]["category_id"] == "cafe"
    assert result[0]["usage_count"] == 2


def test_deterministic_output_and_inputs_untouched():
    history = [_tx("cafe", "Starbucks", 18, 5), _tx("groceries", "market", 40, 2)]
    snapshot = [dict(h) for h in history]
    first = suggest_categories(history, categories, "starbucks", 18, "expense", NOW)
    second = suggest_categories(history, categories, "starbucks", 18, "expense", NOW)
    assert first == second
    assert history == snapshot
