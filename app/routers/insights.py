import logging
import random
from datetime import datetime
from typing import Dict, Optional

from fastapi import APIRouter, HTTPException

from app.core.config import settings
from app.models.insights import (
    AnomaliesRequest,
    ForecastRequest,
    SavingsRequest,
    SuggestCategoryRequest,
)
from app.utils.anomalies import AnomalyDetector
from app.utils.category_suggester import CategorySuggestionEngine
from app.utils.forecaster import ExpenseForecaster
from app.utils.records import date_of, naive
from app.utils.savings import SavingsRecommendationEngine

router = APIRouter()
logger = logging.getLogger(__name__)

category_engine = CategorySuggestionEngine()
savings_engine = SavingsRecommendationEngine()
anomaly_detector = AnomalyDetector()


def _resolve_now(now: Optional[datetime]) -> datetime:
    # The HTTP boundary is the only place that reads the clock.
    return now or datetime.now()


def _newest_first(records, limit: int):
    dated = [r for r in records if r.date is not None]
    dated.sort(key=lambda r: naive(date_of(r)), reverse=True)
    return dated[:limit]


@router.post("/suggest-category")
def suggest_category(body: SuggestCategoryRequest) -> Dict:
    """
    Suggest up to three categories for a transaction being entered.
    Amount-only lookups are allowed; an empty description with no amount returns nothing.
    """
    if not body.description and (body.amount is None or body.amount <= 0):
        return {"suggestions": []}

    history = _newest_first(body.history, settings.SUGGESTION_HISTORY_LIMIT)
    logger.info(
        f"Suggesting category for type={body.type} amount={body.amount} over {len(history)} records"
    )
    try:
        suggestions = category_engine.suggest(
            history,
            body.categories,
            body.description or "",
            body.amount,
            body.type,
            _resolve_now(body.now),
        )
    except Exception as e:
        logger.error(f"Error suggesting category: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to suggest category")
    return {"suggestions": suggestions}


@router.post("/savings")
def savings_recommendations(body: SavingsRequest) -> Dict:
    try:
        recommendations = savings_engine.recommend(
            body.current_month_expenses,
            body.prev_month_expenses,
            body.trailing_expenses,
            body.budgets,
            body.recurring,
            _resolve_now(body.now),
            categories=body.categories,
            current_month_income=body.current_month_income,
        )
    except Exception as e:
        logger.error(f"Error getting savings recommendations: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get savings recommendations")
    return {"recommendations": recommendations}


@router.post("/anomalies")
def anomalies(body: AnomaliesRequest) -> Dict:
    try:
        found = anomaly_detector.detect(body.recent, body.historical, _resolve_now(body.now))
    except Exception as e:
        logger.error(f"Error detecting anomalies: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to detect anomalies")
    return {"anomalies": found}


@router.post("/forecast")
def forecast(body: ForecastRequest) -> Dict:
    months = body.months or settings.FORECAST_DEFAULT_MONTHS
    if months > settings.FORECAST_MAX_MONTHS:
        raise HTTPException(
            status_code=400,
            detail=f"months must be at most {settings.FORECAST_MAX_MONTHS}",
        )

    forecaster = ExpenseForecaster(
        rng=random.Random(settings.FORECAST_JITTER_SEED),
        jitter=settings.FORECAST_JITTER_ENABLED,
    )
    try:
        result = forecaster.forecast(body.history, body.recurring, _resolve_now(body.now), months)
    except Exception as e:
        logger.error(f"Error forecasting expenses: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to forecast expenses")
    return {"forecast": result}
