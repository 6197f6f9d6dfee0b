from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class TransactionRecord(BaseModel):
    id: Optional[str] = None
    type: Literal["expense", "income", "transfer"] = "expense"
    amount: Optional[Decimal] = None
    description: Optional[str] = ""
    date: Optional[datetime] = None
    category_id: Optional[str] = None


class CategoryRecord(BaseModel):
    id: str
    name: str
    type: Literal["expense", "income", "both"] = "both"
    icon: Optional[str] = None
    color: Optional[str] = None


class BudgetRecord(BaseModel):
    category_id: Optional[str] = None  # None is the overall monthly budget
    amount: Decimal = Field(ge=0)


class RecurringDefinition(BaseModel):
    category_id: Optional[str] = None
    amount: Decimal
    description: Optional[str] = ""
    type: Literal["expense", "income"] = "expense"
    is_active: bool = True


class SuggestCategoryRequest(BaseModel):
    description: Optional[str] = ""
    amount: Optional[Decimal] = Decimal("0")
    type: Literal["expense", "income"] = "expense"
    history: List[TransactionRecord] = Field(default_factory=list)
    categories: List[CategoryRecord] = Field(default_factory=list)
    now: Optional[datetime] = None


class SavingsRequest(BaseModel):
    current_month_expenses: List[TransactionRecord] = Field(default_factory=list)
    prev_month_expenses: List[TransactionRecord] = Field(default_factory=list)
    trailing_expenses: List[TransactionRecord] = Field(default_factory=list)
    budgets: List[BudgetRecord] = Field(default_factory=list)
    recurring: List[RecurringDefinition] = Field(default_factory=list)
    categories: List[CategoryRecord] = Field(default_factory=list)
    current_month_income: Optional[List[TransactionRecord]] = None
    now: Optional[datetime] = None


class AnomaliesRequest(BaseModel):
    recent: List[TransactionRecord] = Field(default_factory=list)
    historical: List[TransactionRecord] = Field(default_factory=list)
    now: Optional[datetime] = None


class ForecastRequest(BaseModel):
    history: List[TransactionRecord] = Field(default_factory=list)
    recurring: List[RecurringDefinition] = Field(default_factory=list)
    months: Optional[int] = Field(default=None, ge=1)
    now: Optional[datetime] = None
