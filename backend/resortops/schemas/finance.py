"""Finance schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field


class FinanceTransactionResponse(BaseModel):
    id: int
    transaction_date: date
    category: str
    subcategory: Optional[str] = None
    amount: int
    type: str
    description: Optional[str] = None
    payment_method: Optional[str] = None
    derived_record_key: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class FinanceTransactionCreate(BaseModel):
    type: str = Field(..., pattern="^(income|expense)$")
    category: str = Field(..., min_length=1, max_length=50)
    amount: int
    transaction_date: Optional[date] = None
    subcategory: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    payment_method: Optional[str] = Field("cash", max_length=30)


class FinanceSummaryResponse(BaseModel):
    today_income: int
    today_expense: int
    week_income: int
    month_income: int
    month_expense: int
    last_month_income: int
    currency: str
