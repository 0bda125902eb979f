"""Finance routes - transition-created rows, manual entries and period totals."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Query, Request
from sqlalchemy import func

from resortops.core.config import settings
from resortops.core.rate_limit import limiter
from resortops.core.rbac import CurrentUser
from resortops.core.responses import page_response
from resortops.db.session import DbSession
from resortops.models.finance import EXPENSE_CATEGORIES, INCOME_CATEGORIES, FinanceTransaction
from resortops.schemas.finance import (
    FinanceSummaryResponse,
    FinanceTransactionCreate,
    FinanceTransactionResponse,
)
from resortops.services.finance_service import FinanceService

router = APIRouter()


@router.get("/transactions")
@limiter.limit("60/minute")
def list_transactions(
    request: Request,
    db: DbSession,
    current_user: CurrentUser,
    type: Optional[str] = Query(None, pattern="^(income|expense)$"),
    category: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """Finance transactions, newest first, with the filtered total amount."""
    query = db.query(FinanceTransaction)
    if type:
        query = query.filter(FinanceTransaction.type == type)
    if category:
        query = query.filter(FinanceTransaction.category == category)
    if start_date:
        query = query.filter(FinanceTransaction.transaction_date >= start_date)
    if end_date:
        query = query.filter(FinanceTransaction.transaction_date <= end_date)

    amount_total = query.with_entities(func.coalesce(func.sum(FinanceTransaction.amount), 0)).scalar()
    response = page_response(
        query.order_by(FinanceTransaction.id.desc()),
        skip,
        limit,
        lambda row: FinanceTransactionResponse.model_validate(row).model_dump(mode="json"),
    )
    response["amount_total"] = int(amount_total or 0)
    response["currency"] = settings.finance_currency_label
    return response


@router.post("/transactions", response_model=FinanceTransactionResponse, status_code=201)
@limiter.limit("30/minute")
def create_transaction(
    request: Request,
    body: FinanceTransactionCreate,
    db: DbSession,
    current_user: CurrentUser,
):
    """Add a manual income or expense entry."""
    return FinanceService(db).record_transaction(actor_id=current_user.actor_id, **body.model_dump())


@router.get("/summary", response_model=FinanceSummaryResponse)
@limiter.limit("60/minute")
def get_summary(request: Request, db: DbSession, current_user: CurrentUser, today: Optional[date] = None):
    return {**FinanceService(db).summary(today=today), "currency": settings.finance_currency_label}


@router.get("/categories")
def get_categories(current_user: CurrentUser):
    return {"income": INCOME_CATEGORIES, "expense": EXPENSE_CATEGORIES}
