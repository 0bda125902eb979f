"""Finance Service - manual income/expense entries and period totals.

Rows created by transitions come from the side-effect dispatcher; this
service only adds the entries staff type in by hand and summarises both.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from resortops.core.errors import InvalidTransactionError
from resortops.db.session import unit_of_work
from resortops.models.finance import (
    EXPENSE_CATEGORIES,
    INCOME_CATEGORIES,
    FinanceTransaction,
    TransactionType,
)

logger = logging.getLogger(__name__)

CATEGORIES = {
    TransactionType.INCOME: INCOME_CATEGORIES,
    TransactionType.EXPENSE: EXPENSE_CATEGORIES,
}


def week_start(day: date) -> date:
    """Sunday on or before *day*."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


def month_start(day: date) -> date:
    return day.replace(day=1)


class FinanceService:
    def __init__(self, db: Session):
        self.db = db

    def record_transaction(
        self,
        type: Union[TransactionType, str],
        category: str,
        amount: int,
        transaction_date: Optional[date] = None,
        subcategory: Optional[str] = None,
        description: Optional[str] = None,
        payment_method: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> FinanceTransaction:
        """Append a manual finance row after checking type, category and amount."""
        try:
            kind = TransactionType(type)
        except ValueError:
            raise InvalidTransactionError(f"Unknown transaction type '{type}'", type=str(type))
        if category not in CATEGORIES[kind]:
            raise InvalidTransactionError(
                f"'{category}' is not a valid {kind.value} category",
                category=category,
                allowed=CATEGORIES[kind],
            )
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidTransactionError("amount must be a positive integer", amount=amount)

        with unit_of_work(self.db):
            row = FinanceTransaction(
                transaction_date=transaction_date or datetime.now(timezone.utc).date(),
                category=category,
                subcategory=subcategory,
                amount=amount,
                type=kind.value,
                description=description,
                payment_method=payment_method,
                created_by=actor_id,
            )
            self.db.add(row)
        self.db.refresh(row)
        logger.info(f"Recorded {kind.value} of {amount} in '{category}' by {actor_id}")
        return row

    def summary(self, today: Optional[date] = None) -> Dict[str, int]:
        """Income and expense totals for today, this week, this month and last month."""
        today = today or datetime.now(timezone.utc).date()
        this_month = month_start(today)
        last_month = month_start(this_month - timedelta(days=1))

        return {
            "today_income": self._total(TransactionType.INCOME, today, today),
            "today_expense": self._total(TransactionType.EXPENSE, today, today),
            "week_income": self._total(TransactionType.INCOME, week_start(today), today),
            "month_income": self._total(TransactionType.INCOME, this_month, today),
            "month_expense": self._total(TransactionType.EXPENSE, this_month, today),
            "last_month_income": self._total(
                TransactionType.INCOME, last_month, this_month - timedelta(days=1)
            ),
        }

    def _total(self, kind: TransactionType, start: date, end: date) -> int:
        total = self.db.query(func.coalesce(func.sum(FinanceTransaction.amount), 0)).filter(
            FinanceTransaction.type == kind.value,
            FinanceTransaction.transaction_date >= start,
            FinanceTransaction.transaction_date <= end,
        ).scalar()
        return int(total or 0)
