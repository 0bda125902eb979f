"""Finance transactions (income and expense rows shown on the finance page)."""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, Date, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from resortops.db.base import AppendOnlyMixin, Base, register_append_only


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


INCOME_CATEGORIES = ["Rooms", "Restaurant", "Conference", "Activities", "Bar", "Other"]
EXPENSE_CATEGORIES = ["Supplies", "Maintenance", "Utilities", "Salaries", "Marketing", "Other"]


class FinanceTransaction(AppendOnlyMixin, Base):
    """
    Immutable finance row.

    Corrections are made with new offsetting rows, never by editing.
    Rows created by the dispatcher carry the derived record's idempotency key.
    """

    __tablename__ = "finance_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_finance_amount_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    transaction_date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    subcategory: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    payment_method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    derived_record_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)


register_append_only(FinanceTransaction)
