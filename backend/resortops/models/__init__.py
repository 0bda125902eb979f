"""Database models."""

from resortops.models.lifecycle import EntityType, LifecycleEntity, LifecycleTransition
from resortops.models.stock import LedgerEntry, MovementKind, MovementReason, StockItem
from resortops.models.derived import DerivedEffect, DerivedRecord
from resortops.models.finance import FinanceTransaction, TransactionType
from resortops.models.supplier import Supplier

__all__ = [
    "EntityType",
    "LifecycleEntity",
    "LifecycleTransition",
    "LedgerEntry",
    "MovementKind",
    "MovementReason",
    "StockItem",
    "DerivedEffect",
    "DerivedRecord",
    "FinanceTransaction",
    "TransactionType",
    "Supplier",
]
