"""Stock Ledger Service - append-only stock movements and level reconciliation.

The level of an item is never stored as the truth; it is the SUM of the
item's ledger deltas. Every movement:

1. Locks the item row (SELECT ... FOR UPDATE where the backend supports it)
2. Sums the ledger to get the current level
3. Computes the delta (in: +q, out: -q, adjust: target - level)
4. Rejects outbound movements that would go negative (unless back-order mode)
5. Advances the item's version and cached level with a compare-and-swap
6. Appends the LedgerEntry

Steps 2-6 run in the caller's transaction; a lost compare-and-swap re-reads
and recomputes, up to ``settings.stock_write_retries`` attempts.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, update
from sqlalchemy.orm import Query, Session

from resortops.core.config import settings
from resortops.core.errors import (
    InsufficientStockError,
    InvalidMovementError,
    NotFoundError,
    VersionConflictError,
)
from resortops.models.stock import LedgerEntry, MovementKind, MovementReason, StockItem
from resortops.services.supplier_service import SupplierService

logger = logging.getLogger(__name__)


@dataclass
class MovementResult:
    entry: LedgerEntry
    previous_level: int
    new_level: int


def stock_flags(item: StockItem, level: int) -> Dict[str, bool]:
    """Low/over stock signals, derived on read."""
    return {
        "is_low_stock": level <= item.min_level,
        "is_over_stock": item.max_level is not None and level > item.max_level,
    }


class StockLedgerService:
    """Ledger store and reconciler for stock items."""

    def __init__(self, db: Session, max_attempts: Optional[int] = None):
        self.db = db
        self.max_attempts = max_attempts or settings.stock_write_retries

    # ===== ITEMS =====

    def get_item(self, item_id: int, lock: bool = False) -> StockItem:
        query = self.db.query(StockItem).filter(StockItem.id == item_id)
        if lock:
            query = query.with_for_update().populate_existing()
        item = query.first()
        if item is None:
            raise NotFoundError(f"Stock item {item_id} not found", item_id=item_id)
        return item

    def create_item(
        self,
        name: str,
        unit: str,
        category: str = "F&B",
        sku: Optional[str] = None,
        min_level: int = 0,
        max_level: Optional[int] = None,
        unit_cost: Optional[int] = None,
        supplier_id: Optional[int] = None,
        location: Optional[str] = None,
        allow_negative: bool = False,
        notes: Optional[str] = None,
        opening_level: int = 0,
        actor_id: Optional[str] = None,
    ) -> StockItem:
        """Create an item. A non-zero opening level is booked as an opening_balance entry."""
        if min_level < 0:
            raise InvalidMovementError("min_level cannot be negative", min_level=min_level)
        if max_level is not None and max_level < min_level:
            raise InvalidMovementError(
                "max_level cannot be below min_level", min_level=min_level, max_level=max_level
            )
        if opening_level < 0:
            raise InvalidMovementError("opening_level cannot be negative", opening_level=opening_level)
        if supplier_id is not None:
            SupplierService(self.db).get_active(supplier_id)

        item = StockItem(
            name=name,
            unit=unit,
            category=category,
            sku=sku,
            min_level=min_level,
            max_level=max_level,
            unit_cost=unit_cost,
            supplier_id=supplier_id,
            location=location,
            allow_negative=allow_negative,
            notes=notes,
            version=1,
            cached_level=0,
        )
        self.db.add(item)
        self.db.flush()

        if opening_level > 0:
            self.record_movement(
                item.id, MovementKind.IN, opening_level, MovementReason.OPENING_BALANCE, actor_id=actor_id
            )
        logger.info(f"Created stock item {item.id} '{name}' with opening level {opening_level}")
        return item

    def list_items(self, category: Optional[str] = None, include_inactive: bool = False) -> List[StockItem]:
        query = self.db.query(StockItem)
        if not include_inactive:
            query = query.filter(StockItem.is_active == True)  # noqa: E712
        if category:
            query = query.filter(StockItem.category == category)
        return query.order_by(StockItem.name).all()

    def deactivate_item(self, item_id: int) -> StockItem:
        """Soft delete. Ledger entries are kept; movements are refused afterwards.

        The version bump makes a movement that read the item before this
        commit lose its compare-and-swap, re-read, and see the item inactive.
        """
        item = self.get_item(item_id, lock=True)
        self._advance(item, item.cached_level, is_active=False)
        logger.info(f"Deactivated stock item {item_id}")
        return item

    # ===== LEVELS =====

    def current_level(self, item_id: int) -> int:
        total = self.db.query(func.coalesce(func.sum(LedgerEntry.delta), 0)).filter(
            LedgerEntry.item_id == item_id
        ).scalar()
        return int(total or 0)

    def levels(self) -> Dict[int, int]:
        """Ledger levels for every item that has entries."""
        rows = self.db.query(LedgerEntry.item_id, func.sum(LedgerEntry.delta)).group_by(LedgerEntry.item_id).all()
        return {item_id: int(total) for item_id, total in rows}

    def low_stock_items(self) -> List[Dict[str, Any]]:
        levels = self.levels()
        report = []
        for item in self.list_items():
            level = levels.get(item.id, 0)
            if stock_flags(item, level)["is_low_stock"]:
                report.append({
                    "item_id": item.id,
                    "name": item.name,
                    "unit": item.unit,
                    "current_level": level,
                    "min_level": item.min_level,
                    "shortfall": item.min_level - level,
                })
        return report

    def reconcile(self, item_id: int, repair: bool = False) -> Dict[str, Any]:
        """Compare the cached level with the ledger sum. ``repair`` rewrites the cache only."""
        item = self.get_item(item_id, lock=repair)
        ledger_level = self.current_level(item_id)
        cached_level = item.cached_level
        drift = cached_level - ledger_level
        repaired = False

        if drift:
            logger.warning(
                f"Stock item {item_id} cache drift: cached {cached_level}, ledger {ledger_level}"
            )
            if repair:
                self._advance(item, ledger_level)
                repaired = True

        return {
            "item_id": item_id,
            "cached_level": cached_level,
            "ledger_level": ledger_level,
            "drift": drift,
            "in_sync": drift == 0,
            "repaired": repaired,
        }

    def history(self, item_id: int) -> Query:
        """Ledger entries of an existing item, newest first, as an unexecuted query."""
        self.get_item(item_id)
        return self.db.query(LedgerEntry).filter(
            LedgerEntry.item_id == item_id
        ).order_by(LedgerEntry.id.desc())

    # ===== MOVEMENTS =====

    def record_movement(
        self,
        item_id: int,
        kind: Union[MovementKind, str],
        quantity: int,
        reason: Union[MovementReason, str],
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> MovementResult:
        """Append one ledger entry and return the level it produces."""
        kind = self._parse_kind(kind)
        reason = self._parse_reason(reason)
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidMovementError("quantity must be an integer", quantity=quantity)
        if kind in (MovementKind.IN, MovementKind.OUT) and quantity <= 0:
            raise InvalidMovementError(
                f"quantity must be positive for '{kind.value}' movements", quantity=quantity
            )

        for attempt in range(1, self.max_attempts + 1):
            item = self.get_item(item_id, lock=True)
            if not item.is_active:
                raise InvalidMovementError(f"Stock item {item_id} is inactive", item_id=item_id)
            if kind == MovementKind.ADJUST and quantity < 0 and not item.allow_negative:
                raise InvalidMovementError("Adjusted level cannot be negative", quantity=quantity)

            level = self.current_level(item_id)
            if kind == MovementKind.IN:
                delta = quantity
            elif kind == MovementKind.OUT:
                delta = -quantity
            else:
                delta = quantity - level
            new_level = level + delta

            if new_level < 0 and not item.allow_negative:
                raise InsufficientStockError(item.id, item.name, level, quantity)

            expected = item.version
            if self._advance(item, new_level, raise_on_conflict=False):
                break
            logger.warning(
                f"Stock item {item_id} changed under movement (attempt {attempt}/{self.max_attempts}), re-reading"
            )
        else:
            current = self.db.query(StockItem.version).filter(StockItem.id == item_id).scalar()
            raise VersionConflictError("stock_item", str(item_id), expected, current)

        entry = LedgerEntry(
            item_id=item_id,
            kind=kind.value,
            delta=delta,
            quantity=quantity,
            reason=reason.value,
            notes=notes,
            actor_id=actor_id,
        )
        self.db.add(entry)
        self.db.flush()

        logger.info(
            f"Stock {kind.value} on item {item_id}: delta {delta:+d}, level {level} -> {new_level} ({reason.value})"
        )
        return MovementResult(entry=entry, previous_level=level, new_level=new_level)

    # ===== HELPERS =====

    def _advance(self, item: StockItem, level: int, raise_on_conflict: bool = True, **values: Any) -> bool:
        """Bump the item's version and cached level if nobody else did first."""
        expected = item.version
        result = self.db.execute(
            update(StockItem)
            .where(StockItem.id == item.id, StockItem.version == expected)
            .values(version=expected + 1, cached_level=level, updated_at=datetime.now(timezone.utc), **values)
            .execution_options(synchronize_session=False)
        )
        self.db.expire(item)
        if result.rowcount == 1:
            return True
        if raise_on_conflict:
            current = self.db.query(StockItem.version).filter(StockItem.id == item.id).scalar()
            raise VersionConflictError("stock_item", str(item.id), expected, current)
        return False

    @staticmethod
    def _parse_kind(kind: Union[MovementKind, str]) -> MovementKind:
        try:
            return MovementKind(kind)
        except ValueError:
            raise InvalidMovementError(f"Unknown movement kind '{kind}'", kind=str(kind))

    @staticmethod
    def _parse_reason(reason: Union[MovementReason, str]) -> MovementReason:
        try:
            return MovementReason(reason)
        except ValueError:
            raise InvalidMovementError(f"Unknown movement reason '{reason}'", reason=str(reason))
