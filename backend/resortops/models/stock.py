"""Stock models: StockItem and its append-only LedgerEntry rows."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from resortops.db.base import AppendOnlyMixin, Base, TimestampMixin, VersionMixin, register_append_only
from resortops.models.supplier import Supplier


class MovementKind(str, Enum):
    """How a movement's quantity is interpreted."""

    IN = "in"          # quantity received, delta = +quantity
    OUT = "out"        # quantity issued, delta = -quantity
    ADJUST = "adjust"  # quantity is the counted level, delta = count - ledger level


class MovementReason(str, Enum):
    """Reasons for stock movements."""

    PURCHASE = "purchase"  # Goods received from a supplier
    OPENING_BALANCE = "opening_balance"  # First count when the item is created
    RETURN = "return"  # Returned unused from a department
    USAGE = "usage"  # Issued to housekeeping, kitchen, bar
    SALE = "sale"  # Sold through the POS
    WASTE = "waste"  # Spoilage, breakage
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    COUNT = "count"  # Physical stock count
    ADJUSTMENT = "adjustment"  # Manual correction


class StockItem(VersionMixin, TimestampMixin, Base):
    """A stockable item. Its level is the sum of its ledger deltas.

    ``cached_level`` mirrors that sum for list views; it is advanced in the
    same transaction as every ledger append and can be rebuilt from the
    ledger at any time.
    """

    __tablename__ = "stock_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    category: Mapped[str] = mapped_column(String(50), default="F&B", nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    min_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_level: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    unit_cost: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    supplier_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    location: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    allow_negative: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)  # back-order mode
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    cached_level: Mapped[int] = mapped_column(Integer, default=0, server_default="0", nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    supplier: Mapped[Optional[Supplier]] = relationship(Supplier)


class LedgerEntry(AppendOnlyMixin, Base):
    """Ledger of all stock changes (single source of truth)."""

    __tablename__ = "stock_ledger_entries"
    __table_args__ = (
        CheckConstraint("kind IN ('in', 'out', 'adjust')", name="ck_ledger_kind"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    item_id: Mapped[int] = mapped_column(
        ForeignKey("stock_items.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String(10), nullable=False)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)  # as sent; target level for adjust
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)


register_append_only(LedgerEntry)
