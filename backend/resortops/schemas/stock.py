"""Stock schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from resortops.models.stock import MovementKind, MovementReason


class StockItemCreate(BaseModel):
    """Create a stock item, optionally with an opening count."""

    name: str = Field(..., min_length=1, max_length=200)
    unit: str = Field(..., min_length=1, max_length=20)
    category: str = Field("F&B", max_length=50)
    sku: Optional[str] = Field(None, max_length=64)
    min_level: int = Field(0, ge=0)
    max_level: Optional[int] = Field(None, ge=0)
    unit_cost: Optional[int] = Field(None, ge=0)
    supplier_id: Optional[int] = None
    location: Optional[str] = Field(None, max_length=100)
    allow_negative: bool = False
    notes: Optional[str] = Field(None, max_length=500)
    opening_level: int = Field(0, ge=0)

    @model_validator(mode="after")
    def check_levels(self) -> "StockItemCreate":
        if self.max_level is not None and self.max_level < self.min_level:
            raise ValueError("max_level cannot be below min_level")
        return self


class StockItemResponse(BaseModel):
    id: int
    name: str
    sku: Optional[str] = None
    category: str
    unit: str
    min_level: int
    max_level: Optional[int] = None
    unit_cost: Optional[int] = None
    supplier_id: Optional[int] = None
    supplier_name: Optional[str] = None
    location: Optional[str] = None
    allow_negative: bool
    is_active: bool
    current_level: int
    is_low_stock: bool
    is_over_stock: bool
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None


class StockMovementRequest(BaseModel):
    """Record a stock movement. For ``adjust`` the quantity is the counted level."""

    item_id: int
    kind: MovementKind
    quantity: int
    reason: MovementReason
    notes: Optional[str] = Field(None, max_length=500)


class StockMovementResponse(BaseModel):
    item_id: int
    new_level: int


class LedgerEntryResponse(BaseModel):
    id: int
    item_id: int
    kind: str
    delta: int
    quantity: int
    reason: str
    notes: Optional[str] = None
    actor_id: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ReconcileResponse(BaseModel):
    item_id: int
    cached_level: int
    ledger_level: int
    drift: int
    in_sync: bool
    repaired: bool


class SupplierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    contact_person: Optional[str] = Field(None, max_length=200)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    category: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=1000)


class SupplierUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    contact_person: Optional[str] = Field(None, max_length=200)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    category: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=1000)


class SupplierResponse(BaseModel):
    id: int
    name: str
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    category: Optional[str] = None
    is_active: bool
    notes: Optional[str] = None

    model_config = {"from_attributes": True}
