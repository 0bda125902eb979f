"""Stock routes - items, movements, ledger, reconciliation and suppliers.

Levels are always computed from the ledger; clients send movements, never
a "current stock" value.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from resortops.core.rate_limit import limiter
from resortops.core.rbac import CurrentUser, RequireManager
from resortops.core.responses import list_response, page_response
from resortops.db.session import DbSession
from resortops.models.stock import StockItem
from resortops.schemas.stock import (
    LedgerEntryResponse,
    ReconcileResponse,
    StockItemCreate,
    StockItemResponse,
    StockMovementRequest,
    StockMovementResponse,
    SupplierCreate,
    SupplierResponse,
    SupplierUpdate,
)
from resortops.services.lifecycle_service import LifecycleService
from resortops.services.stock_ledger_service import StockLedgerService, stock_flags
from resortops.services.supplier_service import SupplierService

logger = logging.getLogger(__name__)

router = APIRouter()


def _item_response(item: StockItem, level: int) -> dict:
    return StockItemResponse(
        id=item.id,
        name=item.name,
        sku=item.sku,
        category=item.category,
        unit=item.unit,
        min_level=item.min_level,
        max_level=item.max_level,
        unit_cost=item.unit_cost,
        supplier_id=item.supplier_id,
        supplier_name=item.supplier.name if item.supplier else None,
        location=item.location,
        allow_negative=item.allow_negative,
        is_active=item.is_active,
        current_level=level,
        notes=item.notes,
        updated_at=item.updated_at,
        **stock_flags(item, level),
    ).model_dump()


@router.post("/stock-movement", response_model=StockMovementResponse)
@limiter.limit("60/minute")
def record_stock_movement(
    request: Request,
    body: StockMovementRequest,
    db: DbSession,
    current_user: CurrentUser,
):
    """Record an in/out/adjust movement and return the new level."""
    new_level = LifecycleService(db).adjust_stock(
        body.item_id,
        body.kind,
        body.quantity,
        body.reason,
        actor_id=current_user.actor_id,
        notes=body.notes,
    )
    return StockMovementResponse(item_id=body.item_id, new_level=new_level)


@router.post("/stock/items", response_model=StockItemResponse, status_code=201)
@limiter.limit("30/minute")
def create_stock_item(
    request: Request,
    body: StockItemCreate,
    db: DbSession,
    current_user: CurrentUser,
):
    item = LifecycleService(db).create_stock_item(actor_id=current_user.actor_id, **body.model_dump())
    return _item_response(item, StockLedgerService(db).current_level(item.id))


@router.get("/stock/items")
@limiter.limit("60/minute")
def list_stock_items(
    request: Request,
    db: DbSession,
    current_user: CurrentUser,
    category: Optional[str] = None,
    include_inactive: bool = False,
    low_only: bool = False,
):
    """List stock items with their ledger levels."""
    ledger = StockLedgerService(db)
    levels = ledger.levels()
    items = []
    for item in ledger.list_items(category=category, include_inactive=include_inactive):
        entry = _item_response(item, levels.get(item.id, 0))
        if low_only and not entry["is_low_stock"]:
            continue
        items.append(entry)
    return list_response(items)


@router.get("/stock/items/{item_id}", response_model=StockItemResponse)
@limiter.limit("120/minute")
def get_stock_item(request: Request, item_id: int, db: DbSession, current_user: CurrentUser):
    ledger = StockLedgerService(db)
    item = ledger.get_item(item_id)
    return _item_response(item, ledger.current_level(item_id))


@router.delete("/stock/items/{item_id}", response_model=StockItemResponse)
@limiter.limit("30/minute")
def deactivate_stock_item(request: Request, item_id: int, db: DbSession, current_user: RequireManager):
    """Soft delete; the item's ledger is kept."""
    item = LifecycleService(db).deactivate_stock_item(item_id, actor_id=current_user.actor_id)
    return _item_response(item, StockLedgerService(db).current_level(item_id))


@router.get("/stock/items/{item_id}/ledger")
@limiter.limit("60/minute")
def get_stock_ledger(
    request: Request,
    item_id: int,
    db: DbSession,
    current_user: CurrentUser,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    """Ledger entries for one item, newest first."""
    return page_response(
        StockLedgerService(db).history(item_id),
        skip,
        limit,
        lambda entry: LedgerEntryResponse.model_validate(entry).model_dump(),
    )


@router.get("/stock/items/{item_id}/reconcile", response_model=ReconcileResponse)
@limiter.limit("30/minute")
def reconcile_stock_item(
    request: Request,
    item_id: int,
    db: DbSession,
    current_user: CurrentUser,
    repair: bool = False,
):
    """Compare the cached level against the ledger sum."""
    return LifecycleService(db).reconcile_stock(item_id, repair=repair)


@router.get("/stock/low-stock")
@limiter.limit("60/minute")
def get_low_stock(request: Request, db: DbSession, current_user: CurrentUser):
    """Items at or below their minimum level."""
    return list_response(StockLedgerService(db).low_stock_items())


# ==================== SUPPLIERS ====================

@router.get("/stock/suppliers")
@limiter.limit("60/minute")
def list_suppliers(request: Request, db: DbSession, current_user: CurrentUser, include_inactive: bool = False):
    suppliers = SupplierService(db).list_suppliers(include_inactive=include_inactive)
    return list_response([SupplierResponse.model_validate(s).model_dump() for s in suppliers])


@router.post("/stock/suppliers", response_model=SupplierResponse, status_code=201)
@limiter.limit("30/minute")
def create_supplier(request: Request, body: SupplierCreate, db: DbSession, current_user: CurrentUser):
    return SupplierService(db).create(**body.model_dump())


@router.patch("/stock/suppliers/{supplier_id}", response_model=SupplierResponse)
@limiter.limit("30/minute")
def update_supplier(
    request: Request, supplier_id: int, body: SupplierUpdate, db: DbSession, current_user: CurrentUser
):
    return SupplierService(db).update(supplier_id, body.model_dump(exclude_unset=True))


@router.delete("/stock/suppliers/{supplier_id}", response_model=SupplierResponse)
@limiter.limit("30/minute")
def deactivate_supplier(request: Request, supplier_id: int, db: DbSession, current_user: RequireManager):
    """Soft delete; linked items keep their supplier."""
    return SupplierService(db).deactivate(supplier_id, actor_id=current_user.actor_id)
