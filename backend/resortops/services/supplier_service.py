"""Supplier Service - supplier records referenced by stock items."""

import logging
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from resortops.core.errors import InactiveRecordError, NotFoundError
from resortops.db.session import unit_of_work
from resortops.models.supplier import Supplier

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "contact_person", "email", "phone", "category", "notes")


class SupplierService:
    def __init__(self, db: Session):
        self.db = db

    def get(self, supplier_id: int) -> Supplier:
        supplier = self.db.get(Supplier, supplier_id)
        if supplier is None:
            raise NotFoundError(f"Supplier {supplier_id} not found", supplier_id=supplier_id)
        return supplier

    def get_active(self, supplier_id: int) -> Supplier:
        """A supplier new stock items may be linked to."""
        supplier = self.get(supplier_id)
        if not supplier.is_active:
            raise InactiveRecordError(f"Supplier {supplier_id} is inactive", supplier_id=supplier_id)
        return supplier

    def list_suppliers(self, include_inactive: bool = False) -> List[Supplier]:
        query = self.db.query(Supplier)
        if not include_inactive:
            query = query.filter(Supplier.is_active == True)  # noqa: E712
        return query.order_by(Supplier.name).all()

    def create(self, name: str, **fields: Any) -> Supplier:
        with unit_of_work(self.db):
            supplier = Supplier(name=name, is_active=True, **fields)
            self.db.add(supplier)
        self.db.refresh(supplier)
        logger.info(f"Created supplier {supplier.id} '{name}'")
        return supplier

    def update(self, supplier_id: int, changes: dict) -> Supplier:
        """Apply the given contact details. Unknown keys are ignored."""
        with unit_of_work(self.db):
            supplier = self.get(supplier_id)
            for key in EDITABLE_FIELDS:
                if key in changes:
                    setattr(supplier, key, changes[key])
        self.db.refresh(supplier)
        return supplier

    def deactivate(self, supplier_id: int, actor_id: Optional[str] = None) -> Supplier:
        """Soft delete. Items keep their link; new items cannot use the supplier."""
        with unit_of_work(self.db):
            supplier = self.get(supplier_id)
            supplier.is_active = False
        logger.info(f"Supplier {supplier_id} deactivated by {actor_id}")
        self.db.refresh(supplier)
        return supplier
