"""Lifecycle Service - the single entry point for status and stock writes.

Each mutating call is one unit of work: the status change, the derived
records it implies and any ledger append commit together or not at all.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from resortops.core.errors import (
    DispatchFailedError,
    InsufficientStockError,
    InvalidEntityError,
    VersionConflictError,
)
from resortops.core.metrics import metrics
from resortops.db.session import unit_of_work
from resortops.models.derived import DerivedRecord
from resortops.models.lifecycle import EntityType, LifecycleEntity, LifecycleTransition
from resortops.models.stock import MovementKind, MovementReason, StockItem
from resortops.services.side_effect_dispatcher import SideEffectDispatcher
from resortops.services.status_machine import (
    AppliedTransition,
    StatusMachine,
    allowed_targets,
    entity_type_value,
)
from resortops.services.stock_ledger_service import StockLedgerService

logger = logging.getLogger(__name__)


@dataclass
class TransitionResult:
    entity_type: str
    entity_id: str
    from_status: Optional[str]
    status: str
    version: int
    derived_records: List[DerivedRecord] = field(default_factory=list)


class LifecycleService:
    """Facade over the status machine, dispatcher and stock ledger."""

    def __init__(self, db: Session):
        self.db = db
        self.machine = StatusMachine(db)
        self.dispatcher = SideEffectDispatcher(db, self.machine)
        self.stock = StockLedgerService(db)

    def _unit_of_work(self):
        return unit_of_work(self.db)

    # ===== ENTITIES =====

    def create_entity(
        self,
        entity_type: Union[EntityType, str],
        entity_id: str,
        attributes: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> TransitionResult:
        """Start tracking an entity in its initial status and dispatch creation effects."""
        type_value = entity_type_value(entity_type)
        attributes = dict(attributes or {})
        if type_value == EntityType.HOUSEKEEPING_TASK.value and attributes.get("room_id") in (None, ""):
            raise InvalidEntityError("Housekeeping tasks need a room_id", field="room_id")

        with self._unit_of_work():
            _, applied = self.machine.create(type_value, entity_id, attributes, actor_id)
            records = self._dispatch(applied, actor_id)

        metrics.record_transition(type_value, applied.to_status)
        return self._result(applied, records)

    def update_attributes(
        self,
        entity_type: Union[EntityType, str],
        entity_id: str,
        changes: Dict[str, Any],
        expected_version: int,
        actor_id: Optional[str] = None,
    ) -> LifecycleEntity:
        """Edit the payload of an entity without changing its status."""
        type_value = entity_type_value(entity_type)
        try:
            with self._unit_of_work():
                entity = self.machine.patch_attributes(type_value, entity_id, changes, expected_version)
        except VersionConflictError:
            metrics.record_version_conflict(type_value)
            raise
        logger.info(f"{type_value} {entity_id} attributes updated by {actor_id} (v{entity.version})")
        return entity

    def request_transition(
        self,
        entity_type: Union[EntityType, str],
        entity_id: str,
        to_state: str,
        expected_version: int,
        actor_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> TransitionResult:
        """Apply a transition and its derived records atomically.

        Raises:
            NotFoundError, IllegalTransitionError, VersionConflictError,
            InvalidEntityError, DispatchFailedError
        """
        type_value = entity_type_value(entity_type)
        try:
            with self._unit_of_work():
                applied = self.machine.apply(
                    type_value, entity_id, to_state, expected_version, actor_id, context
                )
                records = self._dispatch(applied, actor_id)
        except VersionConflictError:
            metrics.record_version_conflict(type_value)
            raise
        except DispatchFailedError:
            metrics.record_dispatch_failure()
            raise

        metrics.record_transition(type_value, applied.to_status)
        return self._result(applied, records)

    def transition_with_retry(
        self,
        entity_type: Union[EntityType, str],
        entity_id: str,
        to_state: str,
        expected_version: int,
        actor_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> TransitionResult:
        """Like request_transition, re-reading the version once after a conflict."""
        try:
            return self.request_transition(entity_type, entity_id, to_state, expected_version, actor_id, context)
        except VersionConflictError as exc:
            _, current = self.get_state(entity_type, entity_id)
            logger.info(
                f"Retrying {entity_type_value(entity_type)} {entity_id} -> {to_state} at v{current} after conflict: {exc}"
            )
            return self.request_transition(entity_type, entity_id, to_state, current, actor_id, context)

    def get_state(self, entity_type: Union[EntityType, str], entity_id: str) -> Tuple[str, int]:
        entity = self.machine.load(entity_type, entity_id)
        self.db.refresh(entity)
        return entity.status, entity.version

    def get_entity(self, entity_type: Union[EntityType, str], entity_id: str) -> LifecycleEntity:
        return self.machine.load(entity_type, entity_id)

    def get_allowed_transitions(self, entity_type: Union[EntityType, str], entity_id: str) -> Dict[str, Any]:
        entity = self.machine.load(entity_type, entity_id)
        return {
            "status": entity.status,
            "version": entity.version,
            "allowed": sorted(allowed_targets(entity.entity_type, entity.status)),
        }

    def get_history(
        self, entity_type: Union[EntityType, str], entity_id: str
    ) -> Tuple[List[LifecycleTransition], List[DerivedRecord]]:
        """Journal and derived records of one entity, oldest first."""
        self.machine.load(entity_type, entity_id)
        return (
            self.machine.history(entity_type, entity_id),
            self.dispatcher.for_entity(entity_type, entity_id),
        )

    # ===== STOCK =====

    def adjust_stock(
        self,
        item_id: int,
        kind: Union[MovementKind, str],
        quantity: int,
        reason: Union[MovementReason, str],
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> int:
        """Record a stock movement; returns the new level."""
        try:
            with self._unit_of_work():
                result = self.stock.record_movement(item_id, kind, quantity, reason, actor_id, notes)
        except InsufficientStockError:
            metrics.record_insufficient_stock()
            raise
        except VersionConflictError:
            metrics.record_version_conflict("stock_item")
            raise

        metrics.record_stock_movement(result.entry.kind)
        return result.new_level

    def create_stock_item(self, actor_id: Optional[str] = None, **fields: Any) -> StockItem:
        with self._unit_of_work():
            item = self.stock.create_item(actor_id=actor_id, **fields)
        self.db.refresh(item)
        return item

    def deactivate_stock_item(self, item_id: int, actor_id: Optional[str] = None) -> StockItem:
        with self._unit_of_work():
            item = self.stock.deactivate_item(item_id)
        logger.info(f"Stock item {item_id} deactivated by {actor_id}")
        return item

    def reconcile_stock(self, item_id: int, repair: bool = False) -> Dict[str, Any]:
        if not repair:
            return self.stock.reconcile(item_id)
        with self._unit_of_work():
            return self.stock.reconcile(item_id, repair=True)

    # ===== HELPERS =====

    def _dispatch(self, applied: AppliedTransition, actor_id: Optional[str]) -> List[DerivedRecord]:
        return self.dispatcher.dispatch(
            applied.entity_id,
            applied.entity_type,
            applied.from_status,
            applied.to_status,
            applied.attributes,
            applied.sequence,
            actor_id,
        )

    @staticmethod
    def _result(applied: AppliedTransition, records: List[DerivedRecord]) -> TransitionResult:
        for record in records:
            metrics.record_derived_record(record.effect)
        return TransitionResult(
            entity_type=applied.entity_type,
            entity_id=applied.entity_id,
            from_status=applied.from_status,
            status=applied.to_status,
            version=applied.version,
            derived_records=records,
        )
