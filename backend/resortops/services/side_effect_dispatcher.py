"""Side-Effect Dispatcher - turns an applied transition into derived records, once.

Rules:
- booking / conference_booking pending -> confirmed with a deposit: finance income
- housekeeping_task -> in_progress: linked room -> in_progress
- housekeeping_task -> completed: linked room -> clean
- housekeeping_task created as cleaning / deep_clean: linked room -> dirty
- pos_order -> checked_out, not charged to the room: finance income for the total

Every transition gets a dispatch key derived from
(entity_type, entity_id, from, to, sequence). A second dispatch with the same
key returns the records of the first one instead of creating new ones.
"""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from sqlalchemy.orm import Session

from resortops.core.config import settings
from resortops.core.errors import DispatchFailedError, InvalidEntityError
from resortops.models.derived import DerivedEffect, DerivedRecord
from resortops.models.finance import FinanceTransaction, TransactionType
from resortops.models.lifecycle import EntityType
from resortops.services.status_machine import StatusMachine, entity_type_value

logger = logging.getLogger(__name__)

CLEANING_TASK_TYPES = frozenset({"cleaning", "deep_clean"})
ROOM_CHARGE = "room_charge"

DEPOSIT_CATEGORIES = {
    EntityType.BOOKING.value: ("Rooms", "Booking Deposit"),
    EntityType.CONFERENCE_BOOKING.value: ("Conference", "Event Deposit"),
}


@dataclass
class PlannedEffect:
    effect: DerivedEffect
    payload: Dict[str, Any] = field(default_factory=dict)


def dispatch_key(
    entity_type: str, entity_id: str, from_state: Optional[str], to_state: str, sequence: int
) -> str:
    raw = "|".join([entity_type, str(entity_id), from_state or "", to_state, str(sequence)])
    return hashlib.sha256(raw.encode()).hexdigest()


def effect_key(key: str, effect: Union[DerivedEffect, str], ordinal: int) -> str:
    raw = f"{key}|{DerivedEffect(effect).value}|{ordinal}"
    return hashlib.sha256(raw.encode()).hexdigest()


def _amount(attributes: Dict[str, Any], name: str) -> int:
    """Read a whole, non-negative amount from entity attributes (missing means 0)."""
    value = attributes.get(name)
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise InvalidEntityError(f"'{name}' must be a whole amount", field=name)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value < 0:
        raise InvalidEntityError(f"'{name}' must be a whole, non-negative amount", field=name, value=value)
    return value


def _room_id(entity_id: str, attributes: Dict[str, Any]) -> str:
    room_id = attributes.get("room_id")
    if room_id in (None, ""):
        raise InvalidEntityError(f"Housekeeping task {entity_id} has no room_id", entity_id=entity_id)
    return str(room_id)


def plan_effects(
    entity_type: str,
    entity_id: str,
    from_state: Optional[str],
    to_state: str,
    attributes: Dict[str, Any],
) -> List[PlannedEffect]:
    """The derived effects a transition implies. Pure; touches no storage."""
    entity_type = entity_type_value(entity_type)
    planned: List[PlannedEffect] = []

    if entity_type in DEPOSIT_CATEGORIES:
        if from_state == "pending" and to_state == "confirmed":
            deposit = _amount(attributes, "deposit")
            if deposit > 0:
                category, subcategory = DEPOSIT_CATEGORIES[entity_type]
                planned.append(PlannedEffect(DerivedEffect.FINANCE_INCOME, {
                    "amount": deposit,
                    "category": category,
                    "subcategory": subcategory,
                    "description": f"Deposit for {entity_type.replace('_', ' ')} {entity_id}",
                    "payment_method": attributes.get("payment_method"),
                }))

    elif entity_type == EntityType.HOUSEKEEPING_TASK.value:
        target = None
        if from_state is None:
            if attributes.get("task_type") in CLEANING_TASK_TYPES:
                target = "dirty"
        elif to_state == "in_progress":
            target = "in_progress"
        elif to_state == "completed":
            target = "clean"
        if target:
            planned.append(PlannedEffect(DerivedEffect.ROOM_STATUS_CHANGE, {
                "room_id": _room_id(entity_id, attributes),
                "to_status": target,
            }))

    elif entity_type == EntityType.POS_ORDER.value:
        if to_state == "checked_out" and attributes.get("payment_method") != ROOM_CHARGE:
            total = _amount(attributes, "total")
            if total > 0:
                planned.append(PlannedEffect(DerivedEffect.FINANCE_INCOME, {
                    "amount": total,
                    "category": "Restaurant",
                    "subcategory": "POS Sale",
                    "description": f"POS order {entity_id}",
                    "payment_method": attributes.get("payment_method"),
                }))

    return planned


class SideEffectDispatcher:
    """Creates derived records inside the caller's transaction."""

    def __init__(self, db: Session, machine: Optional[StatusMachine] = None):
        self.db = db
        self.machine = machine or StatusMachine(db)

    def find(self, key: str) -> List[DerivedRecord]:
        return self.db.query(DerivedRecord).filter(
            DerivedRecord.dispatch_key == key
        ).order_by(DerivedRecord.ordinal).all()

    def for_entity(self, entity_type: str, entity_id: str) -> List[DerivedRecord]:
        return self.db.query(DerivedRecord).filter(
            DerivedRecord.source_entity_type == entity_type_value(entity_type),
            DerivedRecord.source_entity_id == str(entity_id),
        ).order_by(DerivedRecord.id).all()

    def dispatch(
        self,
        entity_id: str,
        entity_type: Union[EntityType, str],
        from_state: Optional[str],
        to_state: str,
        context: Optional[Dict[str, Any]],
        sequence: int,
        actor_id: Optional[str] = None,
    ) -> List[DerivedRecord]:
        """Create the records implied by a transition, or return the ones already created.

        Raises:
            InvalidEntityError: attributes a rule depends on are malformed
            DispatchFailedError: a record could not be written
        """
        entity_type = entity_type_value(entity_type)
        entity_id = str(entity_id)
        key = dispatch_key(entity_type, entity_id, from_state, to_state, sequence)

        existing = self.find(key)
        if existing:
            logger.info(f"Dispatch {key[:12]} already applied, returning {len(existing)} record(s)")
            return existing

        planned = plan_effects(entity_type, entity_id, from_state, to_state, context or {})
        if not planned:
            return []

        records: List[DerivedRecord] = []
        try:
            for ordinal, effect in enumerate(planned):
                idempotency_key = effect_key(key, effect.effect, ordinal)
                if effect.effect == DerivedEffect.FINANCE_INCOME:
                    payload = self._record_income(effect.payload, idempotency_key, actor_id)
                else:
                    payload = self._change_room_status(effect.payload, actor_id)

                record = DerivedRecord(
                    idempotency_key=idempotency_key,
                    dispatch_key=key,
                    effect=effect.effect.value,
                    ordinal=ordinal,
                    source_entity_type=entity_type,
                    source_entity_id=entity_id,
                    source_from=from_state,
                    source_to=to_state,
                    source_sequence=sequence,
                    payload=payload,
                )
                self.db.add(record)
                records.append(record)
            self.db.flush()
        except Exception as exc:
            logger.error(
                f"Dispatch failed for {entity_type} {entity_id} {from_state} -> {to_state}: {exc}"
            )
            raise DispatchFailedError(
                f"Could not create derived records for {entity_type} {entity_id}",
                entity_type=entity_type,
                entity_id=entity_id,
            ) from exc

        logger.info(
            f"Dispatched {len(records)} record(s) for {entity_type} {entity_id} {from_state} -> {to_state}"
        )
        return records

    def _record_income(self, payload: Dict[str, Any], idempotency_key: str, actor_id: Optional[str]) -> Dict[str, Any]:
        txn = FinanceTransaction(
            transaction_date=datetime.now(timezone.utc).date(),
            category=payload["category"],
            subcategory=payload["subcategory"],
            amount=payload["amount"],
            type=TransactionType.INCOME.value,
            description=payload["description"],
            payment_method=payload.get("payment_method"),
            derived_record_key=idempotency_key,
            created_by=actor_id,
        )
        self.db.add(txn)
        self.db.flush()
        return {**payload, "finance_transaction_id": txn.id}

    def _change_room_status(self, payload: Dict[str, Any], actor_id: Optional[str]) -> Dict[str, Any]:
        room_id = payload["room_id"]
        target = payload["to_status"]
        room = self.machine.find(EntityType.ROOM_STATUS, room_id)
        if room is None:
            room, _ = self.machine.create(
                EntityType.ROOM_STATUS, room_id, actor_id=actor_id, status=settings.default_room_status
            )

        if room.status == target:
            return {**payload, "from_status": room.status, "applied": False, "room_version": room.version}

        applied = self.machine.apply(EntityType.ROOM_STATUS, room_id, target, room.version, actor_id)
        return {**payload, "from_status": applied.from_status, "applied": True, "room_version": applied.version}
