"""Status Machine - transition tables and version-guarded status writes.

The tables below are the only place that decides which status changes are
legal. ``StatusMachine`` applies a legal change to a stored entity:

1. Load the entity (NotFoundError)
2. Compare the caller's expected version (VersionConflictError)
3. Check the target against the table (IllegalTransitionError)
4. Compare-and-swap UPDATE ... WHERE version = :expected
5. Append one LifecycleTransition journal row

Only the Lifecycle Service should call the write methods here.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from resortops.core.errors import (
    EntityExistsError,
    IllegalTransitionError,
    InvalidEntityError,
    NotFoundError,
    VersionConflictError,
)
from resortops.models.lifecycle import EntityType, LifecycleEntity, LifecycleTransition

logger = logging.getLogger(__name__)

ROOM_STATES = ("clean", "dirty", "in_progress", "inspected", "out_of_order", "do_not_disturb")

# Rooms can be moved between any two statuses from the housekeeping board.
_ROOM_GRAPH = {state: frozenset(s for s in ROOM_STATES if s != state) for state in ROOM_STATES}

TRANSITIONS: Dict[str, Dict[str, FrozenSet[str]]] = {
    EntityType.BOOKING.value: {
        "pending": frozenset({"confirmed", "cancelled"}),
        "confirmed": frozenset({"checked_in", "cancelled"}),
        "checked_in": frozenset({"checked_out"}),
        "checked_out": frozenset(),
        "cancelled": frozenset(),
    },
    EntityType.CONFERENCE_BOOKING.value: {
        "pending": frozenset({"confirmed", "cancelled"}),
        "confirmed": frozenset({"completed", "cancelled"}),
        "completed": frozenset(),
        "cancelled": frozenset(),
    },
    EntityType.SERVICE_ORDER.value: {
        "pending": frozenset({"confirmed", "cancelled"}),
        "confirmed": frozenset({"delivered", "cancelled"}),
        "delivered": frozenset(),
        "cancelled": frozenset(),
    },
    EntityType.HOUSEKEEPING_TASK.value: {
        "pending": frozenset({"in_progress"}),
        "in_progress": frozenset({"completed", "issue_reported"}),
        "completed": frozenset({"inspected"}),
        "inspected": frozenset(),
        "issue_reported": frozenset({"pending"}),
    },
    EntityType.ROOM_STATUS.value: _ROOM_GRAPH,
    EntityType.POS_ORDER.value: {
        "open": frozenset({"checked_out", "voided"}),
        "checked_out": frozenset(),
        "voided": frozenset(),
    },
}

INITIAL_STATES: Dict[str, str] = {
    EntityType.BOOKING.value: "pending",
    EntityType.CONFERENCE_BOOKING.value: "pending",
    EntityType.SERVICE_ORDER.value: "pending",
    EntityType.HOUSEKEEPING_TASK.value: "pending",
    EntityType.ROOM_STATUS.value: "clean",
    EntityType.POS_ORDER.value: "open",
}

# (entity_type, to_status) -> attribute keys stamped with the transition time
STATE_STAMPS: Dict[Tuple[str, str], Tuple[str, ...]] = {
    (EntityType.HOUSEKEEPING_TASK.value, "in_progress"): ("started_at",),
    (EntityType.HOUSEKEEPING_TASK.value, "completed"): ("completed_at",),
    (EntityType.HOUSEKEEPING_TASK.value, "inspected"): ("inspected_at",),
    (EntityType.ROOM_STATUS.value, "clean"): ("last_cleaned_at",),
    (EntityType.ROOM_STATUS.value, "inspected"): ("last_inspected_at",),
}

PROTECTED_ATTRIBUTES = frozenset({"status", "version"})


def entity_type_value(entity_type: Union[EntityType, str]) -> str:
    """Normalise an EntityType or its string value, rejecting unknown types."""
    try:
        return EntityType(entity_type).value
    except ValueError:
        raise InvalidEntityError(f"Unknown entity type '{entity_type}'", entity_type=str(entity_type))


def states(entity_type: Union[EntityType, str]) -> FrozenSet[str]:
    return frozenset(TRANSITIONS[entity_type_value(entity_type)])


def initial_state(entity_type: Union[EntityType, str]) -> str:
    return INITIAL_STATES[entity_type_value(entity_type)]


def allowed_targets(entity_type: Union[EntityType, str], status: str) -> FrozenSet[str]:
    """Statuses reachable in one step from *status*. Unknown statuses reach nothing."""
    return TRANSITIONS[entity_type_value(entity_type)].get(status, frozenset())


def is_legal(entity_type: Union[EntityType, str], from_status: str, to_status: str) -> bool:
    return from_status != to_status and to_status in allowed_targets(entity_type, from_status)


@dataclass
class AppliedTransition:
    """A status change that has been written but not yet committed."""

    entity_type: str
    entity_id: str
    from_status: Optional[str]
    to_status: str
    version: int
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def sequence(self) -> int:
        return self.version


class StatusMachine:
    """Applies transitions to LifecycleEntity rows."""

    def __init__(self, db: Session):
        self.db = db

    # ===== READS =====

    def find(self, entity_type: Union[EntityType, str], entity_id: str) -> Optional[LifecycleEntity]:
        return self.db.query(LifecycleEntity).filter(
            LifecycleEntity.entity_type == entity_type_value(entity_type),
            LifecycleEntity.entity_id == str(entity_id),
        ).first()

    def load(self, entity_type: Union[EntityType, str], entity_id: str) -> LifecycleEntity:
        entity = self.find(entity_type, entity_id)
        if entity is None:
            raise NotFoundError(
                f"{entity_type_value(entity_type)} '{entity_id}' not found",
                entity_type=entity_type_value(entity_type),
                entity_id=str(entity_id),
            )
        return entity

    def history(self, entity_type: Union[EntityType, str], entity_id: str) -> List[LifecycleTransition]:
        return self.db.query(LifecycleTransition).filter(
            LifecycleTransition.entity_type == entity_type_value(entity_type),
            LifecycleTransition.entity_id == str(entity_id),
        ).order_by(LifecycleTransition.sequence).all()

    # ===== WRITES =====

    def create(
        self,
        entity_type: Union[EntityType, str],
        entity_id: str,
        attributes: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Tuple[LifecycleEntity, AppliedTransition]:
        """Insert an entity at version 1 and journal its creation."""
        type_value = entity_type_value(entity_type)
        entity_id = str(entity_id)
        status = status or initial_state(type_value)
        if status not in TRANSITIONS[type_value]:
            raise InvalidEntityError(f"'{status}' is not a {type_value} status", status=status)

        if self.find(type_value, entity_id) is not None:
            raise EntityExistsError(
                f"{type_value} '{entity_id}' already exists", entity_type=type_value, entity_id=entity_id
            )

        attributes = self._clean_attributes(attributes)
        attributes.update(self._stamps(type_value, status, actor_id))

        entity = LifecycleEntity(
            entity_type=type_value,
            entity_id=entity_id,
            status=status,
            version=1,
            attributes=attributes,
            created_by=actor_id,
        )
        self.db.add(entity)
        self.db.add(LifecycleTransition(
            entity_type=type_value,
            entity_id=entity_id,
            from_status=None,
            to_status=status,
            sequence=1,
            actor_id=actor_id,
        ))
        try:
            self.db.flush()
        except IntegrityError as exc:
            raise EntityExistsError(
                f"{type_value} '{entity_id}' already exists", entity_type=type_value, entity_id=entity_id
            ) from exc

        logger.info(f"Created {type_value} {entity_id} in '{status}'")
        return entity, AppliedTransition(type_value, entity_id, None, status, 1, dict(attributes))

    def apply(
        self,
        entity_type: Union[EntityType, str],
        entity_id: str,
        to_status: str,
        expected_version: Optional[int],
        actor_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> AppliedTransition:
        """Move an entity to *to_status* if the caller's version is current."""
        type_value = entity_type_value(entity_type)
        entity = self.load(type_value, entity_id)

        if not entity.is_current(expected_version):
            raise VersionConflictError(type_value, str(entity_id), expected_version, entity.version)

        from_status = entity.status
        if not is_legal(type_value, from_status, to_status):
            raise IllegalTransitionError(
                type_value, from_status, to_status, allowed_targets(type_value, from_status)
            )

        attributes = dict(entity.attributes or {})
        attributes.update(self._clean_attributes(context))
        attributes.update(self._stamps(type_value, to_status, actor_id))

        new_version = expected_version + 1
        self._compare_and_swap(
            entity,
            expected_version,
            status=to_status,
            version=new_version,
            attributes=attributes,
        )
        self.db.add(LifecycleTransition(
            entity_type=type_value,
            entity_id=entity.entity_id,
            from_status=from_status,
            to_status=to_status,
            sequence=new_version,
            actor_id=actor_id,
        ))
        self.db.flush()

        logger.info(f"{type_value} {entity.entity_id}: {from_status} -> {to_status} (v{new_version})")
        return AppliedTransition(type_value, entity.entity_id, from_status, to_status, new_version, attributes)

    def patch_attributes(
        self,
        entity_type: Union[EntityType, str],
        entity_id: str,
        changes: Dict[str, Any],
        expected_version: Optional[int],
    ) -> LifecycleEntity:
        """Merge *changes* into the entity's attributes, bumping its version."""
        type_value = entity_type_value(entity_type)
        entity = self.load(type_value, entity_id)
        if not entity.is_current(expected_version):
            raise VersionConflictError(type_value, str(entity_id), expected_version, entity.version)

        attributes = dict(entity.attributes or {})
        attributes.update(self._clean_attributes(changes))
        self._compare_and_swap(entity, expected_version, version=expected_version + 1, attributes=attributes)
        self.db.refresh(entity)
        return entity

    # ===== HELPERS =====

    def _compare_and_swap(self, entity: LifecycleEntity, expected_version: int, **values: Any) -> None:
        values["updated_at"] = datetime.now(timezone.utc)
        result = self.db.execute(
            update(LifecycleEntity)
            .where(LifecycleEntity.id == entity.id, LifecycleEntity.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.expire(entity)
        if result.rowcount != 1:
            current = self.db.query(LifecycleEntity.version).filter(LifecycleEntity.id == entity.id).scalar()
            logger.warning(
                f"Version conflict on {entity.entity_type} {entity.entity_id}: "
                f"expected {expected_version}, found {current}"
            )
            raise VersionConflictError(entity.entity_type, entity.entity_id, expected_version, current)

    @staticmethod
    def _clean_attributes(attributes: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        attributes = dict(attributes or {})
        protected = PROTECTED_ATTRIBUTES.intersection(attributes)
        if protected:
            raise InvalidEntityError(
                f"Attributes cannot set {', '.join(sorted(protected))}", fields=sorted(protected)
            )
        return attributes

    @staticmethod
    def _stamps(entity_type: str, status: str, actor_id: Optional[str]) -> Dict[str, Any]:
        now = datetime.now(timezone.utc).isoformat()
        stamps: Dict[str, Any] = {key: now for key in STATE_STAMPS.get((entity_type, status), ())}
        if entity_type == EntityType.HOUSEKEEPING_TASK.value and status == "inspected":
            stamps["inspected_by"] = actor_id
        return stamps
