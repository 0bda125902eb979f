"""Lifecycle models: tracked entities and their transition journal."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from resortops.db.base import AppendOnlyMixin, Base, TimestampMixin, VersionMixin, register_append_only


class EntityType(str, Enum):
    """Kinds of records whose status is governed by a transition table."""

    BOOKING = "booking"
    CONFERENCE_BOOKING = "conference_booking"
    SERVICE_ORDER = "service_order"
    HOUSEKEEPING_TASK = "housekeeping_task"
    ROOM_STATUS = "room_status"
    POS_ORDER = "pos_order"


class LifecycleEntity(VersionMixin, TimestampMixin, Base):
    """Current status of one booking, order, task or room.

    ``attributes`` holds the domain payload the side-effect rules read
    (deposit, order total, linked room, task type) plus the timestamps the
    status machine stamps on particular states.
    """

    __tablename__ = "lifecycle_entities"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", name="uq_lifecycle_entity"),
        Index("idx_lifecycle_type_status", "entity_type", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(40), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    attributes: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<LifecycleEntity {self.entity_type}:{self.entity_id} {self.status} v{self.version}>"


class LifecycleTransition(AppendOnlyMixin, Base):
    """One applied status change. ``sequence`` is the version it produced."""

    __tablename__ = "lifecycle_transitions"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "sequence", name="uq_transition_sequence"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(40), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    from_status: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)  # NULL on creation
    to_status: Mapped[str] = mapped_column(String(40), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)


register_append_only(LifecycleTransition)
