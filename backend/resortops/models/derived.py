"""Derived records: side effects produced by status transitions."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from resortops.db.base import AppendOnlyMixin, Base, register_append_only


class DerivedEffect(str, Enum):
    FINANCE_INCOME = "finance_income"
    ROOM_STATUS_CHANGE = "room_status_change"


class DerivedRecord(AppendOnlyMixin, Base):
    """At most one row per ``idempotency_key`` (unique constraint).

    ``dispatch_key`` identifies the transition that produced the record; all
    records of one dispatch share it, which is how a replayed dispatch finds
    what it already created.
    """

    __tablename__ = "derived_records"

    id: Mapped[int] = mapped_column(primary_key=True)
    idempotency_key: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    dispatch_key: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    effect: Mapped[str] = mapped_column(String(40), nullable=False)
    ordinal: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    source_entity_type: Mapped[str] = mapped_column(String(40), nullable=False)
    source_entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    source_from: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    source_to: Mapped[str] = mapped_column(String(40), nullable=False)
    source_sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)


register_append_only(DerivedRecord)
