"""Lifecycle schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from resortops.models.lifecycle import EntityType


class EntityCreate(BaseModel):
    """Start tracking a booking, order, task or room."""

    entity_type: EntityType
    entity_id: str = Field(..., min_length=1, max_length=64)
    attributes: Dict[str, Any] = Field(default_factory=dict)


class AttributesUpdate(BaseModel):
    expected_version: int = Field(..., ge=1)
    attributes: Dict[str, Any]


class TransitionRequest(BaseModel):
    """Move an entity to a new status."""

    entity_type: EntityType
    entity_id: str = Field(..., min_length=1, max_length=64)
    to_state: str = Field(..., min_length=1, max_length=40)
    expected_version: int = Field(..., ge=1)
    context: Optional[Dict[str, Any]] = None


class DerivedRecordResponse(BaseModel):
    id: int
    idempotency_key: str
    effect: str
    source_entity_type: str
    source_entity_id: str
    source_from: Optional[str] = None
    source_to: str
    source_sequence: int
    payload: Dict[str, Any]
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TransitionResponse(BaseModel):
    entity_type: str
    entity_id: str
    from_status: Optional[str] = None
    status: str
    version: int
    derived_records: List[DerivedRecordResponse] = []

    model_config = {"from_attributes": True}


class StateResponse(BaseModel):
    status: str
    version: int


class EntityResponse(BaseModel):
    entity_type: str
    entity_id: str
    status: str
    version: int
    attributes: Dict[str, Any]
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AllowedTransitionsResponse(BaseModel):
    status: str
    version: int
    allowed: List[str]


class TransitionRecordResponse(BaseModel):
    """One row of an entity's transition journal."""

    sequence: int
    from_status: Optional[str] = None
    to_status: str
    actor_id: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class HistoryResponse(BaseModel):
    entity_type: str
    entity_id: str
    transitions: List[TransitionRecordResponse]
    derived_records: List[DerivedRecordResponse]
