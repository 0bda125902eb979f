"""Lifecycle routes - entity creation, transitions and state reads.

Errors raised by the lifecycle core are rendered by the LifecycleError
handler registered in main.py; routes here never catch them.
"""

import logging

from fastapi import APIRouter, Query, Request

from resortops.core.rate_limit import limiter
from resortops.core.rbac import CurrentUser
from resortops.db.session import DbSession
from resortops.models.lifecycle import EntityType
from resortops.schemas.lifecycle import (
    AllowedTransitionsResponse,
    AttributesUpdate,
    DerivedRecordResponse,
    EntityCreate,
    EntityResponse,
    HistoryResponse,
    StateResponse,
    TransitionRecordResponse,
    TransitionRequest,
    TransitionResponse,
)
from resortops.services.lifecycle_service import LifecycleService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/transition", response_model=TransitionResponse)
@limiter.limit("60/minute")
def request_transition(
    request: Request,
    body: TransitionRequest,
    db: DbSession,
    current_user: CurrentUser,
    retry: bool = Query(False, description="Re-read the version once on conflict"),
):
    """Move an entity to a new status and create the records it implies."""
    service = LifecycleService(db)
    apply = service.transition_with_retry if retry else service.request_transition
    result = apply(
        body.entity_type,
        body.entity_id,
        body.to_state,
        body.expected_version,
        actor_id=current_user.actor_id,
        context=body.context,
    )
    return TransitionResponse.model_validate(result)


@router.get("/state/{entity_type}/{entity_id}", response_model=StateResponse)
@limiter.limit("120/minute")
def get_state(
    request: Request,
    entity_type: EntityType,
    entity_id: str,
    db: DbSession,
    current_user: CurrentUser,
):
    """Current status and version, for dashboards and before a transition."""
    status, version = LifecycleService(db).get_state(entity_type, entity_id)
    return StateResponse(status=status, version=version)


@router.post("/entities", response_model=TransitionResponse, status_code=201)
@limiter.limit("30/minute")
def create_entity(
    request: Request,
    body: EntityCreate,
    db: DbSession,
    current_user: CurrentUser,
):
    """Start tracking an entity in its initial status."""
    result = LifecycleService(db).create_entity(
        body.entity_type, body.entity_id, body.attributes, actor_id=current_user.actor_id
    )
    return TransitionResponse.model_validate(result)


@router.get("/entities/{entity_type}/{entity_id}", response_model=EntityResponse)
@limiter.limit("120/minute")
def get_entity(
    request: Request,
    entity_type: EntityType,
    entity_id: str,
    db: DbSession,
    current_user: CurrentUser,
):
    return EntityResponse.model_validate(LifecycleService(db).get_entity(entity_type, entity_id))


@router.patch("/entities/{entity_type}/{entity_id}", response_model=EntityResponse)
@limiter.limit("30/minute")
def update_entity_attributes(
    request: Request,
    entity_type: EntityType,
    entity_id: str,
    body: AttributesUpdate,
    db: DbSession,
    current_user: CurrentUser,
):
    """Edit deposit, total, room or task details. Status is changed only by /transition."""
    entity = LifecycleService(db).update_attributes(
        entity_type, entity_id, body.attributes, body.expected_version, actor_id=current_user.actor_id
    )
    return EntityResponse.model_validate(entity)


@router.get("/entities/{entity_type}/{entity_id}/transitions", response_model=AllowedTransitionsResponse)
@limiter.limit("120/minute")
def get_allowed_transitions(
    request: Request,
    entity_type: EntityType,
    entity_id: str,
    db: DbSession,
    current_user: CurrentUser,
):
    """Statuses the entity can move to next (drives which actions the UI enables)."""
    return LifecycleService(db).get_allowed_transitions(entity_type, entity_id)


@router.get("/entities/{entity_type}/{entity_id}/history", response_model=HistoryResponse)
@limiter.limit("60/minute")
def get_entity_history(
    request: Request,
    entity_type: EntityType,
    entity_id: str,
    db: DbSession,
    current_user: CurrentUser,
):
    transitions, records = LifecycleService(db).get_history(entity_type, entity_id)
    return HistoryResponse(
        entity_type=entity_type.value,
        entity_id=entity_id,
        transitions=[TransitionRecordResponse.model_validate(t) for t in transitions],
        derived_records=[DerivedRecordResponse.model_validate(r) for r in records],
    )
