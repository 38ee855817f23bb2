"""Event routes - listing, authoring, registration and moderation"""

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime

from app.core.database import get_db
from app.core.security import Principal
from app.schemas.event import (
    EventCreate,
    EventUpdate,
    EventListQuery,
    EventMode,
    EventType,
    ModerationStatus,
    EligibilityResponse,
    EventCollection,
    EventEnvelope,
    EventListResponse,
    RegistrationCollection,
    RegistrationEnvelope,
)
from app.schemas.moderation import ModerateRequest
from app.services.audit_service import RequestMeta
from app.services.event_service import event_service
from app.services.eligibility_service import eligibility_checker
from app.services.moderation_service import moderation_service
from app.services.registration_service import registration_service
from app.services.scope_resolver import Scope
from app.api.deps import get_current_principal, get_scope, get_request_meta

router = APIRouter()


@router.get("", response_model=EventListResponse)
def list_events(
    q: Optional[str] = None,
    department: Optional[str] = None,
    type: Optional[EventType] = None,
    mode: Optional[EventMode] = None,
    moderation_status: Optional[ModerationStatus] = Query(None, alias="status"),
    from_: Optional[datetime] = Query(None, alias="from"),
    to: Optional[datetime] = None,
    upcoming_only: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(get_current_principal),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    """
    List events visible to the caller

    Students only see approved, non-archived events of their college that
    are open to every department or to their own.

    Returns:
        Page of events ordered by start time with the total count
    """
    filters = EventListQuery(
        q=q,
        department=department,
        type=type,
        mode=mode,
        status=moderation_status,
        from_=from_,
        to=to,
        upcoming_only=upcoming_only,
        page=page,
        limit=limit,
    )
    events, total = event_service.list_events(db, principal, scope, filters)
    return {
        "events": event_service.present(db, principal, events),
        "total": total,
        "page": page,
        "limit": limit,
    }


@router.get("/mine", response_model=EventCollection)
def list_my_events(
    principal: Principal = Depends(get_current_principal),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    """Events the caller authored, registered for or monitors"""
    events = event_service.list_mine(db, principal, scope)
    return {"events": event_service.present(db, principal, events)}


@router.get("/eligibility", response_model=EligibilityResponse)
def get_eligibility(principal: Principal = Depends(get_current_principal)):
    eligibility = eligibility_checker.check(principal)
    return EligibilityResponse(can_create=eligibility.can_create, missing_badges=eligibility.missing)


@router.get("/registrations/mine", response_model=RegistrationCollection)
def list_my_registrations(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db)
):
    registrations = event_service.list_my_registrations(db, principal)
    return {"registrations": [r.to_dict() for r in registrations]}


@router.post("", response_model=EventEnvelope, status_code=status.HTTP_201_CREATED)
def create_event(
    payload: EventCreate,
    principal: Principal = Depends(get_current_principal),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    """
    Create an event

    Args:
        payload: Event fields
        principal: Current caller
        scope: Caller's college and department
        db: Database session

    Returns:
        The created event; student events start in PENDING_REVIEW
    """
    event = event_service.create(db, principal, scope, payload)
    return {"event": dict(event.to_dict(), is_registered=False)}


@router.get("/{event_id}", response_model=EventEnvelope)
def get_event(
    event_id: str,
    principal: Principal = Depends(get_current_principal),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    event = event_service.get(db, principal, scope, event_id)
    return {"event": event_service.present(db, principal, [event])[0]}


@router.put("/{event_id}", response_model=EventEnvelope)
def update_event(
    event_id: str,
    payload: EventUpdate,
    principal: Principal = Depends(get_current_principal),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    event = event_service.update(db, principal, scope, event_id, payload)
    return {"event": event_service.present(db, principal, [event])[0]}


@router.delete("/{event_id}")
def delete_event(
    event_id: str,
    principal: Principal = Depends(get_current_principal),
    scope: Scope = Depends(get_scope),
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db)
):
    event_service.delete(db, principal, scope, event_id, meta)
    return {"success": True}


@router.post("/{event_id}/register", response_model=RegistrationEnvelope, status_code=status.HTTP_201_CREATED)
def register_for_event(
    event_id: str,
    principal: Principal = Depends(get_current_principal),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    """
    Register the caller for an event

    Raises:
        EventFullError: If capacity is reached
        AlreadyRegisteredError: If the caller already holds a seat
        InvalidStateError: If the event is not open for registration
    """
    registration = registration_service.register(db, principal, scope, event_id)
    return {"registration": registration.to_dict()}


@router.delete("/{event_id}/register")
def unregister_from_event(
    event_id: str,
    principal: Principal = Depends(get_current_principal),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    registration_service.unregister(db, principal, scope, event_id)
    return {"success": True}


@router.patch("/{event_id}/moderate", response_model=EventEnvelope)
def moderate_event(
    event_id: str,
    request: ModerateRequest,
    principal: Principal = Depends(get_current_principal),
    scope: Scope = Depends(get_scope),
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db)
):
    """APPROVE, REJECT or ASSIGN a monitor (DEPT_ADMIN or HEAD_ADMIN)"""
    event = moderation_service.moderate(db, principal, scope, event_id, request, meta)
    return {"event": event.to_dict()}


@router.get("/{event_id}/export")
def export_registrations(
    event_id: str,
    principal: Principal = Depends(get_current_principal),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    """Download the event's registrations as CSV (FACULTY and admins)"""
    filename, content = event_service.export_registrations_csv(db, principal, scope, event_id)
    return Response(
        content=content.encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
