"""Admin routes - event console, bulk moderation, exports and audit history"""

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime

from app.core.database import get_db
from app.core.security import Principal
from app.schemas.admin import (
    AdminEventDetailEnvelope,
    AdminEventEnvelope,
    AdminEventFilters,
    AdminEventListResponse,
    AdminSortField,
    AnalyticsRange,
    ComprehensiveAnalyticsResponse,
    RecentActivityResponse,
    SortOrder,
    ExportFormat,
    BulkModerationResponse,
    SweepResponse,
)
from app.schemas.audit import AuditLogResponse
from app.schemas.event import EventMode, EventType, ModerationStatus
from app.schemas.moderation import AdminModerateRequest, BulkModerationRequest
from app.services.admin_event_service import admin_event_service
from app.services.audit_service import RequestMeta
from app.services.export_service import export_service
from app.services.moderation_service import moderation_service
from app.services.scope_resolver import Scope
from app.api.deps import get_moderator, get_head_admin, get_scope, get_request_meta

router = APIRouter()


def admin_filters(
    search: Optional[str] = None,
    moderation_status: Optional[ModerationStatus] = Query(None, alias="moderationStatus"),
    type: Optional[EventType] = None,
    mode: Optional[EventMode] = None,
    tags: Optional[List[str]] = Query(None),
    start_after: Optional[datetime] = Query(None, alias="startAfter"),
    start_before: Optional[datetime] = Query(None, alias="startBefore"),
    capacity_min: Optional[int] = Query(None, ge=0, alias="capacityMin"),
    capacity_max: Optional[int] = Query(None, ge=0, alias="capacityMax"),
    include_archived: bool = Query(True, alias="includeArchived"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: AdminSortField = Query(AdminSortField.CREATED_AT, alias="sortBy"),
    sort_order: SortOrder = Query(SortOrder.DESC, alias="sortOrder"),
) -> AdminEventFilters:
    return AdminEventFilters(
        search=search,
        moderation_status=moderation_status,
        type=type,
        mode=mode,
        tags=tags or [],
        start_after=start_after,
        start_before=start_before,
        capacity_min=capacity_min,
        capacity_max=capacity_max,
        include_archived=include_archived,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.get("/events", response_model=AdminEventListResponse)
def list_admin_events(
    filters: AdminEventFilters = Depends(admin_filters),
    current_user: Principal = Depends(get_moderator),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    """
    List the college's events for the admin console

    Args:
        filters: Search, status, type, mode, tag, date and capacity filters
        current_user: Current admin
        scope: Admin's college
        db: Database session

    Returns:
        Events with their approval flows, pagination and status/type counts
    """
    return admin_event_service.list_events(db, scope, filters)


@router.get("/events/stats")
def get_event_stats(
    current_user: Principal = Depends(get_moderator),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    return admin_event_service.stats(db, scope)


@router.get("/events/dashboard-stats")
def get_dashboard_stats(
    current_user: Principal = Depends(get_moderator),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    """Totals with percentage change against the previous 30 days"""
    return admin_event_service.dashboard_stats(db, scope)


@router.get("/events/export")
def export_events(
    format: ExportFormat = Query(ExportFormat.CSV),
    filters: AdminEventFilters = Depends(admin_filters),
    current_user: Principal = Depends(get_moderator),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    """
    Export the filtered event list

    Returns:
        CSV, JSON or Excel attachment
    """
    filename, media_type, content = export_service.export_events(db, scope, filters, format)
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.patch("/events/bulk-moderate", response_model=BulkModerationResponse)
def bulk_moderate_events(
    request: BulkModerationRequest,
    current_user: Principal = Depends(get_moderator),
    scope: Scope = Depends(get_scope),
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db)
):
    """
    Approve, reject or archive up to 50 events at once

    Events that are missing or in an incompatible state are reported
    under "skipped" rather than failing the whole batch.
    """
    return moderation_service.bulk_moderate(db, current_user, scope, request, meta)


@router.get("/events/recent-activity", response_model=RecentActivityResponse)
def get_recent_activity(
    limit: int = Query(10, ge=1, le=50),
    current_user: Principal = Depends(get_moderator),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    """Events created in the last 7 days as dashboard activity"""
    return {"activities": admin_event_service.recent_activity(db, scope, limit)}


@router.get("/events/analytics/comprehensive", response_model=ComprehensiveAnalyticsResponse)
def get_comprehensive_analytics(
    time_range: AnalyticsRange = Query(AnalyticsRange.THIRTY_DAYS, alias="timeRange"),
    current_user: Principal = Depends(get_moderator),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    """
    Event and registration analytics for the admin's college

    Args:
        time_range: 7d, 30d, 90d or 1y; growth compares with the period before it

    Returns:
        Summary, event and registration metrics, department stats, trends and distributions
    """
    return admin_event_service.comprehensive_analytics(db, scope, time_range)


@router.get("/events/{event_id}", response_model=AdminEventDetailEnvelope)
def get_admin_event(
    event_id: str,
    current_user: Principal = Depends(get_moderator),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    return {"event": admin_event_service.event_detail(db, current_user, scope, event_id)}


@router.patch("/events/{event_id}/moderate", response_model=AdminEventEnvelope)
def admin_moderate_event(
    event_id: str,
    request: AdminModerateRequest,
    current_user: Principal = Depends(get_moderator),
    scope: Scope = Depends(get_scope),
    meta: RequestMeta = Depends(get_request_meta),
    db: Session = Depends(get_db)
):
    """APPROVE, REJECT, ASSIGN_MENTOR or ESCALATE an event"""
    event = moderation_service.admin_moderate(db, current_user, scope, event_id, request, meta)
    return {
        "event": dict(
            event.to_dict(),
            approval_flow=event.approval_flow.to_dict() if event.approval_flow else None,
        )
    }


@router.post("/escalations/sweep", response_model=SweepResponse)
def run_escalation_sweep(
    current_user: Principal = Depends(get_head_admin),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    """Run one escalation sweep over the caller's college (HEAD_ADMIN only)"""
    return moderation_service.sweep(db, college_id=scope.college_id).to_dict()


@router.get("/audit-logs", response_model=List[AuditLogResponse])
def get_audit_logs(
    action: Optional[str] = None,
    entity_type: Optional[str] = Query(None, alias="entityType"),
    limit: int = Query(100, ge=1, le=500),
    current_user: Principal = Depends(get_moderator),
    scope: Scope = Depends(get_scope),
    db: Session = Depends(get_db)
):
    """
    Get admin audit entries for the caller's college

    Args:
        action: Optional action filter (e.g. EVENT_APPROVE)
        entity_type: Optional entity type filter
        limit: Maximum number of entries

    Returns:
        Newest entries first
    """
    return admin_event_service.audit_logs(db, scope, action=action, entity_type=entity_type, limit=limit)
