"""Admin console queries - filtered listings, statistics and audit history"""

from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import String, cast, func, or_
from sqlalchemy.orm import Query, Session

from app.core.security import Principal
from app.models.audit import AuditLogEntry
from app.models.event import Event, EventDepartment, EventRegistration
from app.schemas.admin import AdminEventFilters, AdminSortField, AnalyticsRange, SortOrder
from app.services.event_service import APPROVED, get_event_in_college, to_naive_utc
from app.services.moderation_service import ModerationService, moderation_service
from app.services.scope_resolver import Scope

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    AdminSortField.CREATED_AT: Event.created_at,
    AdminSortField.START_AT: Event.start_at,
    AdminSortField.TITLE: Event.title,
    AdminSortField.REGISTRATION_COUNT: Event.registration_count,
    AdminSortField.AUTHOR_NAME: Event.author_name,
}

RANGE_DAYS = {
    AnalyticsRange.SEVEN_DAYS: 7,
    AnalyticsRange.THIRTY_DAYS: 30,
    AnalyticsRange.NINETY_DAYS: 90,
    AnalyticsRange.ONE_YEAR: 365,
}

ACTIVITY_WINDOW_DAYS = 7
TREND_MONTHS = 12
# Bucket for events open to every department
ALL_DEPARTMENTS = "ALL"


def _percent_change(current: int, previous: int) -> int:
    if previous == 0:
        return 100 if current > 0 else 0
    return round((current - previous) / previous * 100)


class AdminEventService:
    """Read-side operations for the admin console"""

    def __init__(self, moderation: ModerationService):
        self.moderation = moderation

    @staticmethod
    def filtered_query(db: Session, scope: Scope, filters: AdminEventFilters) -> Query:
        query = db.query(Event).filter(Event.college_id == scope.college_id)

        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            query = query.filter(or_(
                Event.title.ilike(pattern),
                Event.description.ilike(pattern),
                Event.author_name.ilike(pattern),
            ))
        if filters.moderation_status:
            query = query.filter(Event.moderation_status == filters.moderation_status.value)
        if filters.type:
            query = query.filter(Event.type == filters.type.value)
        if filters.mode:
            query = query.filter(Event.mode == filters.mode.value)
        if filters.tags:
            # Tags are a JSON array; match the serialized element.
            tags_text = cast(Event.tags, String)
            query = query.filter(or_(*[tags_text.like(f'%{json.dumps(tag)}%') for tag in filters.tags]))
        if filters.start_after:
            query = query.filter(Event.start_at >= to_naive_utc(filters.start_after))
        if filters.start_before:
            query = query.filter(Event.start_at <= to_naive_utc(filters.start_before))
        if filters.capacity_min is not None:
            query = query.filter(Event.capacity >= filters.capacity_min)
        if filters.capacity_max is not None:
            query = query.filter(Event.capacity <= filters.capacity_max)
        if not filters.include_archived:
            query = query.filter(Event.archived_at.is_(None))
        return query

    def status_type_stats(self, db: Session, scope: Scope, total: int) -> Dict[str, int]:
        stats = {
            "total": total, "pending": 0, "approved": 0, "rejected": 0,
            "workshop": 0, "seminar": 0, "hackathon": 0, "meetup": 0,
        }
        rows = (
            db.query(Event.moderation_status, Event.type, func.count(Event.id))
            .filter(Event.college_id == scope.college_id)
            .group_by(Event.moderation_status, Event.type)
            .all()
        )
        status_keys = {"PENDING_REVIEW": "pending", "APPROVED": "approved", "REJECTED": "rejected"}
        for status, event_type, count in rows:
            stats[status_keys[status]] += count
            stats[event_type.lower()] += count
        return stats

    def list_events(self, db: Session, scope: Scope, filters: AdminEventFilters) -> Dict[str, Any]:
        """List events for the admin console with pagination and per-status/type stats."""
        query = self.filtered_query(db, scope, filters)
        total = query.count()

        column = SORT_COLUMNS[filters.sort_by]
        ordering = column.asc() if filters.sort_order == SortOrder.ASC else column.desc()
        events = (
            query.order_by(ordering, Event.id.asc())
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
            .all()
        )

        return {
            "events": [
                dict(e.to_dict(), approval_flow=e.approval_flow.to_dict() if e.approval_flow else None)
                for e in events
            ],
            "pagination": {
                "page": filters.page,
                "limit": filters.limit,
                "total": total,
                "total_pages": math.ceil(total / filters.limit) if total else 0,
            },
            "stats": self.status_type_stats(db, scope, total),
        }

    def event_detail(self, db: Session, principal: Principal, scope: Scope, event_id: str) -> Dict[str, Any]:
        """Event with its registrations and approval flow; runs a due escalation first."""
        ModerationService.require_moderator(principal)
        get_event_in_college(db, scope, event_id)
        self.moderation.check_escalation(db, event_id)

        event = get_event_in_college(db, scope, event_id)
        registrations = (
            db.query(EventRegistration)
            .filter(EventRegistration.event_id == event.id)
            .order_by(EventRegistration.joined_at.desc())
            .all()
        )
        return dict(
            event.to_dict(),
            registrations=[r.to_dict() for r in registrations],
            approval_flow=event.approval_flow.to_dict() if event.approval_flow else None,
        )

    def stats(self, db: Session, scope: Scope, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Overview, moderation and type breakdown for the caller's college."""
        now = now or datetime.utcnow()
        base = db.query(Event).filter(Event.college_id == scope.college_id)
        total_events = base.count()
        recent_events = base.filter(Event.created_at >= now - timedelta(days=7)).count()
        total_registrations = (
            db.query(func.count(EventRegistration.id))
            .join(Event, Event.id == EventRegistration.event_id)
            .filter(Event.college_id == scope.college_id)
            .scalar()
        )

        moderation = {
            status.lower(): count
            for status, count in db.query(Event.moderation_status, func.count(Event.id))
            .filter(Event.college_id == scope.college_id)
            .group_by(Event.moderation_status)
        }
        types = {
            event_type.lower(): count
            for event_type, count in db.query(Event.type, func.count(Event.id))
            .filter(Event.college_id == scope.college_id)
            .group_by(Event.type)
        }
        return {
            "overview": {
                "total_events": total_events,
                "recent_events": recent_events,
                "total_registrations": total_registrations or 0,
                "last_updated": now.isoformat(),
            },
            "moderation": moderation,
            "types": types,
        }

    def _window_counts(self, db: Session, scope: Scope, start: Optional[datetime], end: Optional[datetime]) -> Tuple[int, int]:
        events = db.query(Event).filter(Event.college_id == scope.college_id, Event.archived_at.is_(None))
        registrations = (
            db.query(func.count(EventRegistration.id))
            .join(Event, Event.id == EventRegistration.event_id)
            .filter(Event.college_id == scope.college_id, Event.archived_at.is_(None))
        )
        if start is not None:
            events = events.filter(Event.created_at >= start)
            registrations = registrations.filter(Event.created_at >= start)
        if end is not None:
            events = events.filter(Event.created_at < end)
            registrations = registrations.filter(Event.created_at < end)
        return events.count(), registrations.scalar() or 0

    def dashboard_stats(self, db: Session, scope: Scope, now: Optional[datetime] = None) -> Dict[str, int]:
        """Totals for non-archived events with change against the previous 30-day window."""
        now = now or datetime.utcnow()
        thirty_days_ago = now - timedelta(days=30)
        sixty_days_ago = now - timedelta(days=60)

        total_events, total_registrations = self._window_counts(db, scope, None, None)
        previous_events, previous_registrations = self._window_counts(db, scope, sixty_days_ago, thirty_days_ago)
        return {
            "total_events": total_events,
            "total_events_change": _percent_change(total_events, previous_events),
            "total_registrations": total_registrations,
            "total_registrations_change": _percent_change(total_registrations, previous_registrations),
        }

    def recent_activity(
        self, db: Session, scope: Scope, limit: int = 10, now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """Events created in the last 7 days, newest first, as dashboard activity items."""
        now = now or datetime.utcnow()
        events = (
            db.query(Event)
            .filter(
                Event.college_id == scope.college_id,
                Event.archived_at.is_(None),
                Event.created_at >= now - timedelta(days=ACTIVITY_WINDOW_DAYS),
            )
            .order_by(Event.created_at.desc(), Event.id.asc())
            .limit(limit)
            .all()
        )
        activities = []
        for event in events:
            published = event.moderation_status == APPROVED
            activities.append({
                "id": f"event_{event.id}",
                "type": "event_published" if published else "event_created",
                "title": "Event published" if published else "New event created",
                "description": event.title,
                "timestamp": event.created_at,
                "user": {"name": event.author_name, "avatar": None},
                "metadata": {
                    "event_type": event.type,
                    "start_at": event.start_at,
                    "status": event.moderation_status,
                },
            })
        return activities

    @staticmethod
    def _department_stats(db: Session, scope: Scope) -> List[Dict[str, Any]]:
        rows = (
            db.query(EventDepartment.name, func.count(Event.id), func.sum(Event.registration_count))
            .join(Event, Event.id == EventDepartment.event_id)
            .filter(Event.college_id == scope.college_id)
            .group_by(EventDepartment.name)
            .all()
        )
        stats = [
            {"department": name, "event_count": count, "registrations": int(registrations or 0)}
            for name, count, registrations in rows
        ]
        open_count, open_registrations = (
            db.query(func.count(Event.id), func.sum(Event.registration_count))
            .filter(Event.college_id == scope.college_id, Event.visible_to_all_depts.is_(True))
            .one()
        )
        if open_count:
            stats.append({
                "department": ALL_DEPARTMENTS,
                "event_count": open_count,
                "registrations": int(open_registrations or 0),
            })
        return sorted(stats, key=lambda s: (-s["event_count"], s["department"]))

    @staticmethod
    def _monthly_trends(db: Session, scope: Scope, now: datetime) -> List[Dict[str, Any]]:
        # Bucketed here rather than with date_trunc so SQLite and PostgreSQL agree.
        months: Dict[str, Dict[str, Any]] = {}
        rows = (
            db.query(Event.created_at, Event.moderation_status)
            .filter(Event.college_id == scope.college_id, Event.created_at >= now - timedelta(days=365))
        )
        for created_at, moderation_status in rows:
            key = created_at.strftime("%Y-%m")
            bucket = months.setdefault(key, {"month": key, "count": 0, "approved": 0})
            bucket["count"] += 1
            if moderation_status == APPROVED:
                bucket["approved"] += 1
        return [months[key] for key in sorted(months, reverse=True)[:TREND_MONTHS]]

    def comprehensive_analytics(
        self,
        db: Session,
        scope: Scope,
        time_range: AnalyticsRange = AnalyticsRange.THIRTY_DAYS,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Event and registration analytics for the caller's college

        The period is the last `time_range`; growth compares it with the
        period of equal length right before it.
        """
        now = now or datetime.utcnow()
        start = now - timedelta(days=RANGE_DAYS[time_range])
        previous_start = start - (now - start)

        events = db.query(Event).filter(Event.college_id == scope.college_id)
        total = events.count()
        active = events.filter(Event.moderation_status == APPROVED, Event.end_at >= now).count()
        upcoming = events.filter(Event.moderation_status == APPROVED, Event.start_at >= now).count()
        past = events.filter(Event.end_at < now).count()
        in_period = events.filter(Event.created_at >= start).count()
        in_previous_period = events.filter(Event.created_at >= previous_start, Event.created_at < start).count()

        registrations = (
            db.query(func.count(EventRegistration.id))
            .join(Event, Event.id == EventRegistration.event_id)
            .filter(Event.college_id == scope.college_id)
        )
        total_registrations = registrations.scalar() or 0
        registrations_in_period = registrations.filter(EventRegistration.joined_at >= start).scalar() or 0

        if in_previous_period:
            growth = round((in_period - in_previous_period) / in_previous_period * 100, 2)
        else:
            growth = 100.0 if in_period else 0.0

        top_types = (
            db.query(Event.type, func.count(Event.id))
            .filter(Event.college_id == scope.college_id, Event.moderation_status == APPROVED)
            .group_by(Event.type)
            .order_by(func.count(Event.id).desc(), Event.type.asc())
            .limit(10)
            .all()
        )
        status_distribution = (
            db.query(Event.moderation_status, func.count(Event.id))
            .filter(Event.college_id == scope.college_id)
            .group_by(Event.moderation_status)
            .order_by(Event.moderation_status.asc())
            .all()
        )

        return {
            "summary": {
                "total_events": total,
                "active_events": active,
                "total_registrations": total_registrations,
                "event_growth": growth,
                "registrations_in_period": registrations_in_period,
                "time_range": time_range.value,
            },
            "event_metrics": {
                "total": total,
                "active": active,
                "upcoming": upcoming,
                "past": past,
                "new_in_period": in_period,
                "previous_period": in_previous_period,
                "growth_rate": growth,
            },
            "registration_metrics": {
                "total": total_registrations,
                "new_in_period": registrations_in_period,
            },
            "department_stats": self._department_stats(db, scope),
            "trends": {
                "monthly": self._monthly_trends(db, scope, now),
                "top_event_types": [{"event_type": t, "count": c} for t, c in top_types],
            },
            "distributions": {
                "event_status": [{"status": s, "count": c} for s, c in status_distribution],
            },
        }

    @staticmethod
    def audit_logs(
        db: Session,
        scope: Scope,
        action: Optional[str] = None,
        entity_type: Optional[str] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        query = db.query(AuditLogEntry).filter(AuditLogEntry.college_id == scope.college_id)
        if action:
            query = query.filter(AuditLogEntry.action == action)
        if entity_type:
            query = query.filter(AuditLogEntry.entity_type == entity_type)
        rows = query.order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc()).limit(limit).all()

        def _load(text: Optional[str]) -> Any:
            if not text:
                return None
            try:
                return json.loads(text)
            except ValueError:
                return text

        return [
            {
                "id": row.id,
                "admin_id": row.admin_id,
                "admin_name": row.admin_name,
                "action": row.action,
                "entity_type": row.entity_type,
                "entity_id": row.entity_id,
                "old_values": _load(row.old_values),
                "new_values": _load(row.new_values),
                "reason": row.reason,
                "college_id": row.college_id,
                "ip_address": row.ip_address,
                "metadata": _load(row.metadata_json) or {},
                "timestamp": row.timestamp,
            }
            for row in rows
        ]


admin_event_service = AdminEventService(moderation_service)
