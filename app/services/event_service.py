"""Event service - validation, visibility rules and event CRUD"""

from __future__ import annotations

import csv
import io
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import and_, exists, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.clients.identity import IdentityClient, identity_client
from app.clients.profile import ProfileClient, profile_client
from app.core.exceptions import (
    AuthorizationError,
    EligibilityDeniedError,
    ResourceNotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from app.core.security import Principal, Role
from app.models.event import ApprovalFlow, Event, EventDepartment, EventRegistration
from app.schemas.event import EventCreate, EventListQuery, EventMode, EventUpdate, ModerationStatus
from app.services.audit_service import AuditService, RequestMeta, audit_service
from app.services.eligibility_service import EligibilityChecker, eligibility_checker
from app.services.notification_service import NotificationService, notification_service
from app.services.scope_resolver import Scope

logger = logging.getLogger(__name__)

PENDING_REVIEW = ModerationStatus.PENDING_REVIEW.value
APPROVED = ModerationStatus.APPROVED.value
REJECTED = ModerationStatus.REJECTED.value

EDITABLE_FIELDS = (
    "title", "description", "start_at", "end_at", "type", "mode", "location",
    "meeting_url", "capacity", "visible_to_all_depts", "tags",
)

EXPORT_COLUMNS = ("studentName", "collegeMemberId", "department", "year")


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize aware datetimes to naive UTC, the storage convention."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _plain(value: Any) -> Any:
    return getattr(value, "value", value)


def is_restricted(principal: Principal) -> bool:
    """Students (and callers without a privileged role) only see approved, in-department events."""
    return principal.is_student or not principal.is_privileged


def visible_to_department(department: str):
    return or_(
        Event.visible_to_all_depts.is_(True),
        exists().where(and_(EventDepartment.event_id == Event.id, EventDepartment.name == department)),
    )


def visibility_clause(principal: Principal, scope: Scope):
    clauses = [Event.college_id == scope.college_id]
    if is_restricted(principal):
        clauses.extend([
            Event.moderation_status == APPROVED,
            Event.archived_at.is_(None),
            visible_to_department(scope.department),
        ])
    return and_(*clauses)


def department_can_see(event: Event, department: str) -> bool:
    return bool(event.visible_to_all_depts) or department in event.departments


def can_modify(principal: Principal, scope: Scope, event: Event) -> bool:
    if event.college_id != scope.college_id:
        return False
    if (
        principal.is_student
        and event.author_id == principal.user_id
        and event.moderation_status == PENDING_REVIEW
    ):
        return True
    return principal.is_privileged


def get_event_in_college(db: Session, scope: Scope, event_id: str) -> Event:
    """
    Load an event inside the caller's college

    Raises:
        ResourceNotFoundError: If absent or owned by another college
    """
    event = db.query(Event).filter(Event.id == event_id, Event.college_id == scope.college_id).first()
    if not event:
        raise ResourceNotFoundError("Event")
    return event


def validate_event_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check a complete (created or merged) set of event fields

    Returns:
        The fields with end_at defaulted and departments normalized

    Raises:
        ValidationError: On the first violated rule
    """
    title = (fields.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required")
    if not (fields.get("description") or "").strip():
        raise ValidationError("description is required")

    start_at = fields.get("start_at")
    if not isinstance(start_at, datetime):
        raise ValidationError("start_at must be a valid timestamp")
    end_at = fields.get("end_at") or start_at
    if end_at < start_at:
        raise ValidationError("end_at must be after or equal to start_at")

    mode = fields.get("mode")
    if mode not in {m.value for m in EventMode}:
        raise ValidationError("mode must be one of ONLINE, ONSITE, HYBRID")
    if mode != EventMode.ONLINE.value and not fields.get("location"):
        raise ValidationError("location is required for ONSITE/HYBRID events")
    if mode != EventMode.ONSITE.value and not fields.get("meeting_url"):
        raise ValidationError("meeting_url is required for ONLINE/HYBRID events")

    capacity = fields.get("capacity")
    if capacity is not None and capacity <= 0:
        raise ValidationError("capacity must be a positive integer")

    visible_to_all = fields.get("visible_to_all_depts")
    if visible_to_all is None:
        raise ValidationError("visible_to_all_depts is required")
    departments = [] if visible_to_all else list(fields.get("departments") or [])
    if not visible_to_all and not departments:
        raise ValidationError("departments must not be empty when the event is not visible to all departments")

    cleaned = dict(fields)
    cleaned.update(title=title, end_at=end_at, departments=departments, tags=list(fields.get("tags") or []))
    return cleaned


def registered_event_ids(db: Session, user_id: str, event_ids: Iterable[str]) -> Set[str]:
    ids = list(event_ids)
    if not ids:
        return set()
    rows = db.query(EventRegistration.event_id).filter(
        EventRegistration.user_id == user_id,
        EventRegistration.event_id.in_(ids),
    ).all()
    return {row[0] for row in rows}


def export_filename(title: Optional[str]) -> str:
    safe = re.sub(r"[^A-Za-z0-9\-]+", "_", title or "event")[:50] or "event"
    return f"{safe}_registrations.csv"


class EventService:
    """Service for creating, reading and editing college events"""

    def __init__(
        self,
        eligibility: EligibilityChecker,
        directory: IdentityClient,
        profiles: ProfileClient,
        notifier: NotificationService,
        audit: AuditService,
    ):
        self.eligibility = eligibility
        self.directory = directory
        self.profiles = profiles
        self.notifier = notifier
        self.audit = audit

    def present(self, db: Session, principal: Principal, events: List[Event]) -> List[Dict[str, Any]]:
        """Serialize events with the caller's registration flag."""
        mine = registered_event_ids(db, principal.user_id, (e.id for e in events))
        return [dict(event.to_dict(), is_registered=event.id in mine) for event in events]

    def create(self, db: Session, principal: Principal, scope: Scope, payload: EventCreate) -> Event:
        """
        Create an event

        Students need badge eligibility and their events start in
        PENDING_REVIEW with an approval flow; other roles publish directly.

        Raises:
            ValidationError: If the fields are inconsistent
            EligibilityDeniedError: If a student lacks required badges
        """
        fields = {key: _plain(value) for key, value in payload.model_dump().items()}
        fields["start_at"] = to_naive_utc(fields["start_at"])
        fields["end_at"] = to_naive_utc(fields.get("end_at"))
        fields = validate_event_fields(fields)

        is_student = principal.is_student
        assignee = None
        if is_student:
            eligibility = self.eligibility.check(principal)
            if not eligibility.can_create:
                raise EligibilityDeniedError(eligibility.missing)
            assignee = self.directory.find_department_admin(
                scope.college_id, scope.department, principal.authorization
            )

        event = Event(
            college_id=scope.college_id,
            author_id=principal.user_id,
            author_name=principal.display_name or scope.display_name or "",
            author_role=principal.primary_role,
            moderation_status=PENDING_REVIEW if is_student else APPROVED,
            **{name: fields.get(name) for name in EDITABLE_FIELDS},
        )
        event.departments = fields["departments"]
        if is_student:
            event.approval_flow = ApprovalFlow(
                assigned_to=assignee.id if assignee else None,
                assigned_to_name=assignee.display_name if assignee else None,
            )

        db.add(event)
        db.commit()
        db.refresh(event)

        logger.info(
            "Event %s created by %s (%s) status=%s",
            event.id, principal.user_id, event.author_role, event.moderation_status,
        )
        if is_student:
            logger.info("Event %s assigned to dept admin: %s", event.id, assignee.display_name if assignee else "None found")
            self.notifier.event_submitted(principal.user_id, event)
            if assignee:
                self.notifier.approval_pending(assignee.id, event)
        return event

    def get(self, db: Session, principal: Principal, scope: Scope, event_id: str) -> Event:
        """
        Get one event under the caller's visibility rules

        Raises:
            ResourceNotFoundError: If missing or not visible to the caller
        """
        event = db.query(Event).filter(Event.id == event_id, visibility_clause(principal, scope)).first()
        if not event:
            raise ResourceNotFoundError("Event")
        return event

    def list_events(
        self, db: Session, principal: Principal, scope: Scope, filters: EventListQuery
    ) -> Tuple[List[Event], int]:
        """List visible events ordered by start time, with total count."""
        query = db.query(Event).filter(visibility_clause(principal, scope))

        if filters.status and not is_restricted(principal):
            query = query.filter(Event.moderation_status == _plain(filters.status))
        if filters.q:
            pattern = f"%{filters.q.strip()}%"
            query = query.filter(or_(Event.title.ilike(pattern), Event.description.ilike(pattern)))
        if filters.department:
            query = query.filter(visible_to_department(filters.department))
        if filters.type:
            query = query.filter(Event.type == _plain(filters.type))
        if filters.mode:
            query = query.filter(Event.mode == _plain(filters.mode))
        if filters.from_:
            query = query.filter(Event.start_at >= to_naive_utc(filters.from_))
        if filters.to:
            query = query.filter(Event.start_at <= to_naive_utc(filters.to))
        if filters.upcoming_only:
            query = query.filter(Event.start_at >= datetime.utcnow())

        total = query.count()
        events = (
            query.order_by(Event.start_at.asc(), Event.id.asc())
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
            .all()
        )
        return events, total

    def update(
        self, db: Session, principal: Principal, scope: Scope, event_id: str, payload: EventUpdate
    ) -> Event:
        """
        Partially update an event

        Validation runs against the merged result, so an update cannot
        leave an event with end before start or a missing mode field.

        Raises:
            ResourceNotFoundError: If the event is outside the caller's college
            AuthorizationError: If the caller may not edit it
            ValidationError: If the merged event is invalid
        """
        event = get_event_in_college(db, scope, event_id)
        if not can_modify(principal, scope, event):
            raise AuthorizationError()

        changes = {key: _plain(value) for key, value in payload.model_dump(exclude_unset=True).items()}
        for key in ("start_at", "end_at"):
            if key in changes:
                changes[key] = to_naive_utc(changes[key])

        merged = {name: getattr(event, name) for name in EDITABLE_FIELDS}
        merged["departments"] = event.departments
        merged.update(changes)
        if merged.get("visible_to_all_depts"):
            merged["departments"] = []
        merged = validate_event_fields(merged)

        if merged["capacity"] is not None and merged["capacity"] < event.registration_count:
            raise ValidationError(
                "capacity cannot be lower than the current number of registrations",
                details={"registration_count": event.registration_count},
            )

        for name in EDITABLE_FIELDS:
            setattr(event, name, merged[name])
        event.departments = merged["departments"]

        try:
            db.commit()
        except IntegrityError:
            # A registration landed between the check and the commit.
            db.rollback()
            raise ValidationError("capacity cannot be lower than the current number of registrations")
        db.refresh(event)
        logger.info("Event %s updated by %s: %s", event.id, principal.user_id, sorted(changes))
        return event

    def delete(
        self,
        db: Session,
        principal: Principal,
        scope: Scope,
        event_id: str,
        meta: Optional[RequestMeta] = None,
    ) -> None:
        """Delete an event; registrations and approval flow cascade."""
        event = get_event_in_college(db, scope, event_id)
        if not can_modify(principal, scope, event):
            raise AuthorizationError()

        snapshot = event.to_dict()
        db.delete(event)
        db.commit()
        logger.info("Event %s deleted by %s", event_id, principal.user_id)

        if principal.is_privileged:
            self.audit.log_event_deletion(db, principal, snapshot, meta)

    def list_mine(self, db: Session, principal: Principal, scope: Scope) -> List[Event]:
        """Role-dependent "my events" listing, newest start first."""
        query = db.query(Event).filter(Event.college_id == scope.college_id)
        if principal.is_student:
            registered = exists().where(and_(
                EventRegistration.event_id == Event.id,
                EventRegistration.user_id == principal.user_id,
            ))
            query = query.filter(or_(Event.author_id == principal.user_id, registered))
        elif principal.has_role(Role.FACULTY.value):
            query = query.filter(or_(Event.author_id == principal.user_id, Event.monitor_id == principal.user_id))
        elif not principal.is_moderator:
            query = query.filter(Event.author_id == principal.user_id)
        return query.order_by(Event.start_at.desc(), Event.id.asc()).all()

    def list_my_registrations(self, db: Session, principal: Principal) -> List[EventRegistration]:
        return (
            db.query(EventRegistration)
            .filter(EventRegistration.user_id == principal.user_id)
            .order_by(EventRegistration.joined_at.desc())
            .all()
        )

    def _export_row(self, principal: Principal, user_id: str) -> Dict[str, str]:
        try:
            profile = self.profiles.get_profile(principal.authorization, user_id)
            if profile:
                return {
                    "studentName": profile.get("displayName") or "Unknown",
                    "collegeMemberId": profile.get("collegeMemberId") or "",
                    "department": profile.get("department") or "",
                    "year": str(profile["year"]) if profile.get("year") is not None else "",
                }
        except UpstreamUnavailableError:
            logger.error("Failed to get profile for user %s", user_id)

        user = self.directory.get_user(user_id, principal.authorization)
        return {
            "studentName": user.display_name if user and user.display_name else "Unknown",
            "collegeMemberId": "",
            "department": user.department if user else "",
            "year": "",
        }

    def export_registrations_csv(
        self, db: Session, principal: Principal, scope: Scope, event_id: str
    ) -> Tuple[str, str]:
        """
        Export an event's registrations as CSV

        Returns:
            (filename, content) where content starts with a UTF-8 BOM

        Raises:
            AuthorizationError: If the caller is not FACULTY or an admin
            ResourceNotFoundError: If the event is outside the caller's college
        """
        if not principal.is_privileged:
            raise AuthorizationError()
        event = get_event_in_college(db, scope, event_id)
        title = event.title
        user_ids = [
            row[0] for row in db.query(EventRegistration.user_id)
            .filter(EventRegistration.event_id == event.id)
            .order_by(EventRegistration.joined_at.asc())
            .all()
        ]
        # Release the read transaction before the per-row profile lookups.
        db.rollback()

        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS)
        writer.writeheader()
        for user_id in user_ids:
            writer.writerow(self._export_row(principal, user_id))

        logger.info("Exported %d registrations for event %s", len(user_ids), event_id)
        return export_filename(title), "\ufeff" + buffer.getvalue()


event_service = EventService(
    eligibility_checker, identity_client, profile_client, notification_service, audit_service
)
