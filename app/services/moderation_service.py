"""Moderation service - approval state machine, escalation and bulk actions"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from prometheus_client import Counter
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.clients.identity import IdentityClient, identity_client
from app.config import settings
from app.core.exceptions import AuthorizationError, InvalidStateError, ValidationError
from app.core.security import Principal
from app.models.event import ApprovalFlow, EscalationPolicy, Event
from app.schemas.moderation import (
    AdminModerateRequest,
    AdminModerationAction,
    BulkAction,
    BulkModerationRequest,
    ModerateRequest,
    ModerationAction,
)
from app.services.audit_service import AuditService, RequestMeta, audit_service
from app.services.event_service import APPROVED, PENDING_REVIEW, REJECTED, get_event_in_college
from app.services.notification_service import NotificationService, notification_service
from app.services.scope_resolver import Scope

logger = logging.getLogger(__name__)

MODERATIONS = Counter(
    "event_moderations_total",
    "Moderation actions applied",
    ["action"],
)
ESCALATIONS = Counter(
    "approval_escalations_total",
    "Escalation attempts by outcome",
    ["outcome"],
)

SYSTEM_ACTOR = Principal(user_id="system", roles=("SYSTEM",), display_name="Escalation sweep")


@dataclass
class PolicySettings:
    """Effective escalation policy for a college."""

    delay_hours: int
    backup_approvers: List[str] = field(default_factory=list)
    auto_escalate_to_head: bool = False


@dataclass
class SweepResult:
    checked: int = 0
    escalated: int = 0
    unresolved: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"checked": self.checked, "escalated": self.escalated, "unresolved": self.unresolved}


def _open_flow(event_id: str):
    return (
        ApprovalFlow.event_id == event_id,
        ApprovalFlow.approved_at.is_(None),
        ApprovalFlow.rejected_at.is_(None),
    )


class ModerationService:
    """
    Drive events through PENDING_REVIEW -> APPROVED / REJECTED.

    The event's status is the source of truth and commits first; the
    approval flow is bookkeeping written afterwards, and a failure there is
    logged and swallowed.
    """

    def __init__(
        self,
        directory: IdentityClient,
        notifier: NotificationService,
        audit: AuditService,
        default_delay_hours: int = 72,
        sweep_batch_size: int = 100,
    ):
        self.directory = directory
        self.notifier = notifier
        self.audit = audit
        self.default_delay_hours = default_delay_hours
        self.sweep_batch_size = sweep_batch_size

    @staticmethod
    def require_moderator(principal: Principal) -> None:
        if not principal.is_moderator:
            raise AuthorizationError()

    def _record_flow(self, db: Session, event_id: str, statement, label: str) -> bool:
        try:
            result = db.execute(statement.execution_options(synchronize_session=False))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to update approval flow (%s) for event %s", label, event_id)
            return False
        if not result.rowcount:
            logger.info("No open approval flow to update (%s) for event %s", label, event_id)
        return bool(result.rowcount)

    # Moderator actions

    def moderate(
        self,
        db: Session,
        principal: Principal,
        scope: Scope,
        event_id: str,
        request: ModerateRequest,
        meta: Optional[RequestMeta] = None,
    ) -> Event:
        """
        Apply APPROVE, REJECT or ASSIGN to an event

        Raises:
            AuthorizationError: If the caller is not DEPT_ADMIN or HEAD_ADMIN
            ResourceNotFoundError: If the event is outside the caller's college
            InvalidStateError: If the transition is not allowed
            ValidationError: If ASSIGN has no monitor_id
        """
        self.require_moderator(principal)
        event = get_event_in_college(db, scope, event_id)

        if request.action == ModerationAction.APPROVE:
            return self._approve(
                db, principal, event,
                request.mentor_id or request.monitor_id,
                request.mentor_name or request.monitor_name,
                meta,
            )
        if request.action == ModerationAction.REJECT:
            return self._reject(db, principal, event, request.rejection_reason, meta)
        return self._assign(db, principal, event, request.monitor_id, request.monitor_name, meta)

    def _approve(
        self,
        db: Session,
        principal: Principal,
        event: Event,
        mentor_id: Optional[str],
        mentor_name: Optional[str],
        meta: Optional[RequestMeta],
    ) -> Event:
        old_status = event.moderation_status
        if old_status == REJECTED:
            raise InvalidStateError("Rejected events cannot be approved")

        first_approval = old_status == PENDING_REVIEW
        previous_mentor = event.monitor_id
        event.moderation_status = APPROVED
        if mentor_id:
            event.monitor_id = mentor_id
            event.monitor_name = mentor_name
        db.commit()
        db.refresh(event)
        event_id = event.id

        if first_approval:
            now = datetime.utcnow()
            self._record_flow(
                db,
                event_id,
                update(ApprovalFlow).where(*_open_flow(event_id)).values(
                    approved_at=now,
                    approved_by=principal.user_id,
                    approved_by_name=principal.display_name or "",
                    mentor_assigned=mentor_id,
                    mentor_name=mentor_name,
                ),
                "approve",
            )
        db.refresh(event)

        MODERATIONS.labels(action="APPROVE").inc()
        logger.info(
            "Event %s approved by %s (first=%s, mentor=%s)", event_id, principal.user_id, first_approval, mentor_id
        )

        mentor_changed = bool(mentor_id) and mentor_id != previous_mentor
        if first_approval:
            mentor = {"id": mentor_id, "name": mentor_name} if mentor_id else None
            self.notifier.event_approved(event.author_id, event, mentor)
        if mentor_changed:
            self.notifier.mentor_assigned(mentor_id, event)

        if first_approval or mentor_changed:
            self.audit.log_event_moderation(
                db, principal, event_id, "APPROVE", old_status, APPROVED,
                college_id=event.college_id, meta=meta,
                extra={"monitor_id": event.monitor_id, "monitor_name": event.monitor_name},
            )
        return event

    def _reject(
        self,
        db: Session,
        principal: Principal,
        event: Event,
        reason: Optional[str],
        meta: Optional[RequestMeta],
    ) -> Event:
        old_status = event.moderation_status
        if old_status == REJECTED:
            return event
        if old_status == APPROVED:
            raise InvalidStateError("Approved events cannot be rejected")

        event.moderation_status = REJECTED
        db.commit()
        event_id = event.id

        self._record_flow(
            db,
            event_id,
            update(ApprovalFlow).where(*_open_flow(event_id)).values(
                rejected_at=datetime.utcnow(),
                rejected_by=principal.user_id,
                rejected_by_name=principal.display_name or "",
                rejection_reason=reason,
            ),
            "reject",
        )
        db.refresh(event)

        MODERATIONS.labels(action="REJECT").inc()
        logger.info("Event %s rejected by %s", event_id, principal.user_id)
        self.notifier.event_rejected(event.author_id, event, reason)
        self.audit.log_event_moderation(
            db, principal, event_id, "REJECT", old_status, REJECTED,
            college_id=event.college_id, reason=reason, meta=meta,
        )
        return event

    def _assign(
        self,
        db: Session,
        principal: Principal,
        event: Event,
        monitor_id: Optional[str],
        monitor_name: Optional[str],
        meta: Optional[RequestMeta],
    ) -> Event:
        if not monitor_id:
            raise ValidationError("monitor_id is required to reassign an approval")
        flow = event.approval_flow
        if flow is None:
            raise InvalidStateError("Event has no approval flow")
        if flow.is_terminal:
            return event

        previous = flow.assigned_to
        flow.assigned_to = monitor_id
        flow.assigned_to_name = monitor_name
        db.commit()
        db.refresh(event)

        MODERATIONS.labels(action="ASSIGN").inc()
        logger.info("Approval for event %s reassigned from %s to %s", event.id, previous, monitor_id)
        self.notifier.approval_pending(monitor_id, event)
        self.audit.log_approval_action(
            db, principal, event.id, "ASSIGN", college_id=event.college_id,
            details={"from": previous, "to": monitor_id, "to_name": monitor_name}, meta=meta,
        )
        return event

    # Admin console actions

    def admin_moderate(
        self,
        db: Session,
        principal: Principal,
        scope: Scope,
        event_id: str,
        request: AdminModerateRequest,
        meta: Optional[RequestMeta] = None,
    ) -> Event:
        """Admin console moderation: APPROVE, REJECT, ASSIGN_MENTOR or ESCALATE."""
        self.require_moderator(principal)
        event = get_event_in_college(db, scope, event_id)

        if request.action == AdminModerationAction.APPROVE:
            return self._approve(db, principal, event, request.mentor_id, request.mentor_name, meta)
        if request.action == AdminModerationAction.REJECT:
            return self._reject(db, principal, event, request.reason, meta)
        if request.action == AdminModerationAction.ASSIGN_MENTOR:
            return self._assign_mentor(db, principal, event, request.mentor_id, request.mentor_name, meta)
        return self._force_escalate(db, principal, event, request.reason, meta)

    def _assign_mentor(
        self,
        db: Session,
        principal: Principal,
        event: Event,
        mentor_id: Optional[str],
        mentor_name: Optional[str],
        meta: Optional[RequestMeta],
    ) -> Event:
        if not mentor_id:
            raise ValidationError("mentor_id is required to assign a mentor")
        previous = event.monitor_id
        event.monitor_id = mentor_id
        event.monitor_name = mentor_name
        db.commit()
        event_id = event.id

        self._record_flow(
            db,
            event_id,
            update(ApprovalFlow).where(*_open_flow(event_id)).values(
                mentor_assigned=mentor_id, mentor_name=mentor_name
            ),
            "assign_mentor",
        )
        db.refresh(event)

        MODERATIONS.labels(action="ASSIGN_MENTOR").inc()
        if mentor_id != previous:
            self.notifier.mentor_assigned(mentor_id, event)
        self.audit.log_event_moderation(
            db, principal, event_id, "ASSIGN_MENTOR", event.moderation_status, event.moderation_status,
            college_id=event.college_id, meta=meta,
            extra={"monitor_id": mentor_id, "previous_monitor_id": previous},
        )
        return event

    def _force_escalate(
        self,
        db: Session,
        principal: Principal,
        event: Event,
        reason: Optional[str],
        meta: Optional[RequestMeta],
    ) -> Event:
        flow = event.approval_flow
        if flow is None or flow.is_terminal:
            raise InvalidStateError("Event has no pending approval")
        if flow.is_escalated:
            raise InvalidStateError("Approval has already been escalated")

        event_id = event.id
        policy = self.policy_for(db, event.college_id)
        if not self._escalate(
            db, event_id, event.college_id, flow.assigned_to, policy, datetime.utcnow(), principal, reason, meta
        ):
            raise InvalidStateError("No escalation target available")
        return db.get(Event, event_id)

    def bulk_moderate(
        self,
        db: Session,
        principal: Principal,
        scope: Scope,
        request: BulkModerationRequest,
        meta: Optional[RequestMeta] = None,
    ) -> Dict[str, Any]:
        """
        APPROVE, REJECT or ARCHIVE up to 50 events

        Each event goes through the single-event rules; events outside the
        caller's college or in an incompatible state are reported as skipped.
        """
        self.require_moderator(principal)
        event_ids = list(dict.fromkeys(request.event_ids))
        updated: List[str] = []
        skipped: List[Dict[str, str]] = []

        for event_id in event_ids:
            event = db.query(Event).filter(Event.id == event_id, Event.college_id == scope.college_id).first()
            if event is None:
                skipped.append({"id": event_id, "reason": "Event not found"})
                continue
            try:
                if request.action == BulkAction.ARCHIVE:
                    if event.is_archived:
                        skipped.append({"id": event_id, "reason": "Already archived"})
                        continue
                    event.archived_at = datetime.utcnow()
                    db.commit()
                elif request.action == BulkAction.APPROVE:
                    if event.moderation_status == APPROVED:
                        skipped.append({"id": event_id, "reason": "Already approved"})
                        continue
                    self._approve(db, principal, event, None, None, meta)
                else:
                    if event.moderation_status == REJECTED:
                        skipped.append({"id": event_id, "reason": "Already rejected"})
                        continue
                    self._reject(db, principal, event, request.reason, meta)
            except InvalidStateError as exc:
                skipped.append({"id": event_id, "reason": exc.message})
                continue
            updated.append(event_id)

        results = {"action": request.action.value, "updated": updated, "skipped": skipped}
        logger.info(
            "Bulk %s by %s: %d updated, %d skipped",
            request.action.value, principal.user_id, len(updated), len(skipped),
        )
        self.audit.log_bulk_operation(
            db, principal, request.action.value, event_ids,
            college_id=scope.college_id, reason=request.reason, meta=meta, results=results,
        )
        return {"updated_count": len(updated), **results}

    # Escalation

    def policy_for(self, db: Session, college_id: str) -> PolicySettings:
        policy = db.query(EscalationPolicy).filter(EscalationPolicy.college_id == college_id).first()
        if policy is None:
            return PolicySettings(delay_hours=self.default_delay_hours)
        return PolicySettings(
            delay_hours=policy.escalation_delay_hours or self.default_delay_hours,
            backup_approvers=[str(a) for a in (policy.backup_approvers or []) if a],
            auto_escalate_to_head=bool(policy.auto_escalate_to_head),
        )

    def _pick_target(
        self, college_id: str, current_assignee: Optional[str], policy: PolicySettings
    ) -> Optional[Tuple[str, Optional[str]]]:
        # A configured backup counts as available unless it already holds the review.
        for approver_id in policy.backup_approvers:
            if approver_id != current_assignee:
                user = self.directory.get_user(approver_id)
                return approver_id, user.display_name if user else None
        if policy.auto_escalate_to_head:
            head = self.directory.find_head_admin(college_id)
            if head:
                return head.id, head.display_name
        return None

    def _escalate(
        self,
        db: Session,
        event_id: str,
        college_id: str,
        current_assignee: Optional[str],
        policy: PolicySettings,
        now: datetime,
        actor: Principal = SYSTEM_ACTOR,
        reason: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
    ) -> bool:
        # Directory lookups happen outside any open transaction.
        db.rollback()
        target = self._pick_target(college_id, current_assignee, policy)
        if target is None:
            ESCALATIONS.labels(outcome="no_target").inc()
            logger.warning("No escalation target for event %s in college %s", event_id, college_id)
            return False

        target_id, target_name = target
        result = db.execute(
            update(ApprovalFlow)
            .where(*_open_flow(event_id), ApprovalFlow.is_escalated.is_(False))
            .values(
                is_escalated=True,
                escalated_at=now,
                escalated_to=target_id,
                escalated_to_name=target_name,
                assigned_to=target_id,
                assigned_to_name=target_name,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if not result.rowcount:
            ESCALATIONS.labels(outcome="lost_race").inc()
            return False

        ESCALATIONS.labels(outcome="escalated").inc()
        logger.info("Event %s escalated to: %s", event_id, target_name or target_id)
        event = db.get(Event, event_id)
        if event is not None:
            self.notifier.event_escalated(current_assignee, target_id, event)
        self.audit.log_escalation(
            db, actor, event_id, target_id, college_id=college_id, reason=reason, meta=meta
        )
        return True

    def check_escalation(self, db: Session, event_id: str, now: Optional[datetime] = None) -> bool:
        """Escalate one event's approval if its delay has elapsed; returns True if escalated."""
        now = now or datetime.utcnow()
        row = (
            db.query(ApprovalFlow.submitted_at, ApprovalFlow.assigned_to, Event.college_id)
            .join(Event, Event.id == ApprovalFlow.event_id)
            .filter(*_open_flow(event_id), ApprovalFlow.is_escalated.is_(False))
            .first()
        )
        if row is None:
            return False
        submitted_at, assigned_to, college_id = row
        policy = self.policy_for(db, college_id)
        if now < submitted_at + timedelta(hours=policy.delay_hours):
            return False
        return self._escalate(db, event_id, college_id, assigned_to, policy, now)

    def sweep(
        self, db: Session, now: Optional[datetime] = None, college_id: Optional[str] = None
    ) -> SweepResult:
        """
        Escalate every overdue pending approval, optionally within one college

        Safe to run concurrently: the escalation write is guarded on
        is_escalated, so each flow is escalated at most once.
        """
        now = now or datetime.utcnow()
        query = (
            db.query(ApprovalFlow.event_id, ApprovalFlow.submitted_at, ApprovalFlow.assigned_to, Event.college_id)
            .join(Event, Event.id == ApprovalFlow.event_id)
            .filter(
                ApprovalFlow.is_escalated.is_(False),
                ApprovalFlow.approved_at.is_(None),
                ApprovalFlow.rejected_at.is_(None),
            )
        )
        if college_id is not None:
            query = query.filter(Event.college_id == college_id)
        candidates = query.order_by(ApprovalFlow.submitted_at.asc()).all()

        policies: Dict[str, PolicySettings] = {}
        result = SweepResult()
        for event_id, submitted_at, assigned_to, event_college in candidates:
            if result.checked >= self.sweep_batch_size:
                break
            if event_college not in policies:
                policies[event_college] = self.policy_for(db, event_college)
            policy = policies[event_college]
            if now < submitted_at + timedelta(hours=policy.delay_hours):
                continue
            result.checked += 1
            if self._escalate(db, event_id, event_college, assigned_to, policy, now):
                result.escalated += 1
            else:
                result.unresolved += 1

        if result.checked:
            logger.info("Escalation sweep: %s", result.to_dict())
        return result


moderation_service = ModerationService(
    identity_client,
    notification_service,
    audit_service,
    default_delay_hours=settings.DEFAULT_ESCALATION_DELAY_HOURS,
    sweep_batch_size=settings.ESCALATION_SWEEP_BATCH_SIZE,
)
