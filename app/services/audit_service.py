"""Audit trail for administrative mutations."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.security import Principal
from app.models.audit import AuditLogEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestMeta:
    """Requester details captured alongside an audit entry."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request) -> "RequestMeta":
        if request is None:
            return cls()
        headers = getattr(request, "headers", None) or {}
        forwarded = headers.get("x-forwarded-for")
        if forwarded:
            ip = forwarded.split(",")[0].strip()
        else:
            ip = headers.get("x-real-ip")
        if not ip and getattr(request, "client", None):
            ip = request.client.host
        return cls(ip_address=ip or None, user_agent=headers.get("user-agent"))


def _dump(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, default=str)


class AuditService:
    """
    Persist append-only audit entries.

    Recording is a secondary effect: a failed write is rolled back and
    logged, and never propagates to the admin action that triggered it.
    Callers commit their own work before recording.
    """

    @staticmethod
    def record(
        db: Session,
        *,
        actor: Principal,
        action: str,
        entity_type: str,
        entity_id: str,
        old_values: Any = None,
        new_values: Any = None,
        reason: Optional[str] = None,
        college_id: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLogEntry]:
        meta = meta or RequestMeta()
        try:
            entry = AuditLogEntry(
                admin_id=actor.user_id,
                admin_name=actor.display_name or "",
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id),
                old_values=_dump(old_values),
                new_values=_dump(new_values),
                reason=reason,
                college_id=college_id,
                ip_address=meta.ip_address,
                user_agent=(meta.user_agent or "")[:512] or None,
                metadata_json=json.dumps(metadata or {}, ensure_ascii=False, default=str),
            )
            db.add(entry)
            db.commit()
            db.refresh(entry)
            return entry
        except Exception:
            db.rollback()
            logger.exception("Failed to write audit entry action=%s entity=%s:%s", action, entity_type, entity_id)
            return None

    def log_event_moderation(
        self,
        db: Session,
        actor: Principal,
        event_id: str,
        action: str,
        old_status: str,
        new_status: str,
        college_id: Optional[str] = None,
        reason: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLogEntry]:
        return self.record(
            db,
            actor=actor,
            action=f"EVENT_{action}",
            entity_type="EVENT",
            entity_id=event_id,
            old_values={"moderation_status": old_status},
            new_values={"moderation_status": new_status, **(extra or {})},
            reason=reason,
            college_id=college_id,
            meta=meta,
        )

    def log_event_deletion(
        self,
        db: Session,
        actor: Principal,
        event_snapshot: Dict[str, Any],
        meta: Optional[RequestMeta] = None,
    ) -> Optional[AuditLogEntry]:
        return self.record(
            db,
            actor=actor,
            action="EVENT_DELETE",
            entity_type="EVENT",
            entity_id=event_snapshot.get("id", ""),
            old_values=event_snapshot,
            college_id=event_snapshot.get("college_id"),
            meta=meta,
        )

    def log_bulk_operation(
        self,
        db: Session,
        actor: Principal,
        action: str,
        entity_ids: List[str],
        college_id: Optional[str] = None,
        reason: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
        results: Optional[Dict[str, Any]] = None,
    ) -> Optional[AuditLogEntry]:
        return self.record(
            db,
            actor=actor,
            action=f"BULK_{action}",
            entity_type="EVENT",
            entity_id=",".join(entity_ids),
            new_values=results,
            reason=reason,
            college_id=college_id,
            meta=meta,
            metadata={"count": len(entity_ids)},
        )

    def log_approval_action(
        self,
        db: Session,
        actor: Principal,
        event_id: str,
        action: str,
        college_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        meta: Optional[RequestMeta] = None,
    ) -> Optional[AuditLogEntry]:
        return self.record(
            db,
            actor=actor,
            action=f"APPROVAL_{action}",
            entity_type="APPROVAL_FLOW",
            entity_id=event_id,
            new_values=details,
            college_id=college_id,
            meta=meta,
        )

    def log_escalation(
        self,
        db: Session,
        actor: Principal,
        event_id: str,
        escalated_to: str,
        college_id: Optional[str] = None,
        reason: Optional[str] = None,
        meta: Optional[RequestMeta] = None,
    ) -> Optional[AuditLogEntry]:
        return self.record(
            db,
            actor=actor,
            action="EVENT_ESCALATE",
            entity_type="APPROVAL_FLOW",
            entity_id=event_id,
            new_values={"escalated_to": escalated_to},
            reason=reason,
            college_id=college_id,
            meta=meta,
        )


audit_service = AuditService()
