"""Database models"""

from app.models.event import Event, EventDepartment, EventRegistration, ApprovalFlow, EscalationPolicy
from app.models.audit import AuditLogEntry

__all__ = [
    "Event", "EventDepartment", "EventRegistration", "ApprovalFlow", "EscalationPolicy",
    "AuditLogEntry",
]
