"""Event, registration and moderation models"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, ForeignKey, JSON,
    UniqueConstraint, Index, CheckConstraint,
)
from sqlalchemy.orm import relationship
from app.core.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


class Event(Base):
    """College-scoped event"""

    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    college_id = Column(String(64), nullable=False, index=True)
    author_id = Column(String(64), nullable=False, index=True)
    author_name = Column(String(255), nullable=False, default="")
    author_role = Column(String(20), nullable=False)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    type = Column(String(20), nullable=False)
    mode = Column(String(20), nullable=False)
    location = Column(String(255))
    meeting_url = Column(String(500))
    capacity = Column(Integer)
    visible_to_all_depts = Column(Boolean, default=True, nullable=False)
    tags = Column(JSON, default=list, nullable=False)

    moderation_status = Column(String(20), default="PENDING_REVIEW", nullable=False)
    monitor_id = Column(String(64), index=True)
    monitor_name = Column(String(255))

    # Maintained only inside the registration transaction.
    registration_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    archived_at = Column(DateTime)

    # Relationships
    department_rows = relationship(
        "EventDepartment", back_populates="event", cascade="all, delete-orphan", lazy="selectin"
    )
    registrations = relationship(
        "EventRegistration", back_populates="event", cascade="all, delete-orphan", passive_deletes=True
    )
    approval_flow = relationship(
        "ApprovalFlow", back_populates="event", uselist=False, cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("idx_events_college_status", "college_id", "moderation_status"),
        Index("idx_events_start_at", "start_at"),
        CheckConstraint("end_at >= start_at", name="chk_event_time_order"),
        CheckConstraint("capacity IS NULL OR capacity > 0", name="chk_event_capacity"),
        CheckConstraint(
            "registration_count >= 0 AND (capacity IS NULL OR registration_count <= capacity)",
            name="chk_event_registration_count",
        ),
        CheckConstraint(
            "moderation_status IN ('PENDING_REVIEW', 'APPROVED', 'REJECTED')",
            name="chk_event_moderation_status",
        ),
        CheckConstraint("type IN ('WORKSHOP', 'SEMINAR', 'HACKATHON', 'MEETUP')", name="chk_event_type"),
        CheckConstraint("mode IN ('ONLINE', 'ONSITE', 'HYBRID')", name="chk_event_mode"),
    )

    @property
    def departments(self):
        return [row.name for row in self.department_rows]

    @departments.setter
    def departments(self, names):
        wanted = list(dict.fromkeys(name.strip() for name in (names or []) if name and name.strip()))
        # Reuse surviving rows so the (event_id, name) unique key never collides mid-flush.
        existing = {row.name: row for row in self.department_rows}
        self.department_rows = [existing.get(name) or EventDepartment(name=name) for name in wanted]

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def __repr__(self):
        return f"<Event(id='{self.id}', title='{self.title}', status='{self.moderation_status}')>"

    def to_dict(self):
        """Convert to dictionary"""
        return {
            "id": self.id,
            "college_id": self.college_id,
            "author_id": self.author_id,
            "author_name": self.author_name,
            "author_role": self.author_role,
            "title": self.title,
            "description": self.description,
            "start_at": _iso(self.start_at),
            "end_at": _iso(self.end_at),
            "type": self.type,
            "mode": self.mode,
            "location": self.location,
            "meeting_url": self.meeting_url,
            "capacity": self.capacity,
            "visible_to_all_depts": self.visible_to_all_depts,
            "departments": self.departments,
            "tags": list(self.tags or []),
            "moderation_status": self.moderation_status,
            "monitor_id": self.monitor_id,
            "monitor_name": self.monitor_name,
            "registration_count": self.registration_count,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "archived_at": _iso(self.archived_at),
        }


class EventDepartment(Base):
    """Department an event is restricted to"""

    __tablename__ = "event_departments"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(100), nullable=False)

    event = relationship("Event", back_populates="department_rows")

    __table_args__ = (
        UniqueConstraint("event_id", "name", name="uq_event_department"),
        Index("idx_event_departments_name", "name"),
    )


class EventRegistration(Base):
    """A user's registration for an event"""

    __tablename__ = "event_registrations"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(64), nullable=False)
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    event = relationship("Event", back_populates="registrations")

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_registration_user"),
        Index("idx_event_registrations_user", "user_id"),
    )

    def __repr__(self):
        return f"<EventRegistration(event_id='{self.event_id}', user_id='{self.user_id}')>"

    def to_dict(self):
        """Convert to dictionary"""
        return {
            "id": self.id,
            "event_id": self.event_id,
            "user_id": self.user_id,
            "joined_at": _iso(self.joined_at),
        }


class ApprovalFlow(Base):
    """Review bookkeeping for a student-submitted event"""

    __tablename__ = "event_approval_flows"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(36), ForeignKey("events.id", ondelete="CASCADE"), unique=True, nullable=False)
    assigned_to = Column(String(64), index=True)
    assigned_to_name = Column(String(255))
    submitted_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    approved_at = Column(DateTime)
    approved_by = Column(String(64))
    approved_by_name = Column(String(255))

    rejected_at = Column(DateTime)
    rejected_by = Column(String(64))
    rejected_by_name = Column(String(255))
    rejection_reason = Column(Text)

    is_escalated = Column(Boolean, default=False, nullable=False)
    escalated_at = Column(DateTime)
    escalated_to = Column(String(64))
    escalated_to_name = Column(String(255))

    mentor_assigned = Column(String(64))
    mentor_name = Column(String(255))

    event = relationship("Event", back_populates="approval_flow")

    __table_args__ = (
        Index("idx_approval_flows_pending", "is_escalated", "submitted_at"),
        CheckConstraint(
            "approved_at IS NULL OR rejected_at IS NULL", name="chk_approval_flow_single_outcome"
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.approved_at is not None or self.rejected_at is not None

    def to_dict(self):
        """Convert to dictionary"""
        return {
            "event_id": self.event_id,
            "assigned_to": self.assigned_to,
            "assigned_to_name": self.assigned_to_name,
            "submitted_at": _iso(self.submitted_at),
            "approved_at": _iso(self.approved_at),
            "approved_by": self.approved_by,
            "approved_by_name": self.approved_by_name,
            "rejected_at": _iso(self.rejected_at),
            "rejected_by": self.rejected_by,
            "rejected_by_name": self.rejected_by_name,
            "rejection_reason": self.rejection_reason,
            "is_escalated": self.is_escalated,
            "escalated_at": _iso(self.escalated_at),
            "escalated_to": self.escalated_to,
            "escalated_to_name": self.escalated_to_name,
            "mentor_assigned": self.mentor_assigned,
            "mentor_name": self.mentor_name,
        }


class EscalationPolicy(Base):
    """Per-college escalation settings, owned by admin configuration"""

    __tablename__ = "escalation_policies"

    id = Column(Integer, primary_key=True, index=True)
    college_id = Column(String(64), unique=True, nullable=False)
    escalation_delay_hours = Column(Integer, default=72, nullable=False)
    backup_approvers = Column(JSON, default=list, nullable=False)
    auto_escalate_to_head = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("escalation_delay_hours > 0", name="chk_escalation_delay"),
    )
