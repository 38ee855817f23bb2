"""Audit log model for administrative mutations."""

from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, Text, Index

from app.core.database import Base


class AuditLogEntry(Base):
    """Append-only audit entries. Never updated or deleted."""

    __tablename__ = "admin_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    admin_id = Column(String(64), nullable=False, index=True)
    admin_name = Column(String(255), nullable=False, default="")
    action = Column(String(64), nullable=False, index=True)
    entity_type = Column(String(64), nullable=False, index=True)
    entity_id = Column(Text, nullable=False)
    old_values = Column(Text, nullable=True)
    new_values = Column(Text, nullable=True)
    reason = Column(Text, nullable=True)
    college_id = Column(String(64), nullable=True, index=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    metadata_json = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_admin_audit_logs_timestamp", "timestamp"),
    )
