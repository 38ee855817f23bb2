"""Audit log response schemas."""

from datetime import datetime
from typing import Optional, Dict, Any

from pydantic import BaseModel


class AuditLogResponse(BaseModel):
    id: int
    admin_id: str
    admin_name: str
    action: str
    entity_type: str
    entity_id: str
    old_values: Optional[Any] = None
    new_values: Optional[Any] = None
    reason: Optional[str]
    college_id: Optional[str]
    ip_address: Optional[str]
    metadata: Dict[str, Any] = {}
    timestamp: Optional[datetime]
