"""Moderation and approval flow schemas"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum


class ModerationAction(str, Enum):
    """Moderator actions on a single event"""
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    ASSIGN = "ASSIGN"


class AdminModerationAction(str, Enum):
    """Admin console actions on a single event"""
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    ASSIGN_MENTOR = "ASSIGN_MENTOR"
    ESCALATE = "ESCALATE"


class BulkAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    ARCHIVE = "ARCHIVE"


class ModerateRequest(BaseModel):
    """Moderation request (APPROVE / REJECT / ASSIGN)"""
    action: ModerationAction
    monitor_id: Optional[str] = None
    monitor_name: Optional[str] = None
    mentor_id: Optional[str] = None
    mentor_name: Optional[str] = None
    rejection_reason: Optional[str] = Field(None, max_length=2000)


class AdminModerateRequest(BaseModel):
    """Admin console moderation request"""
    action: AdminModerationAction
    reason: Optional[str] = Field(None, max_length=2000)
    mentor_id: Optional[str] = None
    mentor_name: Optional[str] = None


class BulkModerationRequest(BaseModel):
    """Bulk moderation of up to 50 events"""
    event_ids: List[str] = Field(..., min_length=1, max_length=50)
    action: BulkAction
    reason: Optional[str] = Field(None, max_length=2000)


class ApprovalFlowResponse(BaseModel):
    """Approval flow response schema"""
    event_id: str
    assigned_to: Optional[str]
    assigned_to_name: Optional[str]
    submitted_at: datetime
    approved_at: Optional[datetime]
    approved_by: Optional[str]
    approved_by_name: Optional[str]
    rejected_at: Optional[datetime]
    rejected_by: Optional[str]
    rejected_by_name: Optional[str]
    rejection_reason: Optional[str]
    is_escalated: bool
    escalated_at: Optional[datetime]
    escalated_to: Optional[str]
    escalated_to_name: Optional[str]
    mentor_assigned: Optional[str]
    mentor_name: Optional[str]

    class Config:
        from_attributes = True
