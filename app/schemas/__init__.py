"""Pydantic schemas for API validation"""

from app.schemas.event import (
    EventType,
    EventMode,
    ModerationStatus,
    EventCreate,
    EventUpdate,
    EventListQuery,
    EventResponse,
    EventView,
    EventEnvelope,
    EventCollection,
    EventListResponse,
    RegistrationResponse,
    RegistrationEnvelope,
    RegistrationCollection,
    EligibilityResponse,
)
from app.schemas.moderation import (
    ModerationAction,
    AdminModerationAction,
    BulkAction,
    ModerateRequest,
    AdminModerateRequest,
    BulkModerationRequest,
    ApprovalFlowResponse,
)
from app.schemas.response import ErrorResponse, HealthResponse
from app.schemas.audit import AuditLogResponse

__all__ = [
    "EventType", "EventMode", "ModerationStatus",
    "EventCreate", "EventUpdate", "EventListQuery", "EventResponse", "EventView", "EventEnvelope",
    "EventCollection", "EventListResponse",
    "RegistrationResponse", "RegistrationEnvelope", "RegistrationCollection", "EligibilityResponse",
    "ModerationAction", "AdminModerationAction", "BulkAction",
    "ModerateRequest", "AdminModerateRequest", "BulkModerationRequest", "ApprovalFlowResponse",
    "AuditLogResponse",
    "ErrorResponse", "HealthResponse"
]
