"""Event schemas"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
from enum import Enum
from urllib.parse import urlparse


class EventType(str, Enum):
    """Event type enumeration"""
    WORKSHOP = "WORKSHOP"
    SEMINAR = "SEMINAR"
    HACKATHON = "HACKATHON"
    MEETUP = "MEETUP"


class EventMode(str, Enum):
    """Event delivery mode"""
    ONLINE = "ONLINE"
    ONSITE = "ONSITE"
    HYBRID = "HYBRID"


class ModerationStatus(str, Enum):
    """Moderation lifecycle stage"""
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


def _check_url(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError("meeting_url must be an absolute http(s) URL")
    return value


def _clean_strings(values: Optional[List[str]]) -> Optional[List[str]]:
    if values is None:
        return values
    return [v.strip() for v in values if v and v.strip()]


class EventCreate(BaseModel):
    """Event creation schema"""
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    start_at: datetime
    end_at: Optional[datetime] = None
    type: EventType
    mode: EventMode
    location: Optional[str] = Field(None, max_length=255)
    meeting_url: Optional[str] = Field(None, max_length=500)
    capacity: Optional[int] = Field(None, gt=0)
    visible_to_all_depts: bool = True
    departments: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    @field_validator("meeting_url")
    @classmethod
    def validate_meeting_url(cls, v):
        return _check_url(v)

    @field_validator("departments", "tags")
    @classmethod
    def strip_entries(cls, v):
        return _clean_strings(v)


class EventUpdate(BaseModel):
    """Partial event update - only supplied fields change"""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    type: Optional[EventType] = None
    mode: Optional[EventMode] = None
    location: Optional[str] = Field(None, max_length=255)
    meeting_url: Optional[str] = Field(None, max_length=500)
    capacity: Optional[int] = Field(None, gt=0)
    visible_to_all_depts: Optional[bool] = None
    departments: Optional[List[str]] = None
    tags: Optional[List[str]] = None

    @field_validator("meeting_url")
    @classmethod
    def validate_meeting_url(cls, v):
        return _check_url(v)

    @field_validator("departments", "tags")
    @classmethod
    def strip_entries(cls, v):
        return _clean_strings(v)


class EventListQuery(BaseModel):
    """Listing filters"""
    q: Optional[str] = None
    department: Optional[str] = None
    type: Optional[EventType] = None
    mode: Optional[EventMode] = None
    status: Optional[ModerationStatus] = None
    from_: Optional[datetime] = Field(None, alias="from")
    to: Optional[datetime] = None
    upcoming_only: bool = False
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)

    model_config = {"populate_by_name": True}


class EventResponse(BaseModel):
    """Event response schema"""
    id: str
    college_id: str
    author_id: str
    author_name: str
    author_role: str
    title: str
    description: str
    start_at: datetime
    end_at: datetime
    type: str
    mode: str
    location: Optional[str]
    meeting_url: Optional[str]
    capacity: Optional[int]
    visible_to_all_depts: bool
    departments: List[str] = []
    tags: List[str] = []
    moderation_status: str
    monitor_id: Optional[str]
    monitor_name: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    archived_at: Optional[datetime] = None
    registration_count: int = 0

    class Config:
        from_attributes = True


class EventView(EventResponse):
    """Event as seen by the caller"""
    is_registered: bool = False


class EventEnvelope(BaseModel):
    event: EventView


class EventCollection(BaseModel):
    events: List[EventView]


class EventListResponse(EventCollection):
    """Paginated event list"""
    total: int
    page: int
    limit: int


class RegistrationResponse(BaseModel):
    """Registration response schema"""
    id: str
    event_id: str
    user_id: str
    joined_at: datetime

    class Config:
        from_attributes = True


class RegistrationEnvelope(BaseModel):
    registration: RegistrationResponse


class RegistrationCollection(BaseModel):
    registrations: List[RegistrationResponse]


class EligibilityResponse(BaseModel):
    """Event creation eligibility"""
    can_create: bool
    missing_badges: List[str] = []
