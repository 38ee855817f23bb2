"""Admin console schemas"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime
from enum import Enum

from app.schemas.event import EventMode, EventResponse, EventType, ModerationStatus, RegistrationResponse
from app.schemas.moderation import ApprovalFlowResponse


class AdminSortField(str, Enum):
    CREATED_AT = "createdAt"
    START_AT = "startAt"
    TITLE = "title"
    REGISTRATION_COUNT = "registrationCount"
    AUTHOR_NAME = "authorName"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"
    XLSX = "xlsx"


class AnalyticsRange(str, Enum):
    SEVEN_DAYS = "7d"
    THIRTY_DAYS = "30d"
    NINETY_DAYS = "90d"
    ONE_YEAR = "1y"


class AdminEventFilters(BaseModel):
    """Admin event listing filters"""
    search: Optional[str] = None
    moderation_status: Optional[ModerationStatus] = None
    type: Optional[EventType] = None
    mode: Optional[EventMode] = None
    tags: List[str] = Field(default_factory=list)
    start_after: Optional[datetime] = None
    start_before: Optional[datetime] = None
    capacity_min: Optional[int] = Field(None, ge=0)
    capacity_max: Optional[int] = Field(None, ge=0)
    include_archived: bool = True
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)
    sort_by: AdminSortField = AdminSortField.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class AdminEventStats(BaseModel):
    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    workshop: int = 0
    seminar: int = 0
    hackathon: int = 0
    meetup: int = 0


class AdminEventResponse(EventResponse):
    """Event with its approval flow, if it has one"""
    approval_flow: Optional[ApprovalFlowResponse] = None


class AdminEventDetail(AdminEventResponse):
    registrations: List[RegistrationResponse] = []


class AdminEventEnvelope(BaseModel):
    event: AdminEventResponse


class AdminEventDetailEnvelope(BaseModel):
    event: AdminEventDetail


class AdminEventListResponse(BaseModel):
    events: List[AdminEventResponse]
    pagination: Pagination
    stats: AdminEventStats


class BulkModerationResponse(BaseModel):
    updated_count: int
    action: str
    updated: List[str]
    skipped: List[Dict[str, str]]


class SweepResponse(BaseModel):
    checked: int
    escalated: int
    unresolved: int


class ActivityUser(BaseModel):
    name: str
    avatar: Optional[str] = None


class ActivityMetadata(BaseModel):
    event_type: str
    start_at: datetime
    status: str


class Activity(BaseModel):
    """Dashboard activity item for a recently created event"""
    id: str
    type: str
    title: str
    description: str
    timestamp: datetime
    user: ActivityUser
    metadata: ActivityMetadata


class RecentActivityResponse(BaseModel):
    activities: List[Activity]


class AnalyticsSummary(BaseModel):
    total_events: int
    active_events: int
    total_registrations: int
    event_growth: float
    registrations_in_period: int
    time_range: AnalyticsRange


class EventMetrics(BaseModel):
    total: int
    active: int
    upcoming: int
    past: int
    new_in_period: int
    previous_period: int
    growth_rate: float


class RegistrationMetrics(BaseModel):
    total: int
    new_in_period: int


class DepartmentStat(BaseModel):
    department: str
    event_count: int
    registrations: int


class MonthlyTrend(BaseModel):
    month: str
    count: int
    approved: int


class TypeCount(BaseModel):
    event_type: str
    count: int


class StatusCount(BaseModel):
    status: str
    count: int


class AnalyticsTrends(BaseModel):
    monthly: List[MonthlyTrend]
    top_event_types: List[TypeCount]


class AnalyticsDistributions(BaseModel):
    event_status: List[StatusCount]


class ComprehensiveAnalyticsResponse(BaseModel):
    """Event and registration analytics over a time range"""
    summary: AnalyticsSummary
    event_metrics: EventMetrics
    registration_metrics: RegistrationMetrics
    department_stats: List[DepartmentStat]
    trends: AnalyticsTrends
    distributions: AnalyticsDistributions
