"""Generic API response schemas"""

from pydantic import BaseModel, Field
from typing import Optional, Any, Dict
from datetime import datetime


def _now() -> str:
    return datetime.utcnow().isoformat()


class ErrorResponse(BaseModel):
    """Error body rendered by every exception handler"""
    success: bool = False
    error: str
    details: Optional[Any] = None
    path: Optional[str] = None
    timestamp: str = Field(default_factory=_now)


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    timestamp: str = Field(default_factory=_now)
    readiness: Dict[str, Any] = Field(default_factory=dict)
