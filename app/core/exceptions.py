"""Custom exception classes for the application"""

from typing import Optional, Dict, Any, List


class BaseAPIException(Exception):
    """Base exception for all API errors"""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# Authentication Errors
class AuthenticationError(BaseAPIException):
    """Base authentication error"""
    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, status_code=401)


class TokenExpiredError(AuthenticationError):
    """JWT token has expired"""
    def __init__(self):
        super().__init__("Token has expired")


class TokenInvalidError(AuthenticationError):
    """JWT token is invalid"""
    def __init__(self):
        super().__init__("Invalid token")


# Authorization Errors
class AuthorizationError(BaseAPIException):
    """Insufficient permissions"""
    def __init__(self, message: str = "Forbidden", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=403, details=details)


class EligibilityDeniedError(AuthorizationError):
    """Student lacks the badges required to create events"""
    def __init__(self, missing: List[str]):
        super().__init__("Missing required badges", details={"missing_badges": missing})
        self.missing = missing


class IncompleteProfileError(AuthorizationError):
    """Profile has no college or department, so scope cannot be resolved"""
    def __init__(self, message: str = "Profile is missing collegeId or department"):
        super().__init__(message)


# Resource Errors
class ResourceNotFoundError(BaseAPIException):
    """Resource not found"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} not found", status_code=404)


class ResourceAlreadyExistsError(BaseAPIException):
    """Resource already exists"""
    def __init__(self, resource: str):
        super().__init__(f"{resource} already exists", status_code=409)


class AlreadyRegisteredError(ResourceAlreadyExistsError):
    """User already holds a registration for the event"""
    def __init__(self):
        BaseAPIException.__init__(self, "Already registered", status_code=409)


# Validation Errors
class ValidationError(BaseAPIException):
    """Validation error"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=422, details=details)


# Business Logic Errors
class BusinessLogicError(BaseAPIException):
    """Business logic error"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=400, details=details)


class InvalidStateError(BusinessLogicError):
    """Operation incompatible with the current moderation status"""


class EventFullError(BusinessLogicError):
    """Event capacity reached"""
    def __init__(self):
        super().__init__("Event is full")


# System Errors
class DatabaseError(BaseAPIException):
    """Database operation failed"""
    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message, status_code=500)


class UpstreamUnavailableError(BaseAPIException):
    """Identity, profile or badge service unreachable or erroring"""
    def __init__(self, service: str, message: Optional[str] = None):
        super().__init__(
            message or f"{service} service is unavailable",
            status_code=503,
            details={"service": service},
        )
        self.service = service
