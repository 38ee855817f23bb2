"""API dependencies - authentication, scope and authorization"""

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional

from app.core.security import Principal, Role, token_verifier
from app.core.exceptions import AuthenticationError, AuthorizationError
from app.services.audit_service import RequestMeta
from app.services.scope_resolver import Scope, scope_resolver

# HTTP Bearer token scheme; missing tokens are reported as 401 below
security = HTTPBearer(auto_error=False)


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    """
    Get the authenticated caller from the bearer token

    Args:
        credentials: HTTP Bearer credentials

    Returns:
        Principal built from the verified claims

    Raises:
        AuthenticationError: If the token is missing, invalid or expired
    """
    if not credentials or not credentials.credentials:
        raise AuthenticationError("Missing bearer token")
    return token_verifier.authenticate(credentials.credentials)


def get_scope(principal: Principal = Depends(get_current_principal)) -> Scope:
    """
    Resolve the caller's college and department

    Raises:
        IncompleteProfileError: If the profile has no college or department
        UpstreamUnavailableError: If the profile service cannot be reached
    """
    return scope_resolver.resolve(principal)


def get_moderator(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Require DEPT_ADMIN or HEAD_ADMIN."""
    if not principal.is_moderator:
        raise AuthorizationError("Admin access required")
    return principal


def get_head_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.has_role(Role.HEAD_ADMIN.value):
        raise AuthorizationError("Head admin access required")
    return principal


def get_request_meta(request: Request) -> RequestMeta:
    return RequestMeta.from_request(request)
