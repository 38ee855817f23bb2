"""Security utilities - bearer token verification, principals and roles"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple
import logging
import secrets
import threading
import time

import httpx
from jose import ExpiredSignatureError, JWTError, jwt

from app.config import settings
from app.core.exceptions import AuthenticationError, TokenExpiredError, TokenInvalidError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Roles issued by the identity service"""
    STUDENT = "STUDENT"
    FACULTY = "FACULTY"
    DEPT_ADMIN = "DEPT_ADMIN"
    HEAD_ADMIN = "HEAD_ADMIN"


PRIVILEGED_ROLES = frozenset({Role.FACULTY.value, Role.DEPT_ADMIN.value, Role.HEAD_ADMIN.value})
MODERATOR_ROLES = frozenset({Role.DEPT_ADMIN.value, Role.HEAD_ADMIN.value})


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, built from verified token claims."""

    user_id: str
    roles: Tuple[str, ...] = ()
    display_name: str = ""
    email: Optional[str] = None
    token: Optional[str] = field(default=None, repr=False, compare=False)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles) -> bool:
        return any(role in roles for role in self.roles)

    @property
    def is_student(self) -> bool:
        return self.has_role(Role.STUDENT.value)

    @property
    def is_privileged(self) -> bool:
        return self.has_any_role(PRIVILEGED_ROLES)

    @property
    def is_moderator(self) -> bool:
        return self.has_any_role(MODERATOR_ROLES)

    @property
    def primary_role(self) -> str:
        if self.is_student:
            return Role.STUDENT.value
        return self.roles[0] if self.roles else "UNKNOWN"

    @property
    def authorization(self) -> Optional[str]:
        return f"Bearer {self.token}" if self.token else None


def principal_from_claims(claims: Dict[str, Any], token: Optional[str] = None) -> Principal:
    """
    Map verified token claims to a Principal

    Raises:
        AuthenticationError: If the subject claim is missing
    """
    user_id = claims.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token payload")

    roles = claims.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]

    return Principal(
        user_id=str(user_id),
        roles=tuple(str(role).upper() for role in roles),
        display_name=claims.get("displayName") or claims.get("name") or claims.get("email") or "",
        email=claims.get("email"),
        token=token,
    )


class TokenVerifier:
    """
    Verify bearer tokens issued by the identity service.

    When JWKS_URL is configured tokens are checked against the published key
    set (refetched every JWKS_CACHE_SECONDS); otherwise the shared SECRET_KEY
    is used, which is what local development and tests rely on.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jwks: Optional[Dict[str, Any]] = None
        self._jwks_fetched_at: float = 0.0

    def _fetch_jwks(self, force: bool = False) -> Dict[str, Any]:
        with self._lock:
            fresh = time.time() - self._jwks_fetched_at < settings.JWKS_CACHE_SECONDS
            if self._jwks is not None and fresh and not force:
                return self._jwks
            try:
                response = httpx.get(settings.JWKS_URL, timeout=settings.UPSTREAM_TIMEOUT_SECONDS)
                response.raise_for_status()
                self._jwks = response.json()
                self._jwks_fetched_at = time.time()
            except (httpx.HTTPError, ValueError) as exc:
                logger.error("Failed to fetch JWKS from %s: %s", settings.JWKS_URL, exc)
                if self._jwks is None:
                    raise AuthenticationError("Unable to verify token")
            return self._jwks

    def _decode(self, token: str, key: Any, algorithms: List[str]) -> Dict[str, Any]:
        options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
        return jwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience=settings.JWT_AUDIENCE or None,
            issuer=settings.JWT_ISSUER or None,
            options=options,
        )

    def verify(self, token: str) -> Dict[str, Any]:
        """
        Verify a bearer token and return its claims

        Raises:
            TokenExpiredError: If the token has expired
            TokenInvalidError: If signature or claims do not verify
        """
        try:
            if settings.JWKS_URL:
                try:
                    return self._decode(token, self._fetch_jwks(), settings.JWT_ALGORITHMS)
                except ExpiredSignatureError:
                    raise
                except JWTError:
                    # Key rotation: refetch once before rejecting.
                    return self._decode(token, self._fetch_jwks(force=True), settings.JWT_ALGORITHMS)
            return self._decode(token, settings.SECRET_KEY, [settings.ALGORITHM])
        except ExpiredSignatureError:
            raise TokenExpiredError()
        except JWTError:
            raise TokenInvalidError()

    def authenticate(self, token: str) -> Principal:
        return principal_from_claims(self.verify(token), token=token)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a shared-secret access token (local development and tests)

    Args:
        data: Claims to encode (sub, roles, displayName, ...)
        expires_delta: Token expiration time

    Returns:
        str: Encoded JWT token
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=60))
    to_encode.update({
        "exp": expire,
        "iat": datetime.utcnow(),
        "jti": secrets.token_urlsafe(32),
    })
    if settings.JWT_ISSUER:
        to_encode.setdefault("iss", settings.JWT_ISSUER)
    if settings.JWT_AUDIENCE:
        to_encode.setdefault("aud", settings.JWT_AUDIENCE)
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


token_verifier = TokenVerifier()
