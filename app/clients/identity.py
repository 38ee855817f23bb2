"""Identity service client - user lookups for approver routing."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from app.clients.base import UpstreamClient
from app.config import settings
from app.core.exceptions import UpstreamUnavailableError
from app.services.cache import TTLCache, upstream_cache

logger = logging.getLogger(__name__)


@dataclass
class DirectoryUser:
    id: str
    display_name: str = ""
    roles: List[str] = field(default_factory=list)
    college_id: str = ""
    department: str = ""

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "DirectoryUser":
        return cls(
            id=str(payload.get("id")),
            display_name=payload.get("displayName") or payload.get("email") or "",
            roles=[str(role).upper() for role in payload.get("roles") or []],
            college_id=payload.get("collegeId") or "",
            department=payload.get("department") or "",
        )


class IdentityClient(UpstreamClient):
    """
    Directory lookups against the identity service.

    Lookups are advisory (who should review, who to escalate to), so
    failures are logged and reported as "nobody found" rather than raised.
    """

    service_name = "identity"

    def __init__(self, base_url: str, cache: TTLCache, **kwargs):
        super().__init__(base_url, **kwargs)
        self.cache = cache

    def get_user(self, user_id: str, authorization: Optional[str] = None) -> Optional[DirectoryUser]:
        key = TTLCache.user_key(user_id)
        cached = self.cache.get(key)
        if cached is not None:
            return DirectoryUser(**cached)
        try:
            data = self._get(f"/v1/users/{quote(user_id, safe='')}", authorization, allow_not_found=True)
        except UpstreamUnavailableError:
            return None
        if not data or not isinstance(data.get("user"), dict):
            return None
        user = DirectoryUser.from_payload(data["user"])
        self.cache.set(key, asdict(user), settings.SCOPE_CACHE_TTL_SECONDS)
        return user

    def find_users(
        self,
        role: str,
        college_id: str,
        department: Optional[str] = None,
        authorization: Optional[str] = None,
    ) -> List[DirectoryUser]:
        key = TTLCache.directory_key(role, college_id, department)
        cached = self.cache.get(key)
        if cached is not None:
            return [DirectoryUser(**item) for item in cached]

        params = {"role": role, "collegeId": college_id}
        if department:
            params["department"] = department
        try:
            data = self._get("/v1/users/search", authorization, params=params) or {}
        except UpstreamUnavailableError:
            logger.warning("Directory lookup failed for role=%s college=%s", role, college_id)
            return []

        users = [DirectoryUser.from_payload(item) for item in data.get("users") or [] if isinstance(item, dict)]
        self.cache.set(key, [asdict(user) for user in users], settings.DIRECTORY_CACHE_TTL_SECONDS)
        return users

    def find_department_admin(
        self, college_id: str, department: str, authorization: Optional[str] = None
    ) -> Optional[DirectoryUser]:
        admins = self.find_users("DEPT_ADMIN", college_id, department, authorization)
        return admins[0] if admins else None

    def find_head_admin(self, college_id: str, authorization: Optional[str] = None) -> Optional[DirectoryUser]:
        admins = self.find_users("HEAD_ADMIN", college_id, None, authorization)
        return admins[0] if admins else None


identity_client = IdentityClient(settings.AUTH_BASE_URL, upstream_cache)
