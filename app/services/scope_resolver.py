"""Scope resolution - which college and department a principal belongs to."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Optional

from app.clients.profile import ProfileClient, profile_client
from app.config import settings
from app.core.exceptions import IncompleteProfileError
from app.core.security import Principal
from app.services.cache import TTLCache, upstream_cache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Scope:
    college_id: str
    department: str
    avatar: Optional[str] = None
    display_name: Optional[str] = None


class ScopeResolver:
    """Resolve (college, department) for a principal, cached per principal."""

    def __init__(self, profiles: ProfileClient, cache: TTLCache, ttl_seconds: int):
        self.profiles = profiles
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    def resolve(self, principal: Principal) -> Scope:
        """
        Resolve scope for the principal

        Raises:
            UpstreamUnavailableError: If the profile service cannot be reached
            IncompleteProfileError: If collegeId or department is absent
        """
        key = TTLCache.scope_key(principal.user_id)
        cached = self.cache.get(key)
        if cached is not None:
            return Scope(**cached)

        profile = self.profiles.get_my_profile(principal.authorization)
        college_id = profile.get("collegeId")
        department = profile.get("department")
        if not college_id or not department:
            logger.warning("Incomplete profile for user %s", principal.user_id)
            raise IncompleteProfileError()

        scope = Scope(
            college_id=college_id,
            department=department,
            avatar=profile.get("avatar"),
            display_name=principal.display_name or profile.get("displayName"),
        )
        self.cache.set(key, asdict(scope), self.ttl_seconds)
        return scope


scope_resolver = ScopeResolver(profile_client, upstream_cache, settings.SCOPE_CACHE_TTL_SECONDS)
