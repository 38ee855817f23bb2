"""Profile service client - scope, badges and student profiles."""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import quote

from app.clients.base import UpstreamClient
from app.config import settings


class ProfileClient(UpstreamClient):
    """Client for the profile/badge service."""

    service_name = "profile"

    def get_my_profile(self, authorization: Optional[str]) -> Dict[str, Any]:
        data = self._get("/v1/profile/me", authorization) or {}
        profile = data.get("profile")
        return profile if isinstance(profile, dict) else {}

    def get_profile(self, authorization: Optional[str], user_id: str) -> Optional[Dict[str, Any]]:
        """Combined auth + profile record for any user (FACULTY callers)."""
        data = self._get(f"/v1/profile/user/{quote(user_id, safe='')}", authorization, allow_not_found=True)
        if data is None:
            return None
        profile = data.get("profile")
        return profile if isinstance(profile, dict) else None

    def get_badge_eligibility(self, authorization: Optional[str], user_id: str) -> Dict[str, Any]:
        return self._get(f"/v1/badges/eligibility/{quote(user_id, safe='')}", authorization) or {}

    def get_badge_definitions(self, authorization: Optional[str]) -> List[Dict[str, Any]]:
        data = self._get("/v1/badges/definitions", authorization) or {}
        return [d for d in data.get("definitions") or [] if isinstance(d, dict)]

    def get_my_badge_awards(self, authorization: Optional[str]) -> List[Dict[str, Any]]:
        data = self._get("/v1/badges/awards", authorization) or {}
        return [a for a in data.get("awards") or [] if isinstance(a, dict)]


profile_client = ProfileClient(settings.PROFILE_BASE_URL)
