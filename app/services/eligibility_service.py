"""Event creation eligibility for students (badge gate)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from app.clients.profile import ProfileClient, profile_client
from app.config import settings
from app.core.exceptions import UpstreamUnavailableError
from app.core.security import Principal

logger = logging.getLogger(__name__)

CHECK_FAILED_REASON = "Badge eligibility check failed"


@dataclass
class Eligibility:
    can_create: bool
    missing: List[str] = field(default_factory=list)


class EligibilityChecker:
    """
    Decide whether a principal may create events.

    Only STUDENT principals are gated. Upstream failures deny creation.
    """

    def __init__(
        self,
        profiles: ProfileClient,
        required_badges: Optional[List[str]] = None,
        required_count: int = 8,
        required_categories: int = 4,
    ):
        self.profiles = profiles
        self.required_badges = list(required_badges or [])
        self.required_count = required_count
        self.required_categories = required_categories

    def check(self, principal: Principal) -> Eligibility:
        if not principal.is_student:
            return Eligibility(can_create=True)

        try:
            if self.required_badges:
                return self._check_required_badges(principal)
            return self._check_remote(principal)
        except UpstreamUnavailableError as exc:
            logger.error("Eligibility check failed for %s: %s", principal.user_id, exc.message)
            return Eligibility(can_create=False, missing=[CHECK_FAILED_REASON])

    def _check_remote(self, principal: Principal) -> Eligibility:
        data = self.profiles.get_badge_eligibility(principal.authorization, principal.user_id)
        if data.get("canCreate"):
            return Eligibility(can_create=True)
        count = data.get("requiredBadges") or self.required_count
        categories = data.get("requiredCategories") or self.required_categories
        return Eligibility(can_create=False, missing=[f"Need {count} badges across {categories} categories"])

    def _check_required_badges(self, principal: Principal) -> Eligibility:
        definitions = self.profiles.get_badge_definitions(principal.authorization)
        awards = self.profiles.get_my_badge_awards(principal.authorization)

        earned_ids = {award.get("badgeId") for award in awards}
        name_to_id = {definition.get("name"): definition.get("id") for definition in definitions}

        missing = [
            name for name in self.required_badges
            if name_to_id.get(name) is None or name_to_id[name] not in earned_ids
        ]
        return Eligibility(can_create=not missing, missing=missing)


eligibility_checker = EligibilityChecker(
    profile_client,
    required_badges=settings.REQUIRED_BADGES,
    required_count=settings.REQUIRED_BADGE_COUNT,
    required_categories=settings.REQUIRED_BADGE_CATEGORIES,
)
