import httpx
import pytest

from app.clients.identity import IdentityClient
from app.clients.profile import ProfileClient
from app.core.exceptions import IncompleteProfileError, UpstreamUnavailableError
from app.services.cache import TTLCache
from app.services.eligibility_service import CHECK_FAILED_REASON, EligibilityChecker
from app.services.scope_resolver import Scope, ScopeResolver

from conftest import FACULTY, STUDENT


def _transport(routes, calls=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append((request.url.path, request.headers.get("authorization")))
        route = routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        status, body = route
        return httpx.Response(status, json=body)

    return httpx.MockTransport(handler)


def _profiles(routes, calls=None) -> ProfileClient:
    return ProfileClient("http://profile.test", transport=_transport(routes, calls))


def test_scope_is_resolved_once_and_cached():
    calls = []
    profiles = _profiles(
        {"/v1/profile/me": (200, {"profile": {"collegeId": "college-1", "department": "CS", "avatar": "a.png"}})},
        calls,
    )
    resolver = ScopeResolver(profiles, TTLCache(), ttl_seconds=300)

    first = resolver.resolve(STUDENT)
    second = resolver.resolve(STUDENT)

    assert first == second == Scope(college_id="college-1", department="CS", avatar="a.png", display_name="Sam Student")
    assert calls == [("/v1/profile/me", "Bearer t-student")]


def test_disabled_cache_always_asks_the_profile_service():
    calls = []
    profiles = _profiles(
        {"/v1/profile/me": (200, {"profile": {"collegeId": "college-1", "department": "CS"}})}, calls
    )
    resolver = ScopeResolver(profiles, TTLCache(enabled=False), ttl_seconds=300)

    resolver.resolve(STUDENT)
    resolver.resolve(STUDENT)

    assert len(calls) == 2


def test_incomplete_profile_is_forbidden():
    profiles = _profiles({"/v1/profile/me": (200, {"profile": {"collegeId": "college-1"}})})
    resolver = ScopeResolver(profiles, TTLCache(), ttl_seconds=300)

    with pytest.raises(IncompleteProfileError) as exc_info:
        resolver.resolve(STUDENT)
    assert exc_info.value.status_code == 403


def test_profile_outage_is_reported_as_unavailable():
    profiles = _profiles({"/v1/profile/me": (502, {"error": "bad gateway"})})
    resolver = ScopeResolver(profiles, TTLCache(), ttl_seconds=300)

    with pytest.raises(UpstreamUnavailableError) as exc_info:
        resolver.resolve(STUDENT)
    assert exc_info.value.status_code == 503


def test_remote_eligibility_decision():
    profiles = _profiles({
        "/v1/badges/eligibility/student-1": (200, {"canCreate": False, "requiredBadges": 8, "requiredCategories": 4}),
    })

    result = EligibilityChecker(profiles).check(STUDENT)

    assert result.can_create is False
    assert result.missing == ["Need 8 badges across 4 categories"]


def test_named_badges_are_checked_against_awards():
    profiles = _profiles({
        "/v1/badges/definitions": (200, {"definitions": [{"id": "b1", "name": "Speaker"}, {"id": "b2", "name": "Mentor"}]}),
        "/v1/badges/awards": (200, {"awards": [{"badgeId": "b1"}]}),
    })

    result = EligibilityChecker(profiles, required_badges=["Speaker", "Mentor", "Organizer"]).check(STUDENT)

    assert result.can_create is False
    assert result.missing == ["Mentor", "Organizer"]


def test_eligibility_fails_closed_when_badge_service_is_down():
    profiles = _profiles({"/v1/badges/eligibility/student-1": (500, {"error": "boom"})})

    result = EligibilityChecker(profiles).check(STUDENT)

    assert result.can_create is False
    assert result.missing == [CHECK_FAILED_REASON]


def test_non_students_are_not_gated():
    profiles = _profiles({})

    assert EligibilityChecker(profiles).check(FACULTY).can_create is True


def test_directory_lookups_are_cached_and_failures_mean_nobody():
    calls = []
    routes = {
        "/v1/users/search": (200, {"users": [{"id": "dept-admin-1", "displayName": "Dee Admin", "roles": ["dept_admin"]}]}),
        "/v1/users/head-admin-1": (200, {"user": {"id": "head-admin-1", "displayName": "Hal Head"}}),
    }
    directory = IdentityClient("http://auth.test", TTLCache(), transport=_transport(routes, calls))

    admin = directory.find_department_admin("college-1", "CS")
    again = directory.find_department_admin("college-1", "CS")

    assert admin.id == again.id == "dept-admin-1"
    assert admin.roles == ["DEPT_ADMIN"]
    assert [path for path, _ in calls].count("/v1/users/search") == 1
    assert directory.get_user("head-admin-1").display_name == "Hal Head"
    assert directory.get_user("ghost") is None

    broken = IdentityClient("http://auth.test", TTLCache(), transport=_transport({"/v1/users/search": (503, {})}))
    assert broken.find_head_admin("college-1") is None


def test_ttl_cache_expires_and_evicts(monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr("app.services.cache.time.monotonic", lambda: clock[0])
    cache = TTLCache(default_ttl=10, max_entries=2)

    cache.set("a", {"v": 1})
    cache.set("b", {"v": 2})
    cache.set("c", {"v": 3})
    assert cache.get("a") is None
    assert cache.get("b") == {"v": 2}

    clock[0] += 11
    assert cache.get("b") is None
    assert cache.stats() == {"enabled": True, "entries": 1, "max_entries": 2}


def test_non_object_profile_body_is_reported_as_unavailable():
    profiles = _profiles({"/v1/profile/me": (200, [])})
    resolver = ScopeResolver(profiles, TTLCache(), ttl_seconds=300)

    with pytest.raises(UpstreamUnavailableError) as exc_info:
        resolver.resolve(STUDENT)
    assert exc_info.value.status_code == 503
    assert exc_info.value.details == {"service": "profile"}


def test_eligibility_fails_closed_on_non_object_body():
    profiles = _profiles({"/v1/badges/eligibility/student-1": (200, ["canCreate"])})

    result = EligibilityChecker(profiles).check(STUDENT)

    assert result.can_create is False
    assert result.missing == [CHECK_FAILED_REASON]


def test_malformed_directory_entries_are_skipped():
    routes = {
        "/v1/users/search": (200, {"users": ["dept-admin-1", {"id": "dept-admin-2", "displayName": "Dee Two", "roles": ["DEPT_ADMIN"]}]}),
        "/v1/users/u-9": (200, {"user": "u-9"}),
    }
    directory = IdentityClient("http://auth.test", TTLCache(), transport=_transport(routes))

    admin = directory.find_department_admin("college-1", "CS")

    assert admin.id == "dept-admin-2"
    assert directory.get_user("u-9") is None
