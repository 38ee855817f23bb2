from datetime import timedelta

import pytest

from app.core.exceptions import AuthenticationError, TokenExpiredError, TokenInvalidError
from app.core.security import Principal, create_access_token, principal_from_claims, token_verifier


def test_access_token_round_trip():
    token = create_access_token({"sub": "user-7", "roles": ["dept_admin"], "displayName": "Dee Admin"})

    principal = token_verifier.authenticate(token)

    assert principal.user_id == "user-7"
    assert principal.roles == ("DEPT_ADMIN",)
    assert principal.display_name == "Dee Admin"
    assert principal.authorization == f"Bearer {token}"
    assert principal.is_moderator is True


def test_expired_token_is_rejected():
    token = create_access_token({"sub": "user-7"}, expires_delta=timedelta(seconds=-5))

    with pytest.raises(TokenExpiredError):
        token_verifier.authenticate(token)


def test_tampered_token_is_rejected():
    token = create_access_token({"sub": "user-7"})

    with pytest.raises(TokenInvalidError):
        token_verifier.authenticate(token[:-4] + "abcd")


def test_claims_without_subject_are_rejected():
    with pytest.raises(AuthenticationError):
        principal_from_claims({"roles": ["STUDENT"]})


def test_single_role_claim_and_name_fallback():
    principal = principal_from_claims({"sub": "s-1", "roles": "student", "email": "s1@college.edu"})

    assert principal.roles == ("STUDENT",)
    assert principal.display_name == "s1@college.edu"
    assert principal.primary_role == "STUDENT"


def test_role_groups():
    student = Principal(user_id="s", roles=("STUDENT",))
    faculty = Principal(user_id="f", roles=("FACULTY",))
    head = Principal(user_id="h", roles=("HEAD_ADMIN",))

    assert (student.is_privileged, student.is_moderator) == (False, False)
    assert (faculty.is_privileged, faculty.is_moderator) == (True, False)
    assert (head.is_privileged, head.is_moderator) == (True, True)
    assert Principal(user_id="x").primary_role == "UNKNOWN"
