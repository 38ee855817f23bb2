from datetime import datetime, timedelta

import pydantic
import pytest

from app.core.exceptions import (
    AuthorizationError,
    EligibilityDeniedError,
    ResourceNotFoundError,
    ValidationError,
)
from app.models.audit import AuditLogEntry
from app.models.event import ApprovalFlow, Event, EventRegistration
from app.schemas.event import EventListQuery, EventUpdate
from app.services.event_service import validate_event_fields

from conftest import (
    CS_SCOPE,
    DEPT_ADMIN,
    EE_SCOPE,
    FACULTY,
    OTHER_COLLEGE_SCOPE,
    OTHER_STUDENT,
    STUDENT,
    FakeEligibility,
    event_payload,
)


def test_student_event_starts_pending_with_assigned_approval(harness, db):
    student_inbox = harness.inbox(STUDENT.user_id)
    admin_inbox = harness.inbox("dept-admin-1")

    event = harness.events.create(db, STUDENT, CS_SCOPE, event_payload())

    assert event.moderation_status == "PENDING_REVIEW"
    assert event.author_role == "STUDENT"
    assert event.end_at == event.start_at
    flow = db.query(ApprovalFlow).filter(ApprovalFlow.event_id == event.id).one()
    assert flow.assigned_to == "dept-admin-1"
    assert flow.assigned_to_name == "Dee Admin"
    assert flow.is_escalated is False
    assert student_inbox.kinds() == ["event_submitted"]
    assert admin_inbox.kinds() == ["event_approval_pending"]


def test_faculty_event_is_published_without_approval_flow(harness, db):
    event = harness.events.create(db, FACULTY, CS_SCOPE, event_payload())

    assert event.moderation_status == "APPROVED"
    assert db.query(ApprovalFlow).count() == 0


def test_ineligible_student_cannot_create(harness, db):
    harness.events.eligibility = FakeEligibility(can_create=False, missing=["Speaker", "Mentor"])

    with pytest.raises(EligibilityDeniedError) as exc_info:
        harness.events.create(db, STUDENT, CS_SCOPE, event_payload())

    assert exc_info.value.status_code == 403
    assert exc_info.value.details == {"missing_badges": ["Speaker", "Mentor"]}
    assert db.query(Event).count() == 0
    assert harness.directory.calls == []


def test_onsite_event_round_trip(harness, db):
    created = harness.events.create(
        db, FACULTY, CS_SCOPE,
        event_payload(mode="ONSITE", location="Hall A", meeting_url=None, capacity=30, tags=["rust", " systems "]),
    )

    fetched = harness.events.get(db, STUDENT, CS_SCOPE, created.id)

    assert fetched.mode == "ONSITE"
    assert fetched.location == "Hall A"
    assert fetched.meeting_url is None
    assert fetched.capacity == 30
    assert fetched.tags == ["rust", "systems"]


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"mode": "ONSITE", "meeting_url": None}, "location is required"),
        ({"mode": "HYBRID", "location": "Hall B", "meeting_url": None}, "meeting_url is required"),
        ({"end_at": datetime.utcnow() + timedelta(days=6)}, "end_at must be after"),
        ({"visible_to_all_depts": False, "departments": []}, "departments must not be empty"),
    ],
)
def test_create_rejects_inconsistent_fields(harness, db, overrides, message):
    with pytest.raises(ValidationError) as exc_info:
        harness.events.create(db, FACULTY, CS_SCOPE, event_payload(**overrides))

    assert message in exc_info.value.message
    assert db.query(Event).count() == 0


def test_meeting_url_must_be_absolute_http():
    with pytest.raises(pydantic.ValidationError):
        event_payload(meeting_url="meet.example.com/rust")


def test_validate_event_fields_drops_departments_when_visible_to_all():
    fields = validate_event_fields({
        "title": " Meetup ",
        "description": "Monthly",
        "start_at": datetime(2030, 1, 1, 10),
        "mode": "ONLINE",
        "meeting_url": "https://meet.example.com",
        "visible_to_all_depts": True,
        "departments": ["CS"],
    })

    assert fields["title"] == "Meetup"
    assert fields["departments"] == []
    assert fields["end_at"] == datetime(2030, 1, 1, 10)


def test_department_restricted_event_is_hidden_from_other_departments(harness, db):
    event = harness.events.create(
        db, FACULTY, CS_SCOPE, event_payload(visible_to_all_depts=False, departments=["EE"])
    )

    with pytest.raises(ResourceNotFoundError):
        harness.events.get(db, STUDENT, CS_SCOPE, event.id)
    assert harness.events.get(db, OTHER_STUDENT, EE_SCOPE, event.id).id == event.id
    # Privileged callers see every event of their college.
    assert harness.events.get(db, FACULTY, CS_SCOPE, event.id).id == event.id


def test_events_are_scoped_to_the_callers_college(harness, db):
    event = harness.events.create(db, FACULTY, CS_SCOPE, event_payload())

    with pytest.raises(ResourceNotFoundError):
        harness.events.get(db, FACULTY, OTHER_COLLEGE_SCOPE, event.id)
    with pytest.raises(ResourceNotFoundError):
        harness.events.update(db, FACULTY, OTHER_COLLEGE_SCOPE, event.id, EventUpdate(title="Hijacked"))


def test_student_listing_shows_only_approved_unarchived_events(harness, db):
    now = datetime.utcnow()
    harness.events.create(db, STUDENT, CS_SCOPE, event_payload(title="Pending talk"))
    approved = harness.events.create(db, FACULTY, CS_SCOPE, event_payload(title="Approved talk", start_at=now + timedelta(days=2)))
    archived = harness.events.create(db, FACULTY, CS_SCOPE, event_payload(title="Old talk", start_at=now + timedelta(days=3)))
    archived.archived_at = now
    db.commit()

    events, total = harness.events.list_events(db, STUDENT, CS_SCOPE, EventListQuery())
    assert total == 1
    assert [e.id for e in events] == [approved.id]

    events, total = harness.events.list_events(db, FACULTY, CS_SCOPE, EventListQuery(status="PENDING_REVIEW"))
    assert total == 1
    assert events[0].title == "Pending talk"


def test_listing_filters_and_pagination(harness, db):
    base = datetime.utcnow() + timedelta(days=1)
    for i in range(5):
        harness.events.create(
            db, FACULTY, CS_SCOPE,
            event_payload(title=f"Talk {i}", start_at=base + timedelta(days=i), type="SEMINAR" if i % 2 else "WORKSHOP"),
        )

    events, total = harness.events.list_events(db, STUDENT, CS_SCOPE, EventListQuery(type="SEMINAR"))
    assert total == 2
    assert {e.title for e in events} == {"Talk 1", "Talk 3"}

    events, total = harness.events.list_events(db, STUDENT, CS_SCOPE, EventListQuery(page=2, limit=2))
    assert total == 5
    assert [e.title for e in events] == ["Talk 2", "Talk 3"]

    query = EventListQuery.model_validate({"from": base + timedelta(days=3), "q": "talk"})
    events, total = harness.events.list_events(db, STUDENT, CS_SCOPE, query)
    assert [e.title for e in events] == ["Talk 3", "Talk 4"]


def test_student_may_edit_own_event_only_while_pending(harness, db):
    event = harness.events.create(db, STUDENT, CS_SCOPE, event_payload())

    updated = harness.events.update(db, STUDENT, CS_SCOPE, event.id, EventUpdate(title="Intro to Rust, revised"))
    assert updated.title == "Intro to Rust, revised"

    with pytest.raises(AuthorizationError):
        harness.events.update(db, OTHER_STUDENT, CS_SCOPE, event.id, EventUpdate(title="Not mine"))

    event.moderation_status = "APPROVED"
    db.commit()
    with pytest.raises(AuthorizationError):
        harness.events.update(db, STUDENT, CS_SCOPE, event.id, EventUpdate(title="Too late"))


def test_update_validates_the_merged_event(harness, db):
    event = harness.events.create(db, FACULTY, CS_SCOPE, event_payload())

    with pytest.raises(ValidationError):
        harness.events.update(db, FACULTY, CS_SCOPE, event.id, EventUpdate(mode="ONSITE"))

    updated = harness.events.update(
        db, FACULTY, CS_SCOPE, event.id, EventUpdate(mode="HYBRID", location="Lab 3")
    )
    assert updated.mode == "HYBRID"
    assert updated.meeting_url == "https://meet.example.com/rust"


def test_capacity_cannot_drop_below_registrations(harness, db):
    event = harness.events.create(db, FACULTY, CS_SCOPE, event_payload(capacity=10))
    harness.registrations.register(db, STUDENT, CS_SCOPE, event.id)
    harness.registrations.register(db, OTHER_STUDENT, CS_SCOPE, event.id)

    with pytest.raises(ValidationError):
        harness.events.update(db, FACULTY, CS_SCOPE, event.id, EventUpdate(capacity=1))

    updated = harness.events.update(db, FACULTY, CS_SCOPE, event.id, EventUpdate(capacity=2))
    assert updated.capacity == 2


def test_department_list_can_be_replaced(harness, db):
    event = harness.events.create(
        db, FACULTY, CS_SCOPE, event_payload(visible_to_all_depts=False, departments=["CS", "EE"])
    )

    updated = harness.events.update(db, FACULTY, CS_SCOPE, event.id, EventUpdate(departments=["EE", "ME"]))

    assert sorted(updated.departments) == ["EE", "ME"]


def test_delete_cascades_and_audits_privileged_callers(harness, db):
    event = harness.events.create(db, FACULTY, CS_SCOPE, event_payload())
    harness.registrations.register(db, STUDENT, CS_SCOPE, event.id)

    harness.events.delete(db, DEPT_ADMIN, CS_SCOPE, event.id)

    assert db.query(Event).count() == 0
    assert db.query(EventRegistration).count() == 0
    entry = db.query(AuditLogEntry).one()
    assert entry.action == "EVENT_DELETE"
    assert entry.entity_id == event.id


def test_my_events_for_student_include_registrations(harness, db):
    authored = harness.events.create(db, STUDENT, CS_SCOPE, event_payload(title="Mine"))
    joined = harness.events.create(db, FACULTY, CS_SCOPE, event_payload(title="Joined"))
    harness.events.create(db, FACULTY, CS_SCOPE, event_payload(title="Elsewhere"))
    harness.registrations.register(db, STUDENT, CS_SCOPE, joined.id)

    mine = harness.events.list_mine(db, STUDENT, CS_SCOPE)

    assert {e.id for e in mine} == {authored.id, joined.id}
    presented = {e["id"]: e["is_registered"] for e in harness.events.present(db, STUDENT, mine)}
    assert presented == {authored.id: False, joined.id: True}
