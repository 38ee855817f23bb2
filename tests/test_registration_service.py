import threading
from datetime import datetime

import pytest
from sqlalchemy import event as sa_event
from sqlalchemy.exc import OperationalError

from app.config import settings
from app.core.exceptions import (
    AlreadyRegisteredError,
    DatabaseError,
    EventFullError,
    InvalidStateError,
    ResourceNotFoundError,
)
from app.core.security import Principal
from app.models.event import Event, EventRegistration
from app.services.notification_service import NotificationService, SessionRegistry
from app.services.registration_service import RegistrationService, is_retryable

from conftest import (
    CS_SCOPE,
    FACULTY,
    OTHER_STUDENT,
    STUDENT,
    FakeEligibility,
    Harness,
    default_directory,
    event_payload,
    make_session_factory,
)


def test_concurrent_registrations_never_exceed_capacity(harness, tmp_path):
    session_factory = make_session_factory(f"sqlite:///{tmp_path / 'events.db'}")
    setup = session_factory()
    try:
        event = harness.events.create(setup, FACULTY, CS_SCOPE, event_payload(capacity=5))
        event_id = event.id
    finally:
        setup.close()

    service = RegistrationService(NotificationService(SessionRegistry()), max_retries=10)
    outcomes = []
    lock = threading.Lock()
    start = threading.Barrier(20)

    def attempt(n):
        principal = Principal(user_id=f"student-{n}", roles=("STUDENT",))
        db = session_factory()
        try:
            start.wait()
            service.register(db, principal, CS_SCOPE, event_id)
            result = "accepted"
        except EventFullError:
            result = "full"
        finally:
            db.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt, args=(n,)) for n in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("accepted") == 5
    assert outcomes.count("full") == 15

    check = session_factory()
    try:
        assert check.get(Event, event_id).registration_count == 5
        assert check.query(EventRegistration).filter(EventRegistration.event_id == event_id).count() == 5
    finally:
        check.close()


def test_duplicate_registration_is_rejected_without_consuming_a_seat(harness, db):
    event = harness.events.create(db, FACULTY, CS_SCOPE, event_payload(capacity=3))
    harness.registrations.register(db, STUDENT, CS_SCOPE, event.id)

    with pytest.raises(AlreadyRegisteredError) as exc_info:
        harness.registrations.register(db, STUDENT, CS_SCOPE, event.id)

    assert exc_info.value.status_code == 409
    assert db.get(Event, event.id).registration_count == 1


def test_unregister_is_idempotent(harness, db):
    event = harness.events.create(db, FACULTY, CS_SCOPE, event_payload(capacity=3))
    harness.registrations.register(db, STUDENT, CS_SCOPE, event.id)

    assert harness.registrations.unregister(db, STUDENT, CS_SCOPE, event.id) is True
    assert harness.registrations.unregister(db, STUDENT, CS_SCOPE, event.id) is False

    assert db.get(Event, event.id).registration_count == 0
    assert db.query(EventRegistration).count() == 0


def test_freed_seat_can_be_taken_again(harness, db):
    event = harness.events.create(db, FACULTY, CS_SCOPE, event_payload(capacity=1))
    harness.registrations.register(db, STUDENT, CS_SCOPE, event.id)

    with pytest.raises(EventFullError):
        harness.registrations.register(db, OTHER_STUDENT, CS_SCOPE, event.id)

    harness.registrations.unregister(db, STUDENT, CS_SCOPE, event.id)
    registration = harness.registrations.register(db, OTHER_STUDENT, CS_SCOPE, event.id)
    assert registration.user_id == OTHER_STUDENT.user_id


def test_pending_event_is_not_open_for_registration(harness, db):
    event = harness.events.create(db, STUDENT, CS_SCOPE, event_payload())

    with pytest.raises(InvalidStateError):
        harness.registrations.register(db, FACULTY, CS_SCOPE, event.id)


def test_archived_event_is_closed(harness, db):
    event = harness.events.create(db, FACULTY, CS_SCOPE, event_payload())
    event.archived_at = datetime.utcnow()
    db.commit()

    with pytest.raises(InvalidStateError):
        harness.registrations.register(db, FACULTY, CS_SCOPE, event.id)


def test_student_cannot_register_for_other_departments_event(harness, db):
    event = harness.events.create(
        db, FACULTY, CS_SCOPE, event_payload(visible_to_all_depts=False, departments=["EE"])
    )

    with pytest.raises(ResourceNotFoundError):
        harness.registrations.register(db, STUDENT, CS_SCOPE, event.id)


def test_unlimited_capacity_accepts_everyone(harness, db):
    event = harness.events.create(db, FACULTY, CS_SCOPE, event_payload())
    for n in range(25):
        harness.registrations.register(db, Principal(user_id=f"s-{n}", roles=("STUDENT",)), CS_SCOPE, event.id)

    assert db.get(Event, event.id).registration_count == 25


def test_author_is_told_when_event_fills_up(harness, db):
    author_inbox = harness.inbox(FACULTY.user_id)
    event = harness.events.create(db, FACULTY, CS_SCOPE, event_payload(capacity=2))

    harness.registrations.register(db, STUDENT, CS_SCOPE, event.id)
    assert author_inbox.kinds() == []

    harness.registrations.register(db, OTHER_STUDENT, CS_SCOPE, event.id)
    assert author_inbox.kinds() == ["event_full"]


def test_sqlite_lock_errors_are_retryable():
    locked = OperationalError("UPDATE events", {}, Exception("database is locked"))
    other = OperationalError("UPDATE events", {}, Exception("no such table: events"))

    assert is_retryable(locked) is True
    assert is_retryable(other) is False


class SerializationFailure(Exception):
    pgcode = "40001"


def _flaky(service, failures):
    claim = service._claim_seat
    seen = []

    def claim_seat(session, event_id, user_id):
        if len(seen) < failures:
            seen.append(event_id)
            raise OperationalError("UPDATE events", {}, SerializationFailure("could not serialize access"))
        return claim(session, event_id, user_id)

    return claim_seat, seen


def test_serialization_failures_are_retried_with_shipped_settings(harness, db, monkeypatch):
    event = harness.events.create(db, FACULTY, CS_SCOPE, event_payload(capacity=3))
    service = RegistrationService(
        NotificationService(SessionRegistry()),
        isolation_level=settings.REGISTRATION_ISOLATION_LEVEL,
        max_retries=settings.REGISTRATION_MAX_RETRIES,
        retry_deadline_seconds=settings.REGISTRATION_RETRY_DEADLINE_SECONDS,
    )
    claim_seat, seen = _flaky(service, failures=4)
    monkeypatch.setattr(service, "_claim_seat", claim_seat)

    registration = service.register(db, STUDENT, CS_SCOPE, event.id)

    assert registration.user_id == STUDENT.user_id
    assert len(seen) == 4
    assert db.get(Event, event.id).registration_count == 1


def test_retries_continue_until_the_deadline(harness, db, monkeypatch):
    event = harness.events.create(db, FACULTY, CS_SCOPE, event_payload(capacity=3))
    service = RegistrationService(NotificationService(SessionRegistry()), max_retries=1, retry_deadline_seconds=10)
    claim_seat, seen = _flaky(service, failures=3)
    monkeypatch.setattr(service, "_claim_seat", claim_seat)

    service.register(db, STUDENT, CS_SCOPE, event.id)

    assert len(seen) == 3


def test_gives_up_once_retries_and_deadline_are_spent(harness, db, monkeypatch):
    event = harness.events.create(db, FACULTY, CS_SCOPE, event_payload(capacity=3))
    service = RegistrationService(NotificationService(SessionRegistry()), max_retries=2, retry_deadline_seconds=0)
    claim_seat, seen = _flaky(service, failures=100)
    monkeypatch.setattr(service, "_claim_seat", claim_seat)

    with pytest.raises(DatabaseError):
        service.register(db, STUDENT, CS_SCOPE, event.id)

    assert len(seen) == 2
    assert db.get(Event, event.id).registration_count == 0


def test_full_notice_goes_out_once_when_registrations_interleave(tmp_path):
    harness = Harness(
        make_session_factory(f"sqlite:///{tmp_path / 'full.db'}"), default_directory(), FakeEligibility()
    )
    author_inbox = harness.inbox(FACULTY.user_id)
    first = harness.session_factory()
    try:
        event_id = harness.events.create(first, FACULTY, CS_SCOPE, event_payload(capacity=2)).id

        def competing_registration(session):
            second = harness.session_factory()
            try:
                harness.registrations.register(second, OTHER_STUDENT, CS_SCOPE, event_id)
            finally:
                second.close()

        # The competitor commits between the first commit and any follow-up read.
        sa_event.listen(first, "after_commit", competing_registration, once=True)
        harness.registrations.register(first, STUDENT, CS_SCOPE, event_id)

        assert first.get(Event, event_id).registration_count == 2
    finally:
        first.close()

    assert author_inbox.kinds() == ["event_full"]
