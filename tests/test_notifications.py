from types import SimpleNamespace

from app.services.notification_service import NotificationService, SessionRegistry, event_summary


def _event(title="Intro to Rust"):
    return SimpleNamespace(id="evt-1", title=title, college_id="college-1", start_at=None, moderation_status="APPROVED")


def test_registry_tracks_sessions_by_user_and_role():
    registry = SessionRegistry()
    first = registry.register("user-1", ["dept_admin"], lambda message: None)
    registry.register("user-1", ["DEPT_ADMIN"], lambda message: None)
    registry.register("user-2", ["STUDENT"], lambda message: None)

    assert registry.connected_users_count() == 2
    assert len(registry.sessions_for_user("user-1")) == 2
    assert [s.user_id for s in registry.sessions_for_role("dept_admin")] == ["user-1", "user-1"]

    registry.unregister(first)
    registry.unregister(first)

    assert len(registry.sessions_for_user("user-1")) == 1
    assert registry.is_user_online("user-3") is False


def test_every_session_of_a_recipient_receives_the_message():
    registry = SessionRegistry()
    phone, laptop = [], []
    registry.register("author-1", ["FACULTY"], phone.append)
    registry.register("author-1", ["FACULTY"], laptop.append)

    delivered = NotificationService(registry).event_full("author-1", _event("Spring hack"))

    assert delivered == 2
    assert phone == laptop
    assert phone[0]["type"] == "event_full"
    assert phone[0]["message"] == 'Your event "Spring hack" has reached capacity'
    assert phone[0]["event"] == event_summary(_event("Spring hack"))


def test_failing_session_does_not_stop_delivery():
    registry = SessionRegistry()
    received = []

    def broken(message):
        raise RuntimeError("socket closed")

    registry.register("author-1", [], broken)
    registry.register("author-1", [], received.append)

    delivered = NotificationService(registry).event_rejected("author-1", _event(), reason="Overlaps exams")

    assert delivered == 1
    assert received[0]["reason"] == "Overlaps exams"


def test_offline_and_missing_recipients_are_ignored():
    service = NotificationService(SessionRegistry())

    assert service.mentor_assigned(None, _event()) == 0
    assert service.approval_pending("nobody-online", _event()) == 0


def test_build_message_omits_empty_extras():
    message = NotificationService(SessionRegistry()).build_message(
        "event_approved", {"title": "AI ethics"}, mentor=None
    )

    assert message["message"] == "Your event has been approved!"
    assert "mentor" not in message
    assert message["timestamp"]
