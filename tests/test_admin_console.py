import csv
import io
import json
from datetime import datetime, timedelta

from openpyxl import load_workbook
from sqlalchemy.exc import OperationalError

from app.schemas.admin import AdminEventFilters, AnalyticsRange, ExportFormat
from app.schemas.moderation import ModerateRequest
from app.services.audit_service import RequestMeta
from app.services.export_service import EXPORT_HEADERS, ExportService

from conftest import CS_SCOPE, DEPT_ADMIN, FACULTY, OTHER_STUDENT, STUDENT, event_payload


def _seed(harness, db):
    now = datetime.utcnow()
    pending = harness.events.create(
        db, STUDENT, CS_SCOPE, event_payload(title="Rust basics", tags=["rust"], start_at=now + timedelta(days=3))
    )
    seminar = harness.events.create(
        db, FACULTY, CS_SCOPE,
        event_payload(title="AI ethics", type="SEMINAR", capacity=40, tags=["ai", "ethics"], start_at=now + timedelta(days=5)),
    )
    hackathon = harness.events.create(
        db, FACULTY, CS_SCOPE,
        event_payload(title="Spring hack", type="HACKATHON", mode="ONSITE", location="Hall A", meeting_url=None,
                      capacity=100, start_at=now + timedelta(days=10)),
    )
    harness.registrations.register(db, STUDENT, CS_SCOPE, seminar.id)
    harness.registrations.register(db, OTHER_STUDENT, CS_SCOPE, seminar.id)
    return pending, seminar, hackathon


def test_admin_listing_filters_sorts_and_counts(harness, db):
    pending, seminar, hackathon = _seed(harness, db)

    result = harness.admin.list_events(db, CS_SCOPE, AdminEventFilters(sort_by="registrationCount"))
    assert [e["id"] for e in result["events"]][0] == seminar.id
    assert result["pagination"] == {"page": 1, "limit": 20, "total": 3, "total_pages": 1}
    stats = result["stats"]
    assert (stats["pending"], stats["approved"], stats["rejected"]) == (1, 2, 0)
    assert (stats["workshop"], stats["seminar"], stats["hackathon"], stats["meetup"]) == (1, 1, 1, 0)

    pending_only = harness.admin.list_events(db, CS_SCOPE, AdminEventFilters(moderation_status="PENDING_REVIEW"))
    assert [e["id"] for e in pending_only["events"]] == [pending.id]
    assert pending_only["events"][0]["approval_flow"]["assigned_to"] == "dept-admin-1"

    tagged = harness.admin.list_events(db, CS_SCOPE, AdminEventFilters(tags=["ethics"]))
    assert [e["id"] for e in tagged["events"]] == [seminar.id]

    roomy = harness.admin.list_events(db, CS_SCOPE, AdminEventFilters(capacity_min=50, search="hack"))
    assert [e["id"] for e in roomy["events"]] == [hackathon.id]


def test_archived_events_can_be_excluded(harness, db):
    pending, seminar, hackathon = _seed(harness, db)
    hackathon.archived_at = datetime.utcnow()
    db.commit()

    result = harness.admin.list_events(db, CS_SCOPE, AdminEventFilters(include_archived=False))

    assert {e["id"] for e in result["events"]} == {pending.id, seminar.id}


def test_stats_and_dashboard(harness, db):
    _seed(harness, db)

    stats = harness.admin.stats(db, CS_SCOPE)
    assert stats["overview"]["total_events"] == 3
    assert stats["overview"]["recent_events"] == 3
    assert stats["overview"]["total_registrations"] == 2
    assert stats["moderation"] == {"pending_review": 1, "approved": 2}
    assert stats["types"] == {"workshop": 1, "seminar": 1, "hackathon": 1}

    dashboard = harness.admin.dashboard_stats(db, CS_SCOPE)
    assert dashboard == {
        "total_events": 3,
        "total_events_change": 100,
        "total_registrations": 2,
        "total_registrations_change": 100,
    }


def test_recent_activity_covers_the_last_week_newest_first(harness, db):
    pending, seminar, hackathon = _seed(harness, db)
    now = datetime.utcnow()
    seminar.created_at = now - timedelta(days=1)
    hackathon.created_at = now - timedelta(days=10)
    db.commit()

    activities = harness.admin.recent_activity(db, CS_SCOPE, now=now + timedelta(seconds=1))

    assert [a["id"] for a in activities] == [f"event_{pending.id}", f"event_{seminar.id}"]
    created, published = activities
    assert (created["type"], created["title"], created["description"]) == ("event_created", "New event created", "Rust basics")
    assert created["user"] == {"name": pending.author_name, "avatar": None}
    assert (published["type"], published["title"]) == ("event_published", "Event published")
    assert published["metadata"] == {"event_type": "SEMINAR", "start_at": seminar.start_at, "status": "APPROVED"}
    assert len(harness.admin.recent_activity(db, CS_SCOPE, limit=1)) == 1


def test_comprehensive_analytics(harness, db):
    pending, seminar, hackathon = _seed(harness, db)
    harness.events.create(
        db, FACULTY, CS_SCOPE, event_payload(title="Circuits", visible_to_all_depts=False, departments=["EE"])
    )
    now = datetime.utcnow()
    hackathon.created_at = now - timedelta(days=40)
    hackathon.start_at = now - timedelta(days=2)
    hackathon.end_at = now - timedelta(days=1)
    db.commit()

    result = harness.admin.comprehensive_analytics(db, CS_SCOPE, AnalyticsRange.THIRTY_DAYS, now=now + timedelta(seconds=1))

    assert result["event_metrics"] == {
        "total": 4,
        "active": 2,
        "upcoming": 2,
        "past": 1,
        "new_in_period": 3,
        "previous_period": 1,
        "growth_rate": 200.0,
    }
    assert result["summary"]["time_range"] == "30d"
    assert result["registration_metrics"] == {"total": 2, "new_in_period": 2}
    assert result["department_stats"] == [
        {"department": "ALL", "event_count": 3, "registrations": 2},
        {"department": "EE", "event_count": 1, "registrations": 0},
    ]
    monthly = result["trends"]["monthly"]
    assert (sum(m["count"] for m in monthly), sum(m["approved"] for m in monthly)) == (4, 3)
    assert result["trends"]["top_event_types"] == [
        {"event_type": "HACKATHON", "count": 1},
        {"event_type": "SEMINAR", "count": 1},
        {"event_type": "WORKSHOP", "count": 1},
    ]
    assert result["distributions"]["event_status"] == [
        {"status": "APPROVED", "count": 3},
        {"status": "PENDING_REVIEW", "count": 1},
    ]

    week = harness.admin.comprehensive_analytics(db, CS_SCOPE, AnalyticsRange.SEVEN_DAYS, now=now + timedelta(seconds=1))
    assert (week["event_metrics"]["previous_period"], week["summary"]["event_growth"]) == (0, 100.0)

def test_xlsx_export_has_styled_header_and_one_row_per_event(harness, db):
    _seed(harness, db)

    filename, media_type, content = ExportService().export_events(db, CS_SCOPE, AdminEventFilters(), ExportFormat.XLSX)

    assert filename == "events-export.xlsx"
    assert media_type.startswith("application/vnd.openxmlformats")
    sheet = load_workbook(io.BytesIO(content)).active
    assert sheet.title == "Events"
    assert [cell.value for cell in sheet[1]] == EXPORT_HEADERS
    assert sheet[1][0].font.bold is True
    assert sheet.max_row == 4
    titles = {row[0] for row in sheet.iter_rows(min_row=2, values_only=True)}
    assert titles == {"Rust basics", "AI ethics", "Spring hack"}


def test_csv_and_json_exports(harness, db):
    _seed(harness, db)
    service = ExportService()

    _, _, csv_bytes = service.export_events(db, CS_SCOPE, AdminEventFilters(type="HACKATHON"), ExportFormat.CSV)
    text = csv_bytes.decode("utf-8")
    assert text.startswith("\ufeff")
    rows = list(csv.DictReader(io.StringIO(text.lstrip("\ufeff"))))
    assert len(rows) == 1
    assert rows[0]["eventName"] == "Spring hack"
    assert rows[0]["meetingUrl"] == "N/A"
    assert rows[0]["capacity"] == "100"

    _, media_type, json_bytes = service.export_events(db, CS_SCOPE, AdminEventFilters(), ExportFormat.JSON)
    document = json.loads(json_bytes)
    assert media_type == "application/json"
    assert document["total_records"] == 3


def test_audit_log_captures_request_metadata(harness, db):
    pending, _, _ = _seed(harness, db)
    meta = RequestMeta(ip_address="10.0.0.7", user_agent="pytest")

    harness.moderation.moderate(
        db, DEPT_ADMIN, CS_SCOPE, pending.id, ModerateRequest(action="REJECT", rejection_reason="Too vague"), meta
    )

    logs = harness.admin.audit_logs(db, CS_SCOPE, action="EVENT_REJECT")
    assert len(logs) == 1
    assert logs[0]["admin_id"] == DEPT_ADMIN.user_id
    assert logs[0]["ip_address"] == "10.0.0.7"
    assert logs[0]["reason"] == "Too vague"
    assert logs[0]["old_values"] == {"moderation_status": "PENDING_REVIEW"}
    assert logs[0]["new_values"]["moderation_status"] == "REJECTED"


def test_audit_failure_is_swallowed(harness, db, monkeypatch):
    def failing_commit():
        raise OperationalError("INSERT INTO admin_audit_logs", {}, Exception("disk full"))

    monkeypatch.setattr(db, "commit", failing_commit)

    assert harness.audit.record(
        db, actor=DEPT_ADMIN, action="EVENT_APPROVE", entity_type="EVENT", entity_id="e-1"
    ) is None


def test_request_meta_prefers_forwarded_address():
    class FakeRequest:
        headers = {"x-forwarded-for": "203.0.113.9, 10.0.0.1", "user-agent": "curl/8"}
        client = None

    meta = RequestMeta.from_request(FakeRequest())

    assert meta.ip_address == "203.0.113.9"
    assert meta.user_agent == "curl/8"
