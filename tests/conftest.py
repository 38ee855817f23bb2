import os

# Settings are read at import time; keep the test run off PostgreSQL and the log directory local.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_INIT_MODE", "create_all")
os.environ.setdefault("RUN_EMBEDDED_ESCALATION_WORKER", "false")

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.clients.identity import DirectoryUser
from app.core.database import Base
from app.core.security import Principal
from app.schemas.event import EventCreate
from app.services.admin_event_service import AdminEventService
from app.services.audit_service import AuditService
from app.services.eligibility_service import Eligibility
from app.services.event_service import EventService
from app.services.moderation_service import ModerationService
from app.services.notification_service import NotificationService, SessionRegistry
from app.services.registration_service import RegistrationService
from app.services.scope_resolver import Scope

COLLEGE = "college-1"

STUDENT = Principal(user_id="student-1", roles=("STUDENT",), display_name="Sam Student", token="t-student")
OTHER_STUDENT = Principal(user_id="student-2", roles=("STUDENT",), display_name="Ola Student", token="t-student-2")
FACULTY = Principal(user_id="faculty-1", roles=("FACULTY",), display_name="Fay Faculty", token="t-faculty")
DEPT_ADMIN = Principal(user_id="dept-admin-1", roles=("DEPT_ADMIN",), display_name="Dee Admin", token="t-dept")
HEAD_ADMIN = Principal(user_id="head-admin-1", roles=("HEAD_ADMIN",), display_name="Hal Head", token="t-head")

CS_SCOPE = Scope(college_id=COLLEGE, department="CS")
EE_SCOPE = Scope(college_id=COLLEGE, department="EE")
OTHER_COLLEGE_SCOPE = Scope(college_id="college-2", department="CS")


def make_session_factory(url: str = "sqlite:///:memory:"):
    connect_args = {"check_same_thread": False}
    if url != "sqlite:///:memory:":
        connect_args["timeout"] = 30
    engine = create_engine(url, connect_args=connect_args)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeDirectory:
    """Identity directory backed by a dict of DirectoryUser records."""

    def __init__(self, users: Optional[List[DirectoryUser]] = None):
        self.users: Dict[str, DirectoryUser] = {u.id: u for u in users or []}
        self.calls: List[str] = []

    def get_user(self, user_id, authorization=None):
        self.calls.append(f"get_user:{user_id}")
        return self.users.get(user_id)

    def _with_role(self, role, college_id, department=None):
        return [
            u for u in self.users.values()
            if role in u.roles and u.college_id == college_id and (department is None or u.department == department)
        ]

    def find_department_admin(self, college_id, department, authorization=None):
        self.calls.append(f"find_department_admin:{department}")
        admins = self._with_role("DEPT_ADMIN", college_id, department)
        return admins[0] if admins else None

    def find_head_admin(self, college_id, authorization=None):
        self.calls.append("find_head_admin")
        admins = self._with_role("HEAD_ADMIN", college_id)
        return admins[0] if admins else None


class FakeEligibility:
    def __init__(self, can_create: bool = True, missing: Optional[List[str]] = None):
        self.result = Eligibility(can_create=can_create, missing=list(missing or []))

    def check(self, principal):
        if not principal.is_student:
            return Eligibility(can_create=True)
        return self.result


class FakeProfiles:
    def __init__(self, profiles: Optional[Dict[str, dict]] = None):
        self.profiles = profiles or {}

    def get_profile(self, authorization, user_id):
        return self.profiles.get(user_id)


@dataclass
class Inbox:
    """Collects notifications delivered to one user's sessions."""

    messages: List[dict] = field(default_factory=list)

    def kinds(self) -> List[str]:
        return [m["type"] for m in self.messages]


class Harness:
    """Services wired to fakes and an in-memory database."""

    def __init__(self, session_factory, directory: FakeDirectory, eligibility: FakeEligibility):
        self.session_factory = session_factory
        self.directory = directory
        self.eligibility = eligibility
        self.profiles = FakeProfiles()
        self.registry = SessionRegistry()
        self.notifier = NotificationService(self.registry)
        self.audit = AuditService()
        self.events = EventService(eligibility, directory, self.profiles, self.notifier, self.audit)
        self.registrations = RegistrationService(self.notifier)
        self.moderation = ModerationService(directory, self.notifier, self.audit, default_delay_hours=72)
        self.admin = AdminEventService(self.moderation)
        self._inboxes: Dict[str, Inbox] = {}

    def inbox(self, user_id: str) -> Inbox:
        if user_id not in self._inboxes:
            box = Inbox()
            self.registry.register(user_id, (), box.messages.append)
            self._inboxes[user_id] = box
        return self._inboxes[user_id]


def event_payload(**overrides) -> EventCreate:
    data = {
        "title": "Intro to Rust",
        "description": "Hands-on systems workshop",
        "start_at": datetime.utcnow() + timedelta(days=7),
        "type": "WORKSHOP",
        "mode": "ONLINE",
        "meeting_url": "https://meet.example.com/rust",
    }
    data.update(overrides)
    return EventCreate(**data)


def default_directory() -> FakeDirectory:
    return FakeDirectory([
        DirectoryUser(id="dept-admin-1", display_name="Dee Admin", roles=["DEPT_ADMIN"], college_id=COLLEGE, department="CS"),
        DirectoryUser(id="head-admin-1", display_name="Hal Head", roles=["HEAD_ADMIN"], college_id=COLLEGE, department="ADMIN"),
        DirectoryUser(id="backup-1", display_name="Bea Backup", roles=["DEPT_ADMIN"], college_id=COLLEGE, department="EE"),
    ])


@pytest.fixture
def session_factory():
    return make_session_factory()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def harness(session_factory):
    return Harness(session_factory, default_directory(), FakeEligibility())
