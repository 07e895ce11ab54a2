# tests/conftest.py
import os
import tempfile
from pathlib import Path

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

# Settings are read at import time, so the environment must be in place first
TEST_DB_FILE = Path(tempfile.gettempdir()) / f"helpdesk_test_{os.getpid()}.db"
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_FILE}"
os.environ.setdefault("SUPABASE_URL", "https://project.supabase.co")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-secret")
os.environ["CRISIS_KEYWORDS"] = ""
os.environ["NOTIFICATION_WEBHOOK_URL"] = ""

from helpdesk.core.auth import Principal  # noqa: E402
from helpdesk.core.config import settings  # noqa: E402
from helpdesk.core.database import Base, SessionLocal, engine  # noqa: E402
from helpdesk.models.audit_log import AuditLog  # noqa: E402,F401
from helpdesk.models.category import TicketCategory  # noqa: E402
from helpdesk.models.ticket import Ticket  # noqa: E402,F401
from helpdesk.models.user import User  # noqa: E402
from helpdesk.services.crisis import CrisisDetector  # noqa: E402
from helpdesk.services.notifications import DispatchResult  # noqa: E402
from helpdesk.services.storage import AttachmentStoreGateway, FilesystemTier  # noqa: E402
from helpdesk.services.tickets import IncomingFile, TicketService  # noqa: E402

USERS = [
    ("stu-1", "student", "active"),
    ("stu-2", "student", "active"),
    ("couns-a", "counselor", "active"),
    ("couns-b", "counselor", "active"),
    ("couns-z", "counselor", "inactive"),
    ("adv-1", "advisor", "active"),
    ("admin-1", "admin", "active"),
]

CATEGORIES = [
    # slug, eligible roles, crisis detection, sla hours, auto assign
    ("general", ["counselor", "advisor"], False, 48, True),
    ("crisis", ["counselor"], True, 2, True),
    ("mental-health", ["counselor"], True, 24, True),
    ("academic", ["advisor"], False, 72, True),
    ("walk-in", ["counselor"], False, None, False),
]


class RecordingDispatcher:
    def __init__(self):
        self.intents = []

    def dispatch(self, intent):
        self.intents.append(intent)
        return DispatchResult(intent=intent, delivered=True)

    def kinds(self, recipient_id=None):
        return [i.kind for i in self.intents if recipient_id is None or i.recipient_id == recipient_id]

    def clear(self):
        self.intents = []


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def users(db):
    rows = {}
    for user_id, role, status in USERS:
        user = User(id=user_id, email=f"{user_id}@campus.edu", name=user_id.title(), role=role, status=status)
        db.add(user)
        rows[user_id] = user
    db.commit()
    return rows


@pytest.fixture
def categories(db):
    rows = {}
    for index, (slug, roles, crisis, sla, auto) in enumerate(CATEGORIES):
        category = TicketCategory(
            name=slug.replace("-", " ").title(),
            slug=slug,
            eligible_roles=roles,
            crisis_detection_enabled=crisis,
            sla_response_hours=sla,
            auto_assign=auto,
            sort_order=index,
        )
        db.add(category)
        rows[slug] = category
    db.commit()
    return rows


@pytest.fixture
def principal(db, users):
    def build(user_id):
        return Principal.from_user(db.get(User, user_id))

    return build


@pytest.fixture
def tiers(tmp_path):
    return [
        FilesystemTier("public", tmp_path / "public"),
        FilesystemTier("private", tmp_path / "private"),
        FilesystemTier("local", tmp_path / "local"),
    ]


@pytest.fixture
def gateway(tiers):
    return AttachmentStoreGateway(tiers)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def service(db, users, categories, gateway, dispatcher):
    return TicketService(db=db, gateway=gateway, dispatcher=dispatcher, detector=CrisisDetector(), cfg=settings)


@pytest.fixture
def pdf_file():
    return IncomingFile(filename="transcript.pdf", content_type="application/pdf", data=b"%PDF-1.4 transcript")


@pytest.fixture
def app(db, service):
    from helpdesk.api.deps import get_current_principal, get_db, get_ticket_service
    from helpdesk.main import app

    def override_db():
        yield db

    def override_principal(request: Request) -> Principal:
        user = db.get(User, request.headers.get("X-Test-User", ""))
        assert user is not None, "tests must send X-Test-User"
        return Principal.from_user(user)

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_current_principal] = override_principal
    app.dependency_overrides[get_ticket_service] = lambda: service
    try:
        yield app
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def pytest_sessionfinish(session, exitstatus):
    engine.dispose()
    if TEST_DB_FILE.exists():
        TEST_DB_FILE.unlink()
