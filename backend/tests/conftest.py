import os

# Must be set before the application modules read their settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["DRIVE_ACCESS_CHECK_ENABLED"] = "false"
os.environ["BREVO_API_KEY"] = "test-brevo-key"
os.environ["EMAIL_PROVIDER"] = "brevo"
os.environ["ADMIN_CLEANUP_TOKEN"] = "cleanup-secret"
os.environ["EMAIL_BATCH_PAUSE_SECONDS"] = "0"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from competition_portal.core.database import Base, get_db
from competition_portal.core.security import create_access_token, get_password_hash
from competition_portal.main import app
from competition_portal.models import Competition, User
from competition_portal.services.email_service import EmailService
import competition_portal.core.scheduler as scheduler_module

DEFAULT_PASSWORD = "Secret123"

# One in-memory database shared by the test session and every request session
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db, monkeypatch):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    # Scheduler jobs open their own sessions
    monkeypatch.setattr(scheduler_module, "SessionLocal", TestingSessionLocal)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    """Capture outgoing email instead of calling the provider API."""
    outbox = []

    def fake_deliver(self, message):
        outbox.append(message)

    monkeypatch.setattr(EmailService, "_deliver", fake_deliver)
    return outbox


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(email=None, password=DEFAULT_PASSWORD, verified=True, active=True, admin=False, name=None):
        counter["n"] += 1
        user = User(
            name=name or f"User {counter['n']}",
            email=email or f"user{counter['n']}@example.com",
            phone="+911234567890",
            institution="Test Institute",
            hashed_password=get_password_hash(password),
            is_email_verified=verified,
            is_active=active,
            is_admin=admin,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def participant(make_user):
    return make_user(email="participant@example.com", name="Participant")


@pytest.fixture
def admin_user(make_user):
    return make_user(email="admin@example.com", name="Judge Admin", admin=True)


@pytest.fixture
def auth_headers():
    def _headers(user):
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def weekly_competition(db):
    competition = Competition(slug="ai-art", title="AI Art Challenge", is_weekly=True)
    db.add(competition)
    db.commit()
    db.refresh(competition)
    return competition


@pytest.fixture
def open_competition(db):
    competition = Competition(slug="grand-finale", title="Grand Finale", is_weekly=False)
    db.add(competition)
    db.commit()
    db.refresh(competition)
    return competition
