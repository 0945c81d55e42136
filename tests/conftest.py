"""Pytest fixtures for helpdesk tests.

Uses a file-backed SQLite database and FastAPI TestClient. Overrides the
`get_db` dependency so tests are isolated from the development database.
"""

import os
import uuid
from datetime import datetime, timezone
from typing import Optional

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///./test_helpdesk.db")
# Keep the lifespan's init_db() away from the development database
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import helpdesk.database as database
from helpdesk import storage
from helpdesk.auth import get_password_hash
from helpdesk.cache import cache
from helpdesk.main import app
from helpdesk.models import Base, TicketModel, UserModel

DEFAULT_PASSWORD = "Secret123!"

# Create test engine and session factory
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and drop them after to ensure isolation."""
    Base.metadata.create_all(bind=engine)
    cache.clear()
    try:
        yield
    finally:
        Base.metadata.drop_all(bind=engine)
        cache.clear()


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    """Store attachments under the test's temporary directory."""
    path = tmp_path / "uploads"
    monkeypatch.setattr(storage, "UPLOAD_DIR", str(path))
    return path


@pytest.fixture()
def db_session():
    """Provide a SQLAlchemy session for direct DB access in tests."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def session_factory():
    """Session factory for tests that need several independent sessions."""
    return TestingSessionLocal


def _override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[database.get_db] = _override_get_db

# Many tests log in repeatedly; the rate limit test turns the limiter back on
app.state.limiter.enabled = False


@pytest.fixture()
def client():
    """FastAPI test client using the app with overridden dependencies."""
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def create_user(db_session):
    def _create_user(role: str = "admin", username: Optional[str] = None, email: Optional[str] = None, password: str = DEFAULT_PASSWORD, **kwargs):
        username = username or (f"{role}_" + uuid.uuid4().hex[:8])
        email = email or f"{username}@example.com"
        user = UserModel(
            username=username,
            email=email,
            first_name=kwargs.get("first_name", username.title()),
            last_name=kwargs.get("last_name", "Tester"),
            hashed_password=get_password_hash(password),
            role=role,
            is_active=kwargs.get("is_active", True),
            created_at=datetime.now(timezone.utc),
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture()
def auth_headers(client, create_user):
    """Return a helper that creates a user, logs in and returns (headers, user)."""
    def _auth_headers(role: str = "admin", username: Optional[str] = None, email: Optional[str] = None, password: str = DEFAULT_PASSWORD, **kwargs):
        user = create_user(role=role, username=username, email=email, password=password, **kwargs)
        resp = client.post("/api/auth/login", json={"username_or_email": user.username or user.email, "password": password})
        assert resp.status_code == 200, resp.text
        token = resp.json()["access_token"]
        return {"Authorization": f"Bearer {token}"}, user

    return _auth_headers


@pytest.fixture()
def create_ticket(client):
    """Open a ticket through the API and return its JSON body."""
    def _create_ticket(headers, title: str = "Printer on floor 2 is jammed", description: str = "The printer shows a paper jam error all day.", **extra):
        r = client.post("/api/tickets", json={"title": title, "description": description, **extra}, headers=headers)
        assert r.status_code == 201, r.text
        return r.json()

    return _create_ticket


@pytest.fixture()
def load_ticket(db_session):
    def _load(ticket_id: str) -> TicketModel:
        db_session.expire_all()
        return db_session.get(TicketModel, ticket_id)

    return _load
