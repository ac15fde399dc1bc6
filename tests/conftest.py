"""
Shared fixtures and configuration for all tests.
"""
import os
import tempfile
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from cryptography.fernet import Fernet

# Override environment settings for testing; must happen before app imports
_TEST_DB_DIR = tempfile.mkdtemp(prefix="calendar-sync-tests-")
os.environ["ENVIRONMENT"] = "testing"
os.environ["SECRET_KEY"] = "testsecretkey"
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["BACKEND_CORS_ORIGINS"] = '["http://localhost:3000"]'
os.environ["GOOGLE_CLIENT_ID"] = "test-client-id"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-client-secret"
os.environ["WEBHOOK_CALLBACK_URL"] = "https://calendar-sync.test/api/v1/webhooks/google-calendar"
os.environ["SQLALCHEMY_DATABASE_URI"] = os.getenv(
    "TEST_DATABASE_URL", f"sqlite:///{_TEST_DB_DIR}/test.db"
)

from fastapi.testclient import TestClient

from app.main import app
from app.api.deps import get_current_user
from app.db.base import Base, SessionLocal, engine
from app.db.session import get_db
from app.integrations.google.calendar import CalendarGateway
from app.models.task import Task
from app.models.webhook_channel import WebhookChannel
from app.repositories.integration_repository import IntegrationRepository
from app.services import set_task_locks, set_token_manager
from app.services.calendar_sync_service import CalendarSyncService
from app.utils.clock import utcnow
from app.utils.locks import KeyedLock

TEST_USER_ID = "user-123"


# Test fixtures for the database
@pytest.fixture
def db():
    """
    Create a fresh database for each test.
    """
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

    # Drop tables after the test
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_calendar_state():
    """Process-wide calendar state must not leak between tests."""
    yield
    set_token_manager(None)
    set_task_locks(None)


@pytest.fixture
def user_id():
    return TEST_USER_ID


@pytest.fixture
def integration(db, user_id):
    """A connected integration with a token valid for another hour."""
    return IntegrationRepository(db).upsert_tokens(
        user_id,
        access_token="access-token",
        refresh_token="refresh-token",
        token_expiry=utcnow() + timedelta(hours=1),
        scopes="https://www.googleapis.com/auth/calendar",
    )


@pytest.fixture
def make_task(db, user_id):
    """Factory for persisted tasks."""

    def _make_task(**fields):
        values = {"text": "Test task", "user_id": user_id}
        values.update(fields)
        task = Task(**values)
        db.add(task)
        db.commit()
        db.refresh(task)
        return task

    return _make_task


@pytest.fixture
def channel(db, integration):
    """A push channel on the user's primary calendar."""
    channel = WebhookChannel(
        channel_id="chan-1",
        resource_id="res-calendar-1",
        calendar_id="primary",
        expiration=utcnow() + timedelta(days=7),
        integration_id=integration.id,
    )
    db.add(channel)
    db.commit()
    db.refresh(channel)
    return channel


@pytest.fixture
def mock_gateway():
    """Calendar gateway double; every remote call succeeds by default."""
    gateway = MagicMock(spec=CalendarGateway)
    gateway.create_event.return_value = {"id": "evt-1", "etag": '"etag-1"'}
    gateway.update_event.return_value = {"id": "evt-1", "etag": '"etag-2"'}
    gateway.delete_event.return_value = True
    gateway.list_events.return_value = []
    gateway.list_calendars.return_value = []
    return gateway


@pytest.fixture
def sync_service(db, mock_gateway):
    return CalendarSyncService(db, gateway=mock_gateway, task_locks=KeyedLock())


# Test client
@pytest.fixture
def client():
    """Return a TestClient for making requests to the app."""
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides = {}


@pytest.fixture
def authorized_client(client, db, user_id):
    """Return a TestClient that skips the authentication and uses the test db."""
    app.dependency_overrides[get_current_user] = lambda: user_id

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    yield client

    # Reset overrides after test
    app.dependency_overrides = {}
