"""Shared test fixtures and configuration for backend tests."""
import time

import pytest
from fastapi.testclient import TestClient

from app.audit import AuditLogService
from app.auth.tokens import create_access_token
from app.auth.users import UserService
from app.config import AppSettings, AuthSettings, JWTSecrets, Secrets, reset_config, set_config
from app.main import app
from app.notifications.service import NotificationService
from app.realtime.hub import hub
from app.tasks.service import TaskService

TEST_SECRET = "test-secret-key"
TEST_PASSWORD = "correct-horse-battery"

# Accounts that exist in every test, so they can be assigned tasks
SEEDED_USERS = ("alice", "bob", "carol")

_SERVICES = (TaskService, NotificationService, AuditLogService, UserService)


@pytest.fixture(autouse=True)
def app_state():
    """Fresh config, realtime hub and in-memory DuckDB services for each test."""
    set_config(AppSettings(
        auth=AuthSettings(argon2_time_cost=1, argon2_memory_cost=1024),
        secrets=Secrets(jwt=JWTSecrets(secret_key=TEST_SECRET)),
    ))
    hub.reset()
    for service in _SERVICES:
        service.reset_instance()
        service.get_instance(":memory:")
    for user_id in SEEDED_USERS:
        UserService.get_instance().create(
            email=f"{user_id}@example.com",
            name=user_id.title(),
            password=TEST_PASSWORD,
            user_id=user_id,
        )
    yield
    hub.reset()
    for service in _SERVICES:
        service.reset_instance()
    reset_config()


@pytest.fixture
def api_client():
    """Provide a TestClient for the main FastAPI app."""
    return TestClient(app)


def make_token(user_id: str, email: str = "") -> str:
    return create_access_token(user_id, email or f"{user_id}@example.com")


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


def ws_url(user_id: str) -> str:
    return f"/ws?token={make_token(user_id)}"


def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` until it is truthy; control messages have no ack."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())
