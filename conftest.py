"""
Pytest configuration and shared fixtures.

Environment defaults are set before any messagely import so the settings
object is built with the test configuration. Values already present in the
environment (e.g. from .env.test) take precedence.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_messagely.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("BCRYPT_WORK_FACTOR", "4")

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from messagely.config import get_settings
get_settings.cache_clear()

from messagely import models  # noqa: F401  registers tables with Base.metadata
from messagely.main import app
from messagely.storage import Base, SessionLocal, engine


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(client):
    """Database session against the same fresh schema as the client."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def register_user(client, username: str, password: str = "password", **profile) -> str:
    """Register a user through the API and return its token."""
    body = {
        "username": username,
        "password": password,
        "first_name": profile.get("first_name", f"{username}-first"),
        "last_name": profile.get("last_name", f"{username}-last"),
        "phone": profile.get("phone", "1234567890"),
    }
    response = client.post("/register", json=body)
    assert response.status_code == 200, response.text
    return response.json()["token"]


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def send_message(client, token: str, to_username: str, body: str) -> dict:
    """Send a message through the API and return the created message."""
    response = client.post(
        "/messages",
        json={"to_username": to_username, "body": body},
        headers=auth_headers(token),
    )
    assert response.status_code == 200, response.text
    return response.json()["message"]


@pytest.fixture
def users(client):
    """Three registered users; returns {username: token}."""
    return {name: register_user(client, name) for name in ("test1", "test2", "test3")}
