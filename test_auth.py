"""
Tests for registration, login and bearer tokens.

Tests cover:
- POST /register and POST /login (plus their /auth aliases)
- Duplicate usernames, sequential and concurrent
- Missing fields and oversized passwords
- Authenticator functions: authenticate, verify_token, record_login
"""

import threading

import pytest
from jose import jwt

from conftest import auth_headers, register_user
from messagely import auth
from messagely.config import settings
from messagely.errors import ConflictError, InvalidCredentialsError, InvalidTokenError
from messagely.models import User
from messagely.storage import SessionLocal, find_user, insert_user


REGISTER_BODY = {
    "username": "alice",
    "password": "wonderland",
    "first_name": "Alice",
    "last_name": "Liddell",
    "phone": "5551234",
}


class TestRegister:
    """Test POST /register."""

    def test_register_returns_token(self, client):
        response = client.post("/register", json=REGISTER_BODY)

        assert response.status_code == 200
        token = response.json()["token"]
        assert auth.verify_token(token) == "alice"

    def test_register_stores_hash_not_password(self, client, db):
        client.post("/register", json=REGISTER_BODY)

        user = find_user(db, "alice")
        assert user is not None
        assert user.password != "wonderland"
        assert user.password.startswith("$2")
        assert user.join_at is not None

    def test_register_records_login(self, client, db):
        client.post("/register", json=REGISTER_BODY)

        assert find_user(db, "alice").last_login_at is not None

    def test_register_auth_alias(self, client):
        response = client.post("/auth/register", json=REGISTER_BODY)

        assert response.status_code == 200
        assert "token" in response.json()

    def test_duplicate_username_rejected(self, client, db):
        client.post("/register", json=REGISTER_BODY)
        second = {**REGISTER_BODY, "password": "other", "first_name": "Mallory"}

        response = client.post("/register", json=second)

        assert response.status_code == 400
        assert response.json()["error"]["status"] == 400

        # first user's data unchanged
        user = find_user(db, "alice")
        assert user.first_name == "Alice"
        login = client.post("/login", json={"username": "alice", "password": "wonderland"})
        assert login.status_code == 200

    def test_missing_fields_rejected(self, client):
        response = client.post("/register", json={"username": "alice", "password": "pw"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["status"] == 400
        assert "first_name" in error["message"]

    def test_empty_field_rejected(self, client):
        response = client.post("/register", json={**REGISTER_BODY, "phone": ""})

        assert response.status_code == 400

    def test_no_body_rejected(self, client):
        response = client.post("/register")

        assert response.status_code == 400

    def test_invalid_json_rejected(self, client):
        response = client.post(
            "/register",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"].startswith("Invalid JSON")

    def test_password_over_72_bytes_rejected(self, client):
        response = client.post("/register", json={**REGISTER_BODY, "password": "x" * 73})

        assert response.status_code == 400


class TestLogin:
    """Test POST /login."""

    def test_login_success(self, client):
        register_user(client, "alice", password="wonderland")

        response = client.post("/login", json={"username": "alice", "password": "wonderland"})

        assert response.status_code == 200
        assert auth.verify_token(response.json()["token"]) == "alice"

    def test_login_auth_alias(self, client):
        register_user(client, "alice", password="wonderland")

        response = client.post("/auth/login", json={"username": "alice", "password": "wonderland"})

        assert response.status_code == 200

    def test_login_updates_last_login(self, client, db):
        register_user(client, "alice", password="wonderland")
        before = find_user(db, "alice").last_login_at
        db.expire_all()

        client.post("/login", json={"username": "alice", "password": "wonderland"})

        after = find_user(db, "alice").last_login_at
        assert after is not None
        assert after > before

    def test_wrong_password_and_unknown_user_look_the_same(self, client):
        register_user(client, "alice", password="wonderland")

        wrong_password = client.post("/login", json={"username": "alice", "password": "nope"})
        unknown_user = client.post("/login", json={"username": "nobody", "password": "nope"})

        assert wrong_password.status_code == 401
        assert unknown_user.status_code == 401
        assert wrong_password.json() == unknown_user.json()
        assert wrong_password.json() == {
            "error": {"message": "Invalid username/password", "status": 401}
        }

    def test_login_missing_fields(self, client):
        response = client.post("/login", json={"username": "alice"})

        assert response.status_code == 400


class TestAuthenticator:
    """Test the authenticator functions directly."""

    def test_authenticate_unknown_user_raises(self, client, db):
        with pytest.raises(InvalidCredentialsError):
            auth.authenticate(db, "nobody", "password")

    def test_authenticate_returns_boolean(self, client, db):
        auth.register(db, "alice", "wonderland", "Alice", "Liddell", "5551234")

        assert auth.authenticate(db, "alice", "wonderland") is True
        assert auth.authenticate(db, "alice", "wrong") is False

    def test_register_returns_user_without_login(self, client, db):
        user = auth.register(db, "alice", "wonderland", "Alice", "Liddell", "5551234")

        assert user.username == "alice"
        assert user.last_login_at is None

    def test_register_duplicate_raises_conflict(self, client, db):
        auth.register(db, "alice", "wonderland", "Alice", "Liddell", "5551234")

        with pytest.raises(ConflictError):
            auth.register(db, "alice", "other", "Other", "Person", "5550000")

    def test_insert_conflict_from_constraint(self, client, db):
        """A duplicate that slips past the lookup is caught by the key constraint."""
        auth.register(db, "alice", "wonderland", "Alice", "Liddell", "5551234")
        duplicate = User(
            username="alice",
            password="x",
            first_name="A",
            last_name="B",
            phone="1",
            join_at="2026-01-01T00:00:00.000000Z",
        )

        other_session = SessionLocal()
        try:
            with pytest.raises(ConflictError):
                insert_user(other_session, duplicate)
        finally:
            other_session.close()

        assert find_user(db, "alice").first_name == "Alice"

    def test_concurrent_registration_single_winner(self, client):
        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def attempt(first_name):
            session = SessionLocal()
            try:
                barrier.wait()
                auth.register(session, "racer", "password", first_name, "Last", "1")
                result = "ok"
            except ConflictError:
                result = "conflict"
            finally:
                session.close()
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=(name,)) for name in ("One", "Two")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["conflict", "ok"]

    def test_record_login_vanished_user(self, client, db):
        assert auth.record_login(db, "ghost") is False

    def test_record_login_existing_user(self, client, db):
        auth.register(db, "alice", "wonderland", "Alice", "Liddell", "5551234")

        assert auth.record_login(db, "alice") is True
        db.expire_all()
        assert find_user(db, "alice").last_login_at is not None


class TestTokens:
    """Test token issuance and verification."""

    def test_roundtrip(self):
        assert auth.verify_token(auth.issue_token("alice")) == "alice"

    def test_tampered_signature_rejected(self):
        forged = jwt.encode({"username": "alice"}, "not-the-secret", algorithm="HS256")

        with pytest.raises(InvalidTokenError):
            auth.verify_token(forged)

    def test_malformed_token_rejected(self):
        with pytest.raises(InvalidTokenError):
            auth.verify_token("not-a-token")

    def test_token_without_username_rejected(self):
        token = jwt.encode({"sub": "alice"}, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

        with pytest.raises(InvalidTokenError):
            auth.verify_token(token)

    def test_protected_route_rejects_forged_token(self, client):
        forged = jwt.encode({"username": "alice"}, "not-the-secret", algorithm="HS256")

        response = client.get("/users", headers=auth_headers(forged))

        assert response.status_code == 401
        assert response.json()["error"]["status"] == 401

    def test_malformed_authorization_header(self, client):
        response = client.get("/users", headers={"Authorization": "Token abc"})

        assert response.status_code == 401

    def test_token_in_query_param(self, client):
        token = register_user(client, "alice")

        response = client.get("/users", params={"_token": token})

        assert response.status_code == 200

    def test_token_in_body(self, client):
        token = register_user(client, "alice")

        response = client.request("GET", "/users", json={"_token": token})

        assert response.status_code == 200

    def test_header_token_ignores_non_object_body(self, client):
        token = register_user(client, "alice")

        response = client.request("GET", "/users", content="[]", headers={
            **auth_headers(token),
            "Content-Type": "application/json",
        })

        assert response.status_code == 200

    def test_non_object_body_without_header(self, client):
        register_user(client, "alice")

        response = client.request("GET", "/users", content="[]", headers={
            "Content-Type": "application/json",
        })

        assert response.status_code == 401
