"""
Tests for health probes, metrics and the shared error envelope.
"""

from conftest import auth_headers, register_user, send_message


class TestHealth:

    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_not_ready_without_schema(self, client):
        from messagely.storage import Base, engine

        Base.metadata.drop_all(bind=engine)

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"


class TestMetrics:

    def test_metrics_exposed(self, client):
        token = register_user(client, "alice")
        register_user(client, "bob")
        message = send_message(client, token, "bob", "hi")
        client.get(f"/messages/{message['id']}", headers=auth_headers(token))

        response = client.get("/metrics")

        assert response.status_code == 200
        text = response.text
        assert "http_requests_total" in text
        assert 'auth_events_total{event="register",result="success"}' in text
        assert 'message_events_total{event="created"}' in text
        # route template, not the concrete id
        assert 'path="/messages/{message_id}"' in text


class TestEnvelope:

    def test_request_id_header(self, client):
        response = client.get("/health/live")

        assert "x-request-id" in response.headers

    def test_unknown_route(self, client):
        response = client.get("/nope")

        assert response.status_code == 404
        assert response.json() == {"error": {"message": "Not Found", "status": 404}}

    def test_wrong_method(self, client):
        response = client.get("/messages")

        assert response.status_code == 405
        assert response.json()["error"]["status"] == 405

    def test_non_integer_message_id(self, client):
        token = register_user(client, "alice")

        response = client.get("/messages/abc", headers=auth_headers(token))

        assert response.status_code == 400
        assert response.json()["error"]["status"] == 400

    def test_default_error_message(self):
        from messagely.errors import NotFoundError, UnauthorizedError

        assert NotFoundError().message == "Not Found"
        assert UnauthorizedError(None).status_code == 401
        assert NotFoundError("gone").message == "gone"
