"""
Tests for the HTTP endpoints.
"""
from fastapi.testclient import TestClient

from config import settings


class TestIdentifyEndpoint:
    def test_creates_primary(self, client):
        response = client.post("/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"})

        assert response.status_code == 200
        contact = response.json()["contact"]
        assert contact["emails"] == ["lorraine@hillvalley.edu"]
        assert contact["phoneNumbers"] == ["123456"]
        assert contact["secondaryContactIds"] == []
        assert isinstance(contact["primaryContactId"], int)

    def test_new_email_adds_secondary(self, client):
        first = client.post("/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"}).json()
        second = client.post("/identify", json={"email": "mcfly@hillvalley.edu", "phoneNumber": "123456"}).json()

        assert second["contact"]["primaryContactId"] == first["contact"]["primaryContactId"]
        assert second["contact"]["emails"] == ["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"]
        assert second["contact"]["phoneNumbers"] == ["123456"]
        assert len(second["contact"]["secondaryContactIds"]) == 1

    def test_numeric_phone_number_accepted(self, client):
        response = client.post("/identify", json={"phoneNumber": 123456})

        assert response.status_code == 200
        assert response.json()["contact"]["phoneNumbers"] == ["123456"]
        assert response.json()["contact"]["emails"] == []

    def test_null_fields_are_ignored(self, client):
        client.post("/identify", json={"email": "a@x.com", "phoneNumber": "111"})
        response = client.post("/identify", json={"email": None, "phoneNumber": "111"})

        assert response.status_code == 200
        assert response.json()["contact"]["emails"] == ["a@x.com"]
        assert response.json()["contact"]["secondaryContactIds"] == []

    def test_missing_identifiers_rejected(self, client):
        response = client.post("/identify", json={})

        assert response.status_code == 400
        assert response.json()["detail"] == "Either email or phoneNumber must be provided"

    def test_blank_identifiers_rejected(self, client):
        response = client.post("/identify", json={"email": "", "phoneNumber": "  "})
        assert response.status_code == 400

    def test_malformed_body_is_400(self, client):
        response = client.post("/identify", json={"email": ["a@x.com"]})

        assert response.status_code == 400
        assert response.json()["error"] == "Validation error"

    def test_store_failure_is_500(self, client, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "database_path", str(tmp_path / "missing" / "contacts.db"))

        response = client.post("/identify", json={"email": "a@x.com"})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}

    def test_corrupt_database_is_json_500(self, db, tmp_path, monkeypatch):
        """A file that is not a SQLite database still yields the JSON error body."""
        import main

        corrupt = tmp_path / "corrupt.db"
        corrupt.write_bytes(b"this is not a sqlite database file" * 64)

        with TestClient(main.app, raise_server_exceptions=False) as test_client:
            monkeypatch.setattr(settings, "database_path", str(corrupt))
            response = test_client.post("/identify", json={"email": "a@x.com"})

        assert response.status_code == 500
        assert response.headers["content-type"].startswith("application/json")
        assert response.json() == {"error": "Internal server error"}

    def test_unexpected_error_is_json_500(self, db, monkeypatch):
        import main

        def boom(email, phone):
            raise RuntimeError("unexpected")

        monkeypatch.setattr(main, "identify_contact", boom)

        with TestClient(main.app, raise_server_exceptions=False) as test_client:
            response = test_client.post("/identify", json={"email": "a@x.com"})

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}


class TestHealthEndpoints:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json() == {"message": "Bitespeed API is up"}

    def test_health(self, client):
        data = client.get("/health").json()

        assert data["status"] == "OK"
        assert data["service"] == "Bitespeed Contact Identifier"
        assert "timestamp" in data
