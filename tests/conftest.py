"""
Shared fixtures: every test gets its own SQLite file under tmp_path.
"""
import pytest
from fastapi.testclient import TestClient

from config import settings
from db_setup import get_db_connection, init_db


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Point the store at a fresh, initialised database."""
    monkeypatch.setattr(settings, "database_path", str(tmp_path / "contacts.db"))
    init_db()
    return settings.database_path


@pytest.fixture
def client(db):
    from main import app
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def seed(db):
    """Insert a raw Contact row with a controlled createdAt; returns its id."""
    def _seed(email=None, phone=None, linked_id=None, precedence="primary",
              created_at="2023-04-01T00:00:00.000000+00:00", deleted_at=None):
        conn = get_db_connection()
        try:
            cursor = conn.execute("""
                INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt, deletedAt)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (phone, email, linked_id, precedence, created_at, created_at, deleted_at))
            return cursor.lastrowid
        finally:
            conn.close()
    return _seed


@pytest.fixture
def rows(db):
    """Return all Contact rows as dicts keyed by id."""
    def _rows():
        conn = get_db_connection()
        try:
            return {r["id"]: dict(r) for r in conn.execute("SELECT * FROM Contact")}
        finally:
            conn.close()
    return _rows
