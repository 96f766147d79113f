import os
import tempfile
import uuid
from pathlib import Path

import pytest

# Point the app at a throwaway database before `studytogether` is imported anywhere.
_DB_DIR = Path(tempfile.mkdtemp(prefix="studytogether-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR / 'test.db'}"
os.environ.setdefault("ENV", "dev")


@pytest.fixture(scope="session", autouse=True)
def _tables():
    from studytogether.database import create_db_and_tables
    create_db_and_tables()


@pytest.fixture(scope="session")
def client():
    from fastapi.testclient import TestClient
    from studytogether.main import app
    return TestClient(app)


@pytest.fixture
def make_user(client):
    """Register a uniquely named user and return `(username, headers)`."""
    def _make(password="pass123", **extra):
        username = f"user_{uuid.uuid4().hex[:10]}"
        r = client.post("/auth/register", json={"username": username, "password": password, **extra})
        assert r.status_code == 201, r.text
        token = r.json()["access_token"]
        return username, {"Authorization": f"Bearer {token}"}
    return _make


@pytest.fixture
def couple(client, make_user):
    """Two registered users paired through an invite code."""
    name_a, headers_a = make_user()
    name_b, headers_b = make_user()
    code = client.post("/couples/invite", headers=headers_a).json()["couple"]["invite_code"]
    r = client.post("/couples/join", json={"invite_code": code}, headers=headers_b)
    assert r.status_code == 200, r.text
    return headers_a, headers_b
