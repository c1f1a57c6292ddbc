import os

import pytest
from fastapi.testclient import TestClient

# must be set before main is imported
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("RATE_LIMIT_REQUESTS", "100000")

from config import get_settings
from contact_store import ContactStore
from db_setup import get_db_connection, init_db


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "contacts.db"
    monkeypatch.setenv("DB_NAME", str(path))
    get_settings.cache_clear()
    init_db()
    yield str(path)
    get_settings.cache_clear()


@pytest.fixture
def store(db_path):
    conn = get_db_connection()
    yield ContactStore(conn)
    conn.close()


@pytest.fixture
def client(db_path):
    from main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def all_contacts(store):
    """Raw rows of the Contact table, oldest first."""
    def fetch():
        rows = store.conn.execute("SELECT * FROM Contact ORDER BY id").fetchall()
        return [dict(row) for row in rows]
    return fetch
