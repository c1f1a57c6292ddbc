"""
End-to-end tests for the HTTP surface: /identify, /health and error mapping.
"""

import sqlite3

import pytest
from fastapi.testclient import TestClient

from contact_store import ContactStore
from main import app, get_contact_store


def identify(client, **payload):
    return client.post("/identify", json=payload)


# =============================================================================
# /identify flow
# =============================================================================


def test_creates_new_primary_contact(client):
    res = identify(client, email="lorraine@hillvalley.edu", phoneNumber="123456")

    assert res.status_code == 200
    contact = res.json()["contact"]
    assert isinstance(contact["primaryContactId"], int)
    assert contact["emails"] == ["lorraine@hillvalley.edu"]
    assert contact["phoneNumbers"] == ["123456"]
    assert contact["secondaryContactIds"] == []


def test_creates_secondary_for_existing_primary(client):
    identify(client, email="george@hillvalley.edu", phoneNumber="919191")

    res = identify(client, email="biffsucks@hillvalley.edu", phoneNumber="919191")

    assert res.status_code == 200
    contact = res.json()["contact"]
    assert len(contact["secondaryContactIds"]) == 1
    assert contact["emails"] == ["george@hillvalley.edu", "biffsucks@hillvalley.edu"]


def test_primary_to_secondary_conversion(client):
    george = identify(client, email="george@hillvalley.edu", phoneNumber="919191").json()["contact"]
    biff = identify(client, email="biffsucks@hillvalley.edu", phoneNumber="717171").json()["contact"]

    res = identify(client, email="george@hillvalley.edu", phoneNumber="717171")

    assert res.status_code == 200
    contact = res.json()["contact"]
    assert contact["primaryContactId"] == george["primaryContactId"]
    assert contact["secondaryContactIds"] == [biff["primaryContactId"]]
    assert contact["emails"] == ["george@hillvalley.edu", "biffsucks@hillvalley.edu"]
    assert contact["phoneNumbers"] == ["919191", "717171"]


def test_numeric_phone_number_is_accepted(client):
    first = identify(client, email="numeric@test.com", phoneNumber=333333).json()["contact"]
    second = identify(client, email="numeric@test.com", phoneNumber="333333").json()["contact"]

    assert first["phoneNumbers"] == ["333333"]
    assert second["primaryContactId"] == first["primaryContactId"]
    assert second["secondaryContactIds"] == []


def test_single_identifier_requests(client):
    res1 = identify(client, email="only-email@test.com")
    assert res1.status_code == 200
    assert res1.json()["contact"]["emails"] == ["only-email@test.com"]
    assert res1.json()["contact"]["phoneNumbers"] == []

    res2 = identify(client, phoneNumber="333333")
    assert res2.status_code == 200
    assert res2.json()["contact"]["phoneNumbers"] == ["333333"]
    assert res2.json()["contact"]["emails"] == []


def test_international_phone_is_normalized(client):
    res = identify(client, email="international@test.com", phoneNumber="+44 20 7123 4567")

    assert res.status_code == 200
    assert res.json()["contact"]["phoneNumbers"] == ["442071234567"]


def test_different_phone_formats_link(client):
    identify(client, email="format@test.com", phoneNumber="+1 (987) 654-3210")

    res = identify(client, phoneNumber="19876543210")

    assert res.status_code == 200
    contact = res.json()["contact"]
    assert contact["phoneNumbers"] == ["19876543210"]
    assert contact["emails"] == ["format@test.com"]


# =============================================================================
# Error mapping
# =============================================================================


@pytest.mark.parametrize("payload", [
    {},
    {"email": "", "phoneNumber": ""},
    {"email": "not-an-email"},
    {"phoneNumber": "call me"},
    {"email": 123},
    {"email": ["a@b.com"]},
])
def test_bad_payloads_are_rejected(client, payload):
    res = client.post("/identify", json=payload)

    assert res.status_code == 400
    assert res.json()["error"]


def test_exhausted_conflicts_map_to_service_unavailable(client, db_path):
    class AlwaysConflicting(ContactStore):
        def create(self, email, phone, precedence, linked_id=None):
            raise sqlite3.IntegrityError("UNIQUE constraint failed: Contact.email, Contact.phoneNumber")

    def override():
        conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            yield AlwaysConflicting(conn)
        finally:
            conn.close()

    app.dependency_overrides[get_contact_store] = override

    res = identify(client, email="stuck@test.com", phoneNumber="1")

    assert res.status_code == 503
    assert res.json() == {"error": "Service unavailable"}


def test_unclassified_store_errors_map_to_internal_error(db_path):
    class BrokenStore(ContactStore):
        def find_matching(self, email=None, phone=None):
            raise sqlite3.DatabaseError("disk I/O error")

    def override():
        conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
        try:
            yield BrokenStore(conn)
        finally:
            conn.close()

    app.dependency_overrides[get_contact_store] = override
    try:
        with TestClient(app, raise_server_exceptions=False) as client:
            res = identify(client, email="broken@test.com")
    finally:
        app.dependency_overrides.clear()

    assert res.status_code == 500
    assert res.json() == {"error": "Internal server error"}


# =============================================================================
# Service endpoints
# =============================================================================


def test_root(client):
    assert client.get("/").json() == {"message": "Contact identity API is up"}


def test_health_ok(client):
    res = client.get("/health")

    assert res.status_code == 200
    assert res.json()["status"] == "ok"
    assert res.json()["timestamp"]


def test_health_reports_database_failure(client, db_path):
    def override():
        conn = sqlite3.connect(db_path, check_same_thread=False)
        conn.close()
        yield ContactStore(conn)

    app.dependency_overrides[get_contact_store] = override

    res = client.get("/health")

    assert res.status_code == 500
    assert res.json() == {"status": "error", "error": "Database connection failed"}
