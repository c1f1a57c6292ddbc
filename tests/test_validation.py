import pytest

from db_models import IdentifyRequest
from validation import validate_identify_request


@pytest.mark.parametrize("payload, message", [
    ({}, "Either email or phoneNumber is required"),
    ({"email": "", "phoneNumber": ""}, "Either email or phoneNumber is required"),
    ({"email": "   "}, "email cannot be empty"),
    ({"email": "not-an-email"}, "email is not a valid address"),
    ({"email": "a@b.com", "phoneNumber": "  "}, "phoneNumber cannot be empty"),
    ({"phoneNumber": "call me"}, "phoneNumber must contain at least one digit"),
])
def test_rejects_unusable_payloads(payload, message):
    assert validate_identify_request(IdentifyRequest(**payload)) == message


@pytest.mark.parametrize("payload", [
    {"email": "lorraine@hillvalley.edu"},
    {"phoneNumber": "+44 20 7123 4567"},
    {"phoneNumber": 123456},
    {"email": " Doc@Brown.com ", "phoneNumber": "555-0101"},
])
def test_accepts_usable_payloads(payload):
    assert validate_identify_request(IdentifyRequest(**payload)) is None
