from __future__ import annotations

import pytest

from itinerary_inbox.core.db import SessionLocal
from itinerary_inbox.core.errors import AddressResolutionError, IngressError, UnknownTokenError
from itinerary_inbox.modules.identity.service import (
    create_profile,
    extract_forwarding_token,
    forwarding_address,
    resolve_profile,
)
from itinerary_inbox.modules.ingestion.ingress import normalize_payload


@pytest.mark.parametrize(
    ("address", "token"),
    [
        ("plans+k7m2x9pq@triptrack.ai", "k7m2x9pq"),
        ("Trips <plans+K7M2X9PQ@triptrack.ai>", "k7m2x9pq"),
        ("k7m2x9pq@triptrack.ai", "k7m2x9pq"),
        ("me@example.com, plans+abc12345@triptrack.ai", "abc12345"),
    ],
)
def test_extract_forwarding_token(address, token):
    assert extract_forwarding_token(address) == token


@pytest.mark.parametrize("address", ["plans@triptrack.ai", "", "not an address"])
def test_extract_forwarding_token_rejects_addresses_without_token(address):
    with pytest.raises(AddressResolutionError):
        extract_forwarding_token(address)


def test_resolve_profile_is_case_insensitive():
    with SessionLocal() as session:
        profile = create_profile(session, email="ana@example.com", forwarding_token="abc12345")
        assert forwarding_address(profile) == "plans+abc12345@triptrack.ai"

        assert resolve_profile(session, token="ABC12345").id == profile.id
        with pytest.raises(UnknownTokenError):
            resolve_profile(session, token="zzz99999")


def test_generated_tokens_are_short_lowercase_alphanumerics():
    with SessionLocal() as session:
        profile = create_profile(session, email="ana@example.com")
    assert len(profile.forwarding_token) == 8
    assert profile.forwarding_token.isalnum()
    assert profile.forwarding_token == profile.forwarding_token.lower()


def test_normalize_json_payload_prefers_recipient_and_text():
    email = normalize_payload(
        "application/json; charset=utf-8",
        {
            "from": "Delta Air Lines <NoReply@Delta.com>",
            "to": "someone@example.com",
            "recipient": "plans+abc12345@triptrack.ai",
            "subject": " Your trip confirmation ",
            "text": "Flight DL 100",
            "html": "<p>ignored</p>",
        },
    )
    assert email.sender == "noreply@delta.com"
    assert email.recipient == "plans+abc12345@triptrack.ai"
    assert email.subject == "Your trip confirmation"
    assert email.body == "Flight DL 100"


def test_normalize_form_payload_falls_back_to_html_body():
    email = normalize_payload(
        "application/x-www-form-urlencoded",
        {
            "from": "hotel@example.com",
            "to": "plans+abc12345@triptrack.ai",
            "subject": "Booking",
            "body-html": "<html><style>p{}</style><p>Check-in&nbsp;15:00</p><br>Room 4</html>",
        },
    )
    assert email.recipient == "plans+abc12345@triptrack.ai"
    assert email.body == "Check-in 15:00\nRoom 4"


def test_normalize_payload_rejects_missing_fields_and_unknown_types():
    with pytest.raises(IngressError):
        normalize_payload("application/json", {"from": "a@b.c", "subject": "x", "text": "body"})
    with pytest.raises(IngressError):
        normalize_payload("application/json", {"to": "plans+abc12345@triptrack.ai"})
    with pytest.raises(IngressError):
        normalize_payload("text/plain", {"to": "x", "text": "y"})
