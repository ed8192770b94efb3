from __future__ import annotations

from itinerary_inbox.core.config import settings
from itinerary_inbox.modules.ingestion.screening import (
    has_travel_subject,
    is_known_travel_sender,
    looks_like_travel,
)


def test_known_sender_matches_domain_and_subdomains():
    assert is_known_travel_sender("Delta <DeltaAirLines@t.delta.com>")
    assert is_known_travel_sender("noreply@delta.com")
    assert is_known_travel_sender("reservations@mail.ana.co.jp")
    assert not is_known_travel_sender("someone@notdelta.com")
    assert not is_known_travel_sender("Friend <friend@example.org>")
    assert not is_known_travel_sender("not an address")


def test_extra_travel_domains_from_settings(monkeypatch):
    assert not is_known_travel_sender("bookings@smallinn.example")
    monkeypatch.setattr(settings, "scan_extra_travel_domains", ["SmallInn.example"])
    assert is_known_travel_sender("bookings@smallinn.example")


def test_subject_keywords_need_some_body():
    assert has_travel_subject("Fwd: Your Flight Itinerary to Denver")
    assert not has_travel_subject("Lunch on Friday?")

    long_body = "Confirmation ABC123. Departing DEN 08:05, arriving SFO 09:40. Seat 14C."
    assert looks_like_travel(sender="me@example.org", subject="Fwd: E-ticket", body=long_body)
    assert not looks_like_travel(sender="me@example.org", subject="Fwd: E-ticket", body="see pdf")
    assert not looks_like_travel(sender="me@example.org", subject="Lunch", body=long_body)
