from __future__ import annotations

from itinerary_inbox.core.db import SessionLocal
from itinerary_inbox.modules.identity.service import create_profile

PAYLOAD = {
    "trip_name": "Trip to Chicago",
    "destination": "Chicago",
    "start_date": "2027-04-02",
    "end_date": "2027-04-06",
    "reservations": [
        {
            "type": "hotel",
            "title": "The Langham",
            "start_time": "2027-04-02T15:00:00",
            "confirmation_number": "H-1",
            "details": {"Timezone": "-05:00"},
        }
    ],
}


def _seed_profile() -> None:
    with SessionLocal() as session:
        create_profile(session, email="ana@example.com", forwarding_token="abc12345")


def test_json_webhook_creates_trip_and_repeats_are_skipped(fake_extraction, no_push):
    from fastapi.testclient import TestClient

    from itinerary_inbox.main import app

    _seed_profile()
    fake_extraction.queue.append(PAYLOAD)
    client = TestClient(app)
    body = {
        "from": "Hotel <stay@langham.example>",
        "to": "plans+abc12345@triptrack.ai",
        "subject": "Your reservation",
        "text": "Confirmation H-1",
    }

    resp = client.post("/api/inbound-email", json=body)
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["trip_name"] == "Trip to Chicago"
    assert data["reservations_count"] == 1
    assert resp.headers["x-request-id"]

    again = client.post("/api/inbound-email", json=body)
    assert again.status_code == 200
    assert again.json()["skipped"] is True


def test_form_webhook_is_accepted(fake_extraction, no_push):
    from fastapi.testclient import TestClient

    from itinerary_inbox.main import app

    _seed_profile()
    fake_extraction.queue.append(PAYLOAD)
    client = TestClient(app)
    resp = client.post(
        "/api/inbound-email",
        data={
            "from": "stay@langham.example",
            "recipient": "plans+abc12345@triptrack.ai",
            "subject": "Your reservation",
            "body-html": "<p>Confirmation H-1</p>",
        },
    )
    assert resp.status_code == 200
    assert resp.json()["reservations_count"] == 1
    assert fake_extraction.calls[0]["body"] == "Confirmation H-1"


def test_error_status_mapping(fake_extraction):
    from fastapi.testclient import TestClient

    from itinerary_inbox.main import app

    _seed_profile()
    client = TestClient(app)

    missing = client.post("/api/inbound-email", json={"from": "a@b.c", "text": "hi"})
    assert missing.status_code == 400
    assert "error" in missing.json()

    no_token = client.post(
        "/api/inbound-email", json={"to": "plans@triptrack.ai", "text": "hi"}
    )
    assert no_token.status_code == 400

    unknown = client.post(
        "/api/inbound-email", json={"to": "plans+zzz99999@triptrack.ai", "text": "hi"}
    )
    assert unknown.status_code == 403
    assert unknown.json() == {"error": "Unknown forwarding address"}

    unsupported = client.post(
        "/api/inbound-email", content=b"hi", headers={"content-type": "text/plain"}
    )
    assert unsupported.status_code == 400

    fake_extraction.queue.append({"destination": "Nowhere"})
    broken = client.post(
        "/api/inbound-email", json={"to": "plans+abc12345@triptrack.ai", "text": "hi"}
    )
    assert broken.status_code == 500
    assert "error" in broken.json()


def test_preflight_and_health():
    from fastapi.testclient import TestClient

    from itinerary_inbox.main import app

    client = TestClient(app)
    preflight = client.options("/api/inbound-email")
    assert preflight.status_code == 200
    assert preflight.headers["access-control-allow-origin"] == "*"
    assert "POST" in preflight.headers["access-control-allow-methods"]

    assert client.get("/healthz").json() == {"status": "ok"}
    assert client.get("/healthz/db").status_code == 200
