from __future__ import annotations

import os

import pytest

# Set env before any itinerary_inbox imports (settings/engine are created at import time).
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./.itinerary_inbox_test.db")
os.environ.setdefault("TRIP_CREATION_JITTER_MIN_MS", "0")
os.environ.setdefault("TRIP_CREATION_JITTER_MAX_MS", "0")
os.environ.setdefault("OPENAI_API_KEY", "")


@pytest.fixture(autouse=True)
def _reset_db() -> None:
    import itinerary_inbox.models  # noqa: F401
    from itinerary_inbox.core.db import engine
    from itinerary_inbox.core.models import Base

    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)

    yield


@pytest.fixture()
def fake_extraction(monkeypatch):
    """
    Replace the model call with a queue of canned payloads.

    Each call pops the next payload (a dict in the model's JSON shape) and runs it
    through the real coercion, so tests exercise the same path as production.
    """
    from itinerary_inbox.modules.extraction.ai import coerce_trip_payload
    from itinerary_inbox.modules.ingestion import service as ingestion_service

    queue: list[dict] = []
    calls: list[dict] = []

    def _fake_extract_trip(*, sender, subject, body, existing_trips=None, today=None):
        calls.append({"sender": sender, "subject": subject, "body": body})
        if not queue:
            raise AssertionError("extract_trip called more often than expected")
        return coerce_trip_payload(queue.pop(0))

    monkeypatch.setattr(ingestion_service, "extract_trip", _fake_extract_trip)
    _fake_extract_trip.queue = queue
    _fake_extract_trip.calls = calls
    return _fake_extract_trip


@pytest.fixture()
def no_push(monkeypatch):
    from itinerary_inbox.modules.notifications import service as notifications_service

    sent: list[dict] = []

    def _fake_send_push(*, token, title, body, trip_id):
        sent.append({"token": token, "title": title, "body": body, "trip_id": trip_id})
        return True

    monkeypatch.setattr(notifications_service, "send_push", _fake_send_push)
    return sent
