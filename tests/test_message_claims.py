from __future__ import annotations

from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from itinerary_inbox.core.db import SessionLocal
from itinerary_inbox.core.models import utcnow
from itinerary_inbox.modules.identity.service import create_profile
from itinerary_inbox.modules.ingestion.claims import (
    ClaimOutcome,
    claim_message,
    content_hash,
    mark_message,
)
from itinerary_inbox.modules.ingestion.models import IngestSource, MessageStatus, ProcessedMessage

HASH = content_hash("noreply@delta.com", "Your flight", "Confirmation ABC123")


def _row(session, user_id) -> ProcessedMessage:
    session.expire_all()
    return session.scalar(
        select(ProcessedMessage).where(
            ProcessedMessage.user_id == user_id, ProcessedMessage.message_hash == HASH
        )
    )


def test_content_hash_only_looks_at_the_start_of_the_body():
    body = "x" * 500
    assert content_hash("a@b.c", "s", body + "tail one") == content_hash("a@b.c", "s", body + "2")
    assert content_hash("a@b.c", "s", body) != content_hash("a@b.c", "other", body)
    assert len(content_hash("a@b.c", "s", body)) == 64


def test_first_claim_wins_and_concurrent_duplicate_is_rejected():
    with SessionLocal() as session:
        profile = create_profile(session, email="ana@example.com")

        first = claim_message(
            session, user_id=profile.id, message_hash=HASH, source=IngestSource.FORWARD
        )
        second = claim_message(
            session, user_id=profile.id, message_hash=HASH, source=IngestSource.FORWARD
        )

        assert first.outcome == ClaimOutcome.CLAIMED
        assert second.outcome == ClaimOutcome.ALREADY_CLAIMED
        assert second.previous_status == MessageStatus.PROCESSING
        assert _row(session, profile.id).attempts == 1


def test_stale_processing_claim_is_reclaimed_once():
    with SessionLocal() as session:
        profile = create_profile(session, email="ana@example.com")
        claim_message(
            session,
            user_id=profile.id,
            message_hash=HASH,
            source=IngestSource.SCAN,
            now=utcnow() - timedelta(hours=2),
        )

        reclaimed = claim_message(
            session, user_id=profile.id, message_hash=HASH, source=IngestSource.SCAN
        )
        again = claim_message(
            session, user_id=profile.id, message_hash=HASH, source=IngestSource.SCAN
        )

        assert reclaimed.outcome == ClaimOutcome.STALE_RECLAIMED
        assert again.outcome == ClaimOutcome.ALREADY_CLAIMED
        row = _row(session, profile.id)
        assert row.status == MessageStatus.PROCESSING
        assert row.attempts == 2


def test_failed_claim_is_retryable():
    with SessionLocal() as session:
        profile = create_profile(session, email="ana@example.com")
        claim_message(session, user_id=profile.id, message_hash=HASH, source=IngestSource.SCAN)
        mark_message(
            session,
            user_id=profile.id,
            message_hash=HASH,
            status=MessageStatus.FAILED,
            source=IngestSource.SCAN,
        )

        retry = claim_message(
            session, user_id=profile.id, message_hash=HASH, source=IngestSource.SCAN
        )
        assert retry.outcome == ClaimOutcome.STALE_RECLAIMED


def test_processed_message_can_be_reforwarded_after_cooldown_but_not_rescanned():
    with SessionLocal() as session:
        profile = create_profile(session, email="ana@example.com")
        claim_message(session, user_id=profile.id, message_hash=HASH, source=IngestSource.FORWARD)
        mark_message(
            session,
            user_id=profile.id,
            message_hash=HASH,
            status=MessageStatus.PROCESSED,
            source=IngestSource.FORWARD,
        )

        soon = claim_message(
            session, user_id=profile.id, message_hash=HASH, source=IngestSource.FORWARD
        )
        assert soon.outcome == ClaimOutcome.ALREADY_CLAIMED

        later = utcnow() + timedelta(minutes=11)
        scan = claim_message(
            session,
            user_id=profile.id,
            message_hash=HASH,
            source=IngestSource.SCAN,
            now=later,
        )
        forward = claim_message(
            session,
            user_id=profile.id,
            message_hash=HASH,
            source=IngestSource.FORWARD,
            now=later,
        )
        assert scan.outcome == ClaimOutcome.ALREADY_CLAIMED
        assert forward.outcome == ClaimOutcome.REFORWARD
        assert _row(session, profile.id).status == MessageStatus.PROCESSING


def test_storage_errors_fail_closed(monkeypatch):
    with SessionLocal() as session:
        profile = create_profile(session, email="ana@example.com")

        def _boom(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(session, "flush", _boom)
        result = claim_message(
            session, user_id=profile.id, message_hash=HASH, source=IngestSource.FORWARD
        )
        assert result.outcome == ClaimOutcome.ALREADY_CLAIMED
        assert not result.proceed


def test_mark_message_never_raises(monkeypatch, caplog):
    with SessionLocal() as session:
        profile = create_profile(session, email="ana@example.com")

        def _boom():
            raise OperationalError("UPDATE", {}, Exception("connection reset"))

        monkeypatch.setattr(session, "commit", _boom)
        mark_message(
            session,
            user_id=profile.id,
            message_hash=HASH,
            status=MessageStatus.PROCESSED,
            source=IngestSource.FORWARD,
        )

    assert any(r.getMessage() == "ingest.claim.mark_failed" for r in caplog.records)
