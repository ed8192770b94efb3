"""
Claim store that makes message ingestion idempotent under repeated delivery.

A claim is a row keyed by (user, content hash). Inserting it is the only way to start
processing a message; the table's uniqueness constraint decides between concurrent
deliveries. There is no lock: a crashed run leaves its claim in `processing` until the
staleness window lets a later delivery take over.
"""

from __future__ import annotations

import enum
import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from itinerary_inbox.core.config import settings
from itinerary_inbox.core.logging import get_logger, log_event, log_exception
from itinerary_inbox.core.models import as_utc, utcnow
from itinerary_inbox.modules.ingestion.models import IngestSource, MessageStatus, ProcessedMessage

logger = get_logger(__name__)

_FIELD_SEPARATOR = "\x1f"


class ClaimOutcome(str, enum.Enum):
    CLAIMED = "claimed"
    STALE_RECLAIMED = "stale_reclaimed"
    REFORWARD = "reforward"
    ALREADY_CLAIMED = "already_claimed"


@dataclass(frozen=True)
class ClaimResult:
    outcome: ClaimOutcome
    message_hash: str
    previous_status: MessageStatus | None = None

    @property
    def proceed(self) -> bool:
        return self.outcome != ClaimOutcome.ALREADY_CLAIMED


def content_hash(sender: str, subject: str, body: str, *, body_chars: int | None = None) -> str:
    """
    Fingerprint a message by sender, subject and the head of its body.

    Only the first few hundred body characters are used, so trailing encoding noise in
    re-deliveries doesn't change the hash, while sender and subject keep two emails with
    identical openings apart.
    """
    limit = settings.content_hash_body_chars if body_chars is None else body_chars
    raw = _FIELD_SEPARATOR.join([sender or "", subject or "", (body or "")[:limit]])
    return hashlib.sha256(raw.encode("utf-8", errors="ignore")).hexdigest()


def claim_message(
    session: Session,
    *,
    user_id: uuid.UUID,
    message_hash: str,
    source: IngestSource,
    now: datetime | None = None,
) -> ClaimResult:
    now = now or utcnow()
    candidate = ProcessedMessage(
        user_id=user_id,
        message_hash=message_hash,
        status=MessageStatus.PROCESSING,
        source=source,
        claimed_at=now,
        attempts=1,
    )
    try:
        with session.begin_nested():
            session.add(candidate)
            session.flush()
        session.commit()
    except IntegrityError:
        return _contend(
            session, user_id=user_id, message_hash=message_hash, source=source, now=now
        )
    except SQLAlchemyError:
        # Double-processing is worse than a dropped message: fail closed.
        _safe_rollback(session)
        log_exception(logger, "ingest.claim.storage_error", source=source.value)
        return ClaimResult(ClaimOutcome.ALREADY_CLAIMED, message_hash)

    log_event(logger, "ingest.claim.outcome", outcome=ClaimOutcome.CLAIMED.value)
    return ClaimResult(ClaimOutcome.CLAIMED, message_hash)


def _contend(
    session: Session,
    *,
    user_id: uuid.UUID,
    message_hash: str,
    source: IngestSource,
    now: datetime,
) -> ClaimResult:
    try:
        existing = session.scalar(
            select(ProcessedMessage)
            .where(
                ProcessedMessage.user_id == user_id,
                ProcessedMessage.message_hash == message_hash,
            )
            .execution_options(populate_existing=True)
        )
        if existing is None:
            log_event(logger, "ingest.claim.vanished", level=logging.WARNING)
            return ClaimResult(ClaimOutcome.ALREADY_CLAIMED, message_hash)

        previous = existing.status
        age_s = (now - as_utc(existing.claimed_at)).total_seconds()
        outcome = _reclaim_outcome(status=previous, age_s=age_s, source=source)
        if outcome == ClaimOutcome.ALREADY_CLAIMED:
            session.commit()
            log_event(
                logger,
                "ingest.claim.outcome",
                outcome=outcome.value,
                previous_status=previous.value,
                age_s=int(age_s),
            )
            return ClaimResult(outcome, message_hash, previous)

        # Compare-and-set: only the first of several concurrent reclaimers sees a match.
        result = session.execute(
            update(ProcessedMessage)
            .where(
                ProcessedMessage.id == existing.id,
                ProcessedMessage.status == previous,
                ProcessedMessage.claimed_at == existing.claimed_at,
            )
            .values(
                status=MessageStatus.PROCESSING,
                claimed_at=now,
                source=source,
                attempts=ProcessedMessage.attempts + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            session.rollback()
            log_event(
                logger,
                "ingest.claim.outcome",
                outcome=ClaimOutcome.ALREADY_CLAIMED.value,
                previous_status=previous.value,
                reason="lost_reclaim_race",
            )
            return ClaimResult(ClaimOutcome.ALREADY_CLAIMED, message_hash, previous)
        session.commit()
    except SQLAlchemyError:
        _safe_rollback(session)
        log_exception(logger, "ingest.claim.storage_error", source=source.value)
        return ClaimResult(ClaimOutcome.ALREADY_CLAIMED, message_hash)

    log_event(
        logger,
        "ingest.claim.outcome",
        outcome=outcome.value,
        previous_status=previous.value,
        age_s=int(age_s),
    )
    return ClaimResult(outcome, message_hash, previous)


def _reclaim_outcome(*, status: MessageStatus, age_s: float, source: IngestSource) -> ClaimOutcome:
    if status == MessageStatus.FAILED:
        return ClaimOutcome.STALE_RECLAIMED
    if status == MessageStatus.PROCESSING and age_s > settings.claim_stale_after_seconds:
        return ClaimOutcome.STALE_RECLAIMED
    if (
        status == MessageStatus.PROCESSED
        and source == IngestSource.FORWARD
        and age_s > settings.claim_reforward_cooldown_seconds
    ):
        return ClaimOutcome.REFORWARD
    return ClaimOutcome.ALREADY_CLAIMED


def mark_message(
    session: Session,
    *,
    user_id: uuid.UUID,
    message_hash: str,
    status: MessageStatus,
    source: IngestSource,
) -> None:
    """Record the terminal status of a claim. Never raises."""
    try:
        row = session.scalar(
            select(ProcessedMessage).where(
                ProcessedMessage.user_id == user_id,
                ProcessedMessage.message_hash == message_hash,
            )
        )
        if row is None:
            row = ProcessedMessage(
                user_id=user_id,
                message_hash=message_hash,
                source=source,
                attempts=1,
            )
        row.status = status
        row.claimed_at = utcnow()
        session.add(row)
        session.commit()
    except Exception:  # noqa: BLE001
        _safe_rollback(session)
        log_exception(logger, "ingest.claim.mark_failed", status=status.value)
        return
    log_event(logger, "ingest.claim.marked", status=status.value)


def _safe_rollback(session: Session) -> None:
    try:
        session.rollback()
    except Exception:  # noqa: BLE001
        log_exception(logger, "ingest.claim.rollback_failed")
