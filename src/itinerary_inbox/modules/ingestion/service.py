from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from itinerary_inbox.core.db import SessionLocal
from itinerary_inbox.core.errors import (
    ExtractionInvalid,
    IngressError,
    PersistenceError,
    UnknownTokenError,
)
from itinerary_inbox.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_message_context,
    reset_user_context,
    set_message_context,
    set_user_context,
)
from itinerary_inbox.modules.extraction.ai import extract_trip
from itinerary_inbox.modules.extraction.schemas import ContextTrip, ParsedTrip
from itinerary_inbox.modules.identity.models import Profile
from itinerary_inbox.modules.identity.service import get_profile
from itinerary_inbox.modules.ingestion.claims import claim_message, content_hash, mark_message
from itinerary_inbox.modules.ingestion.ingress import InboundEmail, normalize_sender
from itinerary_inbox.modules.ingestion.models import IngestSource, MessageStatus
from itinerary_inbox.modules.ingestion.screening import looks_like_travel
from itinerary_inbox.modules.normalization.dates import repair_parsed_dates
from itinerary_inbox.modules.normalization.timezones import (
    TimeNormalizationError,
    normalize_reservation_times,
)
from itinerary_inbox.modules.notifications.service import notify_trip_update
from itinerary_inbox.modules.trips.reservations import (
    apply_cancellation,
    find_duplicate,
    insert_reservation,
)
from itinerary_inbox.modules.trips.service import (
    DeletedTripPolicy,
    TripQuery,
    complete_if_all_cancelled,
    delete_if_empty,
    is_past_trip,
    list_context_trips,
    resolve_trip,
)

logger = get_logger(__name__)

_POLICY_BY_SOURCE = {
    IngestSource.FORWARD: DeletedTripPolicy.OVERRIDE,
    IngestSource.SCAN: DeletedTripPolicy.SUPPRESS,
}


@dataclass
class IngestResult:
    success: bool
    trip_id: str | None = None
    trip_name: str | None = None
    reservations_count: int = 0
    cancelled_count: int = 0
    duplicates_skipped: int = 0
    skipped: bool = False
    reason: str | None = None


def ingest_email(
    session: Session, *, profile: Profile, email: InboundEmail, source: IngestSource
) -> IngestResult:
    """
    Turn one inbound email into trip and reservation rows for `profile`.

    Safe to call any number of times for the same email: the claim decides whether this
    delivery does the work, and every later step only adds what isn't stored yet. On
    failure the claim is marked failed so the next delivery retries, and whatever was
    already written stays in place.
    """
    message_hash = content_hash(email.sender, email.subject, email.body)
    ctx = set_message_context(message_hash)
    user_ctx = set_user_context(str(profile.id))
    start = time.monotonic()
    try:
        claim = claim_message(
            session, user_id=profile.id, message_hash=message_hash, source=source
        )
        if not claim.proceed:
            log_event(logger, "ingest.skipped", source=source.value, reason="already_processed")
            return IngestResult(success=True, skipped=True, reason="already_processed")

        log_event(logger, "ingest.start", source=source.value, claim=claim.outcome.value)
        try:
            result = _run_pipeline(session, profile=profile, email=email, source=source)
        except SQLAlchemyError as e:
            _fail_claim(session, profile=profile, message_hash=message_hash, source=source)
            raise PersistenceError("Failed to store itinerary") from e
        except Exception:
            _fail_claim(session, profile=profile, message_hash=message_hash, source=source)
            raise

        mark_message(
            session,
            user_id=profile.id,
            message_hash=message_hash,
            status=MessageStatus.PROCESSED,
            source=source,
        )
        log_event(
            logger,
            "ingest.finish",
            source=source.value,
            trip_id=result.trip_id,
            created=result.reservations_count,
            cancelled=result.cancelled_count,
            duplicates=result.duplicates_skipped,
            skipped=result.skipped,
            reason=result.reason,
            duration_ms=monotonic_ms(start),
        )
        return result
    finally:
        reset_user_context(user_ctx)
        reset_message_context(ctx)


def _fail_claim(
    session: Session, *, profile: Profile, message_hash: str, source: IngestSource
) -> None:
    log_exception(logger, "ingest.failed", source=source.value)
    try:
        session.rollback()
    except SQLAlchemyError:
        log_exception(logger, "ingest.rollback_failed")
    mark_message(
        session,
        user_id=profile.id,
        message_hash=message_hash,
        status=MessageStatus.FAILED,
        source=source,
    )


def _run_pipeline(
    session: Session, *, profile: Profile, email: InboundEmail, source: IngestSource
) -> IngestResult:
    if source == IngestSource.SCAN and not looks_like_travel(
        sender=email.sender, subject=email.subject, body=email.body
    ):
        log_event(logger, "ingest.not_travel_skipped", sender=email.sender)
        return IngestResult(success=True, skipped=True, reason="not_travel")

    context = [
        ContextTrip(
            name=t.name,
            destination=t.destination,
            start_date=t.start_date.isoformat(),
            end_date=t.end_date.isoformat(),
        )
        for t in list_context_trips(session, user_id=profile.id)
    ]
    parsed: ParsedTrip = extract_trip(
        sender=email.sender, subject=email.subject, body=email.body, existing_trips=context
    )
    parsed = repair_parsed_dates(parsed)
    query = TripQuery.from_parsed(parsed)

    if source == IngestSource.SCAN and is_past_trip(query.end_date):
        log_event(
            logger,
            "ingest.past_trip_skipped",
            destination=query.destination,
            end_date=query.end_date,
        )
        return IngestResult(success=True, skipped=True, reason="past_trip")

    resolution = resolve_trip(
        session, user_id=profile.id, query=query, policy=_POLICY_BY_SOURCE[source]
    )
    if resolution.suppressed or resolution.trip is None:
        return IngestResult(success=True, skipped=True, reason="deleted_trip")
    trip = resolution.trip

    created = cancelled = duplicates = 0
    for res in parsed.reservations:
        if res.is_cancellation:
            matched, flipped = apply_cancellation(session, trip=trip, parsed=res)
            if matched:
                cancelled += flipped
                continue

        try:
            times = normalize_reservation_times(res)
        except TimeNormalizationError as e:
            raise ExtractionInvalid(str(e)) from e

        rule = find_duplicate(session, trip=trip, user_id=profile.id, parsed=res, times=times)
        if rule:
            duplicates += 1
            log_event(
                logger,
                "reservation.duplicate_skipped",
                trip_id=str(trip.id),
                rule=rule,
                reservation_type=res.type.value,
            )
            continue

        insert_reservation(session, trip=trip, parsed=res, times=times)
        created += 1

    trip_id, trip_name = str(trip.id), trip.name
    if resolution.created and delete_if_empty(session, trip=trip):
        log_event(
            logger,
            "ingest.ghost_trip_removed",
            level=logging.WARNING,
            trip_id=trip_id,
            duplicates=duplicates,
        )
        return IngestResult(
            success=True,
            duplicates_skipped=duplicates,
            skipped=True,
            reason="no_new_reservations",
        )

    if cancelled:
        complete_if_all_cancelled(session, trip=trip)

    if created + cancelled > 0:
        notify_trip_update(
            session, profile=profile, trip=trip, created=created, cancelled=cancelled
        )

    return IngestResult(
        success=True,
        trip_id=trip_id,
        trip_name=trip_name,
        reservations_count=created,
        cancelled_count=cancelled,
        duplicates_skipped=duplicates,
        skipped=created + cancelled == 0,
        reason=None if created + cancelled else "no_new_reservations",
    )


def ingest_scanned_email(*, user_id: str, sender: str, subject: str, body: str) -> IngestResult:
    """Entry point for emails found by a mailbox scan rather than forwarded by the user."""
    if not (body or "").strip():
        raise IngressError("Missing body")
    with SessionLocal() as session:
        profile = get_profile(session, profile_id=uuid.UUID(str(user_id)))
        if profile is None:
            raise UnknownTokenError("Unknown profile")
        email = InboundEmail(
            sender=normalize_sender(sender),
            recipient=profile.email or "",
            subject=(subject or "").strip(),
            body=body.strip(),
        )
        return ingest_email(session, profile=profile, email=email, source=IngestSource.SCAN)
