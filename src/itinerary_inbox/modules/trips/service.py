from __future__ import annotations

import enum
import random
import time
import uuid
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from itinerary_inbox.core.config import settings
from itinerary_inbox.core.logging import get_logger, log_event
from itinerary_inbox.core.models import utcnow
from itinerary_inbox.modules.extraction.schemas import ParsedTrip
from itinerary_inbox.modules.normalization.dates import literal_date
from itinerary_inbox.modules.trips.matching import is_unknown_destination, match_destinations
from itinerary_inbox.modules.trips.models import (
    DeletedTrip,
    Reservation,
    ReservationStatus,
    Trip,
    TripStatus,
)

logger = get_logger(__name__)


class DeletedTripPolicy(str, enum.Enum):
    """What to do when a new email looks like a trip the user deleted."""

    # Autonomous scans must not resurrect trips the user threw away.
    SUPPRESS = "suppress"
    # A direct forward is explicit intent: recreate and forget the deletion.
    OVERRIDE = "override"


@dataclass(frozen=True)
class TripQuery:
    name: str
    destination: str
    country: str | None
    region: str | None
    start_date: date
    end_date: date

    @classmethod
    def from_parsed(cls, parsed: ParsedTrip) -> TripQuery:
        return cls(
            name=parsed.trip_name.strip(),
            destination=parsed.destination.strip(),
            country=parsed.country,
            region=parsed.region,
            start_date=literal_date(parsed.start_date),
            end_date=literal_date(parsed.end_date),
        )


@dataclass
class TripResolution:
    trip: Trip | None
    created: bool = False
    tier: str | None = None
    rule: str | None = None
    suppressed: bool = False


def trip_status_for_dates(start: date, end: date, today: date | None = None) -> TripStatus:
    today = today or date.today()
    if today < start:
        return TripStatus.UPCOMING
    if today <= end:
        return TripStatus.ACTIVE
    return TripStatus.COMPLETED


def resolve_trip(
    session: Session,
    *,
    user_id: uuid.UUID,
    query: TripQuery,
    policy: DeletedTripPolicy,
) -> TripResolution:
    """
    Find the trip a parsed email belongs to, or create it.

    Matching runs in tiers: exact destination with overlapping dates, then related
    destinations within a widened window, then a single-candidate fallback when one
    side's destination is unknown. Before creating anything the user's deleted trips
    are consulted according to `policy`, and after a short random pause the first two
    tiers run once more so a trip created concurrently by another request is adopted
    instead of duplicated. That pause narrows the race; it does not close it.
    """
    found = _match_existing(session, user_id=user_id, query=query, allow_unknown=True)
    if found:
        return found

    deleted = _find_deleted_trips(session, user_id=user_id, query=query)
    if deleted:
        if policy == DeletedTripPolicy.SUPPRESS:
            log_event(
                logger,
                "trip.resolve.suppressed",
                destination=query.destination,
                deleted_trip_ids=[str(d.id) for d in deleted],
            )
            return TripResolution(trip=None, suppressed=True)
        session.execute(delete(DeletedTrip).where(DeletedTrip.id.in_([d.id for d in deleted])))
        session.commit()
        log_event(
            logger,
            "trip.resolve.deleted_override",
            destination=query.destination,
            cleared=len(deleted),
        )

    _creation_jitter()
    found = _match_existing(session, user_id=user_id, query=query, allow_unknown=False)
    if found:
        found.tier = f"recheck_{found.tier}"
        log_event(logger, "trip.resolve.race_adopted", trip_id=str(found.trip.id))
        return found

    trip = Trip(
        user_id=user_id,
        name=query.name or f"Trip to {query.destination}",
        destination=query.destination,
        start_date=query.start_date,
        end_date=query.end_date,
        status=trip_status_for_dates(query.start_date, query.end_date),
    )
    session.add(trip)
    session.commit()
    log_event(
        logger,
        "trip.created",
        trip_id=str(trip.id),
        destination=trip.destination,
        start_date=trip.start_date,
        end_date=trip.end_date,
    )
    return TripResolution(trip=trip, created=True, tier="created")


def _match_existing(
    session: Session, *, user_id: uuid.UUID, query: TripQuery, allow_unknown: bool
) -> TripResolution | None:
    exact = session.scalar(
        select(Trip)
        .where(
            Trip.user_id == user_id,
            Trip.destination == query.destination,
            Trip.end_date >= query.start_date,
            Trip.start_date <= query.end_date,
        )
        .order_by(Trip.created_at)
        .limit(1)
    )
    if exact:
        return _select(session, exact, query=query, tier="exact", rule="exact")

    buffer = timedelta(days=settings.trip_match_buffer_days)
    nearby = list(
        session.scalars(
            select(Trip)
            .where(
                Trip.user_id == user_id,
                Trip.end_date >= query.start_date - buffer,
                Trip.start_date <= query.end_date + buffer,
            )
            .order_by(Trip.created_at)
        )
    )
    for trip in nearby:
        rule = match_destinations(
            query.destination, query.country, query.region, trip.destination, trip.name
        )
        if rule:
            return _select(session, trip, query=query, tier="fuzzy", rule=rule)

    if allow_unknown and len(nearby) == 1:
        (only,) = nearby
        if is_unknown_destination(query.destination) or is_unknown_destination(only.destination):
            return _select(session, only, query=query, tier="unknown", rule="single_candidate")
    return None


def _select(
    session: Session, trip: Trip, *, query: TripQuery, tier: str, rule: str
) -> TripResolution:
    log_event(
        logger,
        f"trip.resolve.{tier}",
        trip_id=str(trip.id),
        trip_destination=trip.destination,
        destination=query.destination,
        rule=rule,
    )
    if is_unknown_destination(trip.destination) and not is_unknown_destination(query.destination):
        trip.destination = query.destination
        if query.name:
            trip.name = query.name
        session.add(trip)
        session.commit()
        log_event(logger, "trip.destination_resolved", trip_id=str(trip.id))
    expand_trip_dates(session, trip=trip, start=query.start_date, end=query.end_date)
    return TripResolution(trip=trip, tier=tier, rule=rule)


def expand_trip_dates(session: Session, *, trip: Trip, start: date, end: date) -> bool:
    """Widen the trip so it contains [start, end]. Never shrinks."""
    changed: dict[str, date] = {}
    if start < trip.start_date:
        trip.start_date = start
        changed["start_date"] = start
    if end > trip.end_date:
        trip.end_date = end
        changed["end_date"] = end
    if not changed:
        return False
    session.add(trip)
    session.commit()
    log_event(logger, "trip.dates_expanded", trip_id=str(trip.id), **changed)
    return True


def _find_deleted_trips(
    session: Session, *, user_id: uuid.UUID, query: TripQuery
) -> list[DeletedTrip]:
    window = timedelta(days=settings.deleted_trip_window_days)
    candidates = session.scalars(
        select(DeletedTrip).where(
            DeletedTrip.user_id == user_id,
            DeletedTrip.end_date >= query.start_date - window,
            DeletedTrip.start_date <= query.end_date + window,
        )
    )
    return [
        d
        for d in candidates
        if match_destinations(
            query.destination,
            query.country,
            query.region,
            d.destination,
            d.original_trip_name,
        )
    ]


def _creation_jitter() -> None:
    low = max(0, settings.trip_creation_jitter_min_ms)
    high = max(low, settings.trip_creation_jitter_max_ms)
    if high <= 0:
        return
    time.sleep(random.uniform(low, high) / 1000.0)


def count_reservations(session: Session, *, trip_id: uuid.UUID) -> int:
    return int(
        session.scalar(
            select(func.count()).select_from(Reservation).where(Reservation.trip_id == trip_id)
        )
        or 0
    )


def delete_if_empty(session: Session, *, trip: Trip) -> bool:
    if count_reservations(session, trip_id=trip.id):
        return False
    session.delete(trip)
    session.commit()
    log_event(logger, "trip.ghost_deleted", trip_id=str(trip.id))
    return True


def complete_if_all_cancelled(session: Session, *, trip: Trip) -> bool:
    statuses = list(
        session.scalars(select(Reservation.status).where(Reservation.trip_id == trip.id))
    )
    if not statuses or any(s != ReservationStatus.CANCELLED for s in statuses):
        return False
    prev_status = trip.status
    trip.status = TripStatus.COMPLETED
    session.add(trip)
    session.commit()
    log_event(
        logger,
        "trip.status.changed",
        trip_id=str(trip.id),
        from_status=prev_status.value,
        to_status=trip.status.value,
        reason="all_reservations_cancelled",
    )
    return True


def delete_trip(session: Session, *, trip: Trip) -> DeletedTrip:
    """Delete a trip on the user's behalf and remember it so scans don't bring it back."""
    record = DeletedTrip(
        user_id=trip.user_id,
        destination=trip.destination,
        start_date=trip.start_date,
        end_date=trip.end_date,
        original_trip_name=trip.name,
    )
    session.add(record)
    session.delete(trip)
    session.commit()
    log_event(logger, "trip.deleted", trip_id=str(trip.id), deleted_trip_id=str(record.id))
    return record


def purge_deleted_trips(session: Session, *, retention_days: int | None = None) -> int:
    days = settings.deleted_trip_retention_days if retention_days is None else retention_days
    cutoff = utcnow() - timedelta(days=days)
    result = session.execute(delete(DeletedTrip).where(DeletedTrip.deleted_at < cutoff))
    session.commit()
    purged = int(result.rowcount or 0)
    log_event(logger, "trip.deleted_records.purged", purged=purged, retention_days=days)
    return purged


def list_context_trips(
    session: Session, *, user_id: uuid.UUID, limit: int | None = None
) -> list[Trip]:
    cutoff = date.today() - timedelta(days=settings.past_trip_cutoff_days)
    return list(
        session.scalars(
            select(Trip)
            .where(Trip.user_id == user_id, Trip.end_date >= cutoff)
            .order_by(Trip.start_date)
            .limit(limit or settings.extraction_context_trips)
        )
    )


def is_past_trip(end_date: date, *, today: date | None = None) -> bool:
    today = today or date.today()
    return end_date < today - timedelta(days=settings.past_trip_cutoff_days)

