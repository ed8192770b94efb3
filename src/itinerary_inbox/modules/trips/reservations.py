from __future__ import annotations

import re
import uuid
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from itinerary_inbox.core.logging import get_logger, log_event
from itinerary_inbox.core.models import as_utc
from itinerary_inbox.modules.extraction.schemas import ParsedReservation
from itinerary_inbox.modules.normalization.dates import literal_date
from itinerary_inbox.modules.normalization.timezones import (
    LOCAL_END_KEY,
    LOCAL_START_KEY,
    NormalizedTimes,
)
from itinerary_inbox.modules.trips.models import (
    Reservation,
    ReservationStatus,
    ReservationType,
    Trip,
)
from itinerary_inbox.modules.trips.service import expand_trip_dates

logger = get_logger(__name__)

FLIGHT_NUMBER_KEY = "Flight Number"
DEPARTURE_AIRPORT_KEY = "Departure Airport"
ARRIVAL_AIRPORT_KEY = "Arrival Airport"


def normalize_flight_number(value: object) -> str:
    """Strip whitespace and uppercase, so "AA 1531" and "aa1531" compare equal."""
    return re.sub(r"\s+", "", str(value or "")).upper()


def _normalize_airport(value: object) -> str:
    return str(value or "").strip().upper()


def _local_day(reservation: Reservation) -> date:
    literal = (reservation.details or {}).get(LOCAL_START_KEY)
    if literal:
        try:
            return literal_date(str(literal))
        except ValueError:
            pass
    return as_utc(reservation.start_time).date()


def apply_cancellation(
    session: Session, *, trip: Trip, parsed: ParsedReservation
) -> tuple[int, int]:
    """
    Flip the trip's reservations sharing the cancellation's confirmation number.

    Returns (matched, flipped). Only reservations of the same type are touched, so a hotel
    cancellation never flips a flight booked under the same confirmation number. All legs
    of a multi-leg flight booking share one number and are cancelled together.
    """
    if not parsed.confirmation_number:
        return 0, 0
    matches = list(
        session.scalars(
            select(Reservation).where(
                Reservation.trip_id == trip.id,
                Reservation.confirmation_number == parsed.confirmation_number,
                Reservation.type == parsed.type,
            )
        )
    )
    flipped = 0
    for res in matches:
        if res.status == ReservationStatus.CANCELLED:
            continue
        res.status = ReservationStatus.CANCELLED
        session.add(res)
        flipped += 1
    if flipped:
        session.commit()
    log_event(
        logger,
        "reservation.cancellation",
        trip_id=str(trip.id),
        confirmation_number=parsed.confirmation_number,
        matched=len(matches),
        flipped=flipped,
    )
    return len(matches), flipped


def find_duplicate(
    session: Session,
    *,
    trip: Trip,
    user_id: uuid.UUID,
    parsed: ParsedReservation,
    times: NormalizedTimes,
) -> str | None:
    """
    Return the name of the first heuristic that marks `parsed` as already stored.

    The same booking reaches us as a confirmation, a check-in reminder, a boarding pass
    and so on, each with slightly different extraction. Checked in order:
    same_start_time, flight_number, flight_route_day (flights), confirmation_in_trip and
    confirmation_across_trips (everything else).
    """
    existing = list(session.scalars(select(Reservation).where(Reservation.trip_id == trip.id)))

    for res in existing:
        if res.type == parsed.type and as_utc(res.start_time) == times.start:
            return "same_start_time"

    if parsed.is_flight:
        flights = [r for r in existing if r.type == ReservationType.FLIGHT]
        flight_number = normalize_flight_number(parsed.details.get(FLIGHT_NUMBER_KEY))
        if flight_number:
            for res in flights:
                other = normalize_flight_number((res.details or {}).get(FLIGHT_NUMBER_KEY))
                if other == flight_number:
                    return "flight_number"

        departure = _normalize_airport(parsed.details.get(DEPARTURE_AIRPORT_KEY))
        arrival = _normalize_airport(parsed.details.get(ARRIVAL_AIRPORT_KEY))
        if departure and arrival:
            day = literal_date(times.start_local)
            for res in flights:
                details = res.details or {}
                if (
                    _local_day(res) == day
                    and _normalize_airport(details.get(DEPARTURE_AIRPORT_KEY)) == departure
                    and _normalize_airport(details.get(ARRIVAL_AIRPORT_KEY)) == arrival
                ):
                    return "flight_route_day"
        # Legs of one itinerary share a confirmation number, so it proves nothing here.
        return None

    confirmation = parsed.confirmation_number
    if not confirmation:
        return None
    for res in existing:
        if res.confirmation_number == confirmation:
            return "confirmation_in_trip"

    elsewhere = session.scalar(
        select(Reservation.id)
        .join(Trip, Trip.id == Reservation.trip_id)
        .where(
            Trip.user_id == user_id,
            Trip.id != trip.id,
            Reservation.confirmation_number == confirmation,
        )
        .limit(1)
    )
    if elsewhere:
        return "confirmation_across_trips"
    return None


def insert_reservation(
    session: Session,
    *,
    trip: Trip,
    parsed: ParsedReservation,
    times: NormalizedTimes,
) -> Reservation:
    details = dict(parsed.details)
    details[LOCAL_START_KEY] = times.start_local
    if times.end_local:
        details[LOCAL_END_KEY] = times.end_local

    reservation = Reservation(
        trip_id=trip.id,
        type=parsed.type,
        title=parsed.title,
        subtitle=parsed.subtitle,
        start_time=times.start,
        end_time=times.end,
        location=parsed.location,
        address=parsed.address,
        confirmation_number=parsed.confirmation_number,
        details=details,
        status=(
            ReservationStatus.CANCELLED if parsed.is_cancellation else ReservationStatus.CONFIRMED
        ),
    )
    session.add(reservation)
    session.commit()
    log_event(
        logger,
        "reservation.created",
        trip_id=str(trip.id),
        reservation_id=str(reservation.id),
        reservation_type=reservation.type.value,
        status=reservation.status.value,
    )

    start_day = literal_date(times.start_local)
    end_day = literal_date(times.end_local) if times.end_local else start_day
    expand_trip_dates(
        session, trip=trip, start=min(start_day, end_day), end=max(start_day, end_day)
    )
    return reservation
